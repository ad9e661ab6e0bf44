"""devbridge -- Local daemon bridging a remote client to a project workspace.

The daemon exposes two WebSocket protocols: one that runs allowlisted
shell commands and streams their output, and one that drives a coding
agent CLI turn by turn, stitching turns together with the session id
the CLI reports in its own output stream.
"""

__version__ = "0.1.0"
