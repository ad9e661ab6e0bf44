"""Miscellaneous helpers for devbridge."""
