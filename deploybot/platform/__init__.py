"""Subprocess and file-system plumbing."""
