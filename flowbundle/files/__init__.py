"""Stored file access and removal."""
