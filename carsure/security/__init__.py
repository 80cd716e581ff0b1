"""Abuse protection."""
