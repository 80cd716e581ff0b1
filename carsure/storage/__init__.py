"""Inspection artifact storage."""
