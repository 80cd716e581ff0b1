"""Notification persistence, live push relay and socket channel."""
