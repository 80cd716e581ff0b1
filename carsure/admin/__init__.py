"""Admin moderation endpoints."""
