"""Database engine, sessions and Redis client."""
