"""HTTP error envelope."""
