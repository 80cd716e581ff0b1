"""In-process event bus and the audit subscriber."""
