"""AI query orchestration."""
