"""Gateway orchestration."""
