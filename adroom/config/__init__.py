"""Settings schema and loader."""
