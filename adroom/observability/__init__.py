"""Observability: structured logging for AdRoom passes."""
