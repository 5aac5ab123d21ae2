"""Core helpers (security)."""
