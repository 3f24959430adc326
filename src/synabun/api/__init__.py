"""Web admin API."""
