"""Outbound network access (rate-limited, retrying HTTP client)."""
