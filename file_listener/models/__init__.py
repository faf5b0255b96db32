"""Data models shared across the file listener."""
