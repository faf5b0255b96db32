"""Configuration and helper utilities."""
