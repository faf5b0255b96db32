"""
File Listener

Recursive directory-watch engine that turns filesystem changes into
normalized file events for downstream listeners.
"""

__version__ = "1.0.0"
