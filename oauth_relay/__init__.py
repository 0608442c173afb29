"""OAuth 2.0 authorization server and bearer relay gateway."""

__version__ = "1.0.0"
