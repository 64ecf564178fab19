"""OAuth token relay: one API key in front of many OAuth2-protected APIs."""

__version__ = "0.1.0"
