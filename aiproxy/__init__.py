"""AI request proxy: a validating, rate limited gateway to an AI provider."""

__version__ = "0.1.0"
