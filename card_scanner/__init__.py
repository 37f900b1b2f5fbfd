"""Business card photo to contact record."""

__version__ = "0.1.0"
