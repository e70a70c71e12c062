"""wrench -- a terminal coding assistant core."""

__version__ = "0.1.0"
