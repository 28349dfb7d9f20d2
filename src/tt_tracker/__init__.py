"""tt - a personal time tracker with a compact log notation."""

__version__ = "0.1.0"
