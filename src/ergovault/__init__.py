"""ergovault - HD wallet engine for the Ergo blockchain."""

__version__ = "0.1.0"
