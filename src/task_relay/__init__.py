"""Queue coding tasks and dispatch them to CLI agents one at a time."""

__version__ = "0.1.0"
