"""galibot - persistent messaging bot with device pairing and event dispatch."""

__version__ = "0.1.0"
