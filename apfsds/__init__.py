"""Server-side components for a distributed proxy network."""

__version__ = "0.2.0"