"""Return and refund settlement engine."""

__version__ = "1.0.0"
