"""Portfolio analytics scheduling and caching engine."""

__version__ = "1.0.0"
