"""Daily entity performance aggregation and trend-scoring engine."""

__version__ = "0.1.0"
