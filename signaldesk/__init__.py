"""Signal ingestion, normalization and trade-lifecycle engine."""

__version__ = "0.3.0"
