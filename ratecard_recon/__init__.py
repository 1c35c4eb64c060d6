"""Rate-card ingestion and overlap reconciliation for marketplace settlements."""

__version__ = "0.1.0"
