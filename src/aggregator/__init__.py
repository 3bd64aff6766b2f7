"""Archive aggregator: crawl a listing page, fetch zip archives, ingest XML records into redis."""

__version__ = "0.3.0"
