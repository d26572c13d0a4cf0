"""HTTP surface for ingestion, queue management and search."""
