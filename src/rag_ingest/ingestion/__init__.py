"""
Ingestion: turning uploaded files into normalized, chunked text.

Format detection and conversion (with a content-addressed cache),
duplicate detection, content validation and token-aware chunking.
"""
