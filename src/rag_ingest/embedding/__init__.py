"""
Embedding: provider adapters, batched generation with retries, and
persistence of chunk vectors.
"""
