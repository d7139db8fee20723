"""
Ingestion — source loading, chunking, and embedding into the vector index.

This module is the ETL-like side of the system: it turns source files into
chunks at declaration boundaries, embeds them, and upserts them into the
index the conversation loop later searches.
"""
