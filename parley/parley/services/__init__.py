"""Domain services: ingestion, retrieval, conversation."""
