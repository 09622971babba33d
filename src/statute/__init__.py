"""Checkpointed ingestion pipeline for hierarchical legal text."""
