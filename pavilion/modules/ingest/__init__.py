"""Ingest module.

Upload initialization, the end-to-end processing pipeline, and the records
it persists.
"""
