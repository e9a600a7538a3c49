"""Application modules.

- transcoding: Metadata probing, transcoding and subprocess management
- storage: Content-addressable and object storage backends
- ingest: Video upload pipeline, records and background tasks
"""
