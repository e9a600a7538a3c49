"""Pavilion video ingestion backend.

Accepts uploaded media, transcodes it into resolution variants and persists
the original plus every produced variant to IPFS and S3-compatible storage.

Modules:
    - core: Configuration, database, logging, tracing, Celery setup
    - modules.transcoding: ffprobe/ffmpeg orchestration and scaling rules
    - modules.storage: IPFS and S3 clients, progress tracking, dual uploader
    - modules.ingest: Upload state machine, persistence and caller contract
"""

__version__ = "0.1.0"
