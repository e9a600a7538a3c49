"""Storage module.

Content-addressable (IPFS) and object (S3/MinIO) storage clients plus the
uploader that drives both with progress reporting and retry.
"""
