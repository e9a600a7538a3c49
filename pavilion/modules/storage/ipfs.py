"""IPFS HTTP API client.

Uploads return the content identifier (CID) reported by ``/api/v0/add``.
"""

import json
import logging
import os
import tempfile
from typing import BinaryIO, Optional

import httpx

from pavilion.core.exceptions import StorageError


class IPFSClient:
    """Content-addressable store client for a Kubo-compatible IPFS node."""

    def __init__(
        self,
        api_url: str = "http://localhost:5001",
        gateway_url: str = "https://ipfs.io/ipfs/",
        timeout: float = 300.0,
        client: Optional[httpx.Client] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.gateway = gateway_url.rstrip("/") + "/"
        self.logger = logger or logging.getLogger(__name__)
        self._client = client or httpx.Client(timeout=timeout)

    @classmethod
    def from_settings(cls, settings, logger: Optional[logging.Logger] = None) -> "IPFSClient":
        return cls(
            api_url=settings.IPFS_API_URL,
            gateway_url=settings.IPFS_GATEWAY_URL,
            timeout=settings.IPFS_TIMEOUT_SECONDS,
            logger=logger,
        )

    def upload(self, stream: BinaryIO, filename: str = "file") -> str:
        """Add a stream to IPFS.

        Args:
            stream: Readable binary stream
            filename: Name sent with the multipart field

        Returns:
            CID of the added content

        Raises:
            StorageError: If the node rejects the request or returns no CID
        """
        try:
            response = self._client.post(
                f"{self.api_url}/api/v0/add",
                params={"pin": "true"},
                files={"file": (filename, stream, "application/octet-stream")},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError("Failed to upload to IPFS", cause=e)

        cid = self._parse_add_response(response.text)
        self.logger.info(f"Uploaded {filename} to IPFS", extra={"cid": cid})
        return cid

    @staticmethod
    def _parse_add_response(body: str) -> str:
        # /api/v0/add streams one JSON object per line; the last names the root
        lines = [line for line in body.splitlines() if line.strip()]
        if not lines:
            raise StorageError("Empty response from IPFS add")
        try:
            entry = json.loads(lines[-1])
        except json.JSONDecodeError as e:
            raise StorageError("Invalid response from IPFS add", cause=e)

        cid = entry.get("Hash") if isinstance(entry, dict) else None
        if not cid:
            raise StorageError("IPFS add response has no Hash")
        return cid

    def download(self, cid: str, dest_dir: Optional[str] = None) -> str:
        """Fetch content by CID into a local file.

        Args:
            cid: Content identifier
            dest_dir: Directory for the file (system temp dir when omitted)

        Returns:
            Path of the downloaded file

        Raises:
            StorageError: If the content cannot be fetched
        """
        fd, path = tempfile.mkstemp(prefix=f"ipfs-{cid}-", dir=dest_dir)
        try:
            with os.fdopen(fd, "wb") as out:
                with self._client.stream(
                    "POST", f"{self.api_url}/api/v0/cat", params={"arg": cid}
                ) as response:
                    response.raise_for_status()
                    for chunk in response.iter_bytes():
                        out.write(chunk)
        except (httpx.HTTPError, OSError) as e:
            os.unlink(path)
            raise StorageError(f"Failed to download {cid} from IPFS", cause=e)

        return path

    def gateway_url(self, cid: str) -> str:
        return f"{self.gateway}{cid}"

    def close(self) -> None:
        self._client.close()
