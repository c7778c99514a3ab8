"""
HTTP access to repositories and package archives.

Every request opens its own httpx.Client inside a ``with`` block so the
connection is released on every exit path, including failures raised half
way through a streamed download.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import httpx
import yaml

from openspm.core.logging_config import log_http_request
from openspm.domain.errors import InvalidDataError, IOFailureError, NetworkError

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], httpx.Client]
ProgressCallback = Callable[[int, Optional[int]], None]

CHUNK_SIZE = 64 * 1024


def normalize_base_url(url: str) -> str:
    """Strip surrounding whitespace and trailing slashes from a repository URL."""
    url = (url or "").strip()
    while url.endswith("/") and not url.endswith("://"):
        url = url[:-1]
    return url


def document_url(base_url: str, document: str) -> str:
    return f"{normalize_base_url(base_url)}/{document}"


class RemoteFetcher:
    """Downloads YAML documents and package archives."""

    def __init__(self, timeout: float = 60.0, client_factory: Optional[ClientFactory] = None):
        self.timeout = timeout
        self._client_factory = client_factory or self._default_client

    def _default_client(self) -> httpx.Client:
        return httpx.Client(follow_redirects=True, timeout=self.timeout)

    def fetch_text(self, url: str) -> str:
        try:
            with self._client_factory() as client:
                response = client.get(url)
        except httpx.HTTPError as e:
            log_http_request("GET", url, None)
            raise NetworkError(url, None, f"Request to {url} failed: {e}") from e

        log_http_request("GET", url, response.status_code)
        if response.status_code != 200:
            raise NetworkError(url, response.status_code)
        return response.text

    def fetch_yaml(self, base_url: str, document: str) -> Dict[str, Any]:
        """
        Fetch ``<base_url>/<document>`` and parse it as a YAML mapping.

        An empty document parses as an empty mapping; anything else that is
        not a mapping is InvalidDataError.
        """
        url = document_url(base_url, document)
        content = self.fetch_text(url)
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse YAML document from {url}: {e}")
            raise InvalidDataError(f"Malformed YAML document at {url}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise InvalidDataError(f"Document at {url} is not a mapping")
        return data

    def download(self, url: str, target_path: Path, progress: Optional[ProgressCallback] = None) -> int:
        """
        Stream ``url`` into ``target_path`` and return the number of bytes written.

        ``progress`` is called after every chunk with (bytes so far, total or None).
        """
        logger.debug(f"Downloading {url} to {target_path}")
        downloaded = 0
        try:
            with self._client_factory() as client:
                with client.stream("GET", url) as response:
                    log_http_request("GET", url, response.status_code)
                    if response.status_code != 200:
                        raise NetworkError(url, response.status_code)

                    total_size = int(response.headers.get("content-length", 0) or 0) or None
                    with open(target_path, "wb") as f:
                        for chunk in response.iter_bytes(CHUNK_SIZE):
                            f.write(chunk)
                            downloaded += len(chunk)
                            if progress:
                                progress(downloaded, total_size)
        except httpx.HTTPError as e:
            log_http_request("GET", url, None)
            raise NetworkError(url, None, f"Download of {url} failed: {e}") from e
        except OSError as e:
            raise IOFailureError(f"Failed to write {target_path}: {e}") from e

        return downloaded
