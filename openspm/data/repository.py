from __future__ import annotations

import logging
from typing import Any, Dict, List

import yaml

from openspm.domain.errors import (
    BlobNotFoundError,
    InvalidDataError,
    NetworkError,
    NoRepositoriesError,
    RepositoryExistsError,
    RepositoryNotFoundError,
)
from openspm.domain.models import RefreshReport, RepositoryInfo
from openspm.services.fetcher import RemoteFetcher, normalize_base_url
from openspm.storage.db_manager import BlobStore

logger = logging.getLogger(__name__)

REPOSITORIES_BLOB = "repositories"
REPOSITORY_DOCUMENT = "repository.yaml"


class RepositoryRegistry:
    """
    The set of configured repositories and their cached metadata.

    Records live in the ``repositories`` blob as a YAML mapping of
    ``url -> {name, description, mantainer}``.
    """

    def __init__(self, store: BlobStore, fetcher: RemoteFetcher, failure_policy: str = "skip"):
        self.store = store
        self.fetcher = fetcher
        self.failure_policy = failure_policy

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load_records(self) -> Dict[str, Dict[str, Any]]:
        try:
            content = self.store.get_text(REPOSITORIES_BLOB)
        except BlobNotFoundError:
            return {}

        try:
            raw = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            raise InvalidDataError(f"Malformed {REPOSITORIES_BLOB} blob: {e}") from e
        if not isinstance(raw, dict):
            raise InvalidDataError(f"Malformed {REPOSITORIES_BLOB} blob: expected a mapping")

        records: Dict[str, Dict[str, Any]] = {}
        for url, record in raw.items():
            if record is None:
                record = {}
            if not isinstance(record, dict):
                raise InvalidDataError(f"Malformed {REPOSITORIES_BLOB} blob: entry for {url} is not a mapping")
            records[str(url)] = dict(record)
        return records

    def _save_records(self, records: Dict[str, Dict[str, Any]]) -> None:
        self.store.put_text(REPOSITORIES_BLOB, yaml.safe_dump(records, sort_keys=False))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_urls(self) -> List[str]:
        urls = list(self._load_records())
        if not urls:
            logger.warning("No repositories found.")
        return urls

    def list_infos(self) -> List[RepositoryInfo]:
        return [
            RepositoryInfo.model_validate({**record, "url": url})
            for url, record in self._load_records().items()
        ]

    def get_info(self, url: str) -> RepositoryInfo:
        """
        Return cached metadata for ``url``, fetching it when not cached.

        A fetched value is returned as-is and never written back.
        """
        url = normalize_base_url(url)
        record = self._load_records().get(url)
        if record is not None:
            return RepositoryInfo.model_validate({**record, "url": url})
        return self.fetch_info(url)

    def fetch_info(self, url: str) -> RepositoryInfo:
        url = normalize_base_url(url)
        if not url.startswith("https://"):
            logger.warning(f"Repository URL is not using HTTPS: {url}")

        data = self.fetcher.fetch_yaml(url, REPOSITORY_DOCUMENT)
        info = RepositoryInfo.model_validate({**data, "url": url})
        if not info.is_complete():
            logger.error(f"Incomplete repository metadata at {url}")
            raise InvalidDataError(
                f"Repository metadata at {url} is incomplete",
                recovery_hint=f"{REPOSITORY_DOCUMENT} must define name, description and mantainer.",
            )
        return info

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, info: RepositoryInfo) -> None:
        info = info.model_copy(update={"url": normalize_base_url(info.url)})
        if not info.is_complete():
            logger.error("Invalid repository information provided.")
            raise InvalidDataError(
                f"Invalid repository information for {info.url or '<no url>'}",
                recovery_hint="url, name, description and maintainer must all be set.",
            )

        records = self._load_records()
        if info.url in records:
            logger.warning(f"Repository already exists: {info.url}")
            raise RepositoryExistsError(info.url)

        records[info.url] = info.to_record()
        self._save_records(records)
        logger.info(f"Added repository {info.name} ({info.url})")

    def add_url(self, url: str) -> RepositoryInfo:
        """Fetch the metadata published at ``url`` and register the repository."""
        info = self.fetch_info(url)
        self.add(info)
        return info

    def remove(self, url: str) -> None:
        url = normalize_base_url(url)
        records = self._load_records()
        if url not in records:
            logger.warning(f"Repository not found: {url}")
            raise RepositoryNotFoundError(url)

        del records[url]
        self._save_records(records)
        logger.info(f"Removed repository {url}")

    def refresh_all(self) -> RefreshReport:
        """
        Re-fetch metadata for every configured repository.

        Under the ``skip`` policy an unreachable repository is logged and left
        with its previous record; under ``abort`` the first failure is raised
        and nothing is written.
        """
        records = self._load_records()
        if not records:
            logger.error("No repositories found.")
            raise NoRepositoriesError()

        report = RefreshReport()
        for url in list(records):
            try:
                info = self.fetch_info(url)
            except (NetworkError, InvalidDataError) as e:
                logger.error(f"Failed to fetch repository info: {url}")
                if self.failure_policy == "abort":
                    raise
                logger.debug(f"Skipping {url}: {e}")
                report.failed.append(url)
                continue
            records[url] = info.to_record()
            report.updated.append(url)

        if report.updated:
            self._save_records(records)
        return report

    def verify(self, url: str) -> RepositoryInfo:
        """
        Check that ``url`` is configured and still serves its metadata.

        Differences between the cached and the remote metadata are reported
        as warnings; the remote value is returned.
        """
        url = normalize_base_url(url)
        record = self._load_records().get(url)
        if record is None:
            logger.warning(f"Repository not found: {url}")
            raise RepositoryNotFoundError(url)

        cached = RepositoryInfo.model_validate({**record, "url": url})
        remote = self.fetch_info(url)
        for field in ("name", "description", "maintainer"):
            if getattr(cached, field) != getattr(remote, field):
                logger.warning(
                    f"Repository {url} {field} changed: "
                    f"'{getattr(cached, field)}' -> '{getattr(remote, field)}'"
                )
        return remote
