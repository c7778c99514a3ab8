"""
Build the merged package index from every configured repository.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set

from pydantic import ValidationError

from openspm.data.packages import PackageIndexStore
from openspm.data.repository import RepositoryRegistry
from openspm.domain.errors import InvalidDataError, NetworkError, NoRepositoriesError
from openspm.domain.models import IndexBuildResult, PackageInfo
from openspm.services.fetcher import RemoteFetcher, normalize_base_url

logger = logging.getLogger(__name__)

PACKAGE_LIST_DOCUMENT = "pkg-list.yaml"


class PackageIndexBuilder:
    """
    Fetches ``pkg-list.yaml`` from each repository, follows ``depend`` links,
    merges the records by name (last writer wins) and persists the result.
    """

    def __init__(
        self,
        registry: RepositoryRegistry,
        fetcher: RemoteFetcher,
        index_store: PackageIndexStore,
        failure_policy: str = "skip",
    ):
        self.registry = registry
        self.fetcher = fetcher
        self.index_store = index_store
        self.failure_policy = failure_policy

    def fetch_package_list(
        self,
        repo_url: str,
        visiting: Optional[Set[str]] = None,
        skipped: Optional[List[str]] = None,
    ) -> List[PackageInfo]:
        """
        Return the packages of ``repo_url`` preceded by those of the
        repositories it depends on.

        ``visiting`` holds the repositories on the current ``depend`` chain; a
        repository that depends on itself, directly or transitively, is
        skipped instead of recursing forever. Dependent repositories that
        cannot be fetched are appended to ``skipped``.
        """
        if visiting is None:
            visiting = set()
        repo_url = normalize_base_url(repo_url)
        if repo_url in visiting:
            logger.warning(f"Repository dependency cycle through {repo_url}. Skipping.")
            return []

        visiting.add(repo_url)
        try:
            return self._fetch_package_list(repo_url, visiting, skipped)
        finally:
            visiting.discard(repo_url)

    def _fetch_package_list(
        self, repo_url: str, visiting: Set[str], skipped: Optional[List[str]]
    ) -> List[PackageInfo]:
        root = self.fetcher.fetch_yaml(repo_url, PACKAGE_LIST_DOCUMENT)

        packages: List[PackageInfo] = []
        depend = root.get("depend") or []
        if not isinstance(depend, list):
            logger.warning(f"Ignoring malformed 'depend' entry in repository: {repo_url}")
            depend = []
        for dep_url in depend:
            try:
                packages.extend(self.fetch_package_list(str(dep_url), visiting, skipped))
            except (NetworkError, InvalidDataError) as e:
                if self.failure_policy == "abort":
                    raise
                logger.warning(f"Failed to fetch dependent repository: {dep_url}. Skipping. ({e})")
                if skipped is not None:
                    skipped.append(normalize_base_url(str(dep_url)))

        entries = root.get("packages")
        if not isinstance(entries, list):
            logger.error(f"Invalid package index format in repository: {repo_url}")
            raise InvalidDataError(f"Invalid package index format in repository: {repo_url}")

        for entry in entries:
            if not isinstance(entry, dict):
                logger.warning(f"Ignoring malformed package entry in {repo_url}: {entry!r}")
                continue
            try:
                pkg = PackageInfo.model_validate(entry)
            except ValidationError as e:
                logger.warning(f"Ignoring invalid package entry in {repo_url}: {e}")
                continue
            if not pkg.name:
                logger.warning(f"Ignoring package without a name in {repo_url}")
                continue
            packages.append(pkg)

        logger.debug(f"Fetched {len(entries)} package entries from {repo_url}")
        return packages

    def rebuild_index(self) -> IndexBuildResult:
        repo_urls = self.registry.list_urls()
        if not repo_urls:
            logger.warning("No repositories found. Cannot update packages.")
            raise NoRepositoriesError()

        merged: Dict[str, PackageInfo] = {}
        skipped: List[str] = []
        fetched = 0

        for repo_url in repo_urls:
            try:
                repo_packages = self.fetch_package_list(repo_url, skipped=skipped)
            except (NetworkError, InvalidDataError) as e:
                if self.failure_policy == "abort":
                    logger.error(f"Failed to fetch packages from repository: {repo_url}")
                    raise
                logger.warning(f"Failed to fetch packages from repository: {repo_url}. Skipping. ({e})")
                skipped.append(repo_url)
                continue
            fetched += 1

            for pkg in repo_packages:
                if pkg.name in merged:
                    logger.debug(f"Package {pkg.name} from {repo_url} overrides an earlier definition")
                    # Re-insert so the overriding record takes the later position.
                    del merged[pkg.name]
                merged[pkg.name] = pkg

        if not fetched:
            logger.error("No repository could be fetched. The package index was not changed.")
            raise NetworkError(
                ", ".join(skipped),
                message=f"Failed to fetch packages from every repository: {', '.join(skipped)}",
            )

        self.index_store.save(list(merged.values()))
        logger.info(f"Successfully updated packages list ({len(merged)} packages).")
        return IndexBuildResult(package_count=len(merged), skipped=list(dict.fromkeys(skipped)))
