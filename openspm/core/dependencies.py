from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from openspm.core.config import Config
from openspm.data.packages import PackageIndexStore
from openspm.data.repository import RepositoryRegistry
from openspm.domain.models import PackageInfo
from openspm.services.fetcher import ClientFactory, RemoteFetcher
from openspm.services.index_builder import PackageIndexBuilder
from openspm.services.installer import InstallPipeline
from openspm.services.resolver import DependencyResolver
from openspm.storage.archive_store import ArchiveBlobStore
from openspm.storage.db_manager import BlobStore


@dataclass
class AppContext:
    """
    Everything one invocation needs, built once from the resolved Config and
    handed to the command that runs.
    """

    config: Config
    store: BlobStore
    fetcher: RemoteFetcher
    registry: RepositoryRegistry = field(init=False)
    index_store: PackageIndexStore = field(init=False)
    index_builder: PackageIndexBuilder = field(init=False)
    installer: InstallPipeline = field(init=False)

    def __post_init__(self) -> None:
        policy = self.config.repository_failure_policy
        self.registry = RepositoryRegistry(self.store, self.fetcher, failure_policy=policy)
        self.index_store = PackageIndexStore(self.store)
        self.index_builder = PackageIndexBuilder(
            self.registry, self.fetcher, self.index_store, failure_policy=policy
        )
        self.installer = InstallPipeline(self.fetcher, self.config.target_dir, self.index_store)

    def resolver(self) -> DependencyResolver:
        """A resolver over the current persisted index."""
        return DependencyResolver(self.index_store.as_mapping(), self.config.supported_tags)

    def resolve(self, name: str) -> List[PackageInfo]:
        return self.resolver().resolve(name)


def build_context(
    config: Config,
    store: Optional[BlobStore] = None,
    client_factory: Optional[ClientFactory] = None,
) -> AppContext:
    """
    Create the blob store (on disk unless one is supplied) and wire every
    component to it.
    """
    if store is None:
        store = ArchiveBlobStore(config.archive_path)
    store.ensure_created()
    fetcher = RemoteFetcher(timeout=config.http_timeout, client_factory=client_factory)
    return AppContext(config=config, store=store, fetcher=fetcher)
