"""
Access to the merged package index and the installed-package records.

The index is stored in the ``packages`` blob as ``{packages: [...]}`` and is
replaced wholesale by every index rebuild. Installed packages are kept in the
``installed`` blob as ``{installed: [...]}``, one record per name.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

import yaml
from pydantic import ValidationError

from openspm.domain.errors import BlobNotFoundError, InvalidDataError, NotFoundError
from openspm.domain.models import (
    InstalledDocument,
    InstalledPackage,
    PackageIndexDocument,
    PackageInfo,
)
from openspm.storage.db_manager import BlobStore

logger = logging.getLogger(__name__)

PACKAGES_BLOB = "packages"
INSTALLED_BLOB = "installed"


class PackageIndexStore:
    """Reads and writes the persisted package index."""

    def __init__(self, store: BlobStore):
        self.store = store

    def _load_document(self, blob: str) -> dict:
        content = self.store.get_text(blob)
        try:
            raw = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            raise InvalidDataError(f"Malformed {blob} blob: {e}") from e
        if not isinstance(raw, dict):
            raise InvalidDataError(f"Malformed {blob} blob: expected a mapping")
        return raw

    def load(self) -> List[PackageInfo]:
        """Return every package in the index, in stored order."""
        try:
            raw = self._load_document(PACKAGES_BLOB)
        except BlobNotFoundError as e:
            logger.error("Failed to read packages list.")
            raise NotFoundError(
                "The package index has not been built yet.",
                recovery_hint="Run 'openspm update' to download package lists.",
            ) from e

        if not isinstance(raw.get("packages"), list):
            logger.error("Invalid packages list format.")
            raise InvalidDataError("Invalid packages list format: 'packages' must be a list")
        try:
            return PackageIndexDocument.model_validate(raw).packages
        except ValidationError as e:
            raise InvalidDataError(f"Invalid packages list format: {e}") from e

    def as_mapping(self) -> Dict[str, PackageInfo]:
        return {pkg.name: pkg for pkg in self.load()}

    def get(self, name: str) -> Optional[PackageInfo]:
        return self.as_mapping().get(name)

    def save(self, packages: List[PackageInfo]) -> None:
        document = PackageIndexDocument(packages=packages)
        content = yaml.safe_dump(document.model_dump(mode="json"), sort_keys=False)
        self.store.put_text(PACKAGES_BLOB, content)
        logger.debug(f"Wrote package index with {len(packages)} packages")

    def search(self, keyword: str) -> List[PackageInfo]:
        """Case-insensitive substring match on name and description."""
        k = (keyword or "").lower()
        return [
            pkg for pkg in self.load()
            if k in pkg.name.lower() or k in pkg.description.lower()
        ]

    # ------------------------------------------------------------------
    # Installed packages
    # ------------------------------------------------------------------

    def installed(self) -> List[InstalledPackage]:
        try:
            raw = self._load_document(INSTALLED_BLOB)
        except BlobNotFoundError:
            return []
        try:
            return InstalledDocument.model_validate(raw).installed
        except ValidationError as e:
            raise InvalidDataError(f"Invalid installed packages list: {e}") from e

    def mark_installed(self, package: PackageInfo) -> InstalledPackage:
        record = InstalledPackage(name=package.name, version=package.version, tags=package.tags)
        records = [r for r in self.installed() if r.name != package.name]
        records.append(record)
        document = InstalledDocument(installed=records)
        self.store.put_text(
            INSTALLED_BLOB,
            yaml.safe_dump(document.model_dump(mode="json"), sort_keys=False),
        )
        return record
