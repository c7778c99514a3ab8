from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set

from openspm.domain.errors import CyclicDependencyError, IncompatibleError, PackageNotFoundError
from openspm.domain.models import PackageInfo
from openspm.domain.tag_utils import missing_tags

logger = logging.getLogger(__name__)


class DependencyResolver:
    """
    Computes the ordered set of packages needed to install a package.

    The result lists dependencies before their dependents and contains each
    name once. Every package in the result must be tag-compatible with the
    host.
    """

    def __init__(self, packages: Dict[str, PackageInfo], supported_tags: str):
        self.packages = packages
        self.supported_tags = supported_tags

    def resolve(self, name: str) -> List[PackageInfo]:
        collected: List[PackageInfo] = []
        self._resolve(name, collected, set(), [])
        return collected

    def check_compatible(self, package: PackageInfo) -> None:
        missing = missing_tags(self.supported_tags, package.tags)
        if missing:
            logger.error(f"Package {package.name} is not compatible with this system")
            raise IncompatibleError(package.name, missing)

    def _resolve(
        self,
        name: str,
        collected: List[PackageInfo],
        collected_names: Set[str],
        resolving: List[str],
        parent: Optional[str] = None,
    ) -> None:
        if name in resolving:
            cycle = resolving[resolving.index(name):] + [name]
            logger.error(f"Cyclic dependency: {' -> '.join(cycle)}")
            raise CyclicDependencyError(cycle)

        package = self.packages.get(name)
        if package is None:
            if parent:
                logger.error(f"Package {name} required by {parent} not found")
            else:
                logger.error(f"Package {name} not found")
            raise PackageNotFoundError(name)

        self.check_compatible(package)

        resolving.append(name)
        for dep in package.dependencies:
            if dep not in collected_names:
                self._resolve(dep, collected, collected_names, resolving, parent=name)
        resolving.pop()

        collected.append(package)
        collected_names.add(name)
        logger.debug(f"Resolved {name} {package.version}")
