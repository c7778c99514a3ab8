"""
Exception hierarchy for OpenSPM.

Every error raised by the core derives from OpenSPMError so the command line
layer can report it and exit non-zero. Each error may carry a short recovery
hint that is appended when the error is rendered.
"""
from __future__ import annotations

from typing import List, Optional


class OpenSPMError(Exception):
    """Base exception for all OpenSPM errors."""

    def __init__(self, message: str, recovery_hint: Optional[str] = None):
        super().__init__(message)
        self.recovery_hint = recovery_hint

    def __str__(self) -> str:
        base = super().__str__()
        if self.recovery_hint:
            return f"{base}\nHint: {self.recovery_hint}"
        return base


# ---------------------------------------------------------------------------
# Lookup failures
# ---------------------------------------------------------------------------


class NotFoundError(OpenSPMError):
    """A blob, repository or package does not exist."""


class BlobNotFoundError(NotFoundError):
    def __init__(self, name: str, recovery_hint: Optional[str] = None):
        super().__init__(f"Blob not found: {name}", recovery_hint)
        self.name = name


class RepositoryNotFoundError(NotFoundError):
    def __init__(self, url: str):
        super().__init__(f"Repository not found: {url}")
        self.url = url


class PackageNotFoundError(NotFoundError):
    def __init__(self, name: str):
        super().__init__(
            f"Package not found: {name}",
            recovery_hint="Run 'openspm update' to refresh the package index.",
        )
        self.name = name


class NoRepositoriesError(NotFoundError):
    def __init__(self):
        super().__init__(
            "No repositories configured.",
            recovery_hint="Add one with 'openspm add-repo <url>'.",
        )


# ---------------------------------------------------------------------------
# Data failures
# ---------------------------------------------------------------------------


class InvalidDataError(OpenSPMError):
    """Malformed repository information or index document."""


class RepositoryExistsError(InvalidDataError):
    def __init__(self, url: str):
        super().__init__(f"Repository already exists: {url}")
        self.url = url


class NetworkError(OpenSPMError):
    """Unreachable host or non-200 response."""

    def __init__(self, url: str, status: Optional[int] = None, message: Optional[str] = None):
        status_text = str(status) if status is not None else "no response"
        super().__init__(message or f"Request to {url} failed ({status_text})")
        self.url = url
        self.status = status


class IncompatibleError(OpenSPMError):
    """A package requires tags the host does not support."""

    def __init__(self, package: str, missing_tags: List[str]):
        super().__init__(
            f"Package {package} is not compatible with this system "
            f"(missing tags: {', '.join(missing_tags)})"
        )
        self.package = package
        self.missing_tags = missing_tags


class CyclicDependencyError(OpenSPMError):
    def __init__(self, path: List[str]):
        super().__init__(f"Cyclic dependency detected: {' -> '.join(path)}")
        self.path = path


# ---------------------------------------------------------------------------
# Local side-effect failures
# ---------------------------------------------------------------------------


class IOFailureError(OpenSPMError):
    """Filesystem create, copy or extract failure."""


class StoreError(IOFailureError):
    """The blob store archive could not be read or written."""


class ScriptError(OpenSPMError):
    """A post-install script exited with a non-zero status."""

    def __init__(self, package: str, returncode: int):
        super().__init__(f"Post-install script for {package} exited with status {returncode}")
        self.package = package
        self.returncode = returncode
