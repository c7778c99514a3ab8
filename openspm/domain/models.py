"""
Pydantic models for OpenSPM.

This module defines the records that flow between the components:
- Repository metadata (cached in the ``repositories`` blob)
- Package metadata (the merged index in the ``packages`` blob)
- Installed package records (the ``installed`` blob)
- Result objects returned by refresh and index rebuild operations

Documents fetched from repositories are loose YAML, so the package and
repository models coerce scalars to strings and treat missing values as empty.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# ---------------------------------------------------------------------------
# Repository Models
# ---------------------------------------------------------------------------


class RepositoryInfo(BaseModel):
    """
    Descriptive metadata for a configured repository.

    Identity is the URL. The remote ``repository.yaml`` document and the local
    ``repositories`` blob spell the maintainer key ``mantainer``; both
    spellings are accepted when reading.
    """

    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(default="", description="Base URL of the repository.")
    name: str = Field(default="", description="Human-friendly repository name.")
    description: str = Field(default="", description="Short description of the repository.")
    maintainer: str = Field(
        default="",
        validation_alias=AliasChoices("maintainer", "mantainer"),
        serialization_alias="mantainer",
        description="Person or organisation maintaining the repository.",
    )

    @field_validator("url", "name", "description", "maintainer", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value).strip()

    def is_complete(self) -> bool:
        return all([self.url, self.name, self.description, self.maintainer])

    def to_record(self) -> Dict[str, str]:
        """Entry stored under the URL key in the ``repositories`` blob."""
        return self.model_dump(by_alias=True, exclude={"url"})


class RefreshReport(BaseModel):
    """Outcome of refreshing repository metadata from the network."""

    updated: List[str] = Field(default_factory=list, description="URLs refreshed successfully.")
    failed: List[str] = Field(default_factory=list, description="URLs that could not be fetched.")


# ---------------------------------------------------------------------------
# Package Models
# ---------------------------------------------------------------------------


class PackageInfo(BaseModel):
    """
    A package as published in a repository's ``pkg-list.yaml``.

    Identity is the name; when two repositories publish the same name the one
    processed last wins.
    """

    name: str = Field(default="", description="Unique package name.")
    version: str = Field(default="", description="Free-form version string (not compared).")
    description: str = Field(default="", description="Short description.")
    maintainer: str = Field(default="", description="Package maintainer.")
    dependencies: List[str] = Field(
        default_factory=list,
        description="Names of packages that must be installed first.",
    )
    tags: str = Field(
        default="",
        description="Semicolon-separated tags the host must support (e.g. 'bin;linux-x86_64').",
    )
    url: str = Field(default="", description="Download URL of the package archive.")

    @field_validator("name", "version", "description", "maintainer", "tags", "url", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value).strip()

    @field_validator("dependencies", mode="before")
    @classmethod
    def _coerce_dependencies(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value] if value.strip() else []
        return [_as_text(v).strip() for v in value if _as_text(v).strip()]


class PackageIndexDocument(BaseModel):
    """Shape of the persisted ``packages`` blob."""

    packages: List[PackageInfo] = Field(default_factory=list)


class IndexBuildResult(BaseModel):
    """Outcome of rebuilding the merged package index."""

    package_count: int = Field(description="Number of distinct packages written to the index.")
    skipped: List[str] = Field(
        default_factory=list,
        description="Repository URLs whose package list could not be fetched or parsed.",
    )


# ---------------------------------------------------------------------------
# Installed Package Models
# ---------------------------------------------------------------------------


class InstalledPackage(BaseModel):
    name: str
    version: str = ""
    tags: str = ""
    installed_at: datetime = Field(default_factory=datetime.utcnow)


class InstalledDocument(BaseModel):
    """Shape of the persisted ``installed`` blob."""

    installed: List[InstalledPackage] = Field(default_factory=list)
