"""
Install a resolved package set onto the target system.

For every package, in order:
* download the archive from the package URL into a temporary directory,
* extract it (tar, compressed tar or zip),
* copy the payload's TARGET/ tree into the install target directory,
* run the payload's postinstall.sh, if any, with the package metadata in
  its environment,
* record the package as installed.

The first failure aborts the remaining packages. Temporary files are removed
on every path.
"""
from __future__ import annotations

import logging
import os
import re
import shlex
import shutil
import subprocess
import tarfile
import tempfile
import zipfile
from pathlib import Path
from typing import Callable, Dict, List, Optional

from openspm.data.packages import PackageIndexStore
from openspm.domain.errors import InvalidDataError, IOFailureError, ScriptError
from openspm.domain.models import PackageInfo
from openspm.services.fetcher import ProgressCallback, RemoteFetcher

logger = logging.getLogger(__name__)

TARGET_DIR_NAME = "TARGET"
POST_INSTALL_SCRIPT = "postinstall.sh"
EXTRACT_DIR_NAME = "extracted"

PackageCallback = Callable[[int, int, PackageInfo], None]
DownloadCallback = Callable[[PackageInfo, int, Optional[int]], None]


def _safe_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "_", name)


def _archive_filename(package: PackageInfo) -> str:
    name = Path(package.url.split("?")[0]).name
    if not name or name == package.url:
        name = f"{package.name}.archive"
    return _safe_name(name)


def _check_member_path(member_name: str, dest: Path) -> None:
    resolved = (dest / member_name).resolve()
    if resolved != dest and not resolved.is_relative_to(dest):
        raise IOFailureError(f"Refusing to extract unsafe archive member: {member_name}")


def extract_archive(archive_path: Path, dest: Path) -> None:
    """Extract a tar (optionally compressed) or zip archive into ``dest``."""
    dest.mkdir(parents=True, exist_ok=True)
    root = dest.resolve()
    try:
        if zipfile.is_zipfile(archive_path):
            with zipfile.ZipFile(archive_path, "r") as zip_ref:
                for member in zip_ref.namelist():
                    _check_member_path(member, root)
                zip_ref.extractall(dest)
        elif tarfile.is_tarfile(archive_path):
            with tarfile.open(archive_path, "r:*") as tar:
                members = tar.getmembers()
                for member in members:
                    _check_member_path(member.name, root)
                tar.extractall(dest, members=members, filter="data")
        else:
            raise IOFailureError(f"Unsupported archive format: {archive_path.name}")
    except (zipfile.BadZipFile, tarfile.TarError, OSError) as e:
        raise IOFailureError(f"Failed to extract {archive_path.name}: {e}") from e


def find_payload_root(extract_dir: Path) -> Path:
    """
    The payload root is the extraction directory itself, unless the archive
    wraps everything in a single top-level directory.
    """
    if (extract_dir / TARGET_DIR_NAME).is_dir() or (extract_dir / POST_INSTALL_SCRIPT).is_file():
        return extract_dir
    children = list(extract_dir.iterdir())
    if len(children) == 1 and children[0].is_dir():
        return children[0]
    return extract_dir


def copy_target_tree(src: Path, dest: Path) -> int:
    """
    Copy everything under ``src`` into ``dest``, preserving relative paths and
    overwriting existing files. Returns the number of files copied.
    """
    if not src.is_dir():
        logger.warning(f"Package payload has no {TARGET_DIR_NAME}/ directory; nothing to copy")
        return 0

    copied = 0
    try:
        dest.mkdir(parents=True, exist_ok=True)
        for item in sorted(src.rglob("*")):
            rel = item.relative_to(src)
            out = dest / rel
            if item.is_dir() and not item.is_symlink():
                out.mkdir(parents=True, exist_ok=True)
                continue
            out.parent.mkdir(parents=True, exist_ok=True)
            if out.is_symlink():
                out.unlink()
            shutil.copy2(item, out, follow_symlinks=False)
            copied += 1
    except OSError as e:
        raise IOFailureError(f"Failed to copy {src} to {dest}: {e}") from e
    return copied


class InstallPipeline:
    def __init__(
        self,
        fetcher: RemoteFetcher,
        target_dir: Path,
        index_store: Optional[PackageIndexStore] = None,
        shell: str = "sh",
    ):
        self.fetcher = fetcher
        self.target_dir = Path(target_dir)
        self.index_store = index_store
        self.shell = shell

    def install(
        self,
        resolved: List[PackageInfo],
        on_package: Optional[PackageCallback] = None,
        on_download: Optional[DownloadCallback] = None,
    ) -> List[PackageInfo]:
        """
        Install ``resolved`` in order and return the installed packages.

        ``on_package`` is called with (position, total, package) before each
        package starts; ``on_download`` receives per-chunk byte progress.
        """
        total = len(resolved)
        installed: List[PackageInfo] = []
        for position, package in enumerate(resolved, start=1):
            if on_package:
                on_package(position, total, package)
            logger.info(f"Installing {package.name} {package.version} ({position}/{total})")
            try:
                self.install_package(package, on_download)
            except Exception:
                logger.error(f"Failed to install {package.name}; aborting remaining packages")
                raise
            installed.append(package)
        logger.info(f"Installed {len(installed)} package(s) into {self.target_dir}")
        return installed

    def install_package(self, package: PackageInfo, on_download: Optional[DownloadCallback] = None) -> None:
        if not package.url:
            raise InvalidDataError(f"Package {package.name} has no download URL")

        progress: Optional[ProgressCallback] = None
        if on_download:
            progress = lambda downloaded, total: on_download(package, downloaded, total)

        with tempfile.TemporaryDirectory(prefix=f"openspm-{_safe_name(package.name)}-") as tmpdirname:
            work_dir = Path(tmpdirname)
            archive_path = work_dir / _archive_filename(package)

            size = self.fetcher.download(package.url, archive_path, progress)
            logger.debug(f"Downloaded {package.name} ({size} bytes)")

            extract_dir = work_dir / EXTRACT_DIR_NAME
            extract_archive(archive_path, extract_dir)
            payload_root = find_payload_root(extract_dir)

            copied = copy_target_tree(payload_root / TARGET_DIR_NAME, self.target_dir)
            logger.debug(f"Copied {copied} file(s) from {package.name} into {self.target_dir}")

            self.run_post_install(package, payload_root)

        if self.index_store is not None:
            self.index_store.mark_installed(package)

    def script_environment(self, package: PackageInfo, source_dir: Path) -> Dict[str, str]:
        return {
            "SPM_PACKAGE_NAME": package.name,
            "SPM_PACKAGE_VERSION": package.version,
            "SPM_PACKAGE_MAINTAINER": package.maintainer,
            "SPM_PACKAGE_DESCRIPTION": package.description,
            "SPM_PACKAGE_TAGS": package.tags,
            "SPM_INSTALL_DIR": str(self.target_dir),
            "SPM_SOURCE_DIR": str(source_dir),
        }

    def run_post_install(self, package: PackageInfo, payload_root: Path) -> None:
        script = payload_root / POST_INSTALL_SCRIPT
        if not script.is_file():
            return

        argv = [self.shell, str(script)]
        logger.info(f"Running post-install script for {package.name}")
        logger.debug("CMD %s", " ".join(shlex.quote(a) for a in argv))
        try:
            p = subprocess.run(
                argv,
                cwd=str(payload_root),
                env=dict(os.environ, **self.script_environment(package, payload_root)),
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise IOFailureError(f"Failed to run post-install script for {package.name}: {e}") from e

        if p.stdout:
            logger.debug("STDOUT %s", p.stdout.strip())
        if p.stderr:
            logger.debug("STDERR %s", p.stderr.strip())

        if p.returncode != 0:
            logger.error(f"Post-install script for {package.name} failed ({p.returncode}): {p.stderr.strip()}")
            raise ScriptError(package.name, p.returncode)
