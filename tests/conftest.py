import io
import logging
import tarfile
import zipfile
from typing import Dict, List, Optional, Union

import httpx
import pytest
import yaml

from openspm.core.config import Config
from openspm.core.dependencies import build_context
from openspm.storage.archive_store import ArchiveBlobStore


class FakeRemote:
    """In-memory HTTP server: maps absolute URLs to (status, body) or an exception."""

    def __init__(self):
        self.routes: Dict[str, Union[tuple, Exception]] = {}
        self.requests: List[str] = []
        self.clients_opened = 0
        self.clients_closed = 0

    def add(self, url: str, body: Union[bytes, str], status: int = 200) -> None:
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.routes[url] = (status, body)

    def add_yaml(self, url: str, data) -> None:
        self.add(url, yaml.safe_dump(data, sort_keys=False))

    def fail(self, url: str, status: Optional[int] = None) -> None:
        if status is None:
            self.routes[url] = httpx.ConnectError("connection refused")
        else:
            self.routes[url] = (status, b"error")

    def add_repository(self, base: str, name: str, description: str, maintainer: str,
                       packages: Optional[list] = None, depend: Optional[list] = None) -> None:
        self.add_yaml(f"{base}/repository.yaml", {
            "name": name,
            "description": description,
            "mantainer": maintainer,
        })
        document: dict = {}
        if depend is not None:
            document["depend"] = depend
        document["packages"] = packages or []
        self.add_yaml(f"{base}/pkg-list.yaml", document)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        route = self.routes.get(url)
        if route is None:
            return httpx.Response(404, content=b"not found")
        if isinstance(route, Exception):
            raise route
        status, body = route
        return httpx.Response(status, content=body)

    def client_factory(self) -> httpx.Client:
        remote = self

        class _TrackedClient(httpx.Client):
            def __enter__(self):
                remote.clients_opened += 1
                return super().__enter__()

            def __exit__(self, *exc):
                remote.clients_closed += 1
                return super().__exit__(*exc)

        return _TrackedClient(transport=httpx.MockTransport(self.handler))


def package_entry(name: str, version: str = "1.0", tags: str = "bin;linux-x86_64",
                  dependencies: Optional[list] = None, url: Optional[str] = None) -> dict:
    return {
        "name": name,
        "version": version,
        "description": f"{name} package",
        "maintainer": "m",
        "dependencies": dependencies or [],
        "tags": tags,
        "url": url or f"https://pkgs.example.com/{name}.tar.gz",
    }


def make_tar_gz(files: Dict[str, Union[str, bytes]], mode: int = 0o644) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, content in files.items():
            data = content.encode("utf-8") if isinstance(content, str) else content
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = mode
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def make_zip(files: Dict[str, Union[str, bytes]]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        data_dir=tmp_path / "data",
        target_dir=tmp_path / "target",
        platform="linux-x86_64",
        supported_tags="bin;linux-x86_64;gcc",
        color_output=False,
    )


@pytest.fixture
def store(tmp_path) -> ArchiveBlobStore:
    return ArchiveBlobStore(tmp_path / "data" / "data.bin")


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def app(config, remote):
    return build_context(config, client_factory=remote.client_factory)


@pytest.fixture(autouse=True)
def reset_openspm_logger():
    """CLI tests bind log handlers to the runner's streams; drop them afterwards."""
    yield
    logger = logging.getLogger("openspm")
    logger.handlers.clear()
    logger.propagate = True
