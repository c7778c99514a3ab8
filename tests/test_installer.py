"""Tests for the install pipeline"""

import io
import tarfile

import pytest

from conftest import make_tar_gz, make_zip
from openspm.domain.errors import InvalidDataError, IOFailureError, NetworkError, ScriptError
from openspm.domain.models import PackageInfo
from openspm.services.installer import copy_target_tree, extract_archive, find_payload_root

PKG_HOST = "https://pkgs.example.com"


def _package(name, url=None, version="1.0"):
    return PackageInfo(
        name=name,
        version=version,
        description=f"{name} package",
        maintainer="m",
        tags="bin;linux-x86_64",
        url=url if url is not None else f"{PKG_HOST}/{name}.tar.gz",
    )


class TestInstallPipeline:
    def test_target_tree_is_relocated(self, app, remote, config):
        remote.add(f"{PKG_HOST}/foo.tar.gz", make_tar_gz({
            "TARGET/bin/foo": "#!/bin/sh\necho foo\n",
            "TARGET/share/doc/foo/README": "docs",
        }))

        installed = app.installer.install([_package("foo")])

        assert [p.name for p in installed] == ["foo"]
        assert (config.target_dir / "bin" / "foo").read_text() == "#!/bin/sh\necho foo\n"
        assert (config.target_dir / "share" / "doc" / "foo" / "README").read_text() == "docs"

    def test_existing_files_are_overwritten(self, app, remote, config):
        (config.target_dir / "bin").mkdir(parents=True)
        (config.target_dir / "bin" / "foo").write_text("old")
        (config.target_dir / "bin" / "other").write_text("keep")
        remote.add(f"{PKG_HOST}/foo.tar.gz", make_tar_gz({"TARGET/bin/foo": "new"}))

        app.installer.install([_package("foo")])

        assert (config.target_dir / "bin" / "foo").read_text() == "new"
        assert (config.target_dir / "bin" / "other").read_text() == "keep"

    def test_post_install_runs_after_copy_with_metadata(self, app, remote, config):
        script = (
            'echo "$SPM_PACKAGE_NAME $SPM_PACKAGE_VERSION $SPM_PACKAGE_TAGS" > "$SPM_INSTALL_DIR/hook.txt"\n'
            'test -f "$SPM_INSTALL_DIR/bin/foo" && echo copied >> "$SPM_INSTALL_DIR/hook.txt"\n'
            'test -f ./postinstall.sh && echo in-payload >> "$SPM_INSTALL_DIR/hook.txt"\n'
        )
        remote.add(f"{PKG_HOST}/foo.tar.gz", make_tar_gz({
            "TARGET/bin/foo": "x",
            "postinstall.sh": script,
        }))

        app.installer.install([_package("foo", version="2.1")])

        lines = (config.target_dir / "hook.txt").read_text().splitlines()
        assert lines == ["foo 2.1 bin;linux-x86_64", "copied", "in-payload"]

    def test_failing_hook_aborts_remaining_packages(self, app, remote, config):
        remote.add(f"{PKG_HOST}/a.tar.gz", make_tar_gz({
            "TARGET/a.txt": "a",
            "postinstall.sh": "exit 3\n",
        }))
        remote.add(f"{PKG_HOST}/b.tar.gz", make_tar_gz({"TARGET/b.txt": "b"}))

        with pytest.raises(ScriptError) as excinfo:
            app.installer.install([_package("a"), _package("b")])

        assert excinfo.value.returncode == 3
        assert not (config.target_dir / "b.txt").exists()
        assert f"{PKG_HOST}/b.tar.gz" not in remote.requests
        assert app.index_store.installed() == []

    def test_missing_archive(self, app, config):
        with pytest.raises(NetworkError) as excinfo:
            app.installer.install([_package("ghost")])
        assert excinfo.value.status == 404
        assert not config.target_dir.exists()

    def test_package_without_url(self, app):
        with pytest.raises(InvalidDataError):
            app.installer.install([_package("foo", url="")])

    def test_single_wrapping_directory(self, app, remote, config):
        remote.add(f"{PKG_HOST}/foo.tar.gz", make_tar_gz({"foo-1.0/TARGET/bin/foo": "x"}))
        app.installer.install([_package("foo")])
        assert (config.target_dir / "bin" / "foo").read_text() == "x"

    def test_zip_archive(self, app, remote, config):
        remote.add(f"{PKG_HOST}/foo.zip", make_zip({"TARGET/lib/libfoo.so": b"\x7fELF"}))
        app.installer.install([_package("foo", url=f"{PKG_HOST}/foo.zip")])
        assert (config.target_dir / "lib" / "libfoo.so").read_bytes() == b"\x7fELF"

    def test_records_installed_packages(self, app, remote):
        remote.add(f"{PKG_HOST}/foo.tar.gz", make_tar_gz({"TARGET/foo": "x"}))
        remote.add(f"{PKG_HOST}/bar.tar.gz", make_tar_gz({"TARGET/bar": "x"}))

        app.installer.install([_package("bar"), _package("foo", version="3")])

        records = {r.name: r.version for r in app.index_store.installed()}
        assert records == {"bar": "1.0", "foo": "3"}

    def test_progress_callbacks(self, app, remote):
        data = make_tar_gz({"TARGET/foo": "x"})
        remote.add(f"{PKG_HOST}/foo.tar.gz", data)
        packages = []
        downloads = []

        app.installer.install(
            [_package("foo")],
            on_package=lambda position, total, pkg: packages.append((position, total, pkg.name)),
            on_download=lambda pkg, downloaded, total: downloads.append((pkg.name, downloaded, total)),
        )

        assert packages == [(1, 1, "foo")]
        assert downloads[-1] == ("foo", len(data), len(data))

    def test_http_clients_are_released(self, app, remote):
        remote.add(f"{PKG_HOST}/foo.tar.gz", make_tar_gz({"TARGET/foo": "x"}))
        app.installer.install([_package("foo")])
        with pytest.raises(NetworkError):
            app.installer.install([_package("ghost")])
        assert remote.clients_opened == remote.clients_closed == 2


class TestPayloadHelpers:
    def test_unsafe_member_rejected(self, tmp_path):
        archive = tmp_path / "evil.tar.gz"
        archive.write_bytes(make_tar_gz({"../evil.txt": "x"}))
        with pytest.raises(IOFailureError):
            extract_archive(archive, tmp_path / "out")
        assert not (tmp_path / "evil.txt").exists()

    def test_symlink_escaping_destination_rejected(self, tmp_path):
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
            link = tarfile.TarInfo("TARGET/passwd")
            link.type = tarfile.SYMTYPE
            link.linkname = "/etc/passwd"
            tar.addfile(link)
        archive = tmp_path / "link.tar.gz"
        archive.write_bytes(buffer.getvalue())

        with pytest.raises(IOFailureError):
            extract_archive(archive, tmp_path / "out")
        assert not (tmp_path / "out" / "TARGET" / "passwd").is_symlink()

    def test_unsupported_format(self, tmp_path):
        archive = tmp_path / "plain.txt"
        archive.write_text("not an archive")
        with pytest.raises(IOFailureError):
            extract_archive(archive, tmp_path / "out")

    def test_payload_root_is_extract_dir_with_several_entries(self, tmp_path):
        (tmp_path / "TARGET").mkdir()
        (tmp_path / "README").write_text("x")
        assert find_payload_root(tmp_path) == tmp_path

    def test_payload_root_unwraps_single_directory(self, tmp_path):
        (tmp_path / "pkg" / "TARGET").mkdir(parents=True)
        assert find_payload_root(tmp_path) == tmp_path / "pkg"

    def test_copy_without_target_dir(self, tmp_path):
        assert copy_target_tree(tmp_path / "missing", tmp_path / "dest") == 0
        assert not (tmp_path / "dest").exists()

    def test_copy_counts_files(self, tmp_path):
        src = tmp_path / "TARGET"
        (src / "a" / "b").mkdir(parents=True)
        (src / "a" / "b" / "one").write_text("1")
        (src / "two").write_text("2")
        assert copy_target_tree(src, tmp_path / "dest") == 2
        assert (tmp_path / "dest" / "a" / "b" / "one").read_text() == "1"
