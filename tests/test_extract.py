"""Tests for archive extraction."""

import io
import tarfile
from pathlib import Path

import pytest

from imginspect.acquirers.extract import (
    extract_archive,
    prepare_destination,
    remove_tree,
    spool_chunks,
)
from imginspect.core.exceptions import AcquisitionError


def make_tar(path: Path, entries: list[tuple], mode: str = "w") -> Path:
    """Write a tar archive; entries are (name, content) or (name, TarInfo type)."""
    with tarfile.open(path, mode) as tar:
        for name, content in entries:
            info = tarfile.TarInfo(name)
            if isinstance(content, bytes):
                info.size = len(content)
                info.mode = 0o644
                tar.addfile(info, io.BytesIO(content))
            else:
                info.type = content
                info.mode = 0o755
                tar.addfile(info)
    return path


class TestPrepareDestination:
    """Tests for prepare_destination."""

    def test_temporary_directory(self) -> None:
        path, created = prepare_destination("")
        try:
            assert created
            assert Path(path).name.startswith("image-inspector-")
        finally:
            remove_tree(path)

    def test_new_directory(self, tmp_path: Path) -> None:
        path, created = prepare_destination(str(tmp_path / "a" / "b"))
        assert created
        assert Path(path).is_dir()

    def test_existing_empty_directory(self, tmp_path: Path) -> None:
        path, created = prepare_destination(str(tmp_path))
        assert path == str(tmp_path)
        assert not created

    def test_existing_non_empty_directory(self, tmp_path: Path) -> None:
        (tmp_path / "file").write_text("x")
        with pytest.raises(AcquisitionError):
            prepare_destination(str(tmp_path))


class TestRemoveTree:
    """Tests for remove_tree."""

    def test_read_only_directories(self, tmp_path: Path) -> None:
        root = tmp_path / "root"
        (root / "proc").mkdir(parents=True)
        (root / "proc" / "file").write_text("x")
        (root / "proc").chmod(0o555)
        remove_tree(root)
        assert not root.exists()

    def test_missing_path(self, tmp_path: Path) -> None:
        remove_tree(tmp_path / "missing")


class TestSpoolChunks:
    """Tests for spool_chunks."""

    def test_writes_all_chunks(self) -> None:
        path = Path(spool_chunks([b"ab", b"cd"]))
        try:
            assert path.read_bytes() == b"abcd"
        finally:
            path.unlink()

    def test_removes_file_on_error(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("tempfile.tempdir", str(tmp_path))

        def chunks():
            yield b"ab"
            raise ConnectionError("export interrupted")

        with pytest.raises(ConnectionError):
            spool_chunks(chunks())
        assert list(tmp_path.iterdir()) == []


class TestExtractArchive:
    """Tests for extract_archive."""

    def test_extract(self, tmp_path: Path) -> None:
        archive = make_tar(
            tmp_path / "fs.tar",
            [("etc", tarfile.DIRTYPE), ("etc/os-release", b"ID=alpine\n"), ("bin/sh", b"\x7fELF")],
        )
        dest = tmp_path / "dest"
        dest.mkdir()
        extract_archive(archive, dest)
        assert (dest / "etc" / "os-release").read_text() == "ID=alpine\n"
        assert (dest / "bin" / "sh").exists()

    def test_gzip_archive(self, tmp_path: Path) -> None:
        archive = make_tar(tmp_path / "layer.tar.gz", [("hello", b"world")], mode="w:gz")
        dest = tmp_path / "dest"
        dest.mkdir()
        extract_archive(archive, dest)
        assert (dest / "hello").read_text() == "world"

    def test_devices_are_skipped(self, tmp_path: Path) -> None:
        archive = make_tar(
            tmp_path / "fs.tar",
            [("dev/null", tarfile.CHRTYPE), ("dev/fifo", tarfile.FIFOTYPE), ("ok", b"1")],
        )
        dest = tmp_path / "dest"
        dest.mkdir()
        extract_archive(archive, dest)
        assert (dest / "ok").exists()
        assert not (dest / "dev" / "null").exists()
        assert not (dest / "dev" / "fifo").exists()

    def test_files_filter_receives_image_paths(self, tmp_path: Path) -> None:
        archive = make_tar(
            tmp_path / "fs.tar",
            [("./etc", tarfile.DIRTYPE), ("./etc/passwd", b"root"), ("./etc/.hidden", b"x"), ("./tmp/new", b"y")],
        )
        dest = tmp_path / "dest"
        dest.mkdir()
        seen: list[str] = []

        def only_tmp(path: str) -> bool:
            seen.append(path)
            return path.startswith("/tmp/")

        extract_archive(archive, dest, files_filter=only_tmp)
        assert sorted(seen) == ["/etc/.hidden", "/etc/passwd", "/tmp/new"]
        assert (dest / "etc").is_dir()
        assert not (dest / "etc" / "passwd").exists()
        assert (dest / "tmp" / "new").read_text() == "y"

    def test_confined_rejects_escaping_member(self, tmp_path: Path) -> None:
        archive = make_tar(tmp_path / "evil.tar", [("../escape", b"x")])
        dest = tmp_path / "dest"
        dest.mkdir()
        with pytest.raises(AcquisitionError):
            extract_archive(archive, dest, confine=True)
        assert not (tmp_path / "escape").exists()

    def test_whiteouts(self, tmp_path: Path) -> None:
        dest = tmp_path / "dest"
        dest.mkdir()
        lower = make_tar(
            tmp_path / "lower.tar",
            [("etc/removed", b"1"), ("etc/kept", b"2"), ("var/cache/a", b"3"), ("var/cache/b", b"4")],
        )
        upper = make_tar(
            tmp_path / "upper.tar",
            [("etc/.wh.removed", b""), ("var/cache/.wh..wh..opq", b""), ("var/cache/c", b"5")],
        )
        extract_archive(lower, dest, whiteouts=True)
        extract_archive(upper, dest, whiteouts=True)

        assert not (dest / "etc" / "removed").exists()
        assert (dest / "etc" / "kept").exists()
        assert not (dest / "etc" / ".wh.removed").exists()
        assert sorted(p.name for p in (dest / "var" / "cache").iterdir()) == ["c"]

    def test_corrupt_archive(self, tmp_path: Path) -> None:
        archive = tmp_path / "broken.tar"
        archive.write_bytes(b"not a tar archive at all")
        dest = tmp_path / "dest"
        dest.mkdir()
        with pytest.raises(AcquisitionError):
            extract_archive(archive, dest)
