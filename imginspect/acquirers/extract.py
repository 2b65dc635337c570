"""Extraction of image filesystem archives."""

import logging
import os
import posixpath
import shutil
import stat
import tarfile
import tempfile
from collections.abc import Iterable
from pathlib import Path

from imginspect.core.exceptions import AcquisitionError
from imginspect.core.models import FilesFilter

logger = logging.getLogger(__name__)

DEST_PREFIX = "image-inspector-"
WHITEOUT_PREFIX = ".wh."
OPAQUE_WHITEOUT = ".wh..wh..opq"


def prepare_destination(dst_path: str = "", prefix: str = DEST_PREFIX) -> tuple[str, bool]:
    """Get a directory to extract into.

    Returns:
        The directory and whether it was created here
    """
    if not dst_path:
        return tempfile.mkdtemp(prefix=prefix), True

    path = Path(dst_path)
    if path.exists():
        if not path.is_dir() or any(path.iterdir()):
            raise AcquisitionError(f"Destination {dst_path} exists and is not an empty directory")
        return str(path), False

    try:
        path.mkdir(parents=True)
    except OSError as e:
        raise AcquisitionError(f"Unable to create destination {dst_path}: {e}") from e
    return str(path), True


def remove_tree(path: str | Path) -> None:
    """Remove an extracted tree, including read-only directories."""
    path = Path(path)
    if not path.exists():
        return
    # image trees carry read-only directories (e.g. /proc is 0555)
    for dirpath, dirnames, _filenames in os.walk(path):
        for dirname in dirnames:
            child = Path(dirpath) / dirname
            if not child.is_symlink():
                child.chmod(child.stat().st_mode | stat.S_IRWXU)
    path.chmod(path.stat().st_mode | stat.S_IRWXU)
    shutil.rmtree(path)


def spool_chunks(chunks: Iterable[bytes], suffix: str = ".tar") -> str:
    """Write a chunked archive stream to a temporary file."""
    with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
        try:
            for chunk in chunks:
                tmp.write(chunk)
        except BaseException:
            tmp.close()
            os.unlink(tmp.name)
            raise
        return tmp.name


def _member_filter(confine: bool, files_filter: FilesFilter | None):
    base_filter = tarfile.tar_filter if confine else tarfile.fully_trusted_filter

    def filter_member(member: tarfile.TarInfo, dest_path: str) -> tarfile.TarInfo | None:
        if member.isdev():
            logger.debug("Skipping special file %s", member.name)
            return None
        if files_filter is not None and not member.isdir():
            if not files_filter("/" + posixpath.normpath(member.name).lstrip("/")):
                return None
        return base_filter(member, dest_path)

    return filter_member


def extract_archive(
    archive: str | Path,
    dest: str | Path,
    confine: bool = False,
    whiteouts: bool = False,
    files_filter: FilesFilter | None = None,
) -> None:
    """Extract a (possibly compressed) filesystem archive into ``dest``.

    Args:
        archive: Path of the tar archive
        dest: Destination directory
        confine: Reject members that would land outside ``dest``
        whiteouts: Apply OCI layer whiteouts against what ``dest`` holds
        files_filter: Only extract regular files accepted by the filter

    Raises:
        AcquisitionError: the archive is unreadable or a member is rejected
    """
    try:
        with tarfile.open(archive, "r:*") as tar:
            members = tar.getmembers()
            if whiteouts:
                members = _apply_whiteouts(members, Path(dest), confine)
            tar.extractall(dest, members=members, filter=_member_filter(confine, files_filter))
    except (tarfile.TarError, OSError) as e:
        raise AcquisitionError(f"Unable to extract {archive}: {e}") from e


def _apply_whiteouts(
    members: list[tarfile.TarInfo], dest: Path, confine: bool
) -> list[tarfile.TarInfo]:
    """Delete whited-out lower layer paths, return the members to extract."""
    regular: list[tarfile.TarInfo] = []
    for member in members:
        name = posixpath.normpath(member.name.lstrip("/"))
        directory, base = posixpath.split(name)
        if base == OPAQUE_WHITEOUT:
            target = _resolve_inside(dest, directory, confine)
            if target.is_dir() and not target.is_symlink():
                for child in target.iterdir():
                    _remove_path(child)
        elif base.startswith(WHITEOUT_PREFIX):
            target = _resolve_inside(dest, posixpath.join(directory, base[len(WHITEOUT_PREFIX) :]), confine)
            _remove_path(target)
        else:
            regular.append(member)
    return regular


def _resolve_inside(dest: Path, relative: str, confine: bool) -> Path:
    target = Path(os.path.normpath(dest / relative))
    if confine:
        real_dest = os.path.realpath(dest)
        real_parent = os.path.realpath(target.parent)
        if os.path.commonpath([real_dest, real_parent]) != real_dest:
            raise AcquisitionError(f"Whiteout {relative} points outside of {dest}")
    return target


def _remove_path(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        remove_tree(path)
