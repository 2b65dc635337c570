"""Parsers for the package databases found in image filesystems."""

import json
import logging
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path

from imginspect.core.models import FilesFilter, Package
from imginspect.core.scanner import walk_files

logger = logging.getLogger(__name__)

DPKG_STATUS = "/var/lib/dpkg/status"
DPKG_STATUS_DIR = "/var/lib/dpkg/status.d/"
APK_INSTALLED = "/lib/apk/db/installed"
OS_RELEASE_PATHS = ("etc/os-release", "usr/lib/os-release")


@dataclass
class ParseResult:
    """Result of parsing a package database."""

    packages: list[Package] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def merge(self, other: "ParseResult") -> None:
        self.packages.extend(other.packages)
        self.errors.extend(other.errors)


def parse_os_release(content: str) -> dict[str, str]:
    """Parse an os-release file into a dict."""
    fields: dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        fields[key.strip()] = value.strip().strip("\"'")
    return fields


def read_os_release(root: str | Path) -> dict[str, str]:
    """Read the os-release of an extracted image, empty if there is none."""
    for relative in OS_RELEASE_PATHS:
        path = Path(root) / relative
        if path.is_file() and not path.is_symlink():
            return parse_os_release(path.read_text(encoding="utf-8", errors="ignore"))
    return {}


def distro_ecosystem(os_release: dict[str, str], default: str) -> str:
    """OSV ecosystem name for the distribution, e.g. "Debian:12"."""
    distro = os_release.get("ID", "").lower()
    version = os_release.get("VERSION_ID", "")
    if distro == "alpine" and version:
        major_minor = ".".join(version.split(".")[:2])
        return f"Alpine:v{major_minor}"
    if distro in ("debian", "ubuntu") and version:
        return f"{distro.capitalize()}:{version}"
    return default


def parse_dpkg_status(content: str, path: str = DPKG_STATUS, ecosystem: str = "Debian") -> ParseResult:
    """Parse dpkg status paragraphs.

    Advisories are published against source packages, so the ``Source``
    field is preferred over the binary package name.
    """
    result = ParseResult()
    for paragraph in content.split("\n\n"):
        current: dict[str, str] = {}
        for line in paragraph.splitlines():
            if line.startswith((" ", "\t")) or ":" not in line:
                continue
            key, value = line.split(":", 1)
            current[key] = value.strip()

        if not current:
            continue
        if "Status" in current and "installed" not in current["Status"].split():
            continue
        name = current.get("Source", "").split(" ")[0] or current.get("Package", "")
        version = current.get("Version", "")
        # "Source: openssl (3.0.11-1)" pins the source version
        source_field = current.get("Source", "")
        if "(" in source_field and source_field.endswith(")"):
            version = source_field.split("(", 1)[1][:-1]
        if not name or not version:
            result.errors.append(f"{path}: incomplete entry {current.get('Package', '?')}")
            continue
        result.packages.append(Package(name=name, version=version, ecosystem=ecosystem, path=path))
    return result


def parse_apk_installed(content: str, path: str = APK_INSTALLED, ecosystem: str = "Alpine") -> ParseResult:
    """Parse the Alpine apk installed database."""
    result = ParseResult()
    current: dict[str, str] = {}

    for line in content.splitlines() + [""]:
        if line.startswith("P:"):
            current["name"] = line[2:].strip()
        elif line.startswith("V:"):
            current["version"] = line[2:].strip()
        elif line.startswith("o:"):
            current["origin"] = line[2:].strip()
        elif not line.strip() and current:
            name = current.get("origin") or current.get("name")
            if name and current.get("version"):
                result.packages.append(
                    Package(name=name, version=current["version"], ecosystem=ecosystem, path=path)
                )
            else:
                result.errors.append(f"{path}: incomplete entry {current}")
            current = {}

    return result


def parse_python_metadata(content: str, path: str) -> ParseResult:
    """Parse a Python ``METADATA``/``PKG-INFO`` file."""
    name = ""
    version = ""

    for line in content.splitlines():
        if not line.strip():
            break  # headers end at the first blank line
        if line.startswith("Name:"):
            name = line.split(":", 1)[1].strip().lower()
        elif line.startswith("Version:"):
            version = line.split(":", 1)[1].strip()

    if name and version:
        return ParseResult([Package(name=name, version=version, ecosystem="PyPI", path=path)])
    return ParseResult([], [f"{path}: missing Name or Version"])


def parse_package_json(content: str, path: str) -> ParseResult:
    """Parse the package.json of an installed node module."""
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        return ParseResult([], [f"{path}: {e}"])

    name = data.get("name", "") if isinstance(data, dict) else ""
    version = data.get("version", "") if isinstance(data, dict) else ""
    if name and version:
        return ParseResult([Package(name=name, version=version, ecosystem="npm", path=path)])
    return ParseResult([], [f"{path}: missing name or version"])


def _is_python_metadata(image_path: str) -> bool:
    if "site-packages/" not in image_path and "dist-packages/" not in image_path:
        return False
    return image_path.endswith(".dist-info/METADATA") or image_path.endswith(".egg-info/PKG-INFO")


def _is_node_module_manifest(image_path: str) -> bool:
    if "/node_modules/" not in image_path or not image_path.endswith("/package.json"):
        return False
    parts = image_path.rsplit("/node_modules/", 1)[1].split("/")
    return len(parts) == 2 or (len(parts) == 3 and parts[0].startswith("@"))


def discover_packages(root: str | Path, files_filter: FilesFilter | None = None) -> ParseResult:
    """Find installed packages in an extracted image.

    Only package databases accepted by ``files_filter`` are read.
    """
    os_release = read_os_release(root)
    dpkg_parser = partial(parse_dpkg_status, ecosystem=distro_ecosystem(os_release, "Debian"))
    apk_parser = partial(parse_apk_installed, ecosystem=distro_ecosystem(os_release, "Alpine"))
    result = ParseResult()

    for image_path, host_path in walk_files(root, files_filter):
        if image_path == DPKG_STATUS or (
            image_path.startswith(DPKG_STATUS_DIR) and not image_path.endswith(".md5sums")
        ):
            parser = dpkg_parser
        elif image_path == APK_INSTALLED:
            parser = apk_parser
        elif _is_python_metadata(image_path):
            parser = parse_python_metadata
        elif _is_node_module_manifest(image_path):
            parser = parse_package_json
        else:
            continue

        try:
            content = host_path.read_text(encoding="utf-8", errors="ignore")
        except OSError as e:
            result.errors.append(f"Failed to read {image_path}: {e}")
            continue
        result.merge(parser(content, image_path))

    # same package can be recorded by several databases
    unique: dict[tuple[str, str, str], Package] = {}
    for package in result.packages:
        unique.setdefault((package.name, package.version, package.ecosystem), package)
    result.packages = list(unique.values())
    logger.debug("Discovered %d packages (%d parse errors)", len(result.packages), len(result.errors))
    return result
