"""Registry credential resolution."""

import logging
from pathlib import Path

from docker import auth as docker_auth
from docker.errors import DockerException

from imginspect.core.acquirer import AuthOptions
from imginspect.core.exceptions import AcquisitionError

logger = logging.getLogger(__name__)


def read_password_file(path: str) -> str:
    """Read a password file, dropping surrounding whitespace."""
    try:
        return Path(path).read_text(encoding="utf-8").strip()
    except OSError as e:
        raise AcquisitionError(f"Unable to read password file {path}: {e}") from e


def resolve_credentials(auths: AuthOptions | None, registry: str) -> dict[str, str] | None:
    """Find the credentials to use for ``registry``.

    An explicit username and password file win. Otherwise the docker config
    files are searched in order and the first entry for the registry is used.

    Returns:
        ``{"username": ..., "password": ...}`` or None for anonymous access
    """
    if auths is None:
        return None

    if auths.username:
        return {
            "username": auths.username,
            "password": read_password_file(auths.password_file),
        }

    for cfg_path in auths.docker_cfg:
        if not Path(cfg_path).is_file():
            logger.warning("Docker config %s not found, skipping", cfg_path)
            continue
        try:
            config = docker_auth.load_config(config_path=cfg_path)
            entry = config.resolve_authconfig(registry)
        except DockerException as e:
            logger.warning("Unable to load docker config %s: %s", cfg_path, e)
            continue
        credentials = _normalize_entry(entry)
        if credentials:
            logger.debug("Using credentials for %s from %s", registry, cfg_path)
            return credentials

    return None


def _normalize_entry(entry: dict[str, str] | None) -> dict[str, str] | None:
    # config files use lowercase keys, credential helpers capitalized ones
    if not entry:
        return None
    username = entry.get("username") or entry.get("Username") or ""
    password = entry.get("password") or entry.get("Password") or entry.get("Secret") or ""
    if not username and not password:
        return None
    return {"username": username, "password": password}
