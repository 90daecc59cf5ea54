"""
Managed configuration files: checksums, backups, ownership and removal.
"""

from collections import deque
from datetime import datetime
import hashlib
import json
import logging
import os
import shutil
from typing import Dict, Optional

from .common import Result, State
from . import paths


LOG = logging.getLogger(__name__)

# Paths that must never be removed, even if a caller computes one by accident (e.g. an empty
# variable joined onto a directory).
_PROTECTED = {"/", "/bin", "/boot", "/dev", "/etc", "/etc/systemd", "/etc/systemd/system", "/home",
              "/lib", "/opt", "/proc", "/root", "/sbin", "/srv", "/sys", "/usr", "/var",
              "/var/log", "/var/lib"}


def get_checksum(path: str) -> str:
    """
    Compute the MD5 digest of a file's content.
    """
    digest = hashlib.md5()
    with open(path, "rb") as data:
        for chunk in iter(lambda: data.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _load_store() -> Dict[str, str]:
    try:
        with open(paths.CHECKSUM_STORE) as store:
            return json.load(store)
    except FileNotFoundError:
        return {}


def _save_store(checksums: Dict[str, str]) -> None:
    os.makedirs(os.path.dirname(paths.CHECKSUM_STORE) or ".", exist_ok=True)
    with open(paths.CHECKSUM_STORE, "w") as store:
        json.dump(checksums, store, indent=2, sort_keys=True)


def get_stored_checksum(path: str) -> Optional[str]:
    """
    Look up the checksum recorded at the last managed write of a file, if any.
    """
    return _load_store().get(os.path.abspath(path))


def store_checksum(path: str) -> Result[str]:
    """
    Record the current checksum of a file, for later drift detection.
    """
    key = os.path.abspath(path)
    checksum = get_checksum(path)
    checksums = _load_store()
    if checksums.get(key) == checksum:
        return Result(State.unchanged, checksum)
    checksums[key] = checksum
    _save_store(checksums)
    LOG.debug("Stored checksum %s for %r", checksum, key)
    return Result(State.success, checksum)


def forget_checksum(path: str) -> Result[None]:
    """
    Drop the recorded checksum of a file that is no longer managed.
    """
    key = os.path.abspath(path)
    checksums = _load_store()
    if key not in checksums:
        return Result(State.unchanged)
    del checksums[key]
    _save_store(checksums)
    return Result(State.success)


def has_changed(path: str) -> bool:
    """
    Test if a file differs from its recorded checksum.  Files with no recorded checksum, or which
    don't exist, are considered unchanged.
    """
    stored = get_stored_checksum(path)
    if not stored or not os.path.isfile(path):
        return False
    return get_checksum(path) != stored


def backup(path: str) -> Result[str]:
    """
    Copy a file into the backup directory, mirroring its absolute path and suffixed with the
    current time.
    """
    stamp = datetime.now().strftime("%Y%m%d.%H%M%S")
    name = os.path.join(paths.BACKUP_DIR, os.path.abspath(path).lstrip("/"))
    target = "{}.backup.{}".format(name, stamp)
    os.makedirs(os.path.dirname(target), exist_ok=True)
    shutil.copy2(path, target)
    return Result(State.created, target)


def backup_if_changed(path: str) -> Result[Optional[str]]:
    """
    Back up a managed file if it was edited since its checksum was recorded.
    """
    if not has_changed(path):
        return Result(State.unchanged, None)
    result = backup(path)
    LOG.warning("File %r has been manually modified since installation, a backup has been "
                "made at %r", path, result.value)
    return result


def write(path: str, content: str) -> Result[None]:
    """
    Replace a file's content, if different.
    """
    try:
        with open(path) as current:
            if current.read() == content:
                return Result(State.unchanged)
    except FileNotFoundError:
        state = State.created
    else:
        state = State.success
    with open(path, "w") as target:
        target.write(content)
    LOG.debug("Wrote %r", path)
    return Result(state)


def set_root_owner(path: str) -> Result[None]:
    """
    Give ownership of a file to root, if not already.  Skipped when not running as root.
    """
    stat = os.stat(path)
    if stat.st_uid == 0 and stat.st_gid == 0:
        return Result(State.unchanged)
    if os.geteuid() != 0:
        LOG.debug("Not running as root, leaving ownership of %r", path)
        return Result(State.unchanged)
    os.chown(path, 0, 0)
    return Result(State.success)


def touch(path: str) -> Result[None]:
    """
    Create an empty file if nothing exists at the given path.
    """
    if os.path.exists(path):
        return Result(State.unchanged)
    with open(path, "a"):
        pass
    return Result(State.created)


def secure_remove(path: str) -> Result[None]:
    """
    Remove a file or directory tree, refusing to touch system-critical locations.  A missing path
    is not an error.
    """
    if not path or os.path.normpath(os.path.abspath(path)) in _PROTECTED:
        raise ValueError("Refusing to remove protected path {!r}".format(path))
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        try:
            os.remove(path)
        except FileNotFoundError:
            LOG.debug("Nothing to remove at %r", path)
            return Result(State.unchanged)
    LOG.debug("Removed %r", path)
    return Result(State.success)


def get_tail(path: str, lines: int) -> str:
    """
    Read the last lines of a text file.
    """
    if lines <= 0:
        return ""
    with open(path, errors="replace") as text:
        return "".join(deque(text, maxlen=lines))
