"""Filesystem locations and atomic writes for nimbus.

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.nimbus/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Credential file** -- :func:`get_auth_file_path` resolves the single
  ``auth.json`` document, honouring the ``NIMBUS_AUTH_FILE`` override.
* **Atomic writes** -- :func:`atomic_write` writes through a temp file in
  the target directory and renames it into place, so a crash never leaves
  a half-written credential file behind.

Unlike most config helpers these functions do not create directories:
reading credentials must never touch the disk, and the credential store
creates its directory with owner-only permissions when it first saves.
"""

from __future__ import annotations

import os
import platform
import tempfile
from pathlib import Path
from typing import Optional

_APP_NAME = "nimbus"
_AUTH_FILENAME = "auth.json"

AUTH_FILE_ENV_VAR = "NIMBUS_AUTH_FILE"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform follows the XDG Base Directory layout (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory.

    On Linux/BSD: ``$XDG_CONFIG_HOME/nimbus/`` (default ``~/.config/nimbus/``).
    On macOS/Windows: ``~/.nimbus/``.
    """
    if _is_xdg_platform():
        return _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    return _fallback_base_dir()


def get_data_dir() -> Path:
    """Return the data directory holding credentials and crash logs.

    On Linux/BSD: ``$XDG_DATA_HOME/nimbus/`` (default ``~/.local/share/nimbus/``).
    On macOS/Windows: ``~/.nimbus/``.
    """
    if _is_xdg_platform():
        return _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    return _fallback_base_dir()


def get_auth_file_path() -> Path:
    """Return the path of the credential file.

    ``$NIMBUS_AUTH_FILE`` wins when set; otherwise the file lives at
    ``<data dir>/auth.json``.
    """
    override = os.environ.get(AUTH_FILE_ENV_VAR, "")
    if override:
        return Path(override).expanduser()
    return get_data_dir() / _AUTH_FILENAME


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    When *mode* is given it is applied to the temp file before any content
    is written, so secrets are never readable by others, even momentarily.

    Args:
        path: Destination file. Its parent directory must already exist.
        data: Text content to write (UTF-8).
        mode: Optional permission bits for the new file.

    Raises:
        OSError: If the file cannot be written (permissions, disk full, etc.).
    """
    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise
