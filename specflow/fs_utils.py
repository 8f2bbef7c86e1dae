"""Filesystem helpers shared by the state store, migrations and fixers."""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Optional

from .errors import InvalidFormatError, NotFoundError


def atomic_write_text(path: Path, content: str) -> None:
    """Replace ``path`` with ``content`` so readers never observe a partial file.

    The content goes to a sibling temporary file which is then renamed over
    the target. On any failure the temporary file is removed and the error
    propagates; the previous file is left untouched.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def write_json(path: Path, data: Any) -> None:
    atomic_write_text(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")


def read_text(path: Path, what: str = "File") -> str:
    """Read UTF-8 text, reporting undecodable bytes as an InvalidFormatError."""
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise InvalidFormatError(
            f"{what} is not valid UTF-8 (byte offset {e.start})",
            path,
            suggestion=f"Re-save {path} with UTF-8 encoding",
        ) from e


def read_markdown(path: Path) -> str:
    """Read a hand-edited markdown artifact for parsing.

    Undecodable bytes become U+FFFD so the remaining lines still parse.
    Never use this for text that is written back.
    """
    return path.read_text(encoding="utf-8", errors="replace")


def read_json_file(path: Path, what: str = "File") -> Any:
    """Load JSON from ``path`` raising NotFound / InvalidFormat errors."""
    if not path.exists():
        raise NotFoundError(what, path)
    text = read_text(path, what)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidFormatError(
            f"{what} is not valid JSON: {e.msg} (line {e.lineno}, column {e.colno})",
            path,
            suggestion=f"Fix the JSON syntax in {path}",
        ) from e


def try_read_json(path: Path) -> Optional[Any]:
    """Best-effort JSON read used for diagnostics: ``None`` when absent or unparsable."""
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None


def backup_file(path: Path, suffix: str = ".pre-upgrade") -> Optional[Path]:
    """Copy ``path`` next to itself with ``suffix`` appended; return the copy."""
    if not path.exists():
        return None
    backup = path.with_name(path.name + suffix)
    shutil.copy2(path, backup)
    return backup
