"""
Binary file helpers and the change-detecting writer used for every
generated unit.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Union

Content = Union[str, bytes, bytearray]


def _to_bytes(content: Content) -> bytes:
    if isinstance(content, str):
        return content.encode("utf-8")
    return bytes(content)


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def file_exists(path: Path) -> bool:
    return path.is_file()


def read_binary_file(path: Path, *, may_not_exist: bool = False) -> bytes:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        if not may_not_exist:
            print(f"shadergen: ERROR: cannot open {path.as_posix()}: file not found", file=sys.stderr)
        return b""
    except OSError as exc:
        print(f"shadergen: ERROR: cannot read {path.as_posix()}: {exc.strerror or exc}", file=sys.stderr)
        return b""


def write_binary_file(path: Path, content: Content) -> bool:
    try:
        path.write_bytes(_to_bytes(content))
    except OSError as exc:
        print(f"shadergen: ERROR: cannot write {path.as_posix()}: {exc.strerror or exc}", file=sys.stderr)
        return False
    return True


def write_file_if_changed(path: Path, content: Content) -> bool:
    """Write ``content`` unless ``path`` already holds exactly those bytes.

    Returns True when the file was (re)written. Leaving an unchanged file
    alone keeps its mtime, so the build system does not rebuild dependents.
    """
    data = _to_bytes(content)
    if file_exists(path) and read_binary_file(path, may_not_exist=True) == data:
        return False
    return write_binary_file(path, data)
