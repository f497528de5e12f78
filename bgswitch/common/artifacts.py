"""
Artifacts helpers.

Atomic file replacement for the active-color pointer and the switch summary.
A reader of the target path always sees either the previous complete content
or the new complete content.
"""

import os
import uuid
from pathlib import Path
from typing import Any, Dict, Union

import orjson


PathLike = Union[str, Path]


def _tmp_name(p: Path) -> Path:
    # <name>.tmp.<pid>.<hex>, same directory so os.replace stays on one filesystem
    return p.with_name(f"{p.name}.tmp.{os.getpid()}.{uuid.uuid4().hex[:8]}")


def write_bytes_atomic(path: PathLike, data: bytes) -> None:
    """Write bytes to path atomically with fsync.

    - Create parent directories as needed
    - Write to a unique tmp file in the same directory, fsync, then os.replace
    - Best-effort fsync of the directory to persist the rename
    - The tmp file is removed if anything fails before the replace
    """
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = _tmp_name(p)
    try:
        with open(tmp, 'wb') as f:
            f.write(data)
            f.flush()
            try:
                os.fsync(f.fileno())
            except OSError:
                pass
        os.replace(tmp, p)
    except BaseException:
        try:
            tmp.unlink()
        except FileNotFoundError:
            pass
        raise
    try:
        dirfd = os.open(str(p.parent), os.O_DIRECTORY)
        try:
            os.fsync(dirfd)
        finally:
            os.close(dirfd)
    except (OSError, AttributeError):
        pass


def copy_file_atomic(src: PathLike, dst: PathLike) -> None:
    """Replace dst with a byte-identical copy of src, atomically."""
    with open(src, 'rb') as f:
        data = f.read()
    write_bytes_atomic(dst, data)


def dumps_json(payload: Dict[str, Any]) -> bytes:
    """Deterministic JSON: sorted keys, 2-space indent, trailing newline."""
    return orjson.dumps(
        payload or {},
        option=orjson.OPT_SORT_KEYS | orjson.OPT_INDENT_2 | orjson.OPT_APPEND_NEWLINE,
    )


def write_json_atomic(path: PathLike, payload: Dict[str, Any]) -> None:
    """Write deterministic JSON to path atomically with fsync."""
    write_bytes_atomic(path, dumps_json(payload))
