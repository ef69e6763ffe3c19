"""
Testcase I/O helpers: inline data and pooled paths are interchangeable through
these functions.
"""

from pathlib import Path
from typing import Tuple

from models import TestcaseIo
from temp_pool import TempPool


def read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8", errors="replace", newline="") as f:
        return f.read()


def read_io(io: TestcaseIo) -> str:
    if io.use_file:
        return read_text(io.path)
    return io.data or ""


def materialize(io: TestcaseIo, pool: TempPool) -> Tuple[str, bool]:
    """Return a file path holding the data and whether the caller must dispose it."""
    if io.use_file:
        return io.path, False
    path = pool.create()
    Path(path).write_text(io.data or "", encoding="utf-8", newline="")
    return path, True


def try_inline(path: str, pool: TempPool, max_inline_bytes: int) -> TestcaseIo:
    """Turn a captured file into inline data when it is small enough.

    An inlined path goes straight back to the pool.
    """
    file = Path(path)
    if not file.exists():
        pool.dispose(path)
        return TestcaseIo(data="")
    if file.stat().st_size <= max_inline_bytes:
        content = read_text(path)
        pool.dispose(path)
        return TestcaseIo(data=content)
    return TestcaseIo(path=path)
