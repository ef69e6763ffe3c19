import logging
import uuid
from pathlib import Path
from typing import Iterable, Set, Union

logger = logging.getLogger(__name__)


class TempPool:
    """Hands out temp file paths and takes them back for reuse.

    A path is only a name: the pool never creates or truncates the file, the
    borrower does. Once disposed, a path may be handed to someone else.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._used: Set[str] = set()
        self._free: Set[str] = set()

    def create(self) -> str:
        if self._free:
            path = self._free.pop()
        else:
            path = str(self.directory / uuid.uuid4().hex)
        self._used.add(path)
        return path

    def dispose(self, paths: Union[str, Iterable[str]]):
        if isinstance(paths, str):
            paths = [paths]
        for path in paths:
            if path in self._free:
                logger.warning(f"[TempPool] Duplicate dispose of {path}")
            elif path in self._used:
                self._used.remove(path)
                self._free.add(path)
            else:
                logger.debug(f"[TempPool] {path} is not a pooled path, ignored")

    def owns(self, path: str) -> bool:
        return path in self._used

    @property
    def used_count(self) -> int:
        return len(self._used)

    @property
    def free_count(self) -> int:
        return len(self._free)
