"""Journal file discovery with change detection.

Files are found recursively by extension. In daemon mode the same
FileDiscovery instance is reused between scans, and a file is only
returned again when its fingerprint changed.
"""

import hashlib
import logging
import os
from typing import Dict, Iterable, List

from .models import FileAccessError, FileTask

log = logging.getLogger(__name__)

_CHUNK_SIZE = 8192


def compute_file_fingerprint(file_path: str, threshold: int, algorithm: str = "md5") -> str:
    """Compute a change-detection digest for a file.

    Up to ``threshold`` bytes are hashed. For larger files the size and
    modification time are mixed in instead of hashing the remainder.

    Args:
        file_path: Path to the file.
        threshold: Number of content bytes to hash.
        algorithm: Hash algorithm name.

    Returns:
        Hex digest, or an empty string if the file cannot be read.
    """
    h = hashlib.new(algorithm)
    remaining = threshold
    try:
        with open(file_path, "rb") as f:
            while remaining > 0:
                chunk = f.read(min(_CHUNK_SIZE, remaining))
                if not chunk:
                    break
                h.update(chunk)
                remaining -= len(chunk)
            oversized = remaining <= 0 and f.read(1) != b""
        if oversized:
            stat = os.stat(file_path)
            h.update(f"{stat.st_size}:{int(stat.st_mtime * 1000)}".encode())
    except OSError as exc:
        log.warning("Failed to fingerprint file %s: %s", file_path, exc)
        return ""
    return h.hexdigest()


class FileDiscovery:
    """Finds journal files that are new or changed since the last scan.

    Args:
        extension: Journal file extension, including the dot.
        threshold: Fingerprint content threshold in bytes.
    """

    def __init__(self, extension: str = ".log", threshold: int = 10 * 1024 * 1024):
        self.extension = extension
        self.threshold = threshold
        self._observed: Dict[str, str] = {}

    def _changed(self, path: str) -> bool:
        current = compute_file_fingerprint(path, self.threshold)
        previous = self._observed.get(path)
        if previous and current and previous == current:
            log.info("File %s has not changed since the previous load", path)
            return False
        self._observed[path] = current
        return True

    def forget(self, paths: Iterable[str]) -> None:
        """Drop recorded fingerprints so the next scan returns these files again."""
        for path in paths:
            self._observed.pop(path, None)

    def _walk(self, root: str) -> List[str]:
        if os.path.isfile(root):
            return [root] if root.endswith(self.extension) else []
        found = []
        for dirpath, _dirnames, filenames in os.walk(root):
            for name in filenames:
                if name.endswith(self.extension):
                    found.append(os.path.join(dirpath, name))
        return sorted(found)

    def scan(self, paths: Iterable[str]) -> List[FileTask]:
        """Return tasks for new or changed journal files under ``paths``."""
        tasks: List[FileTask] = []
        for root in paths:
            root = os.path.abspath(root)
            if not os.path.exists(root):
                log.warning("Journal path does not exist: %s", root)
                continue
            log.info("Searching technology journal files under %s", root)

            found = 0
            for path in self._walk(root):
                try:
                    task = FileTask.from_path(path)
                except FileAccessError as exc:
                    log.warning("Skipping %s: %s", path, exc)
                    continue
                if self._changed(task.path):
                    tasks.append(task)
                    found += 1
                    log.debug("File %s added to the load pool", task.path)

            if found:
                log.info("Found %d journal files to load under %s", found, root)
            else:
                log.info("No journal files to load under %s", root)
        return tasks
