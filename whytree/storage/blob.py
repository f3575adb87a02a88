# whytree/storage/blob.py

"""
Key-value blob storage for client-local persistence.

Each key maps to one text blob. FileBlobStorage keeps one file per key in a
data directory; InMemoryBlobStorage backs tests and --ephemeral runs.
"""

import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol, Union


class BlobStorage(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


def _safe_key(key: str) -> str:
    safe = "".join(ch for ch in key if ch.isalnum() or ch in ("-", "_", "."))
    if not safe or safe.strip(".") == "":
        raise ValueError(f"Invalid storage key: {key!r}")
    return safe


class FileBlobStorage:
    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{_safe_key(key)}.json"

    def get(self, key: str) -> Optional[str]:
        fp = self.path_for(key)
        if not fp.exists():
            return None
        with fp.open("r", encoding="utf-8") as f:
            return f.read()

    def set(self, key: str, value: str) -> None:
        """
        Write the blob atomically: a crash mid-write leaves the previous blob.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        fp = self.path_for(key)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=fp.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, fp)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def remove(self, key: str) -> None:
        fp = self.path_for(key)
        if fp.exists():
            fp.unlink()


class InMemoryBlobStorage:
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self.blobs: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.blobs.get(key)

    def set(self, key: str, value: str) -> None:
        self.blobs[key] = value

    def remove(self, key: str) -> None:
        self.blobs.pop(key, None)
