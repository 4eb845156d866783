"""
catalog/store.py -- Atomic file-backed persistence for the catalog document.

The catalog is one JSON document. Readers must never observe a half-written
file, so write() never touches the canonical path directly:

    1. serialize to JSON
    2. write to a unique temp file in the SAME directory (rename is only
       atomic within one filesystem)
    3. flush + fsync
    4. os.replace(temp, canonical)  -- atomic on POSIX and Windows

A reader therefore sees either the previous document or the new one. Two
concurrent writers are not serialized beyond that: last rename wins.

read() tries the canonical path first, then each fallback path, and returns
the first document that parses. Deployments that ship the seed catalog under
public/ keep working before the first admin save.

Usage:
    store = CatalogStore(Path("data/catalog.json"))
    store.write({"categories": [...], "apps": [...]})
    result = store.read()        # CatalogReadResult or None
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from core.errors import PersistenceError

logger = logging.getLogger("linkshelf.store")


@dataclass(frozen=True)
class CatalogReadResult:
    data: dict[str, Any]
    path: Path


def redact_path(path: Path) -> str:
    """Hide the file name of a path for unauthenticated responses (/srv/app/***)."""
    return f"{path.parent}/***"


class CatalogStore:
    def __init__(self, path: Path, fallback_paths: Iterable[Path] = ()) -> None:
        self.path = Path(path)
        self.fallback_paths = [Path(p) for p in fallback_paths if Path(p) != self.path]

    @property
    def candidate_paths(self) -> list[Path]:
        return [self.path, *self.fallback_paths]

    def read(self) -> Optional[CatalogReadResult]:
        """Return the first candidate that parses as a JSON object, or None."""
        for candidate in self.candidate_paths:
            try:
                data = json.loads(candidate.read_text(encoding="utf-8"))
            except FileNotFoundError:
                continue
            except (OSError, ValueError) as exc:
                logger.warning("Skipping unreadable catalog at %s: %s", redact_path(candidate), exc)
                continue
            if isinstance(data, dict):
                return CatalogReadResult(data=data, path=candidate)
            logger.warning("Skipping catalog at %s: top level is not an object", redact_path(candidate))
        return None

    def write(self, catalog: dict[str, Any]) -> Path:
        """Atomically replace the canonical catalog. Raises PersistenceError on I/O failure."""
        payload = json.dumps(catalog, indent=2, ensure_ascii=False)
        directory = self.path.parent
        tmp_name: Optional[str] = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            raise PersistenceError(f"Could not write catalog to {self.path}: {exc}") from exc
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    logger.warning("Could not remove temp file %s", tmp_name)
        return self.path
