"""LLM response cache.

Validated LLM payloads are stored as JSON documents keyed by a fingerprint of
(prompt template id, normalized parameters):

    {cache_dir}/{fingerprint}.json
        {"template_id": ..., "payload": {...}, "created_at": ...,
         "accessed_at": ..., "access_count": 3}

The cache is an optimisation only. Read and write failures are logged and
reported as a miss so the caller falls through to a live LLM call.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

from daggergm.models import utcnow

logger = logging.getLogger(__name__)


def fingerprint(template_id: str, params: dict[str, Any]) -> str:
    """Stable sha256 of the template id and the parameters.

    Parameters are normalised by serialising with sorted keys, so two dicts
    with the same content always produce the same key.
    """
    normalized = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(f"{template_id}\n{normalized}".encode("utf-8")).hexdigest()


class ResponseCache:
    def __init__(self, cache_dir: Path) -> None:
        self._dir = cache_dir
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    def _write(self, path: Path, doc: dict[str, Any]) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._dir, suffix=".tmp")
        with os.fdopen(fd, "w") as f:
            json.dump(doc, f, indent=2)
        os.replace(tmp, path)

    def get(self, template_id: str, params: dict[str, Any]) -> dict[str, Any] | None:
        """Return the cached payload, or None on a miss or any read failure."""
        key = fingerprint(template_id, params)
        path = self._path(key)
        try:
            with self._lock:
                if not path.exists():
                    logger.debug("cache miss template=%s key=%s", template_id, key[:12])
                    return None
                doc = json.loads(path.read_text())
                payload = doc.get("payload")
                if not isinstance(payload, dict):
                    logger.warning("cache entry %s has no payload, ignoring", key[:12])
                    return None
                try:
                    doc["access_count"] = int(doc.get("access_count", 0)) + 1
                    doc["accessed_at"] = utcnow()
                    self._write(path, doc)
                except (OSError, ValueError, TypeError) as e:
                    logger.warning("cache access update failed key=%s: %s", key[:12], e)
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning("cache read failed template=%s: %s", template_id, e)
            return None

        logger.debug("cache hit template=%s key=%s", template_id, key[:12])
        return payload

    def put(self, template_id: str, params: dict[str, Any], payload: dict[str, Any]) -> None:
        """Store a validated payload. Failures are logged, never raised."""
        key = fingerprint(template_id, params)
        now = utcnow()
        doc = {
            "template_id": template_id,
            "payload": payload,
            "created_at": now,
            "accessed_at": now,
            "access_count": 0,
        }
        try:
            with self._lock:
                self._write(self._path(key), doc)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("cache write failed template=%s: %s", template_id, e)
