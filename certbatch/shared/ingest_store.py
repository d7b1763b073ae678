"""Batch-scoped cache of ingested roster rows.

One instance lives on ``app.extensions["ingest_store"]``. The ingest endpoint
is the only writer for a batch id and the batch coordinator is the only
clearer; concurrent batches use distinct ids.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from flask import current_app

if TYPE_CHECKING:  # pragma: no cover
    from .roster import RecipientRow


class IngestStore:
    def __init__(self) -> None:
        self._rows: dict[str, list["RecipientRow"]] = {}
        self._lock = threading.Lock()

    def put(self, batch_id: str, rows: list["RecipientRow"]) -> None:
        with self._lock:
            self._rows[batch_id] = list(rows)

    def get(self, batch_id: str) -> list["RecipientRow"] | None:
        with self._lock:
            rows = self._rows.get(batch_id)
            return list(rows) if rows is not None else None

    def invalidate(self, batch_id: str) -> bool:
        """Drop the batch; returns False when nothing was cached."""
        with self._lock:
            return self._rows.pop(batch_id, None) is not None

    def __contains__(self, batch_id: str) -> bool:
        with self._lock:
            return batch_id in self._rows

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)


def get_ingest_store() -> IngestStore:
    return current_app.extensions["ingest_store"]
