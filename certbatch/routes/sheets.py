from __future__ import annotations

import uuid

from flask import Blueprint, current_app, jsonify, request

from ..shared.errors import ValidationError
from ..shared.ingest_store import get_ingest_store
from ..shared.roster import fetch_sheet_rows

bp = Blueprint("sheets", __name__, url_prefix="/api/sheets")

PREVIEW_ROWS = 10


@bp.post("/ingest")
def ingest():
    payload = request.get_json(silent=True) or {}
    sheet_url = payload.get("sheetUrl") if isinstance(payload, dict) else None
    if not sheet_url or not isinstance(sheet_url, str):
        raise ValidationError("sheetUrl required")

    rows = fetch_sheet_rows(sheet_url)
    batch_id = str(uuid.uuid4())
    get_ingest_store().put(batch_id, rows)
    current_app.logger.info("[INGEST] batch=%s rows=%s", batch_id, len(rows))
    return jsonify(
        {
            "batchId": batch_id,
            "total": len(rows),
            "preview": [row.to_dict() for row in rows[:PREVIEW_ROWS]],
        }
    )
