from __future__ import annotations

import os
import time
from io import BytesIO

from flask import Blueprint, Response, abort, current_app, jsonify, request
from PIL import Image, UnidentifiedImageError
from werkzeug.utils import secure_filename

from ..app import db
from ..models import Template
from ..shared.compositor import Typography, build_name_overlay_svg, template_dimensions
from ..shared.errors import RowProcessingError, ValidationError
from ..shared.placement import clamp, resolve_placement
from ..shared.storage import read_artifact, templates_dir, write_atomic

bp = Blueprint("templates", __name__, url_prefix="/api/templates")

DEFAULT_QR_SIZE = 200
DEFAULT_FONT_SIZE = 48


def _form_int(name: str, default: int = 0) -> int:
    raw = (request.form.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(round(float(raw)))
    except ValueError:
        raise ValidationError(f"{name} must be a number")
    return max(0, value)


def _is_png_upload(upload) -> bool:
    mimetype = (upload.mimetype or "").lower()
    filename = (upload.filename or "").lower()
    return mimetype == "image/png" or filename.endswith(".png")


@bp.post("")
def create_template():
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        raise ValidationError("file required")
    if not _is_png_upload(upload):
        raise ValidationError("Only PNG templates are supported")
    data = upload.read()
    try:
        with Image.open(BytesIO(data)) as probe:
            if probe.format != "PNG":
                raise ValidationError("Only PNG templates are supported")
    except (UnidentifiedImageError, OSError):
        raise ValidationError("Only PNG templates are supported")

    qr_size = clamp(
        _form_int("qrSize", DEFAULT_QR_SIZE),
        current_app.config["TEMPLATE_QR_MIN"],
        current_app.config["TEMPLATE_QR_MAX"],
    )
    safe_name = secure_filename(upload.filename) or "template.png"
    filename = f"{int(time.time() * 1000)}-{safe_name}"
    full_path = os.path.join(templates_dir(), filename)
    write_atomic(full_path, data)

    template = Template(
        template_path=full_path,
        name_x=_form_int("nameX"),
        name_y=_form_int("nameY"),
        qr_x=_form_int("qrX"),
        qr_y=_form_int("qrY"),
        qr_size=qr_size,
        font_size=_form_int("fontSize", DEFAULT_FONT_SIZE) or DEFAULT_FONT_SIZE,
        font_family=(request.form.get("fontFamily") or "").strip() or "Inter",
        font_weight=(request.form.get("fontWeight") or "").strip() or "600",
        font_color=(request.form.get("fontColor") or "").strip() or "#000000",
    )
    db.session.add(template)
    db.session.commit()
    current_app.logger.info(
        "[TEMPLATE] id=%s path=%s qr_size=%s", template.id, full_path, qr_size
    )
    return jsonify({"template": template.to_dict()})


@bp.get("/<int:template_id>")
def get_template(template_id: int):
    template = db.session.get(Template, template_id)
    if not template:
        abort(404)
    return jsonify({"template": template.to_dict()})


@bp.get("/<int:template_id>/overlay.svg")
def overlay_svg(template_id: int):
    template = db.session.get(Template, template_id)
    if not template:
        abort(404)
    name = (request.args.get("name") or "Jane Doe").strip()
    try:
        width, height = template_dimensions(read_artifact(template.template_path))
    except (OSError, RowProcessingError):
        abort(404)
    placement = resolve_placement(template, width, height)
    svg = build_name_overlay_svg(
        width, height, placement, name, Typography.from_template(template)
    )
    return Response(svg, mimetype="image/svg+xml")
