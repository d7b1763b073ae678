from __future__ import annotations

from typing import NamedTuple

QR_SIZE_MIN = 32
QR_SIZE_MAX = 2048
QR_DEFAULT_WIDTH_RATIO = 0.15


class Placement(NamedTuple):
    qr_size: int
    qr_left: int
    qr_top: int
    name_left: int
    name_top: int


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def _as_int(value, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return default


def resolve_placement(descriptor, width: int, height: int) -> Placement:
    """Clamp stored placement onto a template of ``width`` x ``height`` pixels.

    Never raises: anything out of range is pulled back onto the canvas so the
    QR code and name are always drawn fully inside the image.
    """
    raw_qr = getattr(descriptor, "qr_size", None)
    if raw_qr is None:
        raw_qr = round(width * QR_DEFAULT_WIDTH_RATIO)
    qr_size = clamp(_as_int(raw_qr), QR_SIZE_MIN, QR_SIZE_MAX)
    qr_left = clamp(_as_int(getattr(descriptor, "qr_x", 0)), 0, max(0, width - qr_size))
    qr_top = clamp(_as_int(getattr(descriptor, "qr_y", 0)), 0, max(0, height - qr_size))
    name_left = clamp(_as_int(getattr(descriptor, "name_x", 0)), 0, width)
    name_top = clamp(_as_int(getattr(descriptor, "name_y", 0)), 0, height)
    return Placement(
        qr_size=qr_size,
        qr_left=qr_left,
        qr_top=qr_top,
        name_left=name_left,
        name_top=name_top,
    )
