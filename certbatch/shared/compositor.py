"""Render a single certificate image.

Everything here is pure: bytes and placement in, PNG bytes out. Reading the
template and persisting the result belong to the caller.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from io import BytesIO

import qrcode
from PIL import Image, ImageColor, ImageDraw, ImageFont, UnidentifiedImageError

from .errors import TemplateImageError
from .placement import Placement

BASELINE_OFFSET_RATIO = 0.12
DEFAULT_FONT_COLOR = "#000000"
DEFAULT_FONT_WEIGHT = "600"

_DEJAVU_DIR = "/usr/share/fonts/truetype/dejavu"
_DEJAVU_FILES = {
    ("sans", False): "DejaVuSans.ttf",
    ("sans", True): "DejaVuSans-Bold.ttf",
    ("serif", False): "DejaVuSerif.ttf",
    ("serif", True): "DejaVuSerif-Bold.ttf",
    ("mono", False): "DejaVuSansMono.ttf",
    ("mono", True): "DejaVuSansMono-Bold.ttf",
}
_SERIF_HINTS = ("serif", "times", "georgia", "garamond", "lora", "playfair", "merriweather")
_MONO_HINTS = ("mono", "courier", "code")
_BOLD_TOKENS = {"bold", "bolder", "black", "heavy", "semibold", "extrabold"}

_MARKUP_ESCAPES = {"&": "&amp;", "<": "&lt;", ">": "&gt;"}
_MARKUP_RE = re.compile(r"[&<>]")


@dataclass(frozen=True)
class Typography:
    font_family: str
    font_size: int
    font_weight: str = DEFAULT_FONT_WEIGHT
    font_color: str = DEFAULT_FONT_COLOR

    @classmethod
    def from_template(cls, template) -> "Typography":
        return cls(
            font_family=template.font_family or "Inter",
            font_size=max(int(template.font_size or 0), 1),
            font_weight=template.font_weight or DEFAULT_FONT_WEIGHT,
            font_color=template.font_color or DEFAULT_FONT_COLOR,
        )

    @property
    def baseline_offset(self) -> int:
        return int(round(self.font_size * BASELINE_OFFSET_RATIO))

    @property
    def is_bold(self) -> bool:
        token = (self.font_weight or "").strip().lower()
        if token.isdigit():
            return int(token) >= 600
        return token in _BOLD_TOKENS


def escape_markup(value: str) -> str:
    """Escape ``&``, ``<`` and ``>`` for use as element text content."""
    return _MARKUP_RE.sub(lambda m: _MARKUP_ESCAPES[m.group(0)], value)


def _parse_color(value: str) -> tuple[int, int, int, int]:
    try:
        rgb = ImageColor.getrgb(value or DEFAULT_FONT_COLOR)
    except ValueError:
        rgb = ImageColor.getrgb(DEFAULT_FONT_COLOR)
    if len(rgb) == 4:
        return rgb
    return (*rgb, 255)


def _font_candidates(typography: Typography, font_dir: str | None) -> list[str]:
    family = (typography.font_family or "").strip()
    bold = typography.is_bold
    candidates: list[str] = []
    if font_dir and family:
        compact = family.replace(" ", "")
        stems = [f"{compact}-Bold", f"{compact}Bold"] if bold else []
        stems += [f"{compact}-Regular", compact, family]
        for stem in stems:
            for ext in (".ttf", ".otf"):
                candidates.append(os.path.join(font_dir, f"{stem}{ext}"))
    lowered = family.lower()
    kind = "sans"
    if any(hint in lowered for hint in _MONO_HINTS):
        kind = "mono"
    elif any(hint in lowered for hint in _SERIF_HINTS) and "sans" not in lowered:
        kind = "serif"
    candidates.append(os.path.join(_DEJAVU_DIR, _DEJAVU_FILES[(kind, bold)]))
    candidates.append(os.path.join(_DEJAVU_DIR, _DEJAVU_FILES[("sans", False)]))
    return candidates


def load_font(typography: Typography, font_dir: str | None = None):
    for path in _font_candidates(typography, font_dir):
        if not os.path.isfile(path):
            continue
        try:
            return ImageFont.truetype(path, typography.font_size)
        except OSError:
            continue
    return ImageFont.load_default(size=typography.font_size)


def make_qr_image(data: str, size: int) -> Image.Image:
    qr = qrcode.QRCode(border=1, box_size=10)
    qr.add_data(data)
    qr.make(fit=True)
    qr_img = qr.make_image(fill_color="black", back_color="white").convert("RGBA")
    return qr_img.resize((size, size), Image.NEAREST)


def _open_template(template_bytes: bytes) -> Image.Image:
    try:
        image = Image.open(BytesIO(template_bytes))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise TemplateImageError(f"Template image could not be decoded: {exc}") from exc
    return image


def template_dimensions(template_bytes: bytes) -> tuple[int, int]:
    with _open_template(template_bytes) as image:
        return image.size


def render_name_layer(
    size: tuple[int, int],
    placement: Placement,
    full_name: str,
    typography: Typography,
    font_dir: str | None = None,
) -> Image.Image:
    layer = Image.new("RGBA", size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    draw.text(
        (placement.name_left, placement.name_top + typography.baseline_offset),
        full_name,
        font=load_font(typography, font_dir),
        fill=_parse_color(typography.font_color),
        anchor="mm",
    )
    return layer


def build_name_overlay_svg(
    width: int,
    height: int,
    placement: Placement,
    full_name: str,
    typography: Typography,
) -> str:
    """SVG of the name layer, positioned the same way as the raster render."""
    family = typography.font_family.replace("'", "")
    return (
        f'<svg width="{width}" height="{height}" xmlns="http://www.w3.org/2000/svg">'
        "<style>"
        f".name {{ font-family: '{escape_markup(family)}'; font-size: {typography.font_size}px; "
        f"font-weight: {escape_markup(typography.font_weight)}; "
        f"fill: {escape_markup(typography.font_color)}; "
        "text-anchor: middle; dominant-baseline: central; }"
        "</style>"
        f'<text x="{placement.name_left}" y="{placement.name_top}" '
        f'dy="{typography.baseline_offset}" class="name" text-anchor="middle" '
        f'dominant-baseline="central">{escape_markup(full_name)}</text>'
        "</svg>"
    )


def compose_certificate(
    template_bytes: bytes,
    placement: Placement,
    full_name: str,
    typography: Typography,
    verify_url: str,
    font_dir: str | None = None,
) -> bytes:
    """Layer the name then the QR code onto the template; return PNG bytes."""
    with _open_template(template_bytes) as source:
        has_alpha = source.mode in ("RGBA", "LA") or "transparency" in source.info
        base = source.convert("RGBA")

    name_layer = render_name_layer(base.size, placement, full_name, typography, font_dir)
    base = Image.alpha_composite(base, name_layer)

    qr_img = make_qr_image(verify_url, placement.qr_size)
    base.paste(qr_img, (placement.qr_left, placement.qr_top), qr_img)

    flattened = base if has_alpha else base.convert("RGB")
    out = BytesIO()
    flattened.save(out, format="PNG")
    return out.getvalue()
