"""
Credential renderer (Pillow + qrcode).

Produces a PNG card and a single-page PDF from the snapshots captured on a
credential.  The layout is intentionally plain: a header band in the
template's colour, the event and employee text, one coloured chip per zone
and the verification QR code.  Template ``layout_meta`` may override the
header colour and the QR placement.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
from typing import Any, Protocol, runtime_checkable

import qrcode
import qrcode.constants
from PIL import Image, ImageDraw, ImageFont

_ERROR_CORRECTION = {
    "L": qrcode.constants.ERROR_CORRECT_L,
    "M": qrcode.constants.ERROR_CORRECT_M,
    "Q": qrcode.constants.ERROR_CORRECT_Q,
    "H": qrcode.constants.ERROR_CORRECT_H,
}


@dataclass(frozen=True)
class RenderedCredential:
    png: bytes
    pdf: bytes


@runtime_checkable
class CredentialRenderer(Protocol):
    def render(
        self,
        *,
        qr_payload: str,
        employee: dict[str, Any],
        event: dict[str, Any],
        zones: list[dict[str, Any]],
        template: dict[str, Any] | None,
    ) -> RenderedCredential: ...


def build_qr_image(
    payload: str,
    size: int = 300,
    margin: int = 1,
    error_correction: str = "H",
) -> Image.Image:
    """Encode ``payload`` as a square QR image of ``size`` pixels."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=_ERROR_CORRECTION.get(error_correction.upper(), qrcode.constants.ERROR_CORRECT_H),
        box_size=10,
        border=margin,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white").convert("RGB")
    return img.resize((size, size), Image.NEAREST)


class PillowCredentialRenderer:
    """Default renderer; sizes and QR settings come from ``CredentialConfig``."""

    def __init__(
        self,
        width: int = 1024,
        height: int = 1448,
        quality: int = 90,
        qr_size: int = 300,
        qr_margin: int = 1,
        qr_error_correction: str = "H",
        photo_loader: Any = None,
    ):
        self._width = width
        self._height = height
        self._quality = quality
        self._qr_size = qr_size
        self._qr_margin = qr_margin
        self._qr_error_correction = qr_error_correction
        # Callable[[str], bytes | None] resolving an employee photo path.
        self._photo_loader = photo_loader
        self._font = ImageFont.load_default()

    def render(
        self,
        *,
        qr_payload: str,
        employee: dict[str, Any],
        event: dict[str, Any],
        zones: list[dict[str, Any]],
        template: dict[str, Any] | None,
    ) -> RenderedCredential:
        layout = (template or {}).get("layout_meta") or {}
        header_color = layout.get("header_color", "#1f3a5f")

        card = Image.new("RGB", (self._width, self._height), "white")
        draw = ImageDraw.Draw(card)

        header_height = self._height // 8
        draw.rectangle((0, 0, self._width, header_height), fill=header_color)
        draw.text((40, header_height // 3), str(event.get("name", "")), fill="white", font=self._font)

        y = header_height + 40
        photo = self._load_photo(employee.get("photo_path"))
        if photo is not None:
            photo.thumbnail((self._width // 3, self._height // 4), Image.LANCZOS)
            card.paste(photo, ((self._width - photo.width) // 2, y))
            y += photo.height + 30

        for line in (
            f"{employee.get('first_name', '')} {employee.get('last_name', '')}".strip(),
            employee.get("function") or "",
            employee.get("provider_name") or "",
            _document_line(employee),
        ):
            if line:
                draw.text((40, y), line, fill="black", font=self._font)
                y += 36

        y += 20
        chip_width = max(80, (self._width - 80) // max(len(zones), 1) - 10)
        x = 40
        for zone in zones:
            draw.rectangle((x, y, x + chip_width, y + 60), fill=zone.get("color") or "#777777")
            draw.text((x + 10, y + 20), str(zone.get("code") or zone.get("name", "")), fill="white", font=self._font)
            x += chip_width + 10

        qr_image = build_qr_image(
            qr_payload,
            size=int(layout.get("qr_size", self._qr_size)),
            margin=self._qr_margin,
            error_correction=self._qr_error_correction,
        )
        qr_x = int(layout.get("qr_x", (self._width - qr_image.width) // 2))
        qr_y = int(layout.get("qr_y", self._height - qr_image.height - 60))
        card.paste(qr_image, (qr_x, qr_y))

        png = BytesIO()
        card.save(png, format="PNG", optimize=True)
        pdf = BytesIO()
        card.save(pdf, format="PDF", resolution=150.0, quality=self._quality)
        return RenderedCredential(png=png.getvalue(), pdf=pdf.getvalue())

    def _load_photo(self, photo_path: str | None) -> Image.Image | None:
        if not photo_path or self._photo_loader is None:
            return None
        data = self._photo_loader(photo_path)
        if not data:
            return None
        return Image.open(BytesIO(data)).convert("RGB")


def _document_line(employee: dict[str, Any]) -> str:
    number = employee.get("document_number")
    if not number:
        return ""
    return f"{employee.get('document_type') or 'ID'}: {number}"
