"""QR code rendering for deep links.

Produces either a PNG data URL or an SVG document. Content is validated
before encoding; anything above the alphanumeric capacity of the largest QR
version is rejected.
"""

from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass
from typing import Literal

import qrcode
from qrcode.constants import ERROR_CORRECT_H, ERROR_CORRECT_L, ERROR_CORRECT_M, ERROR_CORRECT_Q
from qrcode.exceptions import DataOverflowError
from qrcode.image.pil import PilImage
from qrcode.image.svg import SvgPathImage

logger = logging.getLogger(__name__)

MAX_QR_CONTENT_LENGTH = 4296

ErrorCorrectionLevel = Literal["L", "M", "Q", "H"]

_ERROR_CORRECTION = {
    "L": ERROR_CORRECT_L,
    "M": ERROR_CORRECT_M,
    "Q": ERROR_CORRECT_Q,
    "H": ERROR_CORRECT_H,
}


class QRCodeError(Exception):
    """Raised when content cannot be encoded as a QR code."""


@dataclass(frozen=True)
class QROptions:
    """Rendering options for QR codes.

    Attributes:
        error_correction: Error correction level (L, M, Q, H).
        width: Target image width in pixels.
        margin: Quiet zone width in modules.
        dark: Module color.
        light: Background color.
    """

    error_correction: ErrorCorrectionLevel = "M"
    width: int = 256
    margin: int = 1
    dark: str = "#000000"
    light: str = "#FFFFFF"


def validate_qr_content(text: str) -> bool:
    """Return True if the text fits in a QR code."""
    return len(text) <= MAX_QR_CONTENT_LENGTH


def _preview(text: str) -> str:
    return text[:50] + "..."


def _build(text: str, options: QROptions) -> qrcode.QRCode:
    if not validate_qr_content(text):
        raise QRCodeError(
            f"QR content too long: {len(text)} characters (max {MAX_QR_CONTENT_LENGTH})"
        )
    if options.error_correction not in _ERROR_CORRECTION:
        raise QRCodeError(f"Unknown error correction level: {options.error_correction}")

    qr = qrcode.QRCode(
        error_correction=_ERROR_CORRECTION[options.error_correction],
        border=options.margin,
    )
    qr.add_data(text)
    try:
        qr.make(fit=True)
    except DataOverflowError as e:
        raise QRCodeError(f"QR content does not fit at level {options.error_correction}") from e

    # Scale modules so the image is at most ``width`` pixels wide
    total_modules = qr.modules_count + 2 * options.margin
    qr.box_size = max(1, options.width // total_modules)
    return qr


def generate_qr_code(text: str, options: QROptions | None = None) -> str:
    """Render text as a PNG QR code.

    Returns:
        ``data:image/png;base64,...`` URL.

    Raises:
        QRCodeError: If the content cannot be encoded.
    """
    options = options or QROptions()
    qr = _build(text, options)
    image = qr.make_image(
        image_factory=PilImage,
        fill_color=options.dark,
        back_color=options.light,
    )
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    logger.debug("QR code generated for %s", _preview(text))
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def generate_qr_svg(text: str, options: QROptions | None = None) -> str:
    """Render text as an SVG QR code.

    Raises:
        QRCodeError: If the content cannot be encoded.
    """
    options = options or QROptions()
    qr = _build(text, options)
    factory = type(
        "ColoredSvgPathImage",
        (SvgPathImage,),
        {
            "background": options.light,
            "QR_PATH_STYLE": {**SvgPathImage.QR_PATH_STYLE, "fill": options.dark},
        },
    )
    image = qr.make_image(image_factory=factory)
    svg = image.to_string(encoding="unicode")
    logger.debug("QR code SVG generated for %s", _preview(text))
    return str(svg)
