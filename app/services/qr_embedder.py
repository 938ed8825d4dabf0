"""
QR code generation and stamping.

``generate_qr_png`` renders a URL as a square PNG; ``stamp_qr_code`` draws it
on the first page of a PDF, rewriting the file in place.
"""
from __future__ import annotations

import io
import logging
import os
from pathlib import Path
from typing import Optional

import fitz  # PyMuPDF
import qrcode
from PIL import Image
from qrcode.constants import ERROR_CORRECT_L

from app.config import settings

logger = logging.getLogger(__name__)


def generate_qr_png(data: str, size: int = 0) -> bytes:
    """
    Encode *data* as a ``size``×``size`` PNG.

    Error correction level L is enough for a short URL.
    """
    size = size or settings.QR_CODE_SIZE
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_L, box_size=10, border=4)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white").get_image().convert("RGB")
    img = img.resize((size, size), Image.NEAREST)

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def stamp_qr_code(
    pdf_path: Path,
    png: bytes,
    x: Optional[float] = None,
    y: Optional[float] = None,
    size: Optional[float] = None,
) -> Path:
    """
    Draw *png* on page 1 of *pdf_path* at (*x*, *y*) points from the
    bottom-left corner and overwrite the file.
    """
    pdf_path = Path(pdf_path)
    size = settings.QR_CODE_SIZE if size is None else size
    x = settings.QR_CODE_OFFSET_X if x is None else x
    y = settings.QR_CODE_OFFSET_Y if y is None else y

    tmp_path = pdf_path.with_name(pdf_path.name + ".tmp")
    doc = fitz.open(str(pdf_path))
    try:
        if doc.page_count == 0:
            raise ValueError(f"{pdf_path.name} has no pages to stamp")
        page = doc[0]
        height = page.rect.height
        # PyMuPDF measures y from the top edge
        rect = fitz.Rect(x, height - y - size, x + size, height - y)
        page.insert_image(rect, stream=png, keep_proportion=True, overlay=True)
        doc.save(str(tmp_path), garbage=3, deflate=True)
    except Exception:
        tmp_path.unlink(missing_ok=True)
        raise
    finally:
        doc.close()

    os.replace(tmp_path, pdf_path)
    logger.info("Added QR code to %s", pdf_path.name)
    return pdf_path
