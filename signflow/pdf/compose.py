"""
PDF composition using PyMuPDF (fitz).
Burns signed field values into a document at their placed coordinates.
"""
import base64
import binascii
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import fitz  # PyMuPDF

from signflow.coordinates import PageDimensions, PercentRect, build_page_dimensions_map, to_top_left_rect
from signflow.models import FieldType

logger = logging.getLogger(__name__)

SIGNATURE_COLOR = (0, 0, 0.5)  # navy, #000080
TEXT_COLOR = (0, 0, 0)
SIGNATURE_FONT_SIZE = 16
TEXT_FONT_SIZE = 12
MIN_FONT_SIZE = 4
UNDERLINE_WIDTH = 0.75

# Base-14 fonts: Times-Italic for signatures, Helvetica for everything else
BASE_FONTS = {
    "signature": "tiit",
    "regular": "helv",
}

# Fallback TrueType fonts for text outside Latin-1
FONT_PATHS = {
    "regular": [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
    ],
    "signature": [
        "/usr/share/fonts/truetype/dejavu/DejaVuSerif-Italic.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSerifItalic.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSerif-Italic.ttf",
    ],
}

CHECKED_VALUES = {"true", "1", "yes", "x", "checked", "on"}
PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
PNG_DATA_URL_PREFIX = "data:image/png;base64,"

IMAGE_FILETYPES = {
    "image/png": "png",
    "image/jpeg": "jpeg",
    "image/jpg": "jpeg",
}


class CompositionError(Exception):
    """Raised when a document cannot be composed."""


@dataclass
class FieldStamp:
    """One signed value to burn into a page."""
    position_id: str
    page_number: int
    rect: PercentRect
    field_type: FieldType
    value: str


@dataclass
class ComposeResult:
    pdf_bytes: bytes
    rendered: int = 0
    skipped: List[Tuple[str, str]] = field(default_factory=list)


def _find_font(style: str = "regular") -> Optional[str]:
    """Find a TrueType font file for the given style."""
    for path in FONT_PATHS.get(style, FONT_PATHS["regular"]):
        if os.path.exists(path):
            return path
    return None


def _is_latin1(text: str) -> bool:
    try:
        text.encode("latin-1")
        return True
    except UnicodeEncodeError:
        return False


def decode_png_data_url(value: str) -> Optional[bytes]:
    """
    Decode a drawn signature sent as a PNG data URL.

    Returns None when the value is plain text. Raises CompositionError
    for a data URL that is not a valid PNG.
    """
    if not value.startswith(PNG_DATA_URL_PREFIX):
        return None
    try:
        data = base64.b64decode(value[len(PNG_DATA_URL_PREFIX):], validate=True)
    except (binascii.Error, ValueError) as e:
        raise CompositionError(f"Invalid base64 signature image: {e}")
    if not data.startswith(PNG_MAGIC):
        raise CompositionError("Signature image is not a PNG")
    return data


class PDFComposer:
    """Renders field values onto PDF pages."""

    def page_dimensions(self, pdf_bytes: bytes) -> Dict[int, PageDimensions]:
        """Live page sizes of a document, keyed by 1-based page number."""
        with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
            return build_page_dimensions_map((page.rect.width, page.rect.height) for page in doc)

    def image_to_pdf(self, image_bytes: bytes, mime_type: str) -> bytes:
        """Wrap an uploaded PNG/JPEG into a single-page PDF."""
        filetype = IMAGE_FILETYPES.get(mime_type)
        if filetype is None:
            raise CompositionError(f"Unsupported image type: {mime_type}")
        with fitz.open(stream=image_bytes, filetype=filetype) as image_doc:
            return image_doc.convert_to_pdf()

    def compose(self, pdf_bytes: bytes, stamps: Sequence[FieldStamp]) -> ComposeResult:
        """
        Burn every stamp into the document and return the new bytes.

        Page sizes are read from the document itself. Stamps that point at
        a missing page or carry nothing to render are skipped and reported.
        """
        try:
            doc = fitz.open(stream=pdf_bytes, filetype="pdf")
        except Exception as e:
            raise CompositionError(f"Could not open PDF: {e}")

        result = ComposeResult(pdf_bytes=b"")
        try:
            pages = build_page_dimensions_map((page.rect.width, page.rect.height) for page in doc)
            for stamp in stamps:
                page_dims = pages.get(stamp.page_number)
                if page_dims is None:
                    result.skipped.append((
                        stamp.position_id,
                        f"Page {stamp.page_number} does not exist (document has {len(pages)} pages)",
                    ))
                    continue
                reason = self._render(doc[stamp.page_number - 1], page_dims, stamp)
                if reason:
                    result.skipped.append((stamp.position_id, reason))
                else:
                    result.rendered += 1

            result.pdf_bytes = doc.tobytes(garbage=4, deflate=True)
        finally:
            doc.close()

        logger.info(f"Composed PDF: {result.rendered} field(s) rendered, {len(result.skipped)} skipped")
        return result

    def _render(self, page: fitz.Page, page_dims: PageDimensions, stamp: FieldStamp) -> Optional[str]:
        """Render one stamp; returns a skip reason or None when drawn."""
        value = (stamp.value or "").strip()
        if not value:
            return "Empty value"

        box = fitz.Rect(*to_top_left_rect(stamp.rect, page_dims))
        derotate = page.derotation_matrix

        is_signature = stamp.field_type == FieldType.SIGNATURE
        if is_signature:
            image = decode_png_data_url(value)
            if image is not None:
                page.insert_image(box * derotate, stream=image, keep_proportion=True)
                return None

        if stamp.field_type == FieldType.CHECKBOX:
            if value.lower() not in CHECKED_VALUES:
                return "Checkbox not checked"
            value = "X"

        style = "signature" if is_signature else "regular"
        color = SIGNATURE_COLOR if is_signature else TEXT_COLOR
        base_size = SIGNATURE_FONT_SIZE if is_signature else TEXT_FONT_SIZE
        font, fontname, fontfile = self._select_font(value, style)

        fontsize = self._fit_font_size(font, value, box, base_size)
        text_width = font.text_length(value, fontsize=fontsize)
        x = box.x0 + (box.width - text_width) / 2
        # Approximate vertical centering on the cap height
        baseline = box.y0 + (box.height + fontsize * 0.7) / 2

        page.insert_text(
            fitz.Point(x, baseline) * derotate,
            value,
            fontname=fontname,
            fontfile=fontfile,
            fontsize=fontsize,
            color=color,
            rotate=page.rotation,
        )

        if is_signature:
            underline_y = min(baseline + 2, box.y1)
            page.draw_line(
                fitz.Point(x, underline_y) * derotate,
                fitz.Point(x + text_width, underline_y) * derotate,
                color=color,
                width=UNDERLINE_WIDTH,
            )
        return None

    def _select_font(self, text: str, style: str) -> Tuple[fitz.Font, str, Optional[str]]:
        base = BASE_FONTS[style]
        if _is_latin1(text):
            return fitz.Font(base), base, None

        font_path = _find_font(style)
        if font_path:
            return fitz.Font(fontfile=font_path), f"sf{style}", font_path

        logger.warning("No Unicode font found, non Latin-1 characters may not render")
        return fitz.Font(base), base, None

    @staticmethod
    def _fit_font_size(font: fitz.Font, text: str, box: fitz.Rect, base_size: float) -> float:
        """Largest size up to base_size that fits the box, never below MIN_FONT_SIZE."""
        size = min(base_size, box.height * 0.8)
        while size > MIN_FONT_SIZE and font.text_length(text, fontsize=size) > box.width * 0.95:
            size -= 0.5
        return max(size, MIN_FONT_SIZE)
