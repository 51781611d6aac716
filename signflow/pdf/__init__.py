"""
PDF processing module.
"""
from signflow.pdf.compose import (
    ComposeResult,
    CompositionError,
    FieldStamp,
    PDFComposer,
    decode_png_data_url,
)

__all__ = [
    "ComposeResult",
    "CompositionError",
    "FieldStamp",
    "PDFComposer",
    "decode_png_data_url",
]
