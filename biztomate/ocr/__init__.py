"""
OCR module - business card extraction boundary.
"""

from biztomate.ocr.schemas import ExtractedCard
from biztomate.ocr.service import (
    CardExtractionService,
    clean_extraction,
    fallback_card,
    is_valid_email,
    is_valid_phone,
    is_valid_website,
)

__all__ = [
    "CardExtractionService",
    "ExtractedCard",
    "clean_extraction",
    "fallback_card",
    "is_valid_email",
    "is_valid_phone",
    "is_valid_website",
]
