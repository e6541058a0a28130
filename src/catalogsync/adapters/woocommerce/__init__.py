from __future__ import annotations

from .client import WooCommercePlatform, detect_duplicate_key
from .schema import WooErrorResponse, WooProduct, WooTerm
from .translator import OWNER_META_KEY, reference_meta_key

__all__ = [
    "OWNER_META_KEY",
    "WooCommercePlatform",
    "WooErrorResponse",
    "WooProduct",
    "WooTerm",
    "detect_duplicate_key",
    "reference_meta_key",
]
