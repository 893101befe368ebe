"""
Utility module
"""

from .price_utils import (
    to_kes,
    format_kes,
    normalize_price_text
)

__all__ = [
    'to_kes',
    'format_kes',
    'normalize_price_text'
]
