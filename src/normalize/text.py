"""
Shared text helpers for normalization and search.
"""

import re
import unicodedata

import pandas as pd

_WHITESPACE_PATTERN = re.compile(r'\s+')


def is_blank(value) -> bool:
    """True for None, NaN cells and strings with no visible characters."""
    if value is None:
        return True
    if not isinstance(value, str):
        try:
            return bool(pd.isna(value))
        except (TypeError, ValueError):
            return False
    return not value.strip()


def fold_diacritics(text: str) -> str:
    """Lower-case text and drop combining marks (ă -> a, ș/ş -> s, ț/ţ -> t)."""
    decomposed = unicodedata.normalize('NFD', text.lower())
    return ''.join(ch for ch in decomposed if not unicodedata.combining(ch))


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_PATTERN.sub(' ', text).strip()
