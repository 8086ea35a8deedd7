"""
Text normalization for ledger/forecast comparison.

Staff type descriptions by hand while the GL export comes from the
accounting system, so the same text differs in width (full/half-width
alphanumerics and katakana), spacing, dashes and case.
"""

import re
import unicodedata

from rapidfuzz import fuzz

# Half-width katakana block (U+FF65-U+FF9F)
_HALF_WIDTH_KANA = re.compile(r"[･-ﾟ]+")

# Full-width ASCII letters and digits
_FULL_WIDTH_ALNUM = re.compile(r"[Ａ-Ｚａ-ｚ０-９]")

# Hyphen, full-width hyphen-minus, katakana long vowel mark
_DASHES = re.compile(r"[-－ー]")

_IDEOGRAPHIC_SPACE = "　"

_WHITESPACE = re.compile(r"\s+")


def _half_width_kana_to_full(match: re.Match) -> str:
    # NFKC also composes voiced marks (ｶﾞ -> ガ)
    return unicodedata.normalize("NFKC", match.group(0))


def normalize_account(text: str) -> str:
    """Normalize an account/accounting item label. Case and dashes are kept."""
    if not text:
        return ""
    text = _FULL_WIDTH_ALNUM.sub(lambda m: chr(ord(m.group(0)) - 0xFEE0), text)
    text = _HALF_WIDTH_KANA.sub(_half_width_kana_to_full, text)
    text = text.replace(_IDEOGRAPHIC_SPACE, " ")
    return _WHITESPACE.sub(" ", text).strip()


def normalize_description(text: str) -> str:
    """Normalize free-text descriptions: account rules plus dash removal and lower-casing."""
    if not text:
        return ""
    text = _FULL_WIDTH_ALNUM.sub(lambda m: chr(ord(m.group(0)) - 0xFEE0), text)
    text = _HALF_WIDTH_KANA.sub(_half_width_kana_to_full, text)
    text = text.replace(_IDEOGRAPHIC_SPACE, " ")
    text = _DASHES.sub("", text)
    return _WHITESPACE.sub(" ", text).strip().lower()


def text_similarity(a: str, b: str) -> float:
    """
    Description similarity on a 0-100 scale.

    Normalized Indel similarity of the normalized texts; symmetric and
    deterministic. Empty text on either side scores 0.
    """
    left = normalize_description(a)
    right = normalize_description(b)
    if not left or not right:
        return 0.0
    return float(fuzz.ratio(left, right))
