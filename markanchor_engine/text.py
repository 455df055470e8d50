"""Text normalization shared by landmark detection and annotation matching.

Word overlap deliberately ignores digits: "2√5" and "2√7" look ~90% alike as
strings, so numbers are checked separately by digit fidelity.
"""
from __future__ import annotations

import re

_MARKUP_CMD_RE = re.compile(r"\\[a-zA-Z]+")
_NON_LETTER_RE = re.compile(r"[^\w\s]|[\d_]")
_NON_WORD_RE = re.compile(r"[^\w\s]|_")
_DIGIT_RE = re.compile(r"[0-9]")

OVERLAP_THRESHOLD = 0.4
FINGERPRINT_TOKENS = 15
MIN_TOKEN_LENGTH = 3


def normalize_tokens(text: str, min_token_length: int = MIN_TOKEN_LENGTH) -> list[str]:
    """Strip markup commands and non-letters, lowercase, keep words of 3+ chars."""
    if not text:
        return []
    cleaned = _MARKUP_CMD_RE.sub(" ", text)
    cleaned = _NON_LETTER_RE.sub("", cleaned).lower()
    return [t for t in cleaned.split() if len(t) >= min_token_length]


def overlap_ratio(
    reference: str,
    candidate: str,
    *,
    fingerprint_tokens: int = FINGERPRINT_TOKENS,
    min_token_length: int = MIN_TOKEN_LENGTH,
) -> float:
    ref_tokens = normalize_tokens(reference, min_token_length)[:fingerprint_tokens]
    if not ref_tokens:
        return 0.0
    cand_tokens = set(normalize_tokens(candidate, min_token_length))
    hits = sum(1 for t in ref_tokens if t in cand_tokens)
    return hits / len(ref_tokens)


def verify_match(
    reference: str,
    candidate: str,
    *,
    threshold: float = OVERLAP_THRESHOLD,
    fingerprint_tokens: int = FINGERPRINT_TOKENS,
    min_token_length: int = MIN_TOKEN_LENGTH,
) -> bool:
    """At least `threshold` of the reference fingerprint appears in candidate."""
    if not reference or not candidate:
        return False
    ratio = overlap_ratio(
        reference,
        candidate,
        fingerprint_tokens=fingerprint_tokens,
        min_token_length=min_token_length,
    )
    return ratio > 0 and ratio + 1e-9 >= threshold


def extract_digits(text: str) -> list[str]:
    """Unique decimal digits in order of first appearance."""
    seen: list[str] = []
    for d in _DIGIT_RE.findall(text or ""):
        if d not in seen:
            seen.append(d)
    return seen


def missing_digits(claimed: str, ocr_text: str) -> list[str]:
    ocr = ocr_text or ""
    return [d for d in extract_digits(claimed) if d not in ocr]


def normalize_for_rescue(text: str) -> str:
    """Compact math-friendly form: '3 \\times 4' -> '3x4'."""
    if not text:
        return ""
    out = re.sub(r"\s+", "", text.lower())
    out = out.replace("\\times", "x").replace("×", "x").replace("*", "x")
    return re.sub(r"[^a-z0-9.]", "", out)


def normalize_for_veto(text: str) -> str:
    """Lowercase words and digits only, single-spaced: printed-text comparison form."""
    if not text:
        return ""
    out = _MARKUP_CMD_RE.sub(" ", text.lower())
    return " ".join(_NON_WORD_RE.sub("", out).split())


def matches_printed_text(text: str, veto_texts: list[str] | tuple[str, ...]) -> str | None:
    """Return the printed text that contains, or is contained in, ``text``."""
    norm = normalize_for_veto(text)
    if not norm:
        return None
    for veto in veto_texts:
        v = normalize_for_veto(veto)
        if len(v) < 2:
            continue
        if norm in v or v in norm:
            return veto
    return None
