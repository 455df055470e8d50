"""Question / sub-question label patterns.

One place builds every regex used to recognise a label in OCR text, so the
zone locator, the offset resolver and the matcher agree on what "(a)" or
"Q6" means.

Label forms handled:
- root label: "6", "Q6", "Question 6", "6."
- full label: "6a", "10bii"
- parenthesized sub-part: "(a)", "a)", "(ii)"
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache

FIRST_CHILD_LABELS = ("a", "i", "1")

_LABEL_SPLIT_RE = re.compile(r"^(\d*)([a-z0-9]*)$")


def normalize_label(label: str) -> str:
    """'(10)(b)(i)' -> '10bi', 'Q1' -> '1'."""
    if not label:
        return ""
    out = re.sub(r"[()\[\]\s.]", "", str(label).lower())
    return re.sub(r"^q(?=\d)", "", out)


def split_label(label: str) -> tuple[str, str]:
    """Split a label into (numeric base, sub-part): '6a' -> ('6', 'a')."""
    norm = normalize_label(label)
    m = _LABEL_SPLIT_RE.match(norm)
    if not m:
        return "", norm
    return m.group(1), m.group(2)


def parent_label(label: str) -> str | None:
    base, sub = split_label(label)
    if base and sub:
        return base
    return None


def is_root_label(label: str) -> bool:
    base, sub = split_label(label)
    return bool(base) and not sub


def is_first_child(label: str) -> bool:
    _, sub = split_label(label)
    if not sub:
        sub = normalize_label(label)
    return sub in FIRST_CHILD_LABELS


@dataclass(frozen=True)
class LabelPatterns:
    label: str
    base: str
    sub: str
    exact: re.Pattern[str]
    root: re.Pattern[str] | None
    paren_sub: re.Pattern[str] | None

    @property
    def paren_form(self) -> str:
        return f"({self.sub or self.label})"


def _paren_pattern(sub: str) -> re.Pattern[str]:
    s = re.escape(sub)
    return re.compile(rf"^(?:\({s}\)|{s}[).](?:\s|$))", re.IGNORECASE)


@lru_cache(maxsize=512)
def label_patterns(label: str) -> LabelPatterns:
    norm = normalize_label(label)
    base, sub = split_label(label)
    sep = r"(?:[\s.:)]|$)"

    if base:
        exact = re.compile(rf"^(?:\(?(?:question\s+|q)?){re.escape(norm)}\)?{sep}", re.IGNORECASE)
    else:
        # a bare "a" must be delimited, otherwise every sentence starting with "a" anchors
        exact = _paren_pattern(norm)
    root = re.compile(rf"^(?:question\s+|q)?{re.escape(base)}{sep}", re.IGNORECASE) if base else None
    paren_sub = _paren_pattern(sub) if sub else None
    return LabelPatterns(label=norm, base=base, sub=sub, exact=exact, root=root, paren_sub=paren_sub)


def anchor_kind(text: str, label: str) -> str | None:
    """How strongly a block's text anchors a label.

    Returns 'exact' ("6a ...", "Q6a"), 'sub' ("(a) ..."), 'parent'
    ("6 ..." for label 6a) or None.
    """
    t = (text or "").strip()
    if not t:
        return None
    p = label_patterns(label)
    if p.exact.match(t):
        return "exact"
    if p.paren_sub is not None and p.paren_sub.match(t):
        return "sub"
    if p.sub and p.root is not None and p.root.match(t):
        return "parent"
    return None


def contains_paren_label(text: str, label: str) -> bool:
    """Substring check for '(<label>)' anywhere in the text."""
    p = label_patterns(label)
    return p.paren_form.lower() in (text or "").lower()


def is_bare_label(text: str, labels: list[str] | tuple[str, ...]) -> bool:
    """True when the whole text is just a question label ('6a', 'Q6', '(a)')."""
    clean = re.sub(r"[^0-9a-z]", "", (text or "").lower())
    if not clean:
        return False
    for lbl in labels:
        norm = re.sub(r"[^0-9a-z]", "", normalize_label(lbl))
        _, sub = split_label(lbl)
        if clean in (norm, f"q{norm}") or (sub and clean == sub):
            return True
    return False
