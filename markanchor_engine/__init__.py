"""Mark-anchoring engine for graded exam scans.

This package reconciles OCR text blocks from several recognition passes
with grading annotations from a model-based grader:
- resolves every block to canonical page pixels
- locates question landmarks and builds per-question zones
- binds annotations to blocks, vetoing bindings it cannot verify

Rendering the annotated page is out of scope beyond the debug overlay.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
