from __future__ import annotations

import argparse
import logging
from pathlib import Path

from PIL import Image

from .config import load_config
from .pipeline import PageReconciler, PageRequest
from .overlay import render_overlay
from .utils import load_json, write_json
from .validator import validate_result_file


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="markanchor_engine")
    p.add_argument("--log-level", default="WARNING", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = p.add_subparsers(dest="command", required=True)

    rec = sub.add_parser("reconcile", help="Anchor grading annotations to the OCR blocks of one page")
    rec.add_argument("--request", required=True, help="Page request JSON (ocrBlocks, annotations, ...)")
    rec.add_argument("--out", required=True, help="Output result JSON path")
    rec.add_argument("--config", default=str(Path("config") / "default.json"), help="Config path")

    validate = sub.add_parser("validate", help="Validate a result JSON against the output contract")
    validate.add_argument("--result", required=True, help="Result JSON path")
    validate.add_argument("--page-width", type=float, default=None)
    validate.add_argument("--page-height", type=float, default=None)

    ov = sub.add_parser("overlay", help="Draw zones, landmarks and annotation boxes over a page image")
    ov.add_argument("--image", required=True, help="Page image path")
    ov.add_argument("--result", required=True, help="Result JSON path")
    ov.add_argument("--out", required=True, help="Output image path")
    ov.add_argument("--page-index", type=int, default=0)
    ov.add_argument("--config", default=str(Path("config") / "default.json"), help="Config path")

    return p


def cmd_reconcile(args: argparse.Namespace) -> int:
    try:
        cfg = load_config(args.config)
        request = PageRequest.from_dict(load_json(args.request))
        result = PageReconciler(cfg).reconcile(request)
        write_json(args.out, result.to_dict())
    except (OSError, ValueError, KeyError, TypeError) as e:
        print(f"reconcile_failed: {e}")
        return 1

    m = result.metrics
    print(f"matched={m['matched']} unmatched={m['unmatched']} vetoed={m['vetoed']} unpositioned={m['unpositioned']}")
    if result.error:
        print(f"page_rejected: {result.error}")
        return 1
    print(str(args.out))
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    ok, summary = validate_result_file(args.result, page_width=args.page_width, page_height=args.page_height)

    print(f"annotations_total={summary.get('annotations_total', 0)}")
    print(f"invalid_annotations={summary['invalid_annotations']}")
    print(f"positions_out_of_page={summary['positions_out_of_page']}")

    if not ok:
        for m in summary["errors"]:
            print(m)
        return 1

    print("OK")
    return 0


def cmd_overlay(args: argparse.Namespace) -> int:
    try:
        cfg = load_config(args.config)
        result = load_json(args.result)
        with Image.open(args.image) as page:
            render_overlay(page, result, args.out, page_index=args.page_index, overlay_cfg=cfg.overlay)
        print(str(args.out))
        return 0
    except (OSError, ValueError, KeyError) as e:
        print(f"overlay_failed: {e}")
        return 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")

    if args.command == "reconcile":
        return cmd_reconcile(args)

    if args.command == "validate":
        return cmd_validate(args)

    if args.command == "overlay":
        return cmd_overlay(args)

    raise SystemExit(2)


if __name__ == "__main__":
    raise SystemExit(main())
