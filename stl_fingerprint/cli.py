# stl_fingerprint/cli.py
import argparse
import json
import logging
import sys

import yaml

from .config import EngineConfig, load_config
from .engine import AnalysisEngine
from .errors import InputError, InternalInvariantViolation
from .layout import dump_layouts_json, dump_reports_yaml
from .reporter import EXIT_INPUT, EXIT_INTERNAL, overall_exit_code


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="MSVC STL container fingerprint engine")
    parser.add_argument("evidence", help="Evidence file (YAML or JSON)")
    parser.add_argument("--arch", choices=["x86", "x64"], default=None,
                        help="Target architecture (default: config or x86)")
    parser.add_argument("-c", "--config", default=None, help="YAML config file")
    parser.add_argument("-o", "--out-prefix", default=None,
                        help="Write PREFIX.report.yml and PREFIX.layout.json")
    parser.add_argument("--format", choices=["yaml", "json"], default="yaml",
                        help="Report format on stdout")
    parser.add_argument("--timeout", type=float, default=None, help="Per-query deadline in seconds")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    return parser


def main(argv=None) -> int:
    args = _parser().parse_args(argv)

    try:
        cfg = load_config(args.config) if args.config else EngineConfig()
    except InputError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return EXIT_INPUT

    level = cfg.log_level
    if args.verbose == 1:
        level = "INFO"
    elif args.verbose > 1:
        level = "DEBUG"
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        engine = AnalysisEngine(cfg, arch=args.arch)
        reports = engine.analyze_file(args.evidence, timeout=args.timeout)
    except InputError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return EXIT_INPUT
    except InternalInvariantViolation as exc:
        print(f"[FATAL] internal invariant violated: {exc}", file=sys.stderr)
        return EXIT_INTERNAL

    data = [r.to_dict() for r in reports]
    if args.format == "json":
        print(json.dumps({"reports": data}, indent=2))
    else:
        print(yaml.safe_dump({"reports": data}, sort_keys=False), end="")

    for r in reports:
        print(f"[INFO] {r.region or '<region>'}: {r.status} ({r.message})", file=sys.stderr)

    if args.out_prefix:
        report_path = f"{args.out_prefix}.report.yml"
        layout_path = f"{args.out_prefix}.layout.json"
        dump_reports_yaml(data, report_path)
        layouts = {
            r.region or f"region{i}": r.layout
            for i, r in enumerate(reports)
            if r.layout is not None
        }
        dump_layouts_json(layouts, layout_path)
        print(f"[INFO] Wrote {report_path}", file=sys.stderr)
        print(f"[INFO] Wrote {layout_path}", file=sys.stderr)

    return overall_exit_code(reports)


if __name__ == "__main__":
    sys.exit(main())
