"""
calcplan CLI - Command-line interface for the calc pipeline.

Usage:
    calcplan validate <input.json> <plan.json> [--repair]   Validate a plan
    calcplan render <input.json> <plan.json> [-o calc.js]   Validate, repair and render
    calcplan build <input.json> [--plan plan.json]          Full build with heuristic fallback
    calcplan verify <input.json> <calc.js>                  Sandbox-verify module text

input.json holds the camelCase character context, plan.json the raw LLM plan.
Exit code 1 on any failure.
"""

import argparse
import json
import logging
import os
import sys


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="calcplan - validate, repair, render and verify damage-calc plans",
        prog="calcplan",
    )
    parser.add_argument("--verbose", "-v", action="count", default=0, help="More logging (-v info, -vv debug)")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a raw plan")
    validate_parser.add_argument("input_file", help="Path to character context JSON")
    validate_parser.add_argument("plan_file", help="Path to raw plan JSON")
    validate_parser.add_argument("--repair", action="store_true", help="Also run the repair pipeline")

    # Render command
    render_parser = subparsers.add_parser("render", help="Validate, repair and render a plan")
    render_parser.add_argument("input_file", help="Path to character context JSON")
    render_parser.add_argument("plan_file", help="Path to raw plan JSON")
    render_parser.add_argument("--output", "-o", help="Output calc.js file (stdout when omitted)")
    render_parser.add_argument("--no-repair", action="store_true", help="Skip the repair pipeline")
    render_parser.add_argument("--created-by", help="Provenance string written into the module")

    # Build command
    build_parser = subparsers.add_parser("build", help="Build a verified module")
    build_parser.add_argument("input_file", help="Path to character context JSON")
    build_parser.add_argument("--plan", dest="plan_file", help="Path to raw plan JSON (heuristic plan when omitted)")
    build_parser.add_argument("--output", "-o", help="Output calc.js file (stdout when omitted)")
    build_parser.add_argument("--no-verify", action="store_true", help="Skip sandboxed verification")
    build_parser.add_argument("--cache", action="store_true", help="Use the on-disk build cache")
    build_parser.add_argument("--created-by", help="Provenance string written into the module")

    # Verify command
    verify_parser = subparsers.add_parser("verify", help="Verify rendered module text")
    verify_parser.add_argument("input_file", help="Path to character context JSON")
    verify_parser.add_argument("js_file", help="Path to calc.js")

    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if args.command == "validate":
        cmd_validate(args)
    elif args.command == "render":
        cmd_render(args)
    elif args.command == "build":
        cmd_build(args)
    elif args.command == "verify":
        cmd_verify(args)
    else:
        parser.print_help()
        sys.exit(1)


def configure_logging(verbose: int):
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = getattr(logging, os.getenv("CALCPLAN_LOG_LEVEL", "WARNING").upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _read_json(path):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"Error: File not found: {path}")
        sys.exit(1)
    except json.JSONDecodeError as e:
        print(f"Error: {path} is not valid JSON: {e}")
        sys.exit(1)


def _read_input(path):
    from .plan_schema import CalcSuggestInput

    try:
        return CalcSuggestInput.from_dict(_read_json(path))
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)


def _write(text, output):
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(text)
        print(f"Wrote {output}")
    else:
        print(text)


def _print_list(title, items):
    if items:
        print(f"\n{title}:")
        for item in items:
            print(f"  - {item}")


def cmd_validate(args):
    """Validate a raw plan."""
    from .errors import PlanValidationError
    from .plan_schema import ValidationReport, validate_plan
    from .repair import RepairReport, repair_plan

    input = _read_input(args.input_file)
    report = ValidationReport()
    try:
        plan = validate_plan(input, _read_json(args.plan_file), report)
    except PlanValidationError as e:
        print(f"Invalid: {e}")
        _print_list("Errors", e.errors)
        _print_list("Dropped", report.warnings)
        sys.exit(1)

    if args.repair:
        repair_report = RepairReport()
        plan = repair_plan(input, plan, repair_report)
        _print_list("Repaired", repair_report.changed)
        _print_list("Reverted", repair_report.reverted)

    print(f"Valid: {len(plan.details)} details, {len(plan.object_buffs())} buffs")
    _print_list("Dropped", report.warnings)
    print(json.dumps(plan.to_dict(), ensure_ascii=False, indent=2))


def cmd_render(args):
    """Validate, repair and render a plan."""
    from .errors import PlanValidationError
    from .plan_schema import validate_plan
    from .render import render_calc_js
    from .repair import repair_plan

    input = _read_input(args.input_file)
    try:
        plan = validate_plan(input, _read_json(args.plan_file))
    except PlanValidationError as e:
        print(f"Error: {e}")
        sys.exit(1)
    if not args.no_repair:
        plan = repair_plan(input, plan)
    _write(render_calc_js(input, plan, created_by=args.created_by), args.output)


def cmd_build(args):
    """Full build with heuristic fallback."""
    from .builder import CalcBuilder
    from .errors import CalcPlanError

    input = _read_input(args.input_file)
    raw_plan = _read_json(args.plan_file) if args.plan_file else None
    builder = CalcBuilder(created_by=args.created_by, verify=not args.no_verify, use_cache=args.cache)
    try:
        result = builder.build(input, raw_plan)
    except CalcPlanError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if not result.used_plan:
        print(f"Heuristic plan used: {result.error}", file=sys.stderr)
    _write(result.js, args.output)


def cmd_verify(args):
    """Sandbox-verify rendered module text."""
    from .errors import VerificationError
    from .sandbox import verify_calc_js

    input = _read_input(args.input_file)
    try:
        with open(args.js_file, "r", encoding="utf-8") as f:
            js = f.read()
    except FileNotFoundError:
        print(f"Error: File not found: {args.js_file}")
        sys.exit(1)

    try:
        report = verify_calc_js(js, input)
    except VerificationError as e:
        print(f"Failed: {e}")
        sys.exit(1)
    print(f"OK: {report.details_checked} details, {report.buffs_checked} buffs ({', '.join(report.passes)})")


if __name__ == "__main__":
    main()
