"""Command-line interface for the PostgreSQL plan advisor.

Analyzes, renders and compares EXPLAIN output without running the API server.
Deterministic outputs; never connects to a database.

Exit codes: 0 ok, 2 input/parse failure, 3 internal failure.
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, List, Optional

from pg_index_advisor.core.analyzer import analyze_plan
from pg_index_advisor.core.errors import PlanAdvisorError, is_client_error
from pg_index_advisor.core.observability import configure_logging
from pg_index_advisor.core.plan_diff import diff_plans
from pg_index_advisor.core.plan_parser import parse_plan
from pg_index_advisor.core.render import render_tree, to_explain_json


def _print(data: Dict[str, Any], fmt: str) -> None:
    if fmt == "json":
        print(json.dumps(data, separators=(",", ":"), ensure_ascii=False))
    else:
        # Minimal text formatting
        for k, v in data.items():
            print(f"{k}: {v}")


def _print_table(recommendations: List[Dict[str, Any]], lang: str) -> None:
    suffix = "" if lang == "ru" else "En"
    headers = ["Severity", "Node", "Title", "SQL"]
    rows: List[List[str]] = []
    for r in recommendations:
        rows.append([
            str(r.get("severity", "")),
            "" if r.get("nodeId") is None else str(r["nodeId"]),
            str(r.get("title" + suffix, ""))[:60],
            str(r.get("sql") or ""),
        ])

    # compute column widths
    widths = [len(h) for h in headers]
    for r in rows:
        for i, cell in enumerate(r):
            widths[i] = max(widths[i], len(cell))

    def fmt_row(cols: List[str]) -> str:
        return "  ".join(c.ljust(widths[i]) for i, c in enumerate(cols)).rstrip()

    print(fmt_row(headers))
    print("  ".join("-" * w for w in widths))
    for r in rows:
        print(fmt_row(r))


def _print_markdown(data: Dict[str, Any], lang: str) -> None:
    suffix = "" if lang == "ru" else "En"
    summ = data.get("summary") or {}
    print("# Plan Analysis Report")
    print(
        f"\n**Execution time**: {summ.get('executionTime', 0):.3f} ms, "
        f"**nodes**: {summ.get('nodeCount', 0)}, "
        f"**estimation accuracy**: {summ.get('estimationAccuracy', 1.0):.0%}\n"
    )
    top = summ.get("topOperations") or []
    if top:
        print("## Top Operations\n")
        for op in top:
            print(f"- {op['nodeType']} x{op['count']}: {op['totalTime']:.3f} ms ({op['percentage']:.1f}%)")
    recs = data.get("recommendations") or []
    if recs:
        print("\n## Recommendations\n")
        for r in recs:
            print(f"- **[{r['severity']}] {r.get('title' + suffix)}**: {r.get('suggestion' + suffix)}")
            if r.get("sql"):
                print(f"  `{r['sql']}`")


def _fail(e: PlanAdvisorError, fmt: str) -> int:
    _print(e.to_dict(), fmt)
    return 2 if is_client_error(e) else 3


def _read_file(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _read_plan(args: argparse.Namespace) -> str:
    if args.plan:
        return args.plan
    if args.file:
        return _read_file(args.file)
    data = sys.stdin.read()
    if not data.strip():
        raise SystemExit(2)
    return data


def cmd_analyze(args: argparse.Namespace) -> int:
    text = _read_plan(args)
    try:
        result = analyze_plan(text, args.input_format)
    except PlanAdvisorError as e:
        return _fail(e, args.format)
    data = result.to_dict()
    if args.format == "markdown":
        _print_markdown(data, args.lang)
    elif args.format == "text":
        print(render_tree(result.plan))
        print()
        _print_table(data["recommendations"], args.lang)
    else:
        _print({"success": True, "data": data}, "json")
    return 0


def cmd_render(args: argparse.Namespace) -> int:
    text = _read_plan(args)
    try:
        parsed = parse_plan(text, args.input_format)
    except PlanAdvisorError as e:
        return _fail(e, args.format)
    doc = to_explain_json(parsed.plan, parsed.execution_time, parsed.planning_time)
    print(json.dumps(doc, indent=2, ensure_ascii=False))
    return 0


def cmd_compare(args: argparse.Namespace) -> int:
    try:
        before = analyze_plan(_read_file(args.before), args.input_format)
        after = analyze_plan(_read_file(args.after), args.input_format)
    except PlanAdvisorError as e:
        return _fail(e, args.format)
    _print(diff_plans(before, after), "json" if args.format == "markdown" else args.format)
    return 0


def _add_input_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--plan", help="EXPLAIN output as a string")
    p.add_argument("--file", help="Read EXPLAIN output from a file (default: stdin)")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="pg-index-advisor", description="PostgreSQL EXPLAIN plan advisor")
    p.add_argument("--format", choices=["json", "text", "markdown"], default="json")
    p.add_argument("--input-format", choices=["auto", "json", "text"], default="auto")
    p.add_argument("--lang", choices=["en", "ru"], default="en")
    p.add_argument("--log-level", default=None)

    sp = p.add_subparsers(dest="cmd", required=True)

    an = sp.add_parser("analyze", help="Analyze EXPLAIN output and print recommendations")
    _add_input_args(an)
    an.set_defaults(func=cmd_analyze)

    rd = sp.add_parser("render", help="Print the canonical EXPLAIN JSON for a plan")
    _add_input_args(rd)
    rd.set_defaults(func=cmd_render)

    cmp_ = sp.add_parser("compare", help="Diff two plans node by node")
    cmp_.add_argument("before")
    cmp_.add_argument("after")
    cmp_.set_defaults(func=cmd_compare)

    return p


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level or "WARNING")
    try:
        code = args.func(args)
        sys.exit(code)
    except SystemExit:
        raise
    except Exception as e:
        _print({"success": False, "error": str(e)}, "json" if args.format != "text" else "text")
        sys.exit(3)


if __name__ == "__main__":
    main()
