"""Command-line interface for the agent-security scanner."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Sequence

from ..adapters import RetrievalError, RuleEvaluationError
from ..analysis import Decoder
from ..config import CONFIG_FILENAME, Config, ConfigError, generate_default_config
from ..discovery import PathNotFound
from ..engine import ScanOptions
from ..logger import configure_logging
from ..models import FindingCategory, FindingSeverity, ScanResult
from ..platforms import Platform, get_profile, list_components
from ..rules import Rule, RulePackError, RulePackManager
from ..service import ScanService
from .reporting import render_json, render_text, render_vet_json, render_vet_text

OPERATIONAL_ERRORS = (
    PathNotFound,
    RetrievalError,
    RulePackError,
    RuleEvaluationError,
    ConfigError,
)

DEFAULT_DECODE_COMMAND_DEPTH = 3


def _severity(value: str) -> FindingSeverity:
    try:
        return FindingSeverity.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _category(value: str) -> FindingCategory:
    try:
        return FindingCategory.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Not a number: {value}") from exc
    if number <= 0:
        raise argparse.ArgumentTypeError("Value must be greater than zero")
    return number


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Not an integer: {value}") from exc
    if number < 0:
        raise argparse.ArgumentTypeError("Value must not be negative")
    return number


def _add_scan_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--platform",
        choices=[platform.value for platform in Platform],
        default=Platform.GENERIC.value,
        help="Platform conventions used to classify files and recognise official publishers.",
    )
    parser.add_argument(
        "--third-party-only",
        action="store_true",
        help="Skip files published by official publishers.",
    )
    parser.add_argument(
        "--min-severity",
        type=_severity,
        default=None,
        help="Only report findings at or above this severity. The verdict still uses every finding.",
    )
    parser.add_argument(
        "-f",
        "--format",
        choices=["cli", "json"],
        default="cli",
        help="Output format.",
    )
    parser.add_argument("-o", "--output", type=Path, default=None, help="Write the report to a file.")
    parser.add_argument(
        "--include-clean",
        dest="include_clean_files",
        action="store_true",
        default=None,
        help="Include files without findings in the results.",
    )
    parser.add_argument(
        "--installed-only",
        action="store_true",
        default=None,
        help="Only scan files that ship when the package is installed.",
    )
    parser.add_argument("--timeout", type=_positive_float, default=None, help="Global timeout in seconds.")
    parser.add_argument("--workers", type=_non_negative_int, default=None, help="Number of worker threads.")
    parser.add_argument(
        "--decode-depth",
        type=_non_negative_int,
        default=None,
        help="How many times encoded payloads are decoded and rescanned.",
    )
    parser.add_argument(
        "--enable-entropy",
        action="store_true",
        default=None,
        help="Also flag long high-entropy strings that may hide packed payloads.",
    )
    parser.add_argument(
        "--rules",
        dest="rule_manifests",
        action="append",
        default=None,
        help="Additional rule pack file or directory. May be repeated.",
    )
    parser.add_argument(
        "--disable-category",
        dest="disabled_categories",
        action="append",
        type=_category,
        default=None,
        help="Turn off a detector category. May be repeated.",
    )


def build_parser() -> argparse.ArgumentParser:
    """Construct the CLI argument parser."""

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", type=Path, default=None, help="Path to a YAML config file.")
    common.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging on stderr.")

    parser = argparse.ArgumentParser(
        prog="agent-security",
        description="Static security scanner for AI agent plugins, hooks, skills and prompts.",
    )
    subparsers = parser.add_subparsers(dest="command")

    scan_parser = subparsers.add_parser("scan", parents=[common], help="Scan a local directory or file.")
    scan_parser.add_argument(
        "path",
        nargs="?",
        default=None,
        help="File or directory to scan. Defaults to the platform's install location, else the current directory.",
    )
    _add_scan_arguments(scan_parser)
    scan_parser.add_argument(
        "--skip-deps",
        action="store_true",
        default=None,
        help="Do not scan node_modules or bower_components.",
    )
    scan_parser.add_argument(
        "--fail-on",
        type=_severity,
        default=None,
        help="Exit with status 1 when a finding at or above this severity exists.",
    )

    vet_parser = subparsers.add_parser(
        "vet", parents=[common], help="Clone or resolve a source, scan it and apply the install gate."
    )
    vet_parser.add_argument("source", help="Local path, git URL or owner/repo GitHub slug.")
    _add_scan_arguments(vet_parser)
    vet_parser.add_argument(
        "--skip-deps",
        action="store_true",
        default=None,
        help="Do not install or scan dependencies.",
    )
    vet_parser.add_argument(
        "--allow-high",
        action="store_true",
        help="Allow installing when the worst finding is high severity.",
    )
    vet_parser.add_argument(
        "--force",
        action="store_true",
        help="Allow installing when the worst finding is medium severity.",
    )

    rules_parser = subparsers.add_parser("rules", parents=[common], help="List detection rules.")
    rules_parser.add_argument("rule_id", nargs="?", default=None, help="Show a single rule.")
    rules_parser.add_argument("--json", action="store_true", help="Print rules as JSON.")
    rules_parser.add_argument(
        "--rules",
        dest="rule_manifests",
        action="append",
        default=None,
        help="Additional rule pack file or directory. May be repeated.",
    )

    decode_parser = subparsers.add_parser("decode", parents=[common], help="Decode an encoded string.")
    decode_parser.add_argument("input", help="Text containing encoded content.")
    decode_parser.add_argument(
        "--depth",
        type=_non_negative_int,
        default=DEFAULT_DECODE_COMMAND_DEPTH,
        help="Maximum number of decoding layers.",
    )

    init_parser = subparsers.add_parser("init", parents=[common], help="Write a default config file.")
    init_parser.add_argument(
        "output",
        nargs="?",
        type=Path,
        default=Path(CONFIG_FILENAME),
        help="Where to write the config file.",
    )

    list_parser = subparsers.add_parser("list", parents=[common], help="List platform components.")
    list_parser.add_argument(
        "--platform",
        choices=[platform.value for platform in Platform],
        default=Platform.CLAUDE_CODE.value,
        help="Platform whose components are listed.",
    )
    list_parser.add_argument(
        "--root",
        type=Path,
        default=None,
        help="Directory to inspect instead of the platform's default locations.",
    )

    return parser


def _print_error(exc: BaseException | str) -> None:
    print(f"Error: {exc}", file=sys.stderr)


def _load_config(args: argparse.Namespace) -> Config:
    if args.config is not None:
        return Config.load(args.config)
    return Config.load_default()


def _apply_scan_overrides(config: Config, args: argparse.Namespace) -> Config:
    return config.merged(
        rule_manifests=args.rule_manifests,
        disabled_categories=args.disabled_categories,
        decode_depth=args.decode_depth,
        enable_entropy=args.enable_entropy,
    )


def _scan_options(config: Config, args: argparse.Namespace) -> ScanOptions:
    return ScanOptions.from_config(
        config,
        third_party_only=args.third_party_only,
        platform=args.platform,
        min_severity=args.min_severity,
        include_clean_files=args.include_clean_files,
        skip_deps=args.skip_deps,
        installed_only=args.installed_only,
        timeout=args.timeout,
        workers=args.workers,
    )


def _default_scan_root(platform: str) -> Path:
    roots = get_profile(platform).existing_roots()
    return roots[0] if roots else Path.cwd()


def _safe_text(text: str) -> str:
    return text.encode("utf-8", errors="backslashreplace").decode("utf-8")


def _emit(output: str, destination: Path | None) -> None:
    output = _safe_text(output)
    if destination is None:
        print(output)
        return
    destination.write_text(output + "\n", encoding="utf-8")
    print(f"Report written to {destination}")


def _should_fail(result: ScanResult, fail_on: FindingSeverity | None) -> bool:
    highest = result.true_max_severity
    if fail_on is None or highest is None:
        return False
    return highest.rank >= fail_on.rank


def _handle_scan(args: argparse.Namespace) -> int:
    try:
        config = _apply_scan_overrides(_load_config(args), args)
        options = _scan_options(config, args)
        root = Path(args.path) if args.path else _default_scan_root(args.platform)
        result = ScanService(config).scan(root, options)
        output = render_json(result) if args.format == "json" else render_text(result)
        _emit(output, args.output)
    except OPERATIONAL_ERRORS as exc:
        _print_error(exc)
        return 2
    except OSError as exc:
        _print_error(exc)
        return 2

    return 1 if _should_fail(result, args.fail_on) else 0


def _handle_vet(args: argparse.Namespace) -> int:
    try:
        config = _apply_scan_overrides(_load_config(args), args)
        options = _scan_options(config, args)
        report = ScanService(config).vet(
            args.source,
            skip_deps=bool(options.skip_deps),
            allow_high=args.allow_high,
            force=args.force,
            options=options,
        )
        output = render_vet_json(report) if args.format == "json" else render_vet_text(report)
        _emit(output, args.output)
    except OPERATIONAL_ERRORS as exc:
        _print_error(exc)
        return 2
    except OSError as exc:
        _print_error(exc)
        return 2
    return 0


def _format_rule(rule: Rule) -> str:
    lines = [
        f"Rule: {rule.id}",
        f"Title:       {rule.title}",
        f"Severity:    {rule.severity.value}",
        f"Category:    {rule.category.value}",
        f"Description: {rule.description}",
        f"Pattern:     {rule.pattern}",
    ]
    if rule.file_kinds:
        lines.append(f"File kinds:  {', '.join(kind.value for kind in rule.file_kinds)}")
    if rule.file_extensions:
        lines.append(f"Extensions:  {', '.join(rule.file_extensions)}")
    if rule.remediation:
        lines.append(f"Remediation: {rule.remediation}")
    return "\n".join(lines)


def _format_rule_list(rules: Sequence[Rule]) -> str:
    lines = ["Available rules"]
    current = None
    for rule in sorted(rules, key=lambda item: (item.category.value, item.id)):
        if rule.category is not current:
            current = rule.category
            lines.extend(["", current.value])
        lines.append(f"  {rule.id} [{rule.severity.value}] - {rule.title}")
    lines.extend(["", f"Total: {len(rules)} rules"])
    return "\n".join(lines)


def _handle_rules(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
        manager = RulePackManager(disabled_rules=config.disabled_rules)
        rules = manager.rules([*config.rule_manifests, *(args.rule_manifests or [])])
    except OPERATIONAL_ERRORS as exc:
        _print_error(exc)
        return 2

    if args.rule_id:
        match = next((rule for rule in rules if rule.id == args.rule_id), None)
        if match is None:
            _print_error(f"Rule not found: {args.rule_id}")
            return 1
        print(json.dumps(match.to_dict(), indent=2) if args.json else _format_rule(match))
        return 0

    if args.json:
        print(json.dumps([rule.to_dict() for rule in rules], indent=2))
    else:
        print(_format_rule_list(rules))
    return 0


def _handle_decode(args: argparse.Namespace) -> int:
    layers = Decoder().decode_recursive(args.input, args.depth)
    if not layers:
        print("No encodings detected in input.")
        return 0

    lines = ["Decoded content:"]
    for index, layer in enumerate(layers, start=1):
        lines.extend(["", f"Layer {index}"])
        for payload in layer:
            original = payload.original if len(payload.original) <= 60 else payload.original[:57] + "..."
            lines.append(f"  Encoding: {payload.encoding.value}")
            lines.append(f"  Original: {original}")
            lines.append(f"  Decoded:  {payload.decoded}")
    print(_safe_text("\n".join(lines)))
    return 0


def _handle_init(args: argparse.Namespace) -> int:
    output: Path = args.output
    if output.exists():
        _print_error(f"Config file already exists: {output}")
        return 1
    try:
        output.write_text(generate_default_config(), encoding="utf-8")
    except OSError as exc:
        _print_error(exc)
        return 2
    print(f"Created config file: {output}")
    return 0


def _handle_list(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
    except ConfigError as exc:
        _print_error(exc)
        return 2

    profile = get_profile(args.platform, extra_publishers=config.official_publishers)
    roots: List[Path] = [args.root] if args.root is not None else profile.existing_roots()
    if not roots:
        _print_error(f"No {profile.platform.value} installation found. Use --root.")
        return 1

    grouped: Dict[str, List[str]] = {}
    try:
        for root in roots:
            prefix = f"{root.name}/" if args.root is None and root.is_dir() else ""
            for component, paths in list_components(root, profile).items():
                grouped.setdefault(component.value, []).extend(prefix + path for path in paths)
    except PathNotFound as exc:
        _print_error(exc)
        return 2

    total = sum(len(paths) for paths in grouped.values())
    lines = [f"Platform: {profile.platform.value}", f"Discovered {total} components:"]
    for component, paths in grouped.items():
        if not paths:
            continue
        lines.append("")
        lines.append(f"{component} ({len(paths)})")
        lines.extend(f"  {path}" for path in paths)
    print("\n".join(lines))
    return 0


_HANDLERS: Dict[str, Any] = {
    "scan": _handle_scan,
    "vet": _handle_vet,
    "rules": _handle_rules,
    "decode": _handle_decode,
    "init": _handle_init,
    "list": _handle_list,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point used by tests and the console script."""

    parser = build_parser()
    args = parser.parse_args(argv)

    handler = _HANDLERS.get(args.command)
    if handler is None:
        parser.print_help()
        return 0

    try:
        configure_logging(verbose=args.verbose)
    except ValueError as exc:
        _print_error(exc)
        return 2
    return handler(args)


def run() -> None:  # pragma: no cover - thin wrapper for module execution
    """Execute the CLI and exit with the produced status code."""

    raise SystemExit(main())


if __name__ == "__main__":  # pragma: no cover - module execution guard
    run()
