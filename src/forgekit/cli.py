"""Command-line interface for forgekit."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import tomllib
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from forgekit import __version__
from forgekit.analysis import calculate_stats
from forgekit.catalogue import Catalogue
from forgekit.debug import format_ast
from forgekit.errors import ForgeKitError, ParseError, UsageError
from forgekit.metadata import Source
from forgekit.parser import parse
from forgekit.store import FileCacheStore
from forgekit.validator import Report, Rule, ValidationRules, validate

logger = logging.getLogger(__name__)

CONFIG_NAME = "forgekit.toml"
RULE_NAMES = [rule.value for rule in Rule]


@dataclass(frozen=True, slots=True)
class CliOptions:
    """Parsed CLI options."""

    input_files: list[Path]
    rules: ValidationRules
    sources: list[Source]
    cache_file: Path | None
    metadata_file: Path | None
    fetch: bool
    save_cache: bool
    show_ast: bool
    show_stats: bool
    json_output: bool
    verbose: bool
    # True when no [rules] table, --strict or --rule chose the rules
    default_rules: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser (separate function for testability)."""
    p = argparse.ArgumentParser(
        prog="forgekit",
        description="Parse and validate ForgeScript templates",
    )
    p.add_argument("inputs", nargs="*", metavar="FILE", help="Input files ('-' for stdin)")
    p.add_argument(
        "--config",
        metavar="FILE",
        help=f"Config file (default: auto-discover {CONFIG_NAME})",
    )
    p.add_argument(
        "--metadata",
        metavar="FILE",
        help="Load function/enum/event metadata from an exported cache file",
    )
    p.add_argument("--fetch", action="store_true", help="Fetch metadata from configured sources")
    p.add_argument(
        "--save-cache",
        action="store_true",
        help="Write fetched metadata to the configured cache file",
    )
    p.add_argument("--strict", action="store_true", help="Enable every validation rule")
    p.add_argument(
        "--rule",
        action="append",
        default=[],
        choices=RULE_NAMES,
        help="Enable a validation rule (repeatable)",
    )
    p.add_argument(
        "--no-rule",
        action="append",
        default=[],
        choices=RULE_NAMES,
        help="Disable a validation rule (repeatable)",
    )
    p.add_argument("--ast", action="store_true", help="Print the parsed tree")
    p.add_argument("--stats", action="store_true", help="Print document statistics")
    p.add_argument("--json", action="store_true", help="Emit machine-readable JSON")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging to stderr")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def load_config(config_path: Path | None, search_dir: Path) -> dict[str, Any]:
    """Load a TOML config file, returning an empty dict on missing/absent file."""
    path = config_path if config_path is not None else search_dir / CONFIG_NAME

    if not path.is_file():
        return {}

    with open(path, "rb") as f:
        return tomllib.load(f)


def parse_source_entry(entry: Any) -> Source:
    """Build a Source from one ``[[sources]]`` table."""
    if not isinstance(entry, dict):
        raise UsageError("each [[sources]] entry must be a table")
    extension = entry.get("extension")
    if not isinstance(extension, str) or not extension:
        raise UsageError("[[sources]] entry requires an 'extension'")
    repo = entry.get("repo")
    if repo is not None:
        return Source.github(extension, str(repo), str(entry.get("branch", "main")))
    urls = {k: entry.get(k) for k in ("functions", "enums", "events")}
    if not any(urls.values()):
        raise UsageError(f"source '{extension}' needs 'repo' or at least one document URL")
    return Source.custom(extension, urls["functions"], urls["enums"], urls["events"])


def resolve_options(args: argparse.Namespace) -> CliOptions:
    """Merge config file and CLI args into CliOptions.

    Precedence: config file < CLI flags.
    """
    input_files = [Path(p) for p in args.inputs]
    search_dir = Path(".")
    if input_files and input_files[0].name != "-" and input_files[0].parent.parts:
        search_dir = input_files[0].parent

    config_path = Path(args.config) if args.config else None
    config = load_config(config_path, search_dir)
    base_dir = config_path.parent if config_path is not None else search_dir

    sources: list[Source] = []
    cfg_sources = config.get("sources", [])
    if not isinstance(cfg_sources, list):
        raise UsageError("'sources' must be an array of tables")
    for entry in cfg_sources:
        sources.append(parse_source_entry(entry))

    cache_file: Path | None = None
    cfg_cache = config.get("cache")
    if isinstance(cfg_cache, dict) and isinstance(cfg_cache.get("file"), str):
        cache_file = base_dir / cfg_cache["file"]

    metadata_file = Path(args.metadata) if args.metadata else None
    has_catalogue = metadata_file is not None or args.fetch or (
        cache_file is not None and cache_file.is_file()
    )

    # Rules: config < --strict < --rule/--no-rule
    cfg_rules = config.get("rules")
    if isinstance(cfg_rules, dict):
        unknown = set(cfg_rules) - set(RULE_NAMES)
        if unknown:
            raise UsageError(f"unknown rule(s) in config: {', '.join(sorted(unknown))}")
        rules = ValidationRules(**{k: bool(v) for k, v in cfg_rules.items()})
    elif has_catalogue:
        rules = ValidationRules.strict()
    else:
        rules = ValidationRules.syntax_only()
    if args.strict:
        rules = ValidationRules.strict()
    for name in args.rule:
        rules = replace(rules, **{name: True})
    for name in args.no_rule:
        rules = replace(rules, **{name: False})

    if args.save_cache and cache_file is None:
        raise UsageError("--save-cache requires [cache] file in the config")

    return CliOptions(
        input_files=input_files,
        rules=rules,
        sources=sources,
        cache_file=cache_file,
        metadata_file=metadata_file,
        fetch=args.fetch,
        save_cache=args.save_cache,
        show_ast=args.ast,
        show_stats=args.stats,
        json_output=args.json,
        verbose=args.verbose,
        default_rules=not isinstance(cfg_rules, dict) and not args.strict and not args.rule,
    )


def build_catalogue(options: CliOptions) -> Catalogue | None:
    """Populate a catalogue from a metadata file, the cache, or a fetch."""
    if options.metadata_file is None and options.cache_file is None and not options.fetch:
        return None

    catalogue = Catalogue()
    for source in options.sources:
        catalogue.add_source(source)

    store = key = None
    if options.cache_file is not None:
        store = FileCacheStore(options.cache_file.parent)
        key = options.cache_file.stem

    if options.metadata_file is not None:
        catalogue.import_cache(options.metadata_file.read_text(encoding="utf-8"))
    elif store is not None and key is not None and not options.fetch:
        if not store.path_for(key).is_file() or not catalogue.load_cache(store, key):
            return None

    if options.fetch:
        if not options.sources:
            raise UsageError("--fetch requires at least one [[sources]] entry")
        report = asyncio.run(catalogue.fetch_all())
        for failure in report.failures:
            print(f"warning: {failure}", file=sys.stderr)
        logger.info(str(report))
        if options.save_cache and store is not None and key is not None:
            catalogue.save_cache(store, key)
            logger.info(f"Wrote metadata cache to {options.cache_file}")

    return catalogue


def _read_input(path: Path) -> str:
    if str(path) == "-":
        return sys.stdin.read()
    return path.read_text(encoding="utf-8")


def check_file(
    path: Path,
    options: CliOptions,
    catalogue: Catalogue | None,
) -> tuple[str, list[ParseError], Report, dict[str, Any]]:
    """Parse and validate one file.

    Returns the source, its parse errors, the validation report and the JSON
    record; the file fails when either list is non-empty.
    """
    source = _read_input(path)
    doc, errors = parse(source)
    report = validate(doc, catalogue, options.rules, errors)

    record: dict[str, Any] = {
        "file": str(path),
        "ok": report.ok and not errors,
        "findings": [f.to_dict() for f in report.findings],
        "errors": [e.to_dict() for e in errors],
    }
    if options.show_stats:
        record["stats"] = calculate_stats(doc).to_dict()
    if options.show_ast:
        record["ast"] = format_ast(doc)
    return source, errors, report, record


def _print_text(
    path: Path,
    source: str,
    errors: list[ParseError],
    report: Report,
    record: dict[str, Any],
) -> None:
    filename = str(path)
    for error in errors:
        print(error.format(source, filename), file=sys.stderr)
    for finding in report.findings:
        print(finding.format(source, filename), file=sys.stderr)
    if "ast" in record:
        sys.stdout.write(record["ast"])
    if "stats" in record:
        for name, value in record["stats"].items():
            if isinstance(value, list):
                value = ", ".join(value)
            print(f"{name}: {value}")


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns exit code (0/1/2). Does not call sys.exit()."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        options = resolve_options(args)
        catalogue = build_catalogue(options)
        if catalogue is None and options.default_rules and options.rules.needs_catalogue:
            logger.warning("No usable metadata catalogue; running syntax rules only")
            options = replace(
                options, rules=replace(options.rules, arguments=False, enums=False, functions=False)
            )
    except (ForgeKitError, tomllib.TOMLDecodeError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    if not options.input_files:
        if options.fetch:
            return 0
        print("error: no input files", file=sys.stderr)
        return 2

    failed = False
    records: list[dict[str, Any]] = []
    for path in options.input_files:
        try:
            source, errors, report, record = check_file(path, options, catalogue)
        except UsageError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 2
        except OSError as exc:
            print(f"error: cannot read {path}: {exc}", file=sys.stderr)
            return 2
        failed = failed or not record["ok"]
        if options.json_output:
            records.append(record)
        else:
            _print_text(path, source, errors, report, record)

    if options.json_output:
        json.dump(records, sys.stdout, indent=2)
        sys.stdout.write("\n")

    return 1 if failed else 0
