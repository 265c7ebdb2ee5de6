"""CLI entrypoint for publication URL resolution."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys
from typing import Any

if __package__ in {None, ""}:
    repo_root = Path(__file__).resolve().parents[1]
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))

from harvester.resolver import (
    ConfigError,
    Pipeline,
    ResolverConfig,
    apply_env_overrides,
    load_config_payload,
    load_records,
)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Resolve publication landing pages to document/dataset URLs.",
    )

    parser.add_argument(
        "--input",
        type=Path,
        required=True,
        help="Input file with one id/url pair per line (JSONL, TSV, or bare URLs).",
    )
    parser.add_argument(
        "--output_dir",
        type=Path,
        default=Path("data/resolved_output"),
        help="Root output directory for results/files/manifests/logs.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to JSON/YAML resolver config.",
    )

    parser.add_argument("--workers", type=int, default=None)
    parser.add_argument(
        "--download",
        dest="download_documents",
        action="store_true",
        default=None,
        help="Store matched documents/datasets under <output_dir>/files.",
    )
    parser.add_argument(
        "--no_download",
        dest="download_documents",
        action="store_false",
        help="Only record URLs, never store files.",
    )
    parser.add_argument(
        "--datasets",
        dest="want_datasets",
        action="store_true",
        default=None,
        help="Also look for dataset files.",
    )
    parser.add_argument(
        "--no_documents",
        dest="want_documents",
        action="store_false",
        default=None,
        help="Do not look for documents (use with --datasets).",
    )

    parser.add_argument("--head_timeout_seconds", type=float, default=None)
    parser.add_argument("--get_timeout_seconds", type=float, default=None)
    parser.add_argument("--min_politeness_delay_seconds", type=float, default=None)
    parser.add_argument("--max_politeness_delay_seconds", type=float, default=None)
    parser.add_argument("--user_agent", type=str, default=None)

    parser.add_argument(
        "--print_stats_json",
        action="store_true",
        help="Print full stats JSON in stdout after run.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace, environ: dict[str, str] | None = None) -> ResolverConfig:
    """Layer CLI flags over the config file over env overrides over defaults."""

    payload: dict[str, Any] = apply_env_overrides({}, environ)
    if args.config is not None:
        payload.update(load_config_payload(args.config))

    overrides = {
        "worker_count": args.workers,
        "download_documents": args.download_documents,
        "want_datasets": args.want_datasets,
        "want_documents": args.want_documents,
        "head_timeout_seconds": args.head_timeout_seconds,
        "get_timeout_seconds": args.get_timeout_seconds,
        "min_politeness_delay_seconds": args.min_politeness_delay_seconds,
        "max_politeness_delay_seconds": args.max_politeness_delay_seconds,
        "user_agent": args.user_agent,
    }
    for key, value in overrides.items():
        if value is not None:
            payload[key] = value

    return ResolverConfig.from_dict(payload)


def setup_logging(output_dir: Path, verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO

    log_dir = output_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "resolve.log"

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(log_level)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    # Connection-pool chatter drowns the per-URL lines at DEBUG.
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def print_summary(result: dict[str, Any], *, print_stats_json: bool) -> None:
    paths = result.get("paths", {})
    stats = result.get("stats", {})

    print("\n=== Resolution Complete ===")
    print(f"output_dir: {paths.get('output_dir')}")
    print(f"results: {paths.get('results')}")
    print(f"stats: {paths.get('stats_manifest')}")

    print("\n--- Outcomes ---")
    for kind, count in stats.get("outcomes", {}).items():
        print(f"{kind}: {count}")

    print("\n--- Core Stats ---")
    for key in [
        "inputs",
        "resolved_total",
        "found_total",
        "direct_links",
        "stored_files",
        "duration_seconds",
    ]:
        if key in stats:
            print(f"{key}: {stats[key]}")

    health = stats.get("domain_health", {})
    if health:
        print("\n--- Domain Health ---")
        print(f"domains_seen: {health.get('domains_seen', 0)}")
        print(f"blacklisted_domains: {len(health.get('blacklisted_domains', []))}")
        print(f"tls_blacklisted: {health.get('tls_blacklisted', 0)}")
        print(f"head_unsupported_domains: {len(health.get('head_unsupported_domains', []))}")
        print(f"https_confirmed_domains: {len(health.get('https_confirmed_domains', []))}")

    if print_stats_json:
        print("\n--- Full Stats JSON ---")
        print(json.dumps(stats, indent=2, sort_keys=True))


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.output_dir, verbose=args.verbose)

    try:
        config = build_config(args)
    except (ConfigError, OSError) as exc:
        logging.error("Failed to build config: %s", exc)
        return 2

    if not args.input.is_file():
        logging.error("Input file not found: %s", args.input)
        return 2

    logging.info(
        "Starting resolution: input=%s, output_dir=%s, workers=%d, download=%s",
        args.input,
        args.output_dir,
        config.worker_count,
        config.download_documents,
    )

    pipeline: Pipeline | None = None
    try:
        pipeline = Pipeline(config, output_dir=args.output_dir)
        result = pipeline.run(load_records(args.input))
    except KeyboardInterrupt:
        if pipeline is not None:
            pipeline.stop()
        logging.error("Interrupted by user")
        return 130
    except Exception:
        logging.exception("Resolution run failed")
        return 1

    print_summary(result, print_stats_json=args.print_stats_json)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
