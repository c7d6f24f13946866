# recon/cli.py
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from recon import admin
from recon import repository as repo
from recon.config import load_settings
from recon.db import Store
from recon.exceptions import ReconError
from recon.pipeline import build_pipeline
from recon.prompts import load_prompt_library
from recon.queueing.payloads import Stage
from recon.queueing.worker import run as run_workers

log = logging.getLogger(__name__)


def _section(title: str) -> None:
    print(f"=== {title} ===")


def _open_store() -> Store:
    return Store.open(load_settings().db_path)


def _print_queues(queues: list[dict[str, Any]]) -> None:
    _section("Queues")
    if not queues:
        print("  (no queues reported)")
        print()
        return

    header = f"{'stage':18} {'name':20} {'queued':>8} {'started':>8} {'failed':>8}"
    print("  " + header)
    print("  " + "-" * len(header))
    for q in queues:
        print(
            f"  {q.get('stage', ''):18} {q.get('name', ''):20} "
            f"{int(q.get('queued', 0) or 0):8d} {int(q.get('started', 0) or 0):8d} "
            f"{int(q.get('failed', 0) or 0):8d}"
        )
    print()


def _print_targets(targets: list[dict[str, Any]]) -> None:
    _section("Targets")
    if not targets:
        print("  (no targets)")
        print()
        return

    header = f"{'email':40} {'status':10} {'sources':>8}"
    print("  " + header)
    print("  " + "-" * len(header))
    for t in targets:
        print(f"  {t['email']:40} {t['status'] or '':10} {int(t.get('source_count') or 0):8d}")
    print()


# -----------------------------
# Commands
# -----------------------------


def _cmd_init_db(args: argparse.Namespace) -> int:
    store = _open_store()
    store.close()
    print(f"Schema ready at {load_settings().db_path}")
    return 0


def _cmd_load_prompts(args: argparse.Namespace) -> int:
    directory = args.dir or load_settings().prompt_library_dir
    store = _open_store()
    try:
        added = load_prompt_library(store, directory)
    finally:
        store.close()
    print(f"Added {len(added)} prompt(s)")
    for name in added:
        print(f"  {name}")
    return 0


def _cmd_add_domain(args: argparse.Namespace) -> int:
    pipeline = build_pipeline()
    try:
        repo.ensure_domain(pipeline.store, args.domain.strip().lower())
        handle = pipeline.queue_domain_for_dns_lookup(args.domain)
    finally:
        pipeline.close()
    print(f"Queued DNS lookup for {args.domain} (job {handle.job_id})")
    return 0


def _cmd_recon(args: argparse.Namespace) -> int:
    pipeline = build_pipeline()
    try:
        result = pipeline.start_recon(args.domain)
        if args.scrape:
            emails = [t["email"] for t in repo.list_targets(pipeline.store, result.domain)]
            pipeline.queue_sources_for_targets(emails)
    finally:
        pipeline.close()
    print(
        f"{result.domain}: {result.targets_count} contact(s), {len(result.sources)} source(s), "
        f"email format {result.email_format or 'unknown'}"
    )
    return 0


def _cmd_related(args: argparse.Namespace) -> int:
    pipeline = build_pipeline()
    try:
        result = pipeline.discover_related_domains(args.domain)
    finally:
        pipeline.close()
    print(json.dumps(result, indent=2))
    return 0


def _cmd_scrape(args: argparse.Namespace) -> int:
    pipeline = build_pipeline()
    try:
        result = pipeline.queue_sources_for_targets(args.emails or None)
    finally:
        pipeline.close()
    print(result["message"])
    return 0


def _cmd_profile(args: argparse.Namespace) -> int:
    pipeline = build_pipeline()
    try:
        if len(args.emails) == 1:
            handle = pipeline.queue_profile_generation(args.emails[0])
            print(f"Profile generation queued for {args.emails[0]} (job {handle.job_id})")
        else:
            print(pipeline.queue_profiles_for_targets(args.emails, args.domain)["message"])
    finally:
        pipeline.close()
    return 0


def _cmd_pretext(args: argparse.Namespace) -> int:
    pipeline = build_pipeline()
    try:
        if len(args.emails) == 1:
            handle = pipeline.queue_pretext_generation(args.emails[0], args.prompt_id)
            print(f"Pretext generation queued for {args.emails[0]} (job {handle.job_id})")
        else:
            result = pipeline.queue_pretexts_for_targets(args.emails, args.prompt_id, args.domain)
            print(result["message"])
    finally:
        pipeline.close()
    return 0


def _cmd_worker(args: argparse.Namespace) -> int:
    run_workers(args.stages or None, burst=args.burst)
    return 0


def _cmd_requeue_failed(args: argparse.Namespace) -> int:
    pipeline = build_pipeline()
    try:
        count = pipeline.queue.requeue_failed(Stage(args.stage))
    finally:
        pipeline.close()
    print(f"Requeued {count} failed {args.stage} job(s)")
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    pipeline = build_pipeline()
    try:
        counts = pipeline.queue.counts() if hasattr(pipeline.queue, "counts") else []
        targets = repo.list_targets(pipeline.store, args.domain)
    finally:
        pipeline.close()

    if args.json:
        print(json.dumps({"queues": counts, "targets": targets}, indent=2, default=str))
        return 0
    print("Recon pipeline - status")
    print("=======================")
    _print_queues(counts)
    _print_targets(targets)
    return 0


def _cmd_delete_target(args: argparse.Namespace) -> int:
    pipeline = build_pipeline()
    try:
        result = admin.delete_target(pipeline.store, pipeline.notifier, args.email)
    finally:
        pipeline.close()
    print(result["message"])
    return 0


def _cmd_pretext_status(args: argparse.Namespace) -> int:
    pipeline = build_pipeline()
    try:
        result = admin.set_pretext_status(
            pipeline.store, pipeline.notifier, args.pretext_id, args.status
        )
    finally:
        pipeline.close()
    print(f"Pretext {result['id']} -> {result['status']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="recon",
        description="Recon pipeline CLI: discovery, scraping, profile and pretext queues.",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    stage_names = [s.value for s in Stage]

    p = sub.add_parser("init-db", help="Create the sqlite schema.")
    p.set_defaults(func=_cmd_init_db)

    p = sub.add_parser("load-prompts", help="Load YAML prompts from the prompt library.")
    p.add_argument("--dir", default=None, help="Library directory (default: PROMPT_LIBRARY_DIR).")
    p.set_defaults(func=_cmd_load_prompts)

    p = sub.add_parser("add-domain", help="Register a domain and queue its DNS lookups.")
    p.add_argument("domain")
    p.set_defaults(func=_cmd_add_domain)

    p = sub.add_parser("recon", help="Discover contacts and sources for a domain.")
    p.add_argument("domain")
    p.add_argument("--scrape", action="store_true", help="Queue discovered sources for scraping.")
    p.set_defaults(func=_cmd_recon)

    p = sub.add_parser("related", help="Find federated domains and queue their DNS lookups.")
    p.add_argument("domain")
    p.set_defaults(func=_cmd_related)

    p = sub.add_parser("scrape", help="Queue unmined sources (all targets if none given).")
    p.add_argument("emails", nargs="*")
    p.set_defaults(func=_cmd_scrape)

    p = sub.add_parser("profile", help="Queue profile generation for enriched targets.")
    p.add_argument("emails", nargs="+")
    p.add_argument("--domain", default=None)
    p.set_defaults(func=_cmd_profile)

    p = sub.add_parser("pretext", help="Queue pretext generation for complete targets.")
    p.add_argument("emails", nargs="+")
    p.add_argument("--prompt-id", type=int, required=True)
    p.add_argument("--domain", default=None)
    p.set_defaults(func=_cmd_pretext)

    p = sub.add_parser("worker", help="Run stage workers (all stages if none given).")
    p.add_argument("stages", nargs="*", metavar="stage", help=", ".join(stage_names))
    p.add_argument("--burst", action="store_true", help="Exit once the queues are empty.")
    p.set_defaults(func=_cmd_worker)

    p = sub.add_parser("requeue-failed", help="Re-enqueue failed jobs of one stage.")
    p.add_argument("stage", choices=stage_names)
    p.set_defaults(func=_cmd_requeue_failed)

    p = sub.add_parser("status", help="Show queue counts and target statuses.")
    p.add_argument("--domain", default=None)
    p.add_argument("--json", action="store_true", help="Emit JSON instead of tables.")
    p.set_defaults(func=_cmd_status)

    p = sub.add_parser("delete-target", help="Delete a target, its mappings and pretexts.")
    p.add_argument("email")
    p.set_defaults(func=_cmd_delete_target)

    p = sub.add_parser("pretext-status", help="Set a pretext's review status.")
    p.add_argument("pretext_id", type=int)
    p.add_argument("status", choices=["draft", "approved", "rejected"])
    p.set_defaults(func=_cmd_pretext_status)

    return parser


def main(argv: list[str] | None = None) -> int:
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    func = getattr(args, "func", None)
    if func is None:
        parser.error("no command specified")
        return 1

    try:
        return int(func(args))
    except (ReconError, ValueError, KeyError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
