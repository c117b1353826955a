"""CLI entry point for rollerhoops.

Subcommands:
    worker     Poll the run queue and execute discovery runs.
    enqueue    Queue a discovery run.
    status     Show a run and its log.
    init-db    Create the run tables.
    names      Resolve and rank name candidates for an address.
    snmp       Show SNMP system info and interfaces of a device.
    vlans      Show port VLAN assignments of a switch.
    neighbors  Show LLDP/CDP neighbors of a device.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
import threading
import uuid
from pathlib import Path


def _load_config(args: argparse.Namespace):
    """Load discovery config, handling errors."""
    from rollerhoops.config import load_config

    config_path = getattr(args, "config", None)
    try:
        return load_config(config_path)
    except FileNotFoundError:
        path = config_path or "rollerhoops.toml"
        print(f"Error: config file not found: {path}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Error: invalid config: {e}", file=sys.stderr)
        sys.exit(1)


def _open_store(config, require_database: bool = True):
    """Open the configured run store.

    Commands that only make sense against a shared queue refuse to run
    on the in-process memory store.
    """
    from rollerhoops.scheduler.store import open_store

    if require_database and not config.database.url.strip():
        print("Error: [database] url is not set in the config file.", file=sys.stderr)
        sys.exit(1)
    return open_store(config.database.url)


def _format_time(value) -> str:
    return value.isoformat() if value is not None else "-"


def _run_stats(args: argparse.Namespace) -> dict | None:
    """Initial stats for a queued run: its preset and scan tags."""
    from rollerhoops.scheduler.presets import canonicalize_scan_tags

    stats = {}
    if args.preset:
        stats["preset"] = args.preset
    if args.tags:
        stats["tags"] = canonicalize_scan_tags(args.tags)
    return stats or None


# ---------------------------------------------------------------------------
# Subcommand: worker
# ---------------------------------------------------------------------------

def cmd_worker(args: argparse.Namespace) -> int:
    """Poll the run queue and execute discovery runs."""
    config = _load_config(args)

    from rollerhoops.scheduler.facts import JSONFactCache
    from rollerhoops.scheduler.worker import Worker

    store = _open_store(config, require_database=args.scope is None)
    if args.scope is not None:
        run = store.create_run(args.scope or None, _run_stats(args))
        print(f"Queued run {run.id}", file=sys.stderr)

    worker = Worker(
        store,
        config.worker,
        fact_sink=JSONFactCache(Path(config.cache.directory) / "facts.json"),
        verbose=args.verbose,
    )

    if args.once:
        try:
            processed = worker.run_once()
        except Exception as e:
            print(f"Error: discovery run failed: {e}", file=sys.stderr)
            return 1
        if not processed:
            print("No queued runs.", file=sys.stderr)
        return 0

    stop_event = threading.Event()

    def request_stop(signum, _frame):
        print(f"\nReceived signal {signum}, stopping.", file=sys.stderr)
        stop_event.set()

    signal.signal(signal.SIGINT, request_stop)
    signal.signal(signal.SIGTERM, request_stop)
    worker.run(stop_event)
    return 0


# ---------------------------------------------------------------------------
# Subcommand: enqueue
# ---------------------------------------------------------------------------

def cmd_enqueue(args: argparse.Namespace) -> int:
    """Queue a discovery run and print its ID."""
    config = _load_config(args)

    from rollerhoops.scheduler.scope import parse_scope

    try:
        parse_scope(args.scope)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    store = _open_store(config)
    run = store.create_run(args.scope, _run_stats(args))
    print(run.id)
    return 0


# ---------------------------------------------------------------------------
# Subcommand: status
# ---------------------------------------------------------------------------

def cmd_status(args: argparse.Namespace) -> int:
    """Show a run, its stats and its log lines."""
    try:
        run_id = str(uuid.UUID(args.run_id))
    except ValueError:
        print(f"Error: invalid run id: {args.run_id}", file=sys.stderr)
        return 1

    config = _load_config(args)
    store = _open_store(config)

    run = store.get_run(run_id)
    if run is None:
        print(f"Error: run not found: {args.run_id}", file=sys.stderr)
        return 1

    print(f"Run:        {run.id}")
    print(f"Status:     {run.status.value}")
    print(f"Scope:      {run.scope or '(arp table)'}")
    print(f"Started:    {_format_time(run.started_at)}")
    print(f"Completed:  {_format_time(run.completed_at)}")
    if run.last_error:
        print(f"Last error: {run.last_error}")

    if run.stats:
        print()
        print("Stats:")
        for key, value in sorted(run.stats.items()):
            print(f"  {key}: {value}")

    logs = store.list_logs(run.id)
    if logs:
        print()
        print("Log:")
        for log in logs:
            print(f"  {_format_time(log.created_at)} {log.level.value:<5s} {log.message}")
    return 0


# ---------------------------------------------------------------------------
# Subcommand: init-db
# ---------------------------------------------------------------------------

def cmd_init_db(args: argparse.Namespace) -> int:
    """Create the discovery run tables."""
    config = _load_config(args)
    store = _open_store(config)
    store.ensure_schema()
    print("Schema is up to date.")
    return 0


# ---------------------------------------------------------------------------
# Subcommand: names
# ---------------------------------------------------------------------------

def cmd_names(args: argparse.Namespace) -> int:
    """Resolve name candidates for an address and rank them."""
    config = _load_config(args)

    from rollerhoops.derivations.display_name import (
        MIN_DISPLAY_SCORE,
        choose_best_display_name,
        normalize_candidate,
        sort_candidates_for_display,
    )
    from rollerhoops.supplements.names import NameResolver

    resolver = NameResolver()
    try:
        candidates = asyncio.run(
            resolver.lookup_addr(args.address, args.address, timeout=config.worker.name_timeout)
        )
    except ExceptionGroup as eg:
        print(f"Error: {eg.message}", file=sys.stderr)
        for e in eg.exceptions:
            print(f"  {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    finally:
        resolver.shutdown(wait=False)

    if not candidates:
        print(f"No names found for {args.address}.")
        return 0

    chosen = choose_best_display_name(candidates)
    for candidate in sort_candidates_for_display(candidates):
        try:
            normalized = normalize_candidate(candidate.source, candidate.name)
        except ValueError:
            continue
        marker = "*" if chosen is not None and normalized.display_name == chosen else " "
        note = "" if normalized.score >= MIN_DISPLAY_SCORE else "  (below display threshold)"
        print(
            f"{marker} {normalized.score:>3d}  {candidate.source:<12s} "
            f"{normalized.display_name:<24s} {normalized.stored_name}{note}"
        )
    return 0


# ---------------------------------------------------------------------------
# Subcommands: snmp, vlans, neighbors
# ---------------------------------------------------------------------------

def _snmp_client(config):
    from rollerhoops.supplements.snmp import SNMPClient

    return SNMPClient(config.worker.snmp)


def cmd_snmp(args: argparse.Namespace) -> int:
    """Show the system group and interface table of a device."""
    config = _load_config(args)

    from rollerhoops.supplements.snmp_common import SNMPError

    client = _snmp_client(config)

    async def collect():
        system = await client.get_system(args.address)
        interfaces = await client.walk_interfaces(args.address)
        return system, interfaces

    try:
        system, interfaces = asyncio.run(collect())
    except (SNMPError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"sysName:     {system.sys_name or '-'}")
    print(f"sysDescr:    {system.sys_descr or '-'}")
    print(f"sysObjectID: {system.sys_object_id or '-'}")
    print(f"sysContact:  {system.sys_contact or '-'}")
    print(f"sysLocation: {system.sys_location or '-'}")
    print()
    print(f"Interfaces ({len(interfaces)}):")
    for if_index, info in sorted(interfaces.items()):
        speed = f"{info.speed_bps // 1_000_000}M" if info.speed_bps else "-"
        oper = {1: "up", 2: "down"}.get(info.oper_status, "-")
        print(
            f"  {if_index:>5d}  {info.name or '-':<20s} {oper:<5s} {speed:>7s}  "
            f"{info.mac or '-':<17s}  {info.alias or ''}"
        )
    return 0


def cmd_vlans(args: argparse.Namespace) -> int:
    """Show port VLAN (PVID) assignments of a switch."""
    config = _load_config(args)

    from rollerhoops.supplements.bridge import VLANCollector
    from rollerhoops.supplements.snmp_common import SNMPError

    collector = VLANCollector(_snmp_client(config))
    try:
        mappings = asyncio.run(collector.collect(args.address))
    except (SNMPError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not mappings:
        print(f"No port VLANs reported by {args.address}.")
        return 0
    for mapping in mappings:
        print(f"  {mapping.port:<14s} vlan {mapping.vlan}")
    return 0


def cmd_neighbors(args: argparse.Namespace) -> int:
    """Show LLDP and/or CDP neighbors of a device."""
    config = _load_config(args)

    from rollerhoops.supplements.snmp_common import SNMPError

    use_lldp = args.lldp or not args.cdp
    use_cdp = args.cdp or not args.lldp
    client = _snmp_client(config)

    async def collect():
        neighbors = []
        if use_lldp:
            neighbors.extend(await client.walk_lldp_neighbors(args.address))
        if use_cdp:
            neighbors.extend(await client.walk_cdp_neighbors(args.address))
        return neighbors

    try:
        neighbors = asyncio.run(collect())
    except (SNMPError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not neighbors:
        print(f"No neighbors reported by {args.address}.")
        return 0
    for n in neighbors:
        local = str(n.local_if_index) if n.local_if_index is not None else "-"
        print(
            f"  {n.source:<4s} if {local:>5s} -> {n.remote_device_name or '-'} "
            f"port={n.remote_port_name or '-'} chassis={n.remote_chassis_mac or '-'} "
            f"mgmt={n.remote_mgmt_ip or '-'}"
        )
    return 0


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    from rollerhoops.scheduler.presets import SCAN_PRESETS, SCAN_TAGS

    parser = argparse.ArgumentParser(
        prog="rollerhoops",
        description="Discover devices on the local network and enrich them with names, "
                    "SNMP data, VLANs and L2 topology.",
    )
    parser.add_argument(
        "-c", "--config",
        help="Path to rollerhoops.toml (default: ./rollerhoops.toml)",
    )

    subparsers = parser.add_subparsers(dest="command")

    # worker
    worker_parser = subparsers.add_parser("worker", help="Run the discovery worker")
    worker_parser.add_argument(
        "--once", action="store_true",
        help="Process at most one queued run, then exit",
    )
    worker_parser.add_argument(
        "--scope", nargs="?", const="",
        help="Queue a run with this scope before starting (empty for the whole ARP table)",
    )
    worker_parser.add_argument(
        "--preset", choices=SCAN_PRESETS,
        help="Scan preset for the run queued with --scope",
    )
    worker_parser.add_argument(
        "--tag", action="append", choices=SCAN_TAGS, dest="tags",
        help="Scan tag for the run queued with --scope (repeatable)",
    )
    worker_parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Print run progress to stderr",
    )

    # enqueue
    enqueue_parser = subparsers.add_parser("enqueue", help="Queue a discovery run")
    enqueue_parser.add_argument(
        "scope", nargs="?",
        help="CIDR prefix or single IP (default: whole ARP table)",
    )
    enqueue_parser.add_argument(
        "--preset", choices=SCAN_PRESETS,
        help="Scan preset (default: normal)",
    )
    enqueue_parser.add_argument(
        "--tag", action="append", choices=SCAN_TAGS, dest="tags",
        help="Switch on a scan stage for this run (repeatable)",
    )

    # status
    status_parser = subparsers.add_parser("status", help="Show a discovery run")
    status_parser.add_argument("run_id", help="Run ID")

    # init-db
    subparsers.add_parser("init-db", help="Create the discovery run tables")

    # names
    names_parser = subparsers.add_parser("names", help="Resolve name candidates")
    names_parser.add_argument("address", help="IPv4 or IPv6 address")

    # snmp
    snmp_parser = subparsers.add_parser("snmp", help="Show SNMP system info and interfaces")
    snmp_parser.add_argument("address", help="Device address")

    # vlans
    vlans_parser = subparsers.add_parser("vlans", help="Show port VLAN assignments")
    vlans_parser.add_argument("address", help="Switch address")

    # neighbors
    neighbors_parser = subparsers.add_parser("neighbors", help="Show LLDP/CDP neighbors")
    neighbors_parser.add_argument("address", help="Device address")
    neighbors_parser.add_argument("--lldp", action="store_true", help="Only walk LLDP")
    neighbors_parser.add_argument("--cdp", action="store_true", help="Only walk CDP")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "worker": cmd_worker,
        "enqueue": cmd_enqueue,
        "status": cmd_status,
        "init-db": cmd_init_db,
        "names": cmd_names,
        "snmp": cmd_snmp,
        "vlans": cmd_vlans,
        "neighbors": cmd_neighbors,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
