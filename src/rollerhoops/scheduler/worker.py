"""Discovery worker: claim queued runs and execute them.

A run goes through these stages in order:

  1. claim        -- queued -> running (exclusive across workers)
  2. preset       -- adjust limits from stats["preset"] and stats["tags"]
  3. scope        -- parse and size the optional CIDR / IP scope
  4. ping sweep   -- populate the neighbour table for the scope
  5. ARP scrape   -- turn complete ARP entries into targets
  6. enrichment   -- names, SNMP, VLANs, neighbors, tags per target
  7. port scan    -- open TCP ports on allowlisted targets
  8. complete     -- running -> succeeded, with stats

Any failure after the claim marks the run failed with last_error set,
so a claimed run never stays in running. The whole execution shares
one runtime budget (max_runtime).
"""

from __future__ import annotations

import asyncio
import sys
import threading
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from rollerhoops.derivations.device_tags import (
    add_evidence,
    merge_suggestions,
    suggest_from_open_ports,
)
from rollerhoops.models.discovery import LogLevel, RunStatus
from rollerhoops.scheduler.enrichment import EnrichmentStats, Enricher
from rollerhoops.scheduler.facts import DeviceFacts
from rollerhoops.scheduler.portscan import run_port_scan
from rollerhoops.scheduler.presets import (
    apply_scan_preset,
    apply_scan_tags,
    canonicalize_scan_preset,
    canonicalize_scan_tags,
)
from rollerhoops.scheduler.scope import (
    PingSweepResult,
    count_scope_targets,
    parse_scope,
    ping_sweep,
    scrape_arp,
)
from rollerhoops.supplements.names import NameResolver
from rollerhoops.supplements.snmp import SNMPClient

if TYPE_CHECKING:
    from rollerhoops.config import WorkerConfig
    from rollerhoops.models.discovery import DiscoveryRun, ServiceRecord
    from rollerhoops.scheduler.facts import FactSink
    from rollerhoops.scheduler.scope import EnrichmentTarget
    from rollerhoops.scheduler.store import RunStore

MAX_BACKOFF = 10.0
DEFAULT_POLL_INTERVAL = 0.4


class RunCancelled(Exception):
    """The worker was asked to stop while a run was executing."""


class RunFailed(Exception):
    """A run cannot proceed; carries the stats to record with the failure."""

    def __init__(self, message: str, stats: dict | None = None):
        super().__init__(message)
        self.stats = stats or {}


def backoff_duration(base: float, failures: int) -> float:
    """Delay before the next poll after consecutive failures.

    base * 2**failures, with failures capped at 6 and the result at 10s.

    >>> backoff_duration(0.4, 0)
    0.4
    >>> backoff_duration(0.4, 3)
    3.2
    >>> backoff_duration(0.4, 20)
    10.0
    """
    if base <= 0:
        base = DEFAULT_POLL_INTERVAL
    if failures <= 0:
        return base
    return min(base * (1 << min(failures, 6)), MAX_BACKOFF)


class RunBudget:
    """Shared runtime budget and stop signal for one run."""

    def __init__(self, max_runtime: float, stop_event: threading.Event | None = None):
        self.max_runtime = max_runtime
        self.deadline = time.monotonic() + max_runtime
        self.stop_event = stop_event or threading.Event()

    def remaining(self) -> float:
        return max(0.0, self.deadline - time.monotonic())

    def exhausted(self) -> bool:
        return self.stop_event.is_set() or self.remaining() <= 0

    def check(self) -> None:
        """Raise if the worker is stopping or the budget is spent."""
        if self.stop_event.is_set():
            raise RunCancelled("discovery run canceled: worker stopping")
        if self.remaining() <= 0:
            raise TimeoutError(
                f"discovery run exceeded max runtime of {self.max_runtime:g}s"
            )

    def sleep(self, seconds: float) -> None:
        """Sleep up to seconds, waking early on stop or budget exhaustion."""
        self.stop_event.wait(min(seconds, self.remaining()))
        self.check()


def _discovery_method(ping) -> str:
    if ping.attempted > 0 or ping.available:
        return "arp+icmp"
    return "arp"


def merge_services(
    facts: list[DeviceFacts],
    targets: list[EnrichmentTarget],
    services: dict[str, list[ServiceRecord]],
) -> None:
    """Attach scanned services to each device's facts and suggest tags.

    Devices without facts yet (enrichment off or capped) get new entries.
    """
    by_id = {device.device_id: device for device in facts}
    for target in targets:
        found = services.get(target.device_id)
        if not found:
            continue
        device = by_id.get(target.device_id)
        if device is None:
            device = DeviceFacts(device_id=target.device_id, address=target.address, mac=target.mac)
            facts.append(device)
            by_id[target.device_id] = device
        device.services = list(found)
        device.tags = merge_suggestions(
            device.tags,
            add_evidence(suggest_from_open_ports([s.port for s in found]), ip=device.address),
        )


class Worker:
    """Polls a RunStore and executes discovery runs one at a time.

    Args:
        store: Where runs are claimed, completed and logged.
        config: Worker limits; scan presets are applied per run on a copy.
        resolver: Name resolver (default: reverse DNS + mDNS + NetBIOS).
        snmp_client_factory: Builds an SNMPClient from an SNMPConfig.
        fact_sink: Receives each run's per-device facts, if set.
        verbose: Print progress to stderr.
    """

    def __init__(
        self,
        store: RunStore,
        config: WorkerConfig,
        resolver: NameResolver | None = None,
        snmp_client_factory=SNMPClient,
        fact_sink: FactSink | None = None,
        verbose: bool = False,
    ):
        self.store = store
        self.config = config
        self.resolver = resolver or NameResolver()
        self.snmp_client_factory = snmp_client_factory
        self.fact_sink = fact_sink
        self.verbose = verbose

    def _log(self, run_id: str, level: LogLevel, message: str) -> None:
        if self.verbose:
            print(f"[{run_id[:8]}] {level.value}: {message}", file=sys.stderr)
        try:
            self.store.append_log(run_id, level, message)
        except Exception as e:
            print(f"Warning: failed to write run log for {run_id}: {e}", file=sys.stderr)

    def run(self, stop_event: threading.Event) -> None:
        """Poll for runs until stop_event is set.

        Queued runs are drained back to back; after a failure the next
        poll is delayed by backoff_duration.
        """
        failures = 0
        delay = self.config.poll_interval
        while not stop_event.wait(delay):
            while not stop_event.is_set():
                try:
                    processed = self.run_once(stop_event)
                except Exception as e:
                    failures += 1
                    print(f"Warning: discovery worker: {e}", file=sys.stderr)
                    break
                failures = 0
                if not processed:
                    break
            delay = backoff_duration(self.config.poll_interval, failures)

    def run_once(self, stop_event: threading.Event | None = None) -> bool:
        """Claim and execute at most one run.

        Returns:
            False if nothing was queued, True if a run was processed
            successfully.

        Raises:
            Exception: Whatever made the run fail, after the run has been
                marked failed. Store errors from the claim propagate as-is.
        """
        run = self.store.claim_next_run({"stage": "running"})
        if run is None:
            return False

        preset = canonicalize_scan_preset(run.stats.get("preset"))
        tags = canonicalize_scan_tags(run.stats.get("tags"))
        config = apply_scan_tags(apply_scan_preset(self.config, preset), tags)
        budget = RunBudget(config.max_runtime, stop_event)

        self._log(run.id, LogLevel.INFO, "discovery run started")
        self._log(run.id, LogLevel.INFO, f"scan preset: {preset}")
        if tags:
            self._log(run.id, LogLevel.INFO, f"scan tags: {','.join(tags)}")

        try:
            stats = self._execute(run, config, preset, tags, budget)
            completed = self.store.complete_run(
                run.id, RunStatus.SUCCEEDED, stats, datetime.now(timezone.utc), None,
            )
            if completed is None:
                raise RunFailed(f"run {run.id} was no longer running at completion")
        except RunFailed as e:
            self.fail_run(run.id, str(e), config, e.stats)
            raise
        except Exception as e:
            self.fail_run(run.id, str(e) or type(e).__name__, config, {
                "scope": run.scope.strip() if run.scope and run.scope.strip() else None,
            })
            raise

        self._log(run.id, LogLevel.INFO, "discovery run completed")
        return True

    def _execute(
        self,
        run: DiscoveryRun,
        config: WorkerConfig,
        preset: str,
        tags: list[str],
        budget: RunBudget,
    ) -> dict:
        if config.run_delay > 0:
            budget.sleep(config.run_delay)

        try:
            network = parse_scope(run.scope)
        except ValueError as e:
            self._log(run.id, LogLevel.ERROR, f"invalid discovery scope: {e}")
            raise RunFailed("invalid discovery scope", {"scope": run.scope}) from e
        scope_str = str(network) if network is not None else None

        ping = PingSweepResult()
        scope_targets = 0
        if network is not None:
            try:
                scope_targets = count_scope_targets(network, config.max_targets)
            except ValueError as e:
                self._log(run.id, LogLevel.ERROR, str(e))
                raise RunFailed(str(e), {"scope": scope_str}) from e
            self._log(
                run.id, LogLevel.INFO,
                f"scope targets: {scope_targets} (max={config.max_targets})",
            )

            ping = ping_sweep(
                network,
                config.max_targets,
                config.ping_timeout,
                config.ping_workers,
                should_stop=budget.exhausted,
            )
            budget.check()
            if ping.attempted > 0:
                self._log(
                    run.id, LogLevel.INFO,
                    f"ping sweep: attempted={ping.attempted} succeeded={ping.succeeded}",
                )

        arp_entries, targets = scrape_arp(config.arp_table_path, network)
        self._log(
            run.id, LogLevel.INFO,
            f"arp scrape: entries={arp_entries} devices_seen={len(targets)}",
        )
        budget.check()

        facts: list[DeviceFacts] = []
        try:
            enrichment = self._run_enrichment(run, config, targets, budget, scope_str, facts)
            if enrichment is not None:
                self._log(
                    run.id, LogLevel.INFO,
                    "enrichment: targets={targets} snmp_ok={snmp_ok} names={names_written} "
                    "vlans={vlans_written} links={links_written}".format(**enrichment),
                )
            port_scan = self._run_port_scan(run, config, targets, budget, scope_str, facts)
        finally:
            self._record_facts(run.id, facts)

        stats = {
            "stage": "completed",
            "preset": preset,
            "method": _discovery_method(ping),
            "scope": scope_str,
            "scope_targets": scope_targets,
            "max_targets": config.max_targets,
            "runtime_budget_ms": int(config.max_runtime * 1000),
            "ping_available": ping.available,
            "ping_attempted": ping.attempted,
            "ping_succeeded": ping.succeeded,
            "arp_entries": arp_entries,
            "devices_seen": len(targets),
        }
        if tags:
            stats["tags"] = tags
        if enrichment is not None:
            stats["enrichment"] = enrichment
        if port_scan is not None:
            stats["port_scan"] = port_scan
        return stats

    def _run_enrichment(self, run, config, targets, budget, scope_str, facts) -> dict | None:
        """Enrich targets within the remaining budget, appending to facts.

        Returns the enrichment stats, or None when enrichment is off.

        Raises:
            RunFailed: If the budget ran out or the worker is stopping;
                the failure stats carry the partial enrichment counters.
        """
        snmp_client = self.snmp_client_factory(config.snmp) if config.snmp.enabled else None
        resolver = self.resolver if config.name_resolution else None
        enricher = Enricher(config, resolver, snmp_client, verbose=self.verbose)
        if not enricher.enabled:
            return None

        stats = EnrichmentStats()
        try:
            asyncio.run(self._enrich_within_budget(enricher, targets, stats, facts, budget))
        except (RunCancelled, TimeoutError) as e:
            stats.canceled = True
            raise RunFailed(str(e), {
                "scope": scope_str,
                "enrichment": stats.as_dict(),
            }) from e
        finally:
            if resolver is not None:
                # Name lookups stuck in the OS resolver must not hold up the run.
                resolver.shutdown(wait=False)
        return stats.as_dict()

    async def _enrich_within_budget(self, enricher, targets, stats, facts, budget) -> None:
        work = asyncio.ensure_future(enricher.enrich_targets(targets, stats, facts))
        stop_watch = asyncio.ensure_future(self._wait_for_stop(budget))
        done, pending = await asyncio.wait(
            {work, stop_watch},
            timeout=budget.remaining(),
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        if work in done:
            work.result()
            return
        budget.check()
        # Budget boundary reached between the wait and the check.
        raise TimeoutError(f"discovery run exceeded max runtime of {budget.max_runtime:g}s")

    @staticmethod
    async def _wait_for_stop(budget: RunBudget) -> None:
        while not budget.stop_event.is_set():
            await asyncio.sleep(0.05)

    def _run_port_scan(self, run, config, targets, budget, scope_str, facts) -> dict | None:
        """Scan open TCP ports and attach them, with port-derived tags, to facts.

        Returns the port scan stats, or None when port scanning is off.

        Raises:
            RunFailed: If the budget ran out or the worker is stopping.
        """
        if not config.port_scan.enabled or not targets:
            return None

        def on_error(address: str, error: Exception) -> None:
            self._log(run.id, LogLevel.WARN, f"port scan {address}: {error}")

        result = run_port_scan(
            targets, config.port_scan, should_stop=budget.exhausted, on_error=on_error,
        )
        if result.skipped_reason is not None:
            self._log(run.id, LogLevel.INFO, f"port scan skipped: {result.skipped_reason}")
            return result.as_dict()

        self._log(
            run.id, LogLevel.INFO,
            f"port scan: targets={result.targets} attempted={result.attempted} "
            f"succeeded={result.succeeded} services={result.services_written}",
        )
        merge_services(facts, targets, result.services)
        try:
            budget.check()
        except (RunCancelled, TimeoutError) as e:
            result.canceled = True
            raise RunFailed(str(e), {
                "scope": scope_str,
                "port_scan": result.as_dict(),
            }) from e
        return result.as_dict()

    def _record_facts(self, run_id: str, facts: list[DeviceFacts]) -> None:
        if self.fact_sink is None or not facts:
            return
        try:
            self.fact_sink.record_facts(run_id, facts)
        except (OSError, ValueError) as e:
            self._log(run_id, LogLevel.WARN, f"failed to record device facts: {e}")

    def fail_run(
        self,
        run_id: str,
        message: str,
        config: WorkerConfig | None = None,
        stats: dict | None = None,
    ) -> None:
        """Mark a running run failed and log why.

        Store errors are reported on stderr; the original failure is what
        the caller propagates.
        """
        config = config or self.config
        stats = dict(stats or {})
        stats.update({
            "stage": "failed",
            "max_targets": config.max_targets,
            "runtime_budget_ms": int(config.max_runtime * 1000),
            "ping_timeout_ms": int(config.ping_timeout * 1000),
            "ping_workers": config.ping_workers,
        })
        try:
            self.store.complete_run(
                run_id, RunStatus.FAILED, stats, datetime.now(timezone.utc), message,
            )
        except Exception as e:
            print(f"Warning: failed to mark run {run_id} failed: {e}", file=sys.stderr)
            return
        self._log(run_id, LogLevel.ERROR, f"discovery run failed: {message}")
