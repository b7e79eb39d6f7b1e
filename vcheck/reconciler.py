from __future__ import annotations

import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable

import httpx

from . import db
from .config import CheckConfig
from .probe import DeployedVersionProbe
from .releases import CacheStore, FileCacheStore, ReleaseCache, ReleaseResolver, ReleaseSource, source_from_settings
from .report import ReconciliationResult, classify, sort_results
from .runtime import RunState
from .selector import Filters, RegionMode, WorkItem, select_targets
from .settings import settings
from .status import Reading, ReadingKind


class Reconciler:
    """Reconciles selected targets with a bounded worker pool.

    ``workers == 1`` is sequential processing: one target is fully reconciled
    before the next starts. The main thread only waits, so an interrupt never
    lands inside an in-flight probe.
    """

    def __init__(
        self,
        resolver: ReleaseResolver,
        probe: DeployedVersionProbe,
        workers: int = 1,
        pins: dict[str, str] | None = None,
        state: RunState | None = None,
    ):
        self.resolver = resolver
        self.probe = probe
        self.workers = max(1, int(workers))
        self.pins = dict(pins or {})
        self.state = state or RunState()
        self.interrupted = False

    def _reference(self, item: WorkItem) -> Reading:
        pinned = self.pins.get(item.target.service_key)
        if pinned:
            return Reading.version(pinned)
        return self.resolver.resolve(item.service.repo)

    def _deployed(self, item: WorkItem) -> Reading:
        try:
            return self.probe.probe(item.probe_params)
        except Exception as e:
            db.log_event(
                "ERROR",
                f"Probe for '{item.target.name}' failed: {type(e).__name__}: {e}",
                service_name=item.service.display_name,
            )
            return Reading.failure(ReadingKind.UNAVAILABLE)

    def reconcile_one(self, item: WorkItem) -> ReconciliationResult:
        reference = self._reference(item)
        deployed = self._deployed(item)
        comparison, status = classify(deployed, reference)
        t = item.target
        return ReconciliationResult(
            index=item.index,
            name=t.name,
            service_key=t.service_key,
            service=item.service.display_name,
            tenant=t.tenant,
            environment=t.environment,
            region=t.region_url_param,
            url=self.probe.url_for(item.probe_params),
            deployed=deployed,
            reference=reference,
            comparison=comparison,
            status=status,
        )

    def _run_pool(self, work: list[WorkItem], done: list[ReconciliationResult]) -> None:
        queue = iter(work)
        submitted: list[Future] = []
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="vcheck") as ex:

            def dispatch() -> Future | None:
                item = next(queue, None)
                if item is None or self.state.stop.is_set():
                    return None
                fut = ex.submit(self.reconcile_one, item)
                submitted.append(fut)
                return fut

            in_flight = {f for f in (dispatch() for _ in range(self.workers)) if f is not None}
            try:
                while in_flight:
                    finished, in_flight = wait(in_flight, return_when=FIRST_COMPLETED)
                    for fut in finished:
                        done.append(fut.result())
                        nxt = dispatch()
                        if nxt is not None:
                            in_flight.add(nxt)
            except KeyboardInterrupt:
                # Nothing new is dispatched; in-flight probes finish or time out on their own.
                self.state.stop.set()
                wait(submitted)
                seen = {r.index for r in done}
                for fut in submitted:
                    if fut.exception() is None and fut.result().index not in seen:
                        done.append(fut.result())
                raise

    def run(self, work: list[WorkItem]) -> list[ReconciliationResult]:
        """Reconcile every work item and return the report order.

        On operator interrupt no new work is dispatched and the results
        completed so far are returned with ``interrupted`` set.
        """
        done: list[ReconciliationResult] = []
        db.log_event("INFO", f"Reconciling {len(work)} target(s) with {self.workers} worker(s)")
        try:
            self._run_pool(work, done)
        except KeyboardInterrupt:
            self.interrupted = True
            self.state.stop.set()
            db.log_event("WARN", f"Interrupted after {len(done)} of {len(work)} target(s)")
        return sort_results(done)


def run_check(
    config: CheckConfig,
    filters: Filters | None = None,
    region_mode: RegionMode | str | None = None,
    workers: int | None = None,
    pins: dict[str, str] | None = None,
    source: ReleaseSource | None = None,
    store: CacheStore | None = None,
    clock: Callable[[], float] = time.time,
    client: httpx.Client | None = None,
) -> tuple[list[ReconciliationResult], Reconciler]:
    """Select, reconcile and order results for one run.

    Filters, region mode and pins default to the values in ``config``; explicit
    arguments (CLI flags, API query) override them.
    """
    g = config.global_
    state = RunState()
    work = select_targets(
        config.targets,
        config.services,
        filters if filters is not None else Filters.from_defaults(config.defaults),
        region_mode or config.defaults.region_mode,
        state,
    )

    cache = ReleaseCache(
        store if store is not None else FileCacheStore(settings.cache_dir),
        g.github_release_cache_ttl_seconds,
        clock,
    )
    resolver = ReleaseResolver(source or source_from_settings(), cache)
    probe = DeployedVersionProbe(g.service_url_template, g.default_version_jq_query, g.default_curl_timeout_seconds, client)
    merged_pins = {**config.pinned_versions, **(pins or {})}

    reconciler = Reconciler(resolver, probe, workers=workers or settings.workers or g.max_parallel, pins=merged_pins, state=state)
    results = reconciler.run(work)
    db.log_event("INFO", f"Run finished: {len(results)} result(s)")
    return results, reconciler
