"""HTTP surface of the version checker.

GET /report runs one reconciliation with the configured targets and returns
the ordered results; every request is an independent run with its own
in-memory release cache (the on-disk cache is shared).
"""
from __future__ import annotations

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query

from vcheck import db
from vcheck.api_models import EventModel, ReportResponse
from vcheck.config import REGION_MODES, CheckConfig, ConfigError, load_config, parse_selection
from vcheck.reconciler import run_check
from vcheck.releases import CacheStore, FileCacheStore, ReleaseSource, source_from_settings
from vcheck.report import summarize
from vcheck.selector import Filters
from vcheck.settings import settings

app = FastAPI(title="Fleet Version Checker")


def get_config() -> CheckConfig:
    try:
        return load_config(settings.config_path)
    except ConfigError as e:
        raise HTTPException(status_code=500, detail=str(e))


def get_release_source() -> ReleaseSource:
    return source_from_settings()


def get_cache_store() -> CacheStore:
    return FileCacheStore(settings.cache_dir)


def get_probe_client() -> httpx.Client | None:
    return None


@app.on_event("startup")
def _startup() -> None:
    if settings.enable_events:
        db.init_db()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "healthy"}


def _selection(values: list[str] | None, default: object) -> frozenset[str] | None:
    try:
        return parse_selection(values if values else default)
    except ConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))


@app.get("/report", response_model=ReportResponse)
def report(
    tenant: list[str] | None = Query(None),
    env: list[str] | None = Query(None),
    service: list[str] | None = Query(None),
    region_mode: str | None = Query(None, description="off|all|primary|secondary"),
    config: CheckConfig = Depends(get_config),
    source: ReleaseSource = Depends(get_release_source),
    store: CacheStore = Depends(get_cache_store),
    client: httpx.Client | None = Depends(get_probe_client),
):
    if region_mode is not None and region_mode not in REGION_MODES:
        raise HTTPException(status_code=422, detail=f"region_mode must be one of {', '.join(REGION_MODES)}")

    d = config.defaults
    filters = Filters(
        tenants=_selection(tenant, d.tenants),
        environments=_selection(env, d.environments),
        services=_selection(service, d.services),
    )
    mode = region_mode or d.region_mode
    results, reconciler = run_check(config, filters, mode, source=source, store=store, client=client)
    return {
        "generated_at": db.utc_now(),
        "region_mode": mode,
        "interrupted": reconciler.interrupted,
        "summary": summarize(results),
        "results": [r.to_dict() for r in results],
    }


@app.get("/events", response_model=list[EventModel])
def events(limit: int = Query(100, ge=1, le=1000)):
    return db.latest_events(limit)
