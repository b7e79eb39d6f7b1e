import importlib.util
import os

import pytest
from fastapi.testclient import TestClient

from vcheck.config import build_config
from vcheck.releases import MemoryCacheStore
from vcheck.status import Reading, ReadingKind

from conftest import FakeSource, config_dict, version_client


def _import_main_module(project_root):
    """Import main.py as a module without requiring it to be installed as a package."""
    main_path = os.path.join(project_root, "main.py")
    spec = importlib.util.spec_from_file_location("vcheck_main", main_path)
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)  # type: ignore[attr-defined]
    return mod


@pytest.fixture
def api():
    project_root = os.path.dirname(os.path.dirname(__file__))
    main = _import_main_module(project_root)

    data = config_dict()
    data["targets"].append({"name": "b-x-y", "service_key": "svcB", "tenant": "tenantX", "environment": "envY"})
    config = build_config(data)
    source = FakeSource({"acme/a": "v2.0.0", "acme/b": Reading.failure(ReadingKind.NOT_FOUND)})

    main.app.dependency_overrides[main.get_config] = lambda: config
    main.app.dependency_overrides[main.get_release_source] = lambda: source
    main.app.dependency_overrides[main.get_cache_store] = MemoryCacheStore
    main.app.dependency_overrides[main.get_probe_client] = lambda: version_client(
        {("a", "regionEU"): "2.0.0", ("a", "regionUS"): "1.0.0", "b": "1.0.0"}
    )
    with TestClient(main.app) as client:
        yield client
    main.app.dependency_overrides.clear()


def test_health(api):
    r = api.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "healthy"


def test_report_orders_most_actionable_first(api):
    r = api.get("/report", params={"region_mode": "all"})
    assert r.status_code == 200
    body = r.json()
    assert body["region_mode"] == "all"
    assert [row["status"] for row in body["results"]] == ["GH_ERROR", "OUTDATED", "UP_TO_DATE"]
    assert body["results"][0]["reference"] == "ERR_GH_NOT_FOUND"
    assert body["summary"]["OUTDATED"] == 1


def test_report_filters_and_secondary_mode(api):
    r = api.get("/report", params={"service": "svcA", "region_mode": "secondary"})
    body = r.json()
    assert [row["name"] for row in body["results"]] == ["a-x-y-us"]
    assert body["results"][0]["url"].endswith("region=regionUS")


def test_report_rejects_unknown_region_mode(api):
    assert api.get("/report", params={"region_mode": "sideways"}).status_code == 422


def test_events_endpoint(api):
    api.get("/report")
    r = api.get("/events", params={"limit": 5})
    assert r.status_code == 200
    assert any("Run finished" in e["message"] for e in r.json())
