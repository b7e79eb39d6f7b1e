import dataclasses
import os as _os
import sys

import httpx
import pytest

# Ensure project root is importable (so `import vcheck` / `import main` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from vcheck import db  # noqa: E402
from vcheck.config import build_config  # noqa: E402
from vcheck.status import Reading  # noqa: E402

TEMPLATE = "https://probe.example/{effective_tenant}/{effective_env}/version?svc={service_url_param}&region={region_url_param}"


@pytest.fixture(autouse=True)
def isolated_event_log(tmp_path, monkeypatch):
    """Send diagnostic events to a throwaway sqlite file."""
    monkeypatch.setattr(db, "settings", dataclasses.replace(db.settings, db_path=str(tmp_path / "events.db"), enable_events=True))


class FakeSource:
    """Release source answering from a dict; records every lookup."""

    def __init__(self, answers=None, default="v1.0.0"):
        self.answers = dict(answers or {})
        self.default = default
        self.calls = []

    def latest_release(self, repo):
        self.calls.append(repo)
        answer = self.answers.get(repo, self.default)
        return answer if isinstance(answer, Reading) else Reading.version(answer)


@pytest.fixture
def fake_source():
    return FakeSource


def config_dict(targets=None, services=None, ttl=3600, **global_overrides):
    g = {
        "default_curl_timeout_seconds": 2,
        "default_version_jq_query": ".version",
        "service_url_template": TEMPLATE,
        "github_release_cache_ttl_seconds": ttl,
    }
    g.update(global_overrides)
    return {
        "global": g,
        "services_repo_map": services
        or {
            "svcA": {"display_name": "Service A", "repo": "acme/a", "url_param_default": "a"},
            "svcB": {"display_name": "Service B", "repo": "acme/b", "url_param_default": "b"},
        },
        "targets": targets
        or [
            {"name": "a-x-y-eu", "service_key": "svcA", "tenant": "tenantX", "environment": "envY", "region_url_param": "regionEU"},
            {"name": "a-x-y-us", "service_key": "svcA", "tenant": "tenantX", "environment": "envY", "region_url_param": "regionUS"},
        ],
    }


@pytest.fixture
def make_config():
    def _make(**kwargs):
        return build_config(config_dict(**kwargs))

    return _make


def version_client(versions, status_code=200):
    """httpx client whose probe answers come from ``versions`` keyed by (svc, region).

    A value may be a str (returned as {"version": ...}), an httpx.Response,
    or an exception instance to raise.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        key = (request.url.params.get("svc"), request.url.params.get("region"))
        answer = versions.get(key, versions.get(request.url.params.get("svc")))
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, httpx.Response):
            return answer
        if answer is None:
            return httpx.Response(404, text="<html>Not Found</html>")
        return httpx.Response(status_code, json={"version": answer})

    return httpx.Client(transport=httpx.MockTransport(handler))
