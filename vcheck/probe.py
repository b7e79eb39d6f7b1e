from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

import httpx

from .status import Reading, ReadingKind

_TOKEN_RE = re.compile(r'\.([A-Za-z_][\w-]*)|\."([^"]+)"|\[(\d+)\]|\["([^"]+)"\]')
_HTML_RE = re.compile(r"<html|<head|error", re.IGNORECASE)


def parse_query(query: str) -> list[list[str | int]]:
    """Compile a jq-style extraction query.

    Supported: ``.``, ``.a.b``, ``.a[0]``, ``."dashed-key"``, ``.["k"]`` and
    ``//`` alternatives (``.version // .build.version``).
    """
    alternatives: list[list[str | int]] = []
    for part in query.split("//"):
        part = part.strip()
        if not part.startswith("."):
            raise ValueError(f"Unsupported extraction query: {query!r}")
        path: list[str | int] = []
        pos = 1 if part == "." else 0
        while pos < len(part):
            m = _TOKEN_RE.match(part, pos)
            if not m:
                raise ValueError(f"Unsupported extraction query: {query!r}")
            name, quoted, index, bracketed = m.groups()
            if index is not None:
                path.append(int(index))
            else:
                path.append(name or quoted or bracketed)
            pos = m.end()
        alternatives.append(path)
    return alternatives


def _walk(data: Any, path: list[str | int]) -> Any:
    cur = data
    for step in path:
        if isinstance(step, int):
            if not isinstance(cur, list) or step >= len(cur):
                return None
            cur = cur[step]
        else:
            if not isinstance(cur, dict):
                return None
            cur = cur.get(step)
        if cur is None:
            return None
    return cur


def extract(data: Any, query: str | list[list[str | int]]) -> str | None:
    """Return the first scalar the query yields, as text, or None."""
    compiled = parse_query(query) if isinstance(query, str) else query
    for path in compiled:
        value = _walk(data, path)
        if value is None or isinstance(value, (bool, dict, list)):
            continue
        text = str(value).strip()
        if text and text != "null":
            return text
    return None


@dataclass(frozen=True)
class ProbeParams:
    service_url_param: str
    region_url_param: str
    tenant: str
    environment: str


def build_url(template: str, params: ProbeParams) -> str:
    return (
        template.replace("{service_url_param}", params.service_url_param)
        .replace("{region_url_param}", params.region_url_param)
        .replace("{effective_tenant}", params.tenant)
        .replace("{effective_env}", params.environment)
    )


def classify_body(text: str, query: str | list[list[str | int]]) -> Reading:
    """Turn a fetched body into a version or a typed failure."""
    try:
        data = json.loads(text)
    except ValueError:
        data = None

    version = extract(data, query) if data is not None else None
    if version:
        return Reading.version(version)

    if isinstance(data, dict):
        code = extract(data, ".statusCode // .status")
        if code:
            return Reading.failure(ReadingKind.HTTP_STATUS, code)

    if _HTML_RE.search(text or ""):
        return Reading.failure(ReadingKind.HTML_RESPONSE)
    return Reading.failure(ReadingKind.PARSE_ERROR)


class DeployedVersionProbe:
    """Fetch the live version of one target. Never cached, never retried."""

    def __init__(self, url_template: str, query: str, timeout_s: float, client: httpx.Client | None = None):
        self.url_template = url_template
        self.query = parse_query(query)
        self.timeout_s = timeout_s
        self._client = client

    def url_for(self, params: ProbeParams) -> str:
        return build_url(self.url_template, params)

    def probe(self, params: ProbeParams) -> Reading:
        url = self.url_for(params)
        try:
            if self._client is not None:
                resp = self._client.get(url, timeout=self.timeout_s, follow_redirects=True)
            else:
                with httpx.Client(timeout=self.timeout_s, follow_redirects=True) as client:
                    resp = client.get(url)
        except httpx.TimeoutException:
            return Reading.failure(ReadingKind.TIMEOUT)
        except (httpx.RequestError, httpx.InvalidURL) as e:
            return Reading.failure(ReadingKind.TRANSPORT_ERROR, type(e).__name__)
        # The HTTP status line is not consulted: bodies carry their own status.
        return classify_body(resp.text, self.query)
