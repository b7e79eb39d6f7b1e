from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from .status import REFERENCE_ERRORS, SEVERITY, Comparison, OverallStatus, Reading, ReadingKind
from .versions import compare

_CMP_TO_STATUS = {
    Comparison.EQUAL: OverallStatus.UP_TO_DATE,
    Comparison.AHEAD: OverallStatus.AHEAD,
    Comparison.BEHIND: OverallStatus.OUTDATED,
    Comparison.NON_COMPARABLE: OverallStatus.UNKNOWN_CMP,
}


def classify(deployed: Reading, reference: Reading) -> tuple[Comparison | None, OverallStatus]:
    """Fold upstream failures and the version comparison into one status.

    Reference failures win over probe failures; the comparator only runs when
    both sides produced a version.
    """
    if reference.kind in REFERENCE_ERRORS:
        return None, OverallStatus.GH_ERROR
    if reference.kind is ReadingKind.NO_RELEASES:
        return None, OverallStatus.NO_RELEASES
    if not deployed.ok:
        return None, OverallStatus.SVC_ERROR
    cmp = compare(deployed, reference)
    return cmp, _CMP_TO_STATUS[cmp]


@dataclass(frozen=True)
class ReconciliationResult:
    index: int
    name: str
    service_key: str
    service: str
    tenant: str
    environment: str
    region: str
    url: str
    deployed: Reading
    reference: Reading
    comparison: Comparison | None
    status: OverallStatus

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "service_key": self.service_key,
            "service": self.service,
            "tenant": self.tenant,
            "environment": self.environment,
            "region": self.region,
            "url": self.url,
            "deployed": self.deployed.label,
            "reference": self.reference.label,
            "comparison": self.comparison.value if self.comparison else None,
            "status": self.status.value,
        }


def sort_key(r: ReconciliationResult) -> tuple[int, str, str, str, str, int]:
    return (SEVERITY[r.status], r.tenant, r.environment, r.region, r.service, r.index)


def sort_results(results: Iterable[ReconciliationResult]) -> list[ReconciliationResult]:
    """Most actionable first; ties broken by tenant, env, region, service, then encounter order."""
    return sorted(results, key=sort_key)


def summarize(results: Iterable[ReconciliationResult]) -> dict[str, int]:
    counts = {s.value: 0 for s in OverallStatus}
    for r in results:
        counts[r.status.value] += 1
    return counts


COLUMNS = (
    ("Service", "service"),
    ("Tenant", "tenant"),
    ("Env", "environment"),
    ("Region", "region"),
    ("Target Instance", "name"),
    ("Deployed", "deployed"),
    ("Latest GH", "reference"),
    ("Status", "status"),
)


def render_table(results: list[ReconciliationResult], generated_at: str | None = None) -> str:
    dicts = [r.to_dict() for r in results]
    rows = [[str(d[field]) for _, field in COLUMNS] for d in dicts]
    widths = [len(title) for title, _ in COLUMNS]
    for row in rows:
        widths = [max(w, len(cell)) for w, cell in zip(widths, row)]

    def fmt(cells: list[str]) -> str:
        return " | ".join(c.ljust(w) for c, w in zip(cells, widths)).rstrip()

    lines = []
    if generated_at:
        lines.append(f"--- Service Version Status (Generated: {generated_at}; releases cached, deployed versions live) ---")
    lines += [fmt([title for title, _ in COLUMNS]), "-" * (sum(widths) + 3 * (len(widths) - 1))]
    lines.extend(fmt(row) for row in rows)
    return "\n".join(lines)
