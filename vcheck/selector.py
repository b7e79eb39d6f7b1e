from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping

from . import db
from .config import FilterDefaults, ServiceDescriptor, Target, UnknownServiceError, lookup_service, parse_selection
from .probe import ProbeParams
from .runtime import RunState


class RegionMode(str, Enum):
    OFF = "off"  # first instance per key, region left out of the probe URL
    ALL = "all"
    PRIMARY = "primary"  # 1st declared instance per key
    SECONDARY = "secondary"  # 2nd declared instance per key


@dataclass(frozen=True)
class Filters:
    """None means "all"; otherwise a non-empty set of accepted values."""

    tenants: frozenset[str] | None = None
    environments: frozenset[str] | None = None
    services: frozenset[str] | None = None

    @classmethod
    def from_defaults(cls, defaults: FilterDefaults) -> "Filters":
        return cls(
            tenants=parse_selection(defaults.tenants),
            environments=parse_selection(defaults.environments),
            services=parse_selection(defaults.services),
        )

    def matches(self, t: Target) -> bool:
        return (
            (self.tenants is None or t.tenant in self.tenants)
            and (self.environments is None or t.environment in self.environments)
            and (self.services is None or t.service_key in self.services)
        )


@dataclass(frozen=True)
class WorkItem:
    index: int
    target: Target
    service: ServiceDescriptor
    probe_params: ProbeParams


def _wanted(mode: RegionMode, ordinal: int) -> bool:
    if mode is RegionMode.ALL:
        return True
    if mode is RegionMode.SECONDARY:
        return ordinal == 2
    # OFF and PRIMARY both keep the first declared instance.
    return ordinal == 1


def select_targets(
    targets: Iterable[Target],
    services: Mapping[str, ServiceDescriptor],
    filters: Filters,
    region_mode: RegionMode | str = RegionMode.OFF,
    state: RunState | None = None,
) -> list[WorkItem]:
    """Pick the targets to reconcile, in declaration order.

    Primary/secondary are defined purely by declaration order within a
    (service key, tenant, environment) group, so reordering the config changes
    which instance is chosen.
    """
    mode = RegionMode(region_mode)
    state = state or RunState()
    selected: list[WorkItem] = []

    for t in targets:
        if not filters.matches(t):
            continue
        try:
            svc = lookup_service(services, t.service_key)
        except UnknownServiceError:
            db.log_event("WARN", f"Target '{t.name}' references unknown service key '{t.service_key}'; skipped")
            continue

        ordinal = state.next_ordinal((t.service_key, t.tenant, t.environment))
        if not _wanted(mode, ordinal):
            continue

        params = ProbeParams(
            service_url_param=t.service_url_param_override or svc.url_param_default,
            region_url_param="" if mode is RegionMode.OFF else t.region_url_param,
            tenant=t.tenant,
            environment=t.environment,
        )
        selected.append(WorkItem(index=len(selected), target=t, service=svc, probe_params=params))

    return selected
