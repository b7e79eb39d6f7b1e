import pytest

from vcheck import db
from vcheck.config import Target
from vcheck.runtime import RunState
from vcheck.selector import Filters, RegionMode, select_targets


def _t(name, svc="svcA", tenant="tenantX", env="envY", region=""):
    return Target(name=name, service_key=svc, tenant=tenant, environment=env, region_url_param=region)


@pytest.fixture
def services(make_config):
    return make_config().services


@pytest.fixture
def eu_us():
    return [_t("eu", region="regionEU"), _t("us", region="regionUS")]


def _names(items):
    return [i.target.name for i in items]


def test_primary_secondary_all_off(services, eu_us):
    assert _names(select_targets(eu_us, services, Filters(), RegionMode.PRIMARY)) == ["eu"]
    assert _names(select_targets(eu_us, services, Filters(), RegionMode.SECONDARY)) == ["us"]
    assert _names(select_targets(eu_us, services, Filters(), RegionMode.ALL)) == ["eu", "us"]
    assert _names(select_targets(eu_us, services, Filters(), RegionMode.OFF)) == ["eu"]


def test_off_keeps_only_first_of_three(services):
    targets = [_t("one", region="r1"), _t("two", region="r2"), _t("three", region="r3")]
    items = select_targets(targets, services, Filters(), "off")
    assert _names(items) == ["one"]
    # region is kept for reporting but not put into the probe URL
    assert items[0].target.region_url_param == "r1"
    assert items[0].probe_params.region_url_param == ""


def test_primary_keeps_region_in_probe(services, eu_us):
    items = select_targets(eu_us, services, Filters(), "primary")
    assert items[0].probe_params.region_url_param == "regionEU"


def test_secondary_with_single_instance_selects_nothing(services):
    assert select_targets([_t("only", region="eu")], services, Filters(), "secondary") == []


def test_selection_follows_declaration_order(services, eu_us):
    reordered = list(reversed(eu_us))
    assert _names(select_targets(reordered, services, Filters(), "primary")) == ["us"]
    assert _names(select_targets(reordered, services, Filters(), "secondary")) == ["eu"]


def test_groups_are_keyed_by_service_tenant_env(services):
    targets = [
        _t("a1", tenant="t1"),
        _t("a2", tenant="t2"),
        _t("b1", svc="svcB", tenant="t1"),
        _t("a1-second", tenant="t1"),
        _t("prod", tenant="t1", env="prod"),
    ]
    assert _names(select_targets(targets, services, Filters(), "primary")) == ["a1", "a2", "b1", "prod"]
    assert _names(select_targets(targets, services, Filters(), "secondary")) == ["a1-second"]


def test_filters_must_all_match(services):
    targets = [
        _t("keep", tenant="t1", env="prod"),
        _t("wrong-tenant", tenant="t2", env="prod"),
        _t("wrong-env", tenant="t1", env="dev"),
        _t("wrong-svc", svc="svcB", tenant="t1", env="prod"),
    ]
    filters = Filters(tenants=frozenset({"t1"}), environments=frozenset({"prod"}), services=frozenset({"svcA"}))
    assert _names(select_targets(targets, services, filters, "all")) == ["keep"]


def test_filtered_out_targets_do_not_count_as_instances(services):
    targets = [_t("dev-first", env="dev"), _t("prod-first", env="prod"), _t("prod-second", env="prod")]
    filters = Filters(environments=frozenset({"prod"}))
    assert _names(select_targets(targets, services, filters, "secondary")) == ["prod-second"]


def test_unknown_service_is_dropped_with_diagnostic(services):
    targets = [_t("ghost", svc="nope"), _t("real")]
    items = select_targets(targets, services, Filters(), "all")
    assert _names(items) == ["real"]
    assert items[0].index == 0
    events = db.latest_events(10)
    assert any("unknown service key 'nope'" in e["message"] for e in events)


def test_service_url_override_wins(services):
    t = Target(name="o", service_key="svcA", tenant="x", environment="y", service_url_param_override="custom")
    items = select_targets([t, _t("d", tenant="z")], services, Filters(), "all")
    assert items[0].probe_params.service_url_param == "custom"
    assert items[1].probe_params.service_url_param == "a"


def test_counters_live_in_run_state(services, eu_us):
    state = RunState()
    select_targets(eu_us, services, Filters(), "all", state)
    assert state.selection_counts == {("svcA", "tenantX", "envY"): 2}


def test_selection_is_reproducible(services, eu_us):
    first = select_targets(eu_us, services, Filters(), "secondary")
    second = select_targets(eu_us, services, Filters(), "secondary")
    assert first == second
