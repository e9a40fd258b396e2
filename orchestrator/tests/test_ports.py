import itertools

import pytest

from common.errors import ConfigError
from orchestrator.models import Component
from orchestrator.ports import allocate, startup_order


def _c(name, orchestrated=True, prerequisite=False, port=None):
    return Component(name=name, orchestrated=orchestrated, prerequisite=prerequisite, port=port)


SCENARIO = [_c("dependency-controller", prerequisite=True), _c("api-gateway"), _c("vpc-controller")]


def test_scenario_allocation():
    assert allocate(SCENARIO, 10350) == {
        "dependency-controller": 10350,
        "api-gateway": 10351,
        "vpc-controller": 10352,
    }


def test_allocation_is_idempotent():
    assert allocate(SCENARIO, 10350) == allocate(SCENARIO, 10350)
    assert list(allocate(SCENARIO, 10350)) == list(allocate(SCENARIO, 10350))


@pytest.mark.parametrize("order", list(itertools.permutations(range(4))))
def test_prerequisite_always_gets_base_port(order):
    components = [_c("dependency-controller", prerequisite=True), _c("a"), _c("b"), _c("c")]
    ordered = [components[i] for i in order]
    allocation = allocate(ordered, 20000)
    assert allocation["dependency-controller"] == 20000
    others = [allocation[c.name] for c in ordered if not c.prerequisite]
    assert others == sorted(others)
    assert len(set(allocation.values())) == len(allocation)
    assert others[0] == 20001


def test_without_prerequisite_declaration_order_is_kept():
    assert allocate([_c("b"), _c("a")], 9000) == {"b": 9000, "a": 9001}


def test_non_orchestrated_components_get_no_port():
    components = [_c("tool", orchestrated=False), _c("api-gateway")]
    assert allocate(components, 10350) == {"api-gateway": 10350}


def test_non_orchestrated_prerequisite_does_not_take_base_port():
    components = [_c("dependency-controller", orchestrated=False, prerequisite=True), _c("api-gateway")]
    assert allocate(components, 10350) == {"api-gateway": 10350}


def test_declared_port_is_overridden():
    components = [_c("api-gateway", port=9999)]
    assert allocate(components, 10350) == {"api-gateway": 10350}


def test_startup_order_puts_prerequisite_first():
    components = [_c("api-gateway"), _c("vpc-controller"), _c("dependency-controller", prerequisite=True)]
    assert [c.name for c in startup_order(components)] == ["dependency-controller", "api-gateway", "vpc-controller"]


def test_range_overflow_is_config_error():
    with pytest.raises(ConfigError):
        allocate(SCENARIO, 65534)


def test_empty_list_allocates_nothing():
    assert allocate([], 10350) == {}
