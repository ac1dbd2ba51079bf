"""Tests for condition aggregation."""

from __future__ import annotations

from itertools import combinations

from hostedcp.models.domain.cluster import ConditionType
from hostedcp.models.domain.kubernetes import Condition, ConditionStatus
from hostedcp.services.conditions import (
    aggregate_conditions,
    is_condition_true,
)


def build(true: set[ConditionType]) -> list[Condition]:
    return [
        Condition(
            type=t.value,
            status=(
                ConditionStatus.TRUE if t in true else ConditionStatus.FALSE
            ),
        )
        for t in ConditionType
    ]


def test_all_subsets() -> None:
    types = list(ConditionType)
    for size in range(len(types) + 1):
        for subset in combinations(types, size):
            report = aggregate_conditions(build(set(subset)))
            assert report.ready == (size == len(types))
            assert set(report.failing()) == set(types) - set(subset)


def test_missing_and_unknown() -> None:
    conditions = build(set(ConditionType))
    assert aggregate_conditions(conditions).ready

    missing = [c for c in conditions if c.type != "EtcdAvailable"]
    report = aggregate_conditions(missing)
    assert not report.ready
    assert report.failing() == [ConditionType.ETCD_AVAILABLE]
    assert report.describe() == "conditions not true: EtcdAvailable"

    unknown = [
        c.model_copy(update={"status": ConditionStatus.UNKNOWN})
        if c.type == "Available"
        else c
        for c in conditions
    ]
    report = aggregate_conditions(unknown)
    assert report.failing() == [ConditionType.AVAILABLE]


def test_extra_conditions_ignored() -> None:
    conditions = build(set(ConditionType))
    conditions.append(Condition(type="Degraded", status=ConditionStatus.TRUE))
    conditions.append(Condition(type="Progressing", status="False"))
    report = aggregate_conditions(conditions)
    assert report.ready
    assert report.describe() == "all required conditions true"


def test_no_memory() -> None:
    assert aggregate_conditions(build(set(ConditionType))).ready
    assert not aggregate_conditions([]).ready
    assert aggregate_conditions(build(set(ConditionType))).ready


def test_is_condition_true() -> None:
    conditions = build({ConditionType.AVAILABLE})
    assert is_condition_true(conditions, ConditionType.AVAILABLE)
    assert is_condition_true(conditions, "Available")
    assert not is_condition_true(conditions, ConditionType.ETCD_AVAILABLE)
    assert not is_condition_true(conditions, "SomethingElse")
