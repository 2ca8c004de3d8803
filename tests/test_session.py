"""配置会话测试"""

import asyncio
import random

import pandas as pd
import pytest

from datazones.core.constants import (
    ALL_ZONES,
    ZONE_FILTERS,
    ZONE_GROUP_BY,
    ZONE_METRICS,
    ZONE_PIVOT_COLUMNS,
    ZONE_PIVOT_ROWS,
    ZONE_PIVOT_VALUES,
    ZONE_SORT,
)
from datazones.engines.mode_guard import Mode
from datazones.engines.session import ConfigurationSession, SessionManager
from datazones.engines.store_codec import serialize_store
from datazones.models import PivotHeader, ZoneStore


def test_deferred_mode_switch(catalog):
    """聚合启用时分配到透视行：延后并请求确认，确认后清空聚合再分配"""
    session = ConfigurationSession(catalog)
    session.assign(ZONE_GROUP_BY, "region")
    session.assign(ZONE_METRICS, "sales")
    before = session.store

    result = session.assign(ZONE_PIVOT_ROWS, "country")
    assert not result.ok
    assert result.code == "mode_conflict"
    assert session.store is before
    assert session.pending_switch.target_mode == Mode.PIVOT
    assert session.notices[-1].code == "mode_conflict"

    confirmed = session.confirm_mode_switch()
    assert confirmed.ok
    assert session.pending_switch is None
    assert session.store.group_by == []
    assert session.store.metrics == []
    assert session.store.column_ids(ZONE_PIVOT_ROWS) == ["country"]
    assert session.mode == "pivot"


def test_cancel_mode_switch(catalog):
    session = ConfigurationSession(catalog)
    session.assign(ZONE_GROUP_BY, "region")
    session.assign(ZONE_PIVOT_ROWS, "country")

    session.cancel_mode_switch()
    assert session.pending_switch is None
    assert session.store.column_ids(ZONE_GROUP_BY) == ["region"]
    assert not session.confirm_mode_switch().ok


def test_region_rows_to_values(catalog):
    session = ConfigurationSession(catalog)
    entry = session.assign(ZONE_PIVOT_ROWS, "region").entry

    result = session.move(ZONE_PIVOT_ROWS, ZONE_PIVOT_VALUES, entry.id)
    assert result.ok
    assert session.store.pivot_rows == []
    assert [(v.column_id, v.aggregation_type) for v in session.store.pivot_values] == [("region", "count")]

    session.drag_ended_outside(ZONE_PIVOT_ROWS, entry.id)
    assert len(session.store.pivot_values) == 1


def test_rejections_become_notices(catalog):
    session = ConfigurationSession(catalog)
    for _ in range(5):
        assert session.assign(ZONE_METRICS, "revenue").ok

    result = session.assign(ZONE_METRICS, "revenue")
    assert result.code == "operation_exhausted"
    assert session.notices[-1].message == 'All operations for column "Revenue" already used in Metrics'
    assert len(session.store.metrics) == 5

    assert session.assign(ZONE_SORT, "missing").code == "unknown_column"


def test_filter_condition_editing(catalog):
    session = ConfigurationSession(catalog)
    spec = session.assign(ZONE_FILTERS, "region").entry
    first = spec.conditions[0]

    assert session.update_filter_condition(spec.id, first.id, operator="equals", value=["East"]).ok
    assert session.update_filter_condition(spec.id, first.id, operator="between").code == "invalid_operator"

    added = session.add_filter_condition(spec.id).entry
    assert len(added.conditions) == 2
    assert added.conditions[1].operator == "contains"

    session.remove_filter_condition(spec.id, added.conditions[1].id)
    assert len(session.store.filters[0].conditions) == 1
    assert session.store.filters[0].conditions[0].value == ["East"]

    session.remove_filter_condition(spec.id, first.id)
    assert session.store.filters == []


def test_sort_level_editing(catalog):
    session = ConfigurationSession(catalog)
    for column_id in ("region", "sales", "date"):
        session.assign(ZONE_SORT, column_id)
    session.set_sort_direction("region", "desc")

    session.update_sort_level(0, "date")
    assert session.store.column_ids(ZONE_SORT) == ["date", "sales", "region"]
    assert session.store.sort[2].direction == "desc"

    session.update_sort_level(1, "country")
    assert session.store.column_ids(ZONE_SORT) == ["date", "country", "region"]

    session.move_sort_level(2, "up")
    assert session.store.column_ids(ZONE_SORT) == ["date", "region", "country"]
    session.move_sort_level(0, "up")
    assert session.store.column_ids(ZONE_SORT) == ["date", "region", "country"]


def test_metric_and_value_editing(catalog):
    session = ConfigurationSession(catalog)
    first = session.assign(ZONE_METRICS, "sales").entry
    session.assign(ZONE_METRICS, "sales")

    assert session.update_metric(first.id, type="average").code == "operation_exhausted"
    assert session.update_metric(first.id, type="max", alias=" Peak ").ok
    assert (session.store.metrics[0].type, session.store.metrics[0].alias) == ("max", "Peak")

    session.reset()
    value = session.assign(ZONE_PIVOT_VALUES, "region").entry
    assert session.update_pivot_value(value.id, aggregation_type="sum").code == "operation_not_allowed"


def test_time_unit(catalog):
    session = ConfigurationSession(catalog)
    date_dim = session.assign(ZONE_PIVOT_ROWS, "date").entry
    region_dim = session.assign(ZONE_PIVOT_ROWS, "region").entry

    assert session.set_time_unit(ZONE_PIVOT_ROWS, date_dim.id, "quarter").ok
    assert session.store.pivot_rows[0].time_unit == "quarter"
    assert not session.set_time_unit(ZONE_PIVOT_ROWS, region_dim.id, "month").ok


def test_import_export(catalog):
    session = ConfigurationSession(catalog)
    session.assign(ZONE_PIVOT_ROWS, "country")
    exported = session.export_config()

    other = ConfigurationSession(catalog)
    assert other.import_config(exported).ok
    assert other.store == session.store

    before = other.store
    bad = dict(exported)
    del bad["pivot_values"]
    result = other.import_config(bad)
    assert result.code == "malformed_config"
    assert other.store is before
    assert serialize_store(other.store) == exported


def test_auto_select_after_pivot_mutations(catalog):
    headers = [
        PivotHeader(name="Country"),
        PivotHeader(name="Sum of Sales", type="number", value_id="v1"),
    ]
    session = ConfigurationSession(catalog, schema_provider=lambda: headers)
    session.assign(ZONE_PIVOT_ROWS, "country")
    session.assign(ZONE_PIVOT_VALUES, "sales")

    binding = asyncio.run(session.settle())
    assert binding.x_axis_key == "Country"
    assert [s.data_column for s in binding.series_configs] == ["Sum of Sales"]


def test_auto_select_disabled(catalog):
    session = ConfigurationSession(catalog, schema_provider=lambda: [PivotHeader(name="Country")])
    session.set_auto_select_enabled(False)
    session.assign(ZONE_PIVOT_ROWS, "country")

    binding = asyncio.run(session.settle())
    assert binding.x_axis_key is None


def test_recompute_drives_selection(catalog):
    """关联数据时，透视结果由会话自身重算得到"""
    data = pd.DataFrame(
        [["2024-01-05", "East", "US", 100, 1], ["2024-02-03", "West", "CA", 25, 2]],
        columns=["date", "region", "country", "sales", "revenue"],
    )
    session = ConfigurationSession(catalog, data=data)
    session.assign(ZONE_PIVOT_ROWS, "country")
    session.assign(ZONE_PIVOT_VALUES, "sales")
    asyncio.run(session.settle())

    assert session.binding.x_axis_key == "Country"
    assert [s.name for s in session.binding.series_configs] == ["Sum of Sales"]

    assert session.set_chart_type("pie").ok
    asyncio.run(session.settle())
    assert session.chart.chart_type == "pie"
    assert (session.binding.label_key, session.binding.value_key) == ("Country", "Sum of Sales")

    assert session.set_chart_type("radar").code == "invalid_chart_type"


def test_preview(catalog):
    session = ConfigurationSession(catalog)
    session.assign(ZONE_SORT, "sales")
    assert session.preview().render_text() == "Sort (1 levels)\n  1. Sales (asc)"


def test_session_manager_capacity(catalog):
    manager = SessionManager(max_sessions=2)
    first = manager.create(catalog)
    manager.create(catalog)
    manager.create(catalog)

    assert len(manager.sessions) == 2
    assert first.session_id not in manager.sessions
    assert not first.selector.alive

    with pytest.raises(KeyError):
        manager.get(first.session_id)


def test_invalid_filter_values_rejected(catalog):
    session = ConfigurationSession(catalog)
    sales = session.assign(ZONE_FILTERS, "sales").entry
    date = session.assign(ZONE_FILTERS, "date").entry
    before = session.store

    result = session.update_filter_condition(sales.id, sales.conditions[0].id, value="abc")
    assert result.code == "invalid_value"
    assert session.store is before
    assert session.update_filter_condition(
        date.id, date.conditions[0].id, operator="between", value="2024-01-01", value_end="soon"
    ).code == "invalid_value"

    assert session.update_filter_condition(sales.id, sales.conditions[0].id, value="1,200").ok
    assert session.update_filter_condition(date.id, date.conditions[0].id, operator="after", value="2024-01-31").ok


def test_unusable_filter_abandons_auto_select(catalog):
    """导入的过滤值无法解析时，自动选择静默放弃，不影响后续操作"""
    data = pd.DataFrame(
        [["2024-01-05", "East", "US", 100, 1], ["2024-02-03", "West", "CA", 25, 2]],
        columns=["date", "region", "country", "sales", "revenue"],
    )
    session = ConfigurationSession(catalog, data=data)
    session.assign(ZONE_FILTERS, "sales")
    config = session.export_config()
    config["filters"][0]["conditions"][0]["value"] = "abc"
    assert session.import_config(config).ok

    session.assign(ZONE_PIVOT_ROWS, "country")
    session.assign(ZONE_PIVOT_VALUES, "sales")
    binding = asyncio.run(session.settle())
    assert binding.x_axis_key is None
    assert session._deferred == []

    spec = session.store.filters[0]
    assert session.update_filter_condition(spec.id, spec.conditions[0].id, value="20").ok
    session.set_chart_type("bar")
    assert asyncio.run(session.settle()).x_axis_key == "Country"


def _assert_store_consistent(store):
    revalidated = ZoneStore.model_validate(serialize_store(store))
    assert revalidated == store
    assert not (store.has_aggregation and store.has_pivot)


COLUMN_IDS = ["date", "region", "country", "sales", "revenue"]


def _random_step(session, rng):
    action = rng.choice(["assign", "assign", "assign", "move", "remove", "clear", "confirm", "cancel"])
    if action == "assign":
        session.assign(rng.choice(ALL_ZONES), rng.choice(COLUMN_IDS))
    elif action in ("move", "remove"):
        entries = [(zone, entry.id) for zone in ALL_ZONES for entry in session.store.entries(zone)]
        if not entries:
            return
        zone, entry_id = rng.choice(entries)
        if action == "move":
            session.move(zone, rng.choice(ALL_ZONES), entry_id)
        else:
            session.remove(zone, entry_id)
    elif action == "clear":
        session.clear_zone(rng.choice(ALL_ZONES))
    elif action == "confirm":
        session.confirm_mode_switch()
    else:
        session.cancel_mode_switch()


@pytest.mark.parametrize("seed", range(5))
def test_random_sequences_keep_store_consistent(catalog, seed):
    """任意操作序列后：配置区内无重复列、无重复 (列, 操作)、两种模式不同时启用"""
    rng = random.Random(seed)
    session = ConfigurationSession(catalog)
    for _ in range(200):
        _random_step(session, rng)
        _assert_store_consistent(session.store)


def test_scripted_sequence_keeps_store_consistent(catalog):
    session = ConfigurationSession(catalog)
    steps = [
        lambda: session.assign(ZONE_PIVOT_ROWS, "region"),
        lambda: session.assign(ZONE_PIVOT_VALUES, "region"),
        lambda: session.move(ZONE_PIVOT_VALUES, ZONE_PIVOT_ROWS, session.store.pivot_values[0].id),
        lambda: session.assign(ZONE_METRICS, "sales"),
        lambda: session.confirm_mode_switch(),
        lambda: session.assign(ZONE_METRICS, "sales"),
        lambda: session.assign(ZONE_GROUP_BY, "region"),
        lambda: session.assign(ZONE_PIVOT_COLUMNS, "date"),
        lambda: session.confirm_mode_switch(),
        lambda: session.assign(ZONE_PIVOT_COLUMNS, "date"),
        lambda: session.move(ZONE_PIVOT_COLUMNS, ZONE_PIVOT_VALUES, session.store.pivot_columns[0].id),
        lambda: session.clear_zone(ZONE_PIVOT_VALUES),
    ]
    for step in steps:
        step()
        _assert_store_consistent(session.store)

    assert session.store.is_empty()
    assert session.mode == "neutral"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
