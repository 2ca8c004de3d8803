"""配置区移动测试"""

import pytest

from datazones.core.constants import (
    ZONE_FILTERS,
    ZONE_PIVOT_COLUMNS,
    ZONE_PIVOT_ROWS,
    ZONE_PIVOT_VALUES,
)
from datazones.core.errors import ZoneRejection
from datazones.engines.assignment_validator import AssignmentValidator
from datazones.engines.zone_transfer import ZoneTransferCoordinator
from datazones.models import ZoneStore


def _assign(store, zone, column):
    return store.append(zone, AssignmentValidator().try_assign(zone, column, store))


def test_dimension_to_values_rederives_operation(catalog):
    """Region 从 Rows 拖到 Values：Rows 清空，Values 得到 count"""
    store = _assign(ZoneStore(), ZONE_PIVOT_ROWS, catalog.require("region"))
    coordinator = ZoneTransferCoordinator(catalog=catalog)

    result = coordinator.move_entry(store, ZONE_PIVOT_ROWS, ZONE_PIVOT_VALUES, store.pivot_rows[0].id)

    assert result.handled
    assert result.store.pivot_rows == []
    assert len(result.store.pivot_values) == 1
    assert result.store.pivot_values[0].column_id == "region"
    assert result.store.pivot_values[0].aggregation_type == "count"


def test_move_and_back_restores_semantics(catalog):
    """移动后再移回，列和操作保持一致"""
    store = _assign(ZoneStore(), ZONE_PIVOT_VALUES, catalog.require("sales"))
    original = store.pivot_values[0]
    coordinator = ZoneTransferCoordinator(catalog=catalog)

    moved = coordinator.move_entry(store, ZONE_PIVOT_VALUES, ZONE_PIVOT_ROWS, original.id)
    assert moved.store.pivot_rows[0].column_type == "number"

    back = coordinator.move_entry(moved.store, ZONE_PIVOT_ROWS, ZONE_PIVOT_VALUES, moved.entry.id)
    restored = back.store.pivot_values[0]
    assert (restored.column_id, restored.aggregation_type) == (original.column_id, original.aggregation_type)


def test_rejected_move_keeps_source(catalog):
    """目标区已有该列：拒绝，源条目保留"""
    store = _assign(ZoneStore(), ZONE_PIVOT_ROWS, catalog.require("region"))
    store = _assign(store, ZONE_PIVOT_COLUMNS, catalog.require("region"))
    entry = store.pivot_columns[0]
    coordinator = ZoneTransferCoordinator(catalog=catalog)

    with pytest.raises(ZoneRejection) as exc_info:
        coordinator.move_entry(store, ZONE_PIVOT_COLUMNS, ZONE_PIVOT_ROWS, entry.id)

    assert exc_info.value.code == "duplicate_assignment"
    assert exc_info.value.message == 'Column "Region" already exists in Rows'
    assert store.pivot_columns == [entry]
    assert entry.id not in coordinator.in_flight


def test_dimension_move_gets_target_prefix(catalog):
    store = _assign(ZoneStore(), ZONE_PIVOT_ROWS, catalog.require("date"))
    coordinator = ZoneTransferCoordinator(catalog=catalog)
    result = coordinator.move_entry(store, ZONE_PIVOT_ROWS, ZONE_PIVOT_COLUMNS, store.pivot_rows[0].id)

    moved = result.store.pivot_columns[0]
    assert moved.id.startswith("pivot-col_")
    assert moved.column_id == "date"
    assert moved.time_unit == "day"


def test_invalid_transfers(catalog):
    store = _assign(ZoneStore(), ZONE_PIVOT_VALUES, catalog.require("sales"))
    value_id = store.pivot_values[0].id
    coordinator = ZoneTransferCoordinator(catalog=catalog)

    with pytest.raises(ZoneRejection) as exc_info:
        coordinator.move_entry(store, ZONE_PIVOT_VALUES, ZONE_PIVOT_VALUES, value_id)
    assert exc_info.value.code == "same_zone"

    with pytest.raises(ZoneRejection) as exc_info:
        coordinator.move_entry(store, ZONE_PIVOT_VALUES, ZONE_FILTERS, value_id)
    assert exc_info.value.code == "invalid_transfer"


def test_missing_entry_is_noop(catalog):
    store = ZoneStore()
    result = ZoneTransferCoordinator(catalog=catalog).move_entry(store, ZONE_PIVOT_ROWS, ZONE_PIVOT_VALUES, "nope")
    assert not result.handled
    assert result.store is store


def test_drag_end_after_move_does_not_delete(catalog):
    """已被移动处理的条目，随后的拖出信号只清除标记"""
    store = _assign(ZoneStore(), ZONE_PIVOT_ROWS, catalog.require("region"))
    entry_id = store.pivot_rows[0].id
    coordinator = ZoneTransferCoordinator(catalog=catalog)

    moved = coordinator.move_entry(store, ZONE_PIVOT_ROWS, ZONE_PIVOT_VALUES, entry_id)
    assert entry_id in coordinator.in_flight

    after = coordinator.drag_ended_outside(moved.store, ZONE_PIVOT_ROWS, entry_id)
    assert after is moved.store
    assert coordinator.in_flight == set()


def test_drag_end_outside_deletes(catalog):
    store = _assign(ZoneStore(), ZONE_PIVOT_ROWS, catalog.require("region"))
    coordinator = ZoneTransferCoordinator(catalog=catalog)
    after = coordinator.drag_ended_outside(store, ZONE_PIVOT_ROWS, store.pivot_rows[0].id)
    assert after.pivot_rows == []


def test_next_move_clears_previous_marker(catalog):
    store = _assign(ZoneStore(), ZONE_PIVOT_ROWS, catalog.require("region"))
    store = _assign(store, ZONE_PIVOT_ROWS, catalog.require("country"))
    region_id, country_id = [d.id for d in store.pivot_rows]
    coordinator = ZoneTransferCoordinator(catalog=catalog)

    first = coordinator.move_entry(store, ZONE_PIVOT_ROWS, ZONE_PIVOT_VALUES, region_id)
    coordinator.move_entry(first.store, ZONE_PIVOT_ROWS, ZONE_PIVOT_COLUMNS, country_id)

    assert coordinator.in_flight == {country_id}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
