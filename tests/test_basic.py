"""基础测试"""

import pytest
from pydantic import ValidationError

from datazones.core.config import settings
from datazones.models import (
    ColumnCatalog,
    FilterCondition,
    GroupByColumn,
    PivotDimension,
    SortLevel,
    UnknownColumnError,
    ZoneStore,
    new_entry_id,
)


def test_settings():
    """测试配置加载"""
    assert settings is not None
    assert settings.max_auto_series == 20
    assert settings.schema_poll_max_attempts == 10
    assert settings.schema_poll_interval_ms == 16
    assert settings.schema_poll_budget_seconds == pytest.approx(0.16)


def test_entry_id_format():
    """测试条目 ID 格式"""
    entry_id = new_entry_id("pivot-row")
    prefix, suffix = entry_id.split("_")
    assert prefix == "pivot-row"
    assert len(suffix) == 12


def test_filter_condition():
    """测试过滤条件模型"""
    cond = FilterCondition(operator="between", value=1, value_end=10)
    assert cond.id.startswith("cond_")
    assert cond.value_end == 10

    with pytest.raises(ValidationError):
        FilterCondition(operator="like", value="x")


def test_catalog_from_headers():
    """测试从表头构建列目录"""
    catalog = ColumnCatalog.from_headers(
        [
            {"headerId": "h1", "name": "Date", "type": "date"},
            {"id": "h2", "name": "Sales", "type": "number"},
            {"name": "Region"},
        ],
        default_date_format="YYYY-MM",
    )
    assert len(catalog) == 3
    assert catalog.require("h1").date_format == "YYYY-MM"
    assert catalog.require("h2").date_format is None
    assert catalog.require("Region").type == "text"
    assert catalog.name_of("missing") == "missing"

    with pytest.raises(UnknownColumnError):
        catalog.require("missing")


def test_store_rejects_duplicate_column():
    """同一配置区不能出现重复列"""
    with pytest.raises(ValidationError):
        ZoneStore(sort=[SortLevel(column_id="a"), SortLevel(column_id="a", direction="desc")])


def test_store_rejects_both_modes():
    """聚合与透视不能同时启用"""
    with pytest.raises(ValidationError):
        ZoneStore(
            group_by=[GroupByColumn(id="region", name="Region")],
            pivot_rows=[PivotDimension(id="r1", column_id="country", name="Country")],
        )


def test_store_updates_are_copies():
    """store 操作不修改原对象"""
    store = ZoneStore()
    updated = store.append("sort", SortLevel(column_id="sales"))
    assert store.sort == []
    assert updated.column_ids("sort") == ["sales"]
    assert updated.cleared(["sort"]).is_empty()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
