"""配置区（Zone）相关模型"""

import uuid
from typing import Any, List, Literal, Optional, Union
from pydantic import BaseModel, Field, field_validator, model_validator

from datazones.core.constants import (
    ALL_ZONES,
    AGGREGATION_ZONES,
    OPERATION_ZONES,
    PIVOT_ZONES,
    ZONE_LABELS,
    FILTER_OPERATORS_BY_TYPE,
)
from datazones.models.column import ColumnType

AggregationType = Literal["sum", "average", "min", "max", "count"]
TimeUnit = Literal["day", "month", "quarter", "year"]
SortDirection = Literal["asc", "desc"]

_ALL_FILTER_OPERATORS = {op for ops in FILTER_OPERATORS_BY_TYPE.values() for op, _ in ops}


def new_entry_id(prefix: str) -> str:
    """生成条目 ID"""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class FilterCondition(BaseModel):
    """过滤条件"""
    id: str = Field(default_factory=lambda: new_entry_id("cond"), description="条件ID")
    operator: str = Field(..., description="操作符: equals, contains, greater_than, between ...")
    value: Any = Field(None, description="过滤值（equals 可为数组）")
    value_end: Any = Field(None, description="区间结束值（between）")

    @field_validator("operator")
    @classmethod
    def validate_operator(cls, v: str) -> str:
        if v not in _ALL_FILTER_OPERATORS:
            raise ValueError(f"不支持的操作符: {v}")
        return v


class FilterSpec(BaseModel):
    """单列过滤（同列多个条件为 OR 关系）"""
    id: str = Field(default_factory=lambda: new_entry_id("filter"), description="过滤ID")
    column_id: str = Field(..., description="列ID")
    column_name: str = Field(..., description="列名")
    column_type: ColumnType = Field("text", description="列类型")
    conditions: List[FilterCondition] = Field(default_factory=list, description="过滤条件")


class SortLevel(BaseModel):
    """排序层级（列表顺序即优先级）"""
    column_id: str = Field(..., description="列ID")
    direction: SortDirection = Field("asc", description="排序方向")

    @property
    def id(self) -> str:
        return self.column_id


class GroupByColumn(BaseModel):
    """分组列"""
    id: str = Field(..., description="列ID（即 column_id）")
    name: str = Field(..., description="列名")
    time_unit: Optional[TimeUnit] = Field(None, description="日期粒度（仅日期列）")

    @property
    def column_id(self) -> str:
        return self.id


class AggregationMetric(BaseModel):
    """聚合指标"""
    id: str = Field(default_factory=lambda: new_entry_id("metric"), description="指标ID")
    type: AggregationType = Field(..., description="聚合函数: sum, average, min, max, count")
    column_id: str = Field(..., description="聚合列ID")
    alias: str = Field("", description="结果列名")

    @property
    def operation(self) -> str:
        return self.type


class PivotDimension(BaseModel):
    """透视维度（行 / 列 / 筛选共用）"""
    id: str = Field(..., description="维度ID")
    column_id: str = Field(..., description="列ID")
    name: str = Field(..., description="列名")
    column_type: ColumnType = Field("text", description="列类型")
    time_unit: Optional[TimeUnit] = Field(None, description="日期粒度（仅日期列）")


class PivotValue(BaseModel):
    """透视值"""
    id: str = Field(..., description="值ID")
    column_id: str = Field(..., description="列ID")
    name: str = Field(..., description="列名")
    aggregation_type: AggregationType = Field(..., description="聚合函数")
    alias: str = Field("", description="结果列名（可选）")

    @property
    def operation(self) -> str:
        return self.aggregation_type


ZoneEntry = Union[FilterSpec, SortLevel, GroupByColumn, AggregationMetric, PivotDimension, PivotValue]


class PivotConfig(BaseModel):
    """透视配置快照（显式传给自动选择器）"""
    rows: List[PivotDimension] = Field(default_factory=list)
    columns: List[PivotDimension] = Field(default_factory=list)
    values: List[PivotValue] = Field(default_factory=list)
    filters: List[PivotDimension] = Field(default_factory=list)
    auto_select_enabled: bool = True

    @property
    def has_active_dimension(self) -> bool:
        return bool(self.rows or self.columns or self.values or self.filters)


class ZoneStore(BaseModel):
    """
    配置区存储：每个配置区一个键的扁平结构

    引擎从不原地修改，所有操作都返回新的 ZoneStore
    """
    filters: List[FilterSpec] = Field(default_factory=list, description="过滤")
    sort: List[SortLevel] = Field(default_factory=list, description="排序层级")
    group_by: List[GroupByColumn] = Field(default_factory=list, description="分组列")
    metrics: List[AggregationMetric] = Field(default_factory=list, description="聚合指标")
    pivot_rows: List[PivotDimension] = Field(default_factory=list, description="透视行")
    pivot_columns: List[PivotDimension] = Field(default_factory=list, description="透视列")
    pivot_values: List[PivotValue] = Field(default_factory=list, description="透视值")
    pivot_filters: List[PivotDimension] = Field(default_factory=list, description="透视筛选")
    auto_select_enabled: bool = Field(True, description="透视后自动选择图表系列")

    @model_validator(mode="after")
    def validate_invariants(self):
        """校验唯一性与模式互斥"""
        for zone in ALL_ZONES:
            seen = set()
            for entry in self.entries(zone):
                key = (entry.column_id, entry.operation) if zone in OPERATION_ZONES else entry.column_id
                if key in seen:
                    raise ValueError(f"{ZONE_LABELS[zone]} 中存在重复条目: {key}")
                seen.add(key)
        if self.has_aggregation and self.has_pivot:
            raise ValueError("聚合与透视不能同时启用")
        return self

    @property
    def has_aggregation(self) -> bool:
        return bool(self.group_by or self.metrics)

    @property
    def has_pivot(self) -> bool:
        return bool(self.pivot_rows or self.pivot_columns or self.pivot_values or self.pivot_filters)

    def entries(self, zone: str) -> List[Any]:
        """获取配置区条目"""
        if zone not in ALL_ZONES:
            raise ValueError(f"未知配置区: {zone}")
        return getattr(self, zone)

    def find_entry(self, zone: str, entry_id: str) -> Optional[Any]:
        for entry in self.entries(zone):
            if entry.id == entry_id:
                return entry
        return None

    def column_ids(self, zone: str) -> List[str]:
        return [entry.column_id for entry in self.entries(zone)]

    def with_zone(self, zone: str, entries: List[Any]) -> "ZoneStore":
        """替换单个配置区，返回新 store"""
        if zone not in ALL_ZONES:
            raise ValueError(f"未知配置区: {zone}")
        return self.model_copy(update={zone: list(entries)})

    def append(self, zone: str, entry: Any) -> "ZoneStore":
        return self.with_zone(zone, [*self.entries(zone), entry])

    def without_entry(self, zone: str, entry_id: str) -> "ZoneStore":
        return self.with_zone(zone, [e for e in self.entries(zone) if e.id != entry_id])

    def replace_entry(self, zone: str, entry_id: str, new_entry: Any) -> "ZoneStore":
        return self.with_zone(zone, [new_entry if e.id == entry_id else e for e in self.entries(zone)])

    def cleared(self, zones) -> "ZoneStore":
        """清空多个配置区（保留 auto_select_enabled 等正交设置）"""
        return self.model_copy(update={zone: [] for zone in zones})

    def pivot_config(self) -> PivotConfig:
        return PivotConfig(
            rows=list(self.pivot_rows),
            columns=list(self.pivot_columns),
            values=list(self.pivot_values),
            filters=list(self.pivot_filters),
            auto_select_enabled=self.auto_select_enabled,
        )

    def is_empty(self) -> bool:
        return not any(self.entries(zone) for zone in ALL_ZONES)


def is_aggregation_zone(zone: str) -> bool:
    return zone in AGGREGATION_ZONES


def is_pivot_zone(zone: str) -> bool:
    return zone in PIVOT_ZONES
