"""Assignment Validator - 列分配校验"""

from typing import Any, Iterable, Optional, Tuple

from datazones.core.constants import (
    OPERATIONS_BY_COLUMN_TYPE,
    DEFAULT_FILTER_OPERATOR,
    DEFAULT_TIME_UNIT,
    FILTER_OPERATORS_BY_TYPE,
    ENTRY_ID_PREFIXES,
    OPERATION_ZONES,
    PIVOT_DIMENSION_ZONES,
    ZONE_LABELS,
    ZONE_FILTERS,
    ZONE_SORT,
    ZONE_GROUP_BY,
    ZONE_METRICS,
    ZONE_PIVOT_VALUES,
)
from datazones.core.errors import ZoneRejection
from datazones.engines.dataset_ops import parse_number, parse_timestamp
from datazones.engines.mode_guard import ModeExclusivityGuard
from datazones.models.column import Column
from datazones.models.zones import (
    ZoneStore,
    FilterCondition,
    FilterSpec,
    SortLevel,
    GroupByColumn,
    AggregationMetric,
    PivotDimension,
    PivotValue,
    new_entry_id,
)
from datazones.utils.logger import log

# 需要按日期解析的日期列操作符（equals 按文本比较）
DATE_COMPARISON_OPERATORS = ("greater_than", "less_than", "after", "before", "between")


def available_operations(column_type: str) -> Tuple[str, ...]:
    """列类型允许的聚合操作（数值列全部，其他仅 count）"""
    return OPERATIONS_BY_COLUMN_TYPE.get(column_type, ("count",))


def next_available_operation(column_type: str, used: Iterable[str]) -> Optional[str]:
    """第一个尚未使用的操作，全部用尽时返回 None"""
    used_set = set(used)
    for op in available_operations(column_type):
        if op not in used_set:
            return op
    return None


def filter_operators(column_type: str) -> Tuple[str, ...]:
    return tuple(op for op, _ in FILTER_OPERATORS_BY_TYPE.get(column_type, []))


class AssignmentValidator:
    """
    列分配校验器

    纯决策：返回新条目或抛出 ZoneRejection，不修改 store
    """

    def __init__(self, guard: Optional[ModeExclusivityGuard] = None):
        self.guard = guard or ModeExclusivityGuard()

    def try_assign(self, zone: str, column: Column, store: ZoneStore) -> Any:
        """
        校验并构建新条目

        Args:
            zone: 目标配置区
            column: 候选列
            store: 当前配置

        Returns:
            目标配置区的新条目

        Raises:
            ModeConflict: 目标区属于另一种已启用的模式
            ZoneRejection: 重复分配 / 操作已用尽
        """
        self.guard.check(zone, store, column_id=column.id)

        if zone in OPERATION_ZONES:
            return self.build_operation_entry(zone, column, store)

        if column.id in store.column_ids(zone):
            log.info(f"重复分配被拒绝: column={column.id}, zone={zone}")
            raise ZoneRejection(
                f'Column "{column.name}" already exists in {ZONE_LABELS[zone]}',
                code="duplicate_assignment",
                detail={"zone": zone, "column_id": column.id},
            )

        if zone == ZONE_FILTERS:
            return self.build_filter(column)
        if zone == ZONE_SORT:
            return SortLevel(column_id=column.id, direction="asc")
        if zone == ZONE_GROUP_BY:
            return GroupByColumn(
                id=column.id,
                name=column.name,
                time_unit=DEFAULT_TIME_UNIT if column.type == "date" else None,
            )
        if zone in PIVOT_DIMENSION_ZONES:
            return self.build_dimension(zone, column)
        raise ValueError(f"未知配置区: {zone}")

    def build_filter(self, column: Column) -> FilterSpec:
        return FilterSpec(
            id=new_entry_id(ENTRY_ID_PREFIXES[ZONE_FILTERS]),
            column_id=column.id,
            column_name=column.name,
            column_type=column.type,
            conditions=[FilterCondition(operator=DEFAULT_FILTER_OPERATOR[column.type], value=None)],
        )

    def build_dimension(self, zone: str, column: Column) -> PivotDimension:
        return PivotDimension(
            id=new_entry_id(ENTRY_ID_PREFIXES[zone]),
            column_id=column.id,
            name=column.name,
            column_type=column.type,
            time_unit=DEFAULT_TIME_UNIT if column.type == "date" else None,
        )

    def build_operation_entry(self, zone: str, column: Column, store: ZoneStore) -> Any:
        """按 (列, 操作) 唯一规则构建指标 / 透视值"""
        used = [e.operation for e in store.entries(zone) if e.column_id == column.id]
        operation = next_available_operation(column.type, used)
        if operation is None:
            log.info(f"操作已用尽: column={column.id}, zone={zone}, used={used}")
            raise ZoneRejection(
                f'All operations for column "{column.name}" already used in {ZONE_LABELS[zone]}',
                code="operation_exhausted",
                detail={"zone": zone, "column_id": column.id, "used": used},
            )

        if zone == ZONE_METRICS:
            return AggregationMetric(
                id=new_entry_id(ENTRY_ID_PREFIXES[ZONE_METRICS]),
                type=operation,
                column_id=column.id,
                alias="",
            )
        return PivotValue(
            id=new_entry_id(ENTRY_ID_PREFIXES[ZONE_PIVOT_VALUES]),
            column_id=column.id,
            name=column.name,
            aggregation_type=operation,
        )

    def validate_operation_change(
        self,
        zone: str,
        store: ZoneStore,
        entry_id: str,
        new_operation: str,
        column_type: str
    ) -> None:
        """
        校验修改聚合操作（同列不能重复使用同一操作）

        Raises:
            ZoneRejection: 操作不允许或已被同列其他条目使用
        """
        entry = store.find_entry(zone, entry_id)
        if entry is None:
            raise ZoneRejection(f"Entry {entry_id} not found", code="entry_not_found")

        if new_operation not in available_operations(column_type):
            raise ZoneRejection(
                f'Operation "{new_operation}" is not available for {column_type} columns',
                code="operation_not_allowed",
                detail={"zone": zone, "operation": new_operation},
            )

        used_by_others = {
            e.operation for e in store.entries(zone)
            if e.column_id == entry.column_id and e.id != entry_id
        }
        if new_operation in used_by_others:
            raise ZoneRejection(
                f'Operation "{new_operation}" is already used for this column in {ZONE_LABELS[zone]}',
                code="operation_exhausted",
                detail={"zone": zone, "column_id": entry.column_id, "operation": new_operation},
            )

    def validate_filter_operator(self, column_type: str, operator: str) -> None:
        if operator not in filter_operators(column_type):
            raise ZoneRejection(
                f'Operator "{operator}" is not valid for {column_type} columns',
                code="invalid_operator",
                detail={"column_type": column_type, "operator": operator},
            )

    def validate_filter_value(self, column_type: str, operator: str, value: Any, value_end: Any = None) -> None:
        """
        校验数值 / 日期过滤值可以解析（未填写的值不校验）

        Raises:
            ZoneRejection: 值无法按列类型解析
        """
        if column_type == "number":
            parse = parse_number
        elif column_type == "date" and operator in DATE_COMPARISON_OPERATORS:
            parse = parse_timestamp
        else:
            return

        candidates = value if isinstance(value, list) else [value]
        if operator == "between":
            candidates = [*candidates, value_end]
        for candidate in candidates:
            if candidate is None or candidate == "":
                continue
            if parse(candidate) is None:
                raise ZoneRejection(
                    f'Value "{candidate}" is not a valid {column_type}',
                    code="invalid_value",
                    detail={"column_type": column_type, "operator": operator, "value": candidate},
                )
