"""Zone Transfer - 配置区之间移动条目"""

from typing import Any, Optional, Set
from pydantic import BaseModel, Field

from datazones.core.constants import (
    ALL_ZONES,
    ENTRY_ID_PREFIXES,
    PIVOT_ZONES,
    PIVOT_DIMENSION_ZONES,
    ZONE_LABELS,
    ZONE_PIVOT_VALUES,
)
from datazones.core.errors import ZoneRejection
from datazones.engines.assignment_validator import AssignmentValidator
from datazones.models.column import Column, ColumnCatalog
from datazones.models.zones import ZoneStore, PivotDimension, PivotValue, new_entry_id
from datazones.utils.logger import log


class TransferResult(BaseModel):
    """移动结果"""
    store: ZoneStore = Field(..., description="移动后的配置")
    entry: Optional[Any] = Field(None, description="插入目标区的条目")
    handled: bool = Field(False, description="是否实际发生了移动")


class ZoneTransferCoordinator:
    """
    条目移动协调器

    被拒绝的移动不删除任何数据；成功的移动会在 in-flight 集合中记录条目 ID，
    用于抑制随后到达的"拖出区域"删除信号
    """

    def __init__(self, validator: Optional[AssignmentValidator] = None, catalog: Optional[ColumnCatalog] = None):
        self.validator = validator or AssignmentValidator()
        self.catalog = catalog
        self._handled_ids: Set[str] = set()

    @property
    def in_flight(self) -> Set[str]:
        return set(self._handled_ids)

    def move_entry(self, store: ZoneStore, source_zone: str, target_zone: str, entry_id: str) -> TransferResult:
        """
        将条目从 source_zone 移到 target_zone

        Raises:
            ZoneRejection: 同区拖放、重复列、操作用尽或不支持的转移
        """
        for zone in (source_zone, target_zone):
            if zone not in ALL_ZONES:
                raise ValueError(f"未知配置区: {zone}")

        # 只保留最近一次拖放的标记
        self._handled_ids.clear()

        entry = store.find_entry(source_zone, entry_id)
        if entry is None:
            log.debug(f"移动条目不存在，忽略: zone={source_zone}, entry={entry_id}")
            return TransferResult(store=store, entry=None, handled=False)

        if source_zone == target_zone:
            raise ZoneRejection(
                f"Entry is already in {ZONE_LABELS[target_zone]}",
                code="same_zone",
                detail={"zone": source_zone, "entry_id": entry_id},
            )

        if source_zone not in PIVOT_ZONES or target_zone not in PIVOT_ZONES:
            raise ZoneRejection(
                f"Cannot move entries from {ZONE_LABELS[source_zone]} to {ZONE_LABELS[target_zone]}",
                code="invalid_transfer",
                detail={"source": source_zone, "target": target_zone},
            )

        if isinstance(entry, PivotValue):
            new_entry = self._value_to_dimension(store, entry, target_zone)
        elif target_zone == ZONE_PIVOT_VALUES:
            new_entry = self._dimension_to_value(store, entry)
        else:
            new_entry = self._dimension_to_dimension(store, entry, target_zone)

        new_store = store.without_entry(source_zone, entry_id).append(target_zone, new_entry)
        self._handled_ids.add(entry_id)
        log.info(f"条目移动: {source_zone} -> {target_zone}, column={entry.column_id}")
        return TransferResult(store=new_store, entry=new_entry, handled=True)

    def _column_for(self, column_id: str, name: str, column_type: Optional[str]) -> Column:
        if self.catalog is not None and column_id in self.catalog:
            return self.catalog.require(column_id)
        return Column(id=column_id, name=name, type=column_type or "text")

    def _dimension_to_value(self, store: ZoneStore, dimension: PivotDimension) -> PivotValue:
        column = self._column_for(dimension.column_id, dimension.name, dimension.column_type)
        return self.validator.build_operation_entry(ZONE_PIVOT_VALUES, column, store)

    def _value_to_dimension(self, store: ZoneStore, value: PivotValue, target_zone: str) -> PivotDimension:
        if target_zone not in PIVOT_DIMENSION_ZONES:
            raise ZoneRejection(
                "Values can only be moved into Rows, Columns or Pivot Filters",
                code="invalid_transfer",
                detail={"source": ZONE_PIVOT_VALUES, "target": target_zone},
            )
        # 无目录时只能从聚合操作推断类型
        fallback_type = "number" if value.aggregation_type != "count" else "text"
        column = self._column_for(value.column_id, value.name, fallback_type)
        self._ensure_absent(store, target_zone, column.id, column.name)
        return self.validator.build_dimension(target_zone, column)

    def _dimension_to_dimension(self, store: ZoneStore, dimension: PivotDimension, target_zone: str) -> PivotDimension:
        self._ensure_absent(store, target_zone, dimension.column_id, dimension.name)
        return dimension.model_copy(update={"id": new_entry_id(ENTRY_ID_PREFIXES[target_zone])})

    def _ensure_absent(self, store: ZoneStore, zone: str, column_id: str, name: str) -> None:
        if column_id in store.column_ids(zone):
            raise ZoneRejection(
                f'Column "{name}" already exists in {ZONE_LABELS[zone]}',
                code="duplicate_assignment",
                detail={"zone": zone, "column_id": column_id},
            )

    def consume_handled(self, entry_id: str) -> bool:
        """取出 in-flight 标记；存在则说明本次拖放已被处理"""
        if entry_id in self._handled_ids:
            self._handled_ids.discard(entry_id)
            return True
        return False

    def drag_ended_outside(self, store: ZoneStore, zone: str, entry_id: str) -> ZoneStore:
        """
        拖到任何区域之外：删除条目

        若该条目刚被 move_entry 处理过，则只清除标记，不再删除
        """
        if self.consume_handled(entry_id):
            log.debug(f"拖放已处理，跳过删除: entry={entry_id}")
            return store
        if store.find_entry(zone, entry_id) is None:
            return store
        log.info(f"拖出区域，删除条目: zone={zone}, entry={entry_id}")
        return store.without_entry(zone, entry_id)

    def reset(self) -> None:
        self._handled_ids.clear()
