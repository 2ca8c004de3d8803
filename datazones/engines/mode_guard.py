"""Mode Guard - 聚合 / 透视模式互斥"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from datazones.core.constants import AGGREGATION_ZONES, PIVOT_ZONES, ZONE_LABELS
from datazones.core.errors import ModeConflict
from datazones.models.zones import ZoneStore
from datazones.utils.logger import log


class Mode(str, Enum):
    """数据集视图的配置模式"""
    NEUTRAL = "neutral"
    AGGREGATION = "aggregation"
    PIVOT = "pivot"


class PendingModeSwitch(BaseModel):
    """等待用户确认的模式切换"""
    target_mode: Mode = Field(..., description="目标模式")
    zone: str = Field(..., description="触发切换的配置区")
    column_id: Optional[str] = Field(None, description="被延后的列分配")

    @property
    def outgoing_mode(self) -> Mode:
        return Mode.PIVOT if self.target_mode == Mode.AGGREGATION else Mode.AGGREGATION


class ModeExclusivityGuard:
    """模式互斥守卫"""

    def mode_of(self, store: ZoneStore) -> Mode:
        if store.has_aggregation:
            return Mode.AGGREGATION
        if store.has_pivot:
            return Mode.PIVOT
        return Mode.NEUTRAL

    def zone_mode(self, zone: str) -> Optional[Mode]:
        """配置区所属模式（过滤 / 排序不属于任何模式）"""
        if zone in AGGREGATION_ZONES:
            return Mode.AGGREGATION
        if zone in PIVOT_ZONES:
            return Mode.PIVOT
        return None

    def check(self, zone: str, store: ZoneStore, column_id: Optional[str] = None) -> None:
        """
        分配前置检查

        Raises:
            ModeConflict: 目标配置区属于另一种已启用的模式
        """
        target = self.zone_mode(zone)
        if target is None:
            return

        current = self.mode_of(store)
        if current == Mode.NEUTRAL or current == target:
            return

        log.info(f"模式冲突: current={current.value}, target={target.value}, zone={zone}")
        if target == Mode.PIVOT:
            message = (
                f"Aggregation is active. Clear Group By and Metrics to use {ZONE_LABELS[zone]}."
            )
        else:
            message = (
                f"Pivot table is active. Clear the pivot configuration to use {ZONE_LABELS[zone]}."
            )
        raise ModeConflict(message, target_mode=target.value, zone=zone, column_id=column_id)

    def pending_from(self, conflict: ModeConflict) -> PendingModeSwitch:
        return PendingModeSwitch(
            target_mode=Mode(conflict.target_mode),
            zone=conflict.zone,
            column_id=conflict.column_id,
        )

    def clear_mode(self, store: ZoneStore, mode: Mode) -> ZoneStore:
        """
        清空指定模式的全部配置区

        auto_select_enabled 属于正交设置，清空透视时保留
        """
        if mode == Mode.AGGREGATION:
            log.info("清空聚合配置")
            return store.cleared(AGGREGATION_ZONES)
        if mode == Mode.PIVOT:
            log.info("清空透视配置")
            return store.cleared(PIVOT_ZONES)
        return store

    def switch_to(self, store: ZoneStore, target: Mode) -> ZoneStore:
        """清空另一模式后进入目标模式"""
        outgoing = Mode.PIVOT if target == Mode.AGGREGATION else Mode.AGGREGATION
        return self.clear_mode(store, outgoing)
