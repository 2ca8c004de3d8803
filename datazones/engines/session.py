"""Configuration Session - 配置会话（单个图表编辑器的编排器）"""

import asyncio
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import pandas as pd
from pydantic import BaseModel, Field

from datazones.core.config import settings
from datazones.core.constants import (
    ALL_ZONES,
    CHART_TYPES,
    DEFAULT_FILTER_OPERATOR,
    PIVOT_DIMENSION_ZONES,
    PIVOT_ZONES,
    TIME_UNITS,
    ZONE_GROUP_BY,
    ZONE_METRICS,
    ZONE_PIVOT_VALUES,
)
from datazones.core.errors import DataZonesError, MalformedConfigError, ModeConflict, RecomputeError, ZoneRejection
from datazones.engines.assignment_validator import AssignmentValidator
from datazones.engines.auto_series import AutoSeriesSelector, SchemaProvider
from datazones.engines.dataset_ops import RecomputeResult, get_dataset_operations
from datazones.engines.mode_guard import ModeExclusivityGuard, PendingModeSwitch
from datazones.engines.preview import OperationsPreview, ValueFormatter, project
from datazones.engines.store_codec import deserialize_store, serialize_store
from datazones.engines.zone_transfer import ZoneTransferCoordinator
from datazones.models.chart import ChartBinding, ChartState, PivotHeader
from datazones.models.column import ColumnCatalog, UnknownColumnError
from datazones.models.zones import FilterCondition, PivotConfig, SortLevel, ZoneStore
from datazones.utils.logger import log


class OperationResult(BaseModel):
    """会话操作结果"""
    ok: bool = Field(True, description="是否成功")
    code: Optional[str] = Field(None, description="失败代码")
    message: Optional[str] = Field(None, description="面向用户的原因")
    entry: Optional[Any] = Field(None, description="新增或修改的条目")


class Notice(BaseModel):
    """交给外部通知层展示的消息"""
    level: str = Field("error", description="error / warning / info")
    title: str = Field(..., description="标题")
    message: str = Field(..., description="内容")
    code: Optional[str] = Field(None, description="错误代码")
    created_at: datetime = Field(default_factory=datetime.now)


class ConfigurationSession:
    """
    配置会话

    所有 ZoneStore 变更都是同步的；只有自动系列选择是异步的。
    透视配置变更后把新的 PivotConfig 显式交给选择器
    """

    def __init__(
        self,
        catalog: ColumnCatalog,
        chart_type: str = "line",
        schema_provider: Optional[SchemaProvider] = None,
        data: Optional[pd.DataFrame] = None,
        session_id: Optional[str] = None
    ):
        if chart_type not in CHART_TYPES:
            raise ValueError(f"不支持的图表类型: {chart_type}")
        self.session_id = session_id or f"sess_{uuid.uuid4().hex[:12]}"
        self.catalog = catalog
        self.data = data
        self.store = ZoneStore()
        self.guard = ModeExclusivityGuard()
        self.validator = AssignmentValidator(self.guard)
        self.transfer = ZoneTransferCoordinator(self.validator, catalog)
        if schema_provider is None and data is not None:
            schema_provider = self._recomputed_schema
        self.selector = AutoSeriesSelector(
            ChartState(chart_type=chart_type),
            schema_provider=schema_provider,
            on_warning=self._warn,
        )
        self.notices: List[Notice] = []
        self.pending_switch: Optional[PendingModeSwitch] = None
        self.created_at = datetime.now()
        self._tasks: Set[asyncio.Task] = set()
        self._deferred: List[Callable[[], Awaitable[Any]]] = []

    # ---- 状态 ----

    @property
    def chart(self) -> ChartState:
        return self.selector.chart

    @property
    def binding(self) -> ChartBinding:
        return self.selector.chart.binding

    @property
    def mode(self) -> str:
        return self.guard.mode_of(self.store).value

    def snapshot(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "mode": self.mode,
            "store": serialize_store(self.store),
            "chart": self.chart.model_dump(mode="json"),
            "pending_switch": self.pending_switch.model_dump(mode="json") if self.pending_switch else None,
            "notices": [n.model_dump(mode="json") for n in self.notices],
        }

    # ---- 内部工具 ----

    def _notify(self, level: str, title: str, message: str, code: Optional[str] = None) -> None:
        self.notices.append(Notice(level=level, title=title, message=message, code=code))

    def _warn(self, title: str, message: str) -> None:
        self._notify("warning", title, message)

    def _reject(self, error: DataZonesError) -> OperationResult:
        self._notify("error", "Operation rejected", error.message, error.code)
        return OperationResult(ok=False, code=error.code, message=error.message)

    def _commit(self, store: ZoneStore, zones) -> None:
        """写入新 store；涉及透视配置区时调度自动选择"""
        self.store = store
        if any(zone in PIVOT_ZONES for zone in zones):
            self._schedule_auto_select(store.pivot_config())

    def _schedule(self, factory: Callable[[], Awaitable[Any]]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # 没有事件循环时延后到 settle()
            self._deferred.append(factory)
            return
        task = loop.create_task(factory())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _schedule_auto_select(self, pivot: Optional[PivotConfig]) -> None:
        self._schedule(lambda: self.selector.trigger(pivot))

    async def settle(self) -> ChartBinding:
        """等待已调度的自动选择全部完成"""
        while self._deferred:
            factory = self._deferred.pop(0)
            await factory()
        if self._tasks:
            await asyncio.gather(*list(self._tasks))
        return self.binding

    def _recomputed_schema(self) -> Optional[List[PivotHeader]]:
        if self.data is None or not self.store.has_pivot:
            return None
        try:
            return self.recompute().headers
        except RecomputeError as e:
            log.warning(f"透视结果不可用，放弃自动选择: {e.message}")
            return None

    def _find_filter(self, filter_id: str):
        spec = self.store.find_entry("filters", filter_id)
        if spec is None:
            raise ZoneRejection(f"Filter {filter_id} not found", code="entry_not_found")
        return spec

    # ---- 分配 / 移动 / 删除 ----

    def assign(self, zone: str, column_id: str) -> OperationResult:
        """把列分配到配置区"""
        if zone not in ALL_ZONES:
            raise ValueError(f"未知配置区: {zone}")
        try:
            column = self.catalog.require(column_id)
        except UnknownColumnError as e:
            return self._reject(ZoneRejection(str(e), code="unknown_column"))

        try:
            entry = self.validator.try_assign(zone, column, self.store)
        except ModeConflict as e:
            self.pending_switch = self.guard.pending_from(e)
            log.info(f"延后分配，等待确认切换: zone={zone}, column={column_id}")
            return self._reject(e)
        except ZoneRejection as e:
            return self._reject(e)

        self._commit(self.store.append(zone, entry), [zone])
        log.info(f"分配: column={column_id}, zone={zone}")
        return OperationResult(entry=entry)

    def move(self, source_zone: str, target_zone: str, entry_id: str) -> OperationResult:
        try:
            result = self.transfer.move_entry(self.store, source_zone, target_zone, entry_id)
        except ZoneRejection as e:
            return self._reject(e)
        if not result.handled:
            return OperationResult(ok=False, code="entry_not_found", message=f"Entry {entry_id} not found")
        self._commit(result.store, [source_zone, target_zone])
        return OperationResult(entry=result.entry)

    def remove(self, zone: str, entry_id: str) -> OperationResult:
        entry = self.store.find_entry(zone, entry_id)
        if entry is None:
            return self._reject(ZoneRejection(f"Entry {entry_id} not found", code="entry_not_found"))
        self._commit(self.store.without_entry(zone, entry_id), [zone])
        log.info(f"删除条目: zone={zone}, entry={entry_id}")
        return OperationResult(entry=entry)

    def drag_ended_outside(self, zone: str, entry_id: str) -> OperationResult:
        """拖到区域外结束；刚被移动处理过的条目不会被删除"""
        new_store = self.transfer.drag_ended_outside(self.store, zone, entry_id)
        if new_store is self.store:
            return OperationResult()
        self._commit(new_store, [zone])
        return OperationResult()

    def clear_zone(self, zone: str) -> OperationResult:
        if zone not in ALL_ZONES:
            raise ValueError(f"未知配置区: {zone}")
        if not self.store.entries(zone):
            return OperationResult()
        self._commit(self.store.with_zone(zone, []), [zone])
        log.info(f"清空配置区: {zone}")
        return OperationResult()

    # ---- 过滤 ----

    def update_filter_condition(self, filter_id: str, condition_id: str, **changes) -> OperationResult:
        """修改过滤条件（operator / value / value_end）"""
        unknown = set(changes) - {"operator", "value", "value_end"}
        if unknown:
            raise ValueError(f"不支持的字段: {sorted(unknown)}")
        try:
            spec = self._find_filter(filter_id)
            if "operator" in changes:
                self.validator.validate_filter_operator(spec.column_type, changes["operator"])
            condition = next((c for c in spec.conditions if c.id == condition_id), None)
            if condition is None:
                raise ZoneRejection(f"Condition {condition_id} not found", code="entry_not_found")
            new_condition = condition.model_copy(update=changes)
            self.validator.validate_filter_value(
                spec.column_type, new_condition.operator, new_condition.value, new_condition.value_end
            )
        except ZoneRejection as e:
            return self._reject(e)

        conditions = [new_condition if c.id == condition_id else c for c in spec.conditions]
        new_spec = spec.model_copy(update={"conditions": conditions})
        self._commit(self.store.replace_entry("filters", filter_id, new_spec), ["filters"])
        return OperationResult(entry=new_spec)

    def add_filter_condition(self, filter_id: str) -> OperationResult:
        """追加一个条件（同列条件为 OR 关系）"""
        try:
            spec = self._find_filter(filter_id)
        except ZoneRejection as e:
            return self._reject(e)
        condition = FilterCondition(operator=DEFAULT_FILTER_OPERATOR[spec.column_type], value=None)
        new_spec = spec.model_copy(update={"conditions": [*spec.conditions, condition]})
        self._commit(self.store.replace_entry("filters", filter_id, new_spec), ["filters"])
        return OperationResult(entry=new_spec)

    def remove_filter_condition(self, filter_id: str, condition_id: str) -> OperationResult:
        """删除条件；删除最后一个条件时整个过滤一并删除"""
        try:
            spec = self._find_filter(filter_id)
        except ZoneRejection as e:
            return self._reject(e)
        conditions = [c for c in spec.conditions if c.id != condition_id]
        if len(conditions) == len(spec.conditions):
            return self._reject(ZoneRejection(f"Condition {condition_id} not found", code="entry_not_found"))
        if not conditions:
            self._commit(self.store.without_entry("filters", filter_id), ["filters"])
            return OperationResult()
        new_spec = spec.model_copy(update={"conditions": conditions})
        self._commit(self.store.replace_entry("filters", filter_id, new_spec), ["filters"])
        return OperationResult(entry=new_spec)

    # ---- 排序 ----

    def update_sort_level(self, index: int, column_id: str) -> OperationResult:
        """
        修改某一层的排序列

        新列已在其他层时交换两层位置
        """
        levels = list(self.store.sort)
        if not 0 <= index < len(levels):
            return self._reject(ZoneRejection(f"Sort level {index} not found", code="entry_not_found"))
        if column_id not in self.catalog:
            return self._reject(ZoneRejection(f"Unknown column: {column_id}", code="unknown_column"))

        current = levels[index]
        existing = next((i for i, lvl in enumerate(levels) if lvl.column_id == column_id), None)
        if existing is not None and existing != index:
            levels[index], levels[existing] = levels[existing], current
        else:
            levels[index] = current.model_copy(update={"column_id": column_id})
        self._commit(self.store.with_zone("sort", levels), ["sort"])
        return OperationResult(entry=levels[index])

    def set_sort_direction(self, column_id: str, direction: str) -> OperationResult:
        if direction not in ("asc", "desc"):
            raise ValueError(f"不支持的排序方向: {direction}")
        level = self.store.find_entry("sort", column_id)
        if level is None:
            return self._reject(ZoneRejection(f"Sort level for {column_id} not found", code="entry_not_found"))
        new_level = SortLevel(column_id=column_id, direction=direction)
        self._commit(self.store.replace_entry("sort", column_id, new_level), ["sort"])
        return OperationResult(entry=new_level)

    def move_sort_level(self, index: int, direction: str) -> OperationResult:
        """上移 / 下移一层（越界时不变）"""
        if direction not in ("up", "down"):
            raise ValueError(f"不支持的移动方向: {direction}")
        levels = list(self.store.sort)
        target = index - 1 if direction == "up" else index + 1
        if not (0 <= index < len(levels) and 0 <= target < len(levels)):
            return OperationResult()
        levels[index], levels[target] = levels[target], levels[index]
        self._commit(self.store.with_zone("sort", levels), ["sort"])
        return OperationResult(entry=levels[target])

    # ---- 指标 / 透视值 ----

    def _update_operation_entry(self, zone: str, entry_id: str, operation: Optional[str], alias: Optional[str]) -> OperationResult:
        entry = self.store.find_entry(zone, entry_id)
        if entry is None:
            return self._reject(ZoneRejection(f"Entry {entry_id} not found", code="entry_not_found"))

        update: Dict[str, Any] = {}
        if operation is not None and operation != entry.operation:
            column = self.catalog.get(entry.column_id)
            column_type = column.type if column else "text"
            try:
                self.validator.validate_operation_change(zone, self.store, entry_id, operation, column_type)
            except ZoneRejection as e:
                return self._reject(e)
            update["type" if zone == ZONE_METRICS else "aggregation_type"] = operation
        if alias is not None:
            update["alias"] = alias.strip()
        if not update:
            return OperationResult(entry=entry)

        new_entry = entry.model_copy(update=update)
        self._commit(self.store.replace_entry(zone, entry_id, new_entry), [zone])
        return OperationResult(entry=new_entry)

    def update_metric(self, metric_id: str, type: Optional[str] = None, alias: Optional[str] = None) -> OperationResult:
        return self._update_operation_entry(ZONE_METRICS, metric_id, type, alias)

    def update_pivot_value(self, value_id: str, aggregation_type: Optional[str] = None, alias: Optional[str] = None) -> OperationResult:
        return self._update_operation_entry(ZONE_PIVOT_VALUES, value_id, aggregation_type, alias)

    def set_time_unit(self, zone: str, entry_id: str, time_unit: Optional[str]) -> OperationResult:
        """修改分组列 / 透视维度的日期粒度（仅日期列）"""
        if zone != ZONE_GROUP_BY and zone not in PIVOT_DIMENSION_ZONES:
            raise ValueError(f"配置区不支持日期粒度: {zone}")
        if time_unit is not None and time_unit not in TIME_UNITS:
            raise ValueError(f"不支持的日期粒度: {time_unit}")
        entry = self.store.find_entry(zone, entry_id)
        if entry is None:
            return self._reject(ZoneRejection(f"Entry {entry_id} not found", code="entry_not_found"))
        column = self.catalog.get(entry.column_id)
        if column is None or column.type != "date":
            return self._reject(ZoneRejection("Time unit is only available for date columns", code="operation_not_allowed"))
        new_entry = entry.model_copy(update={"time_unit": time_unit})
        self._commit(self.store.replace_entry(zone, entry_id, new_entry), [zone])
        return OperationResult(entry=new_entry)

    def set_auto_select_enabled(self, enabled: bool) -> OperationResult:
        self.store = self.store.model_copy(update={"auto_select_enabled": enabled})
        if enabled and self.store.has_pivot:
            self._schedule_auto_select(self.store.pivot_config())
        return OperationResult()

    # ---- 模式切换 ----

    def confirm_mode_switch(self) -> OperationResult:
        """清空另一模式，然后执行被延后的分配"""
        pending = self.pending_switch
        if pending is None:
            return OperationResult(ok=False, code="no_pending_switch", message="No mode switch is pending")
        self.pending_switch = None
        cleared = self.guard.switch_to(self.store, pending.target_mode)
        outgoing_zones = PIVOT_ZONES if pending.outgoing_mode.value == "pivot" else [ZONE_GROUP_BY, ZONE_METRICS]
        self._commit(cleared, outgoing_zones)
        log.info(f"确认模式切换: -> {pending.target_mode.value}")
        if pending.column_id is None:
            return OperationResult()
        return self.assign(pending.zone, pending.column_id)

    def cancel_mode_switch(self) -> OperationResult:
        if self.pending_switch is not None:
            log.info("取消模式切换")
        self.pending_switch = None
        return OperationResult()

    # ---- 图表 ----

    def set_chart_type(self, chart_type: str) -> OperationResult:
        """切换图表类型；透视启用时重新自动选择"""
        if chart_type not in CHART_TYPES:
            return self._reject(ZoneRejection(f"Unsupported chart type: {chart_type}", code="invalid_chart_type"))
        if chart_type == self.chart.chart_type:
            return OperationResult()
        self.selector.chart = self.chart.model_copy(update={"chart_type": chart_type})
        if self.store.has_pivot:
            self._schedule_auto_select(self.store.pivot_config())
        return OperationResult()

    # ---- 导入 / 导出 ----

    def export_config(self) -> Dict[str, Any]:
        return serialize_store(self.store)

    def import_config(self, data: Any) -> OperationResult:
        """导入配置；不合法时整体拒绝并保留当前配置"""
        try:
            store = deserialize_store(data, self.catalog)
        except MalformedConfigError as e:
            return self._reject(e)
        self.pending_switch = None
        self.transfer.reset()
        self._commit(store, ALL_ZONES)
        return OperationResult()

    def reset(self) -> OperationResult:
        self.pending_switch = None
        self.transfer.reset()
        self._commit(ZoneStore(), ALL_ZONES)
        return OperationResult()

    # ---- 只读 ----

    def preview(self, formatter: Optional[ValueFormatter] = None) -> OperationsPreview:
        return project(self.store, self.catalog, formatter)

    def recompute(self) -> RecomputeResult:
        if self.data is None:
            raise ValueError("会话没有关联数据")
        return get_dataset_operations().apply(self.data, self.store, self.catalog)

    def close(self) -> None:
        self.selector.close()
        for task in list(self._tasks):
            task.cancel()
        self._deferred.clear()


class SessionManager:
    """会话注册表（每个图表编辑器一个独立会话）"""

    def __init__(self, max_sessions: Optional[int] = None):
        self.max_sessions = max_sessions or settings.max_sessions
        self.sessions: Dict[str, ConfigurationSession] = {}

    def create(
        self,
        catalog: ColumnCatalog,
        chart_type: str = "line",
        data: Optional[pd.DataFrame] = None
    ) -> ConfigurationSession:
        if len(self.sessions) >= self.max_sessions:
            oldest_id = min(self.sessions, key=lambda k: self.sessions[k].created_at)
            log.warning(f"会话数达到上限，关闭最早的会话: {oldest_id}")
            self.delete(oldest_id)
        session = ConfigurationSession(catalog, chart_type=chart_type, data=data)
        self.sessions[session.session_id] = session
        log.info(f"创建会话: {session.session_id}, columns={len(catalog)}")
        return session

    def get(self, session_id: str) -> ConfigurationSession:
        if session_id not in self.sessions:
            raise KeyError(f"会话不存在: {session_id}")
        return self.sessions[session_id]

    def delete(self, session_id: str) -> None:
        session = self.sessions.pop(session_id, None)
        if session is None:
            raise KeyError(f"会话不存在: {session_id}")
        session.close()
        log.info(f"关闭会话: {session_id}")

    def get_stats(self) -> Dict[str, Any]:
        return {"total_sessions": len(self.sessions), "max_sessions": self.max_sessions}


# 全局单例
_session_manager = None


def get_session_manager() -> SessionManager:
    """获取 SessionManager 单例"""
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionManager()
    return _session_manager
