"""Auto Series - 透视结果自动绑定图表通道"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from datazones.core.config import settings
from datazones.core.constants import (
    BINDING_FIELDS_BY_CHART_TYPE,
    SERIES_CHART_TYPES,
    SERIES_PALETTE,
)
from datazones.models.chart import (
    AutoSelectResult,
    ChartBinding,
    ChartState,
    PivotHeader,
    SeriesConfig,
)
from datazones.models.zones import PivotConfig, new_entry_id
from datazones.utils.logger import log

SchemaProvider = Callable[[], Optional[List[PivotHeader]]]


def _is_numeric(header: PivotHeader) -> bool:
    return header.type == "number"


def split_headers(
    headers: List[PivotHeader],
    pivot: PivotConfig
) -> Tuple[List[PivotHeader], List[PivotHeader], List[PivotHeader]]:
    """
    将透视结果列拆分为 (行维度列, 值列, 列维度列)

    值列带 value_id；若结果只给出列名（没有 value_id），
    则按透视配置的行数定位：前 len(rows) 列是行维度，其余是值列
    """
    value_headers = [h for h in headers if h.value_id]
    if value_headers:
        return [h for h in headers if not h.value_id], value_headers, []

    row_count = len(pivot.rows)
    if pivot.values:
        # 值列总是聚合后的数值
        tail = [h.model_copy(update={"type": "number"}) for h in headers[row_count:]]
        return headers[:row_count], tail, []

    if row_count > 0:
        return headers[:row_count], [], headers[row_count:] if pivot.columns else []
    if pivot.columns:
        return [], [], list(headers)
    return list(headers), [], []


def _first_numeric(headers: List[PivotHeader], exclude: Optional[str] = None) -> Optional[PivotHeader]:
    for h in headers:
        if _is_numeric(h) and h.key != exclude:
            return h
    return None


def _build_series(headers: List[PivotHeader], current: ChartBinding) -> List[SeriesConfig]:
    """按结果列生成系列；同一数据列已有的自定义名称、颜色、可见性予以保留"""
    existing: Dict[str, SeriesConfig] = {s.data_column: s for s in current.series_configs}
    series = []
    for index, header in enumerate(headers):
        previous = existing.get(header.key)
        name = header.name
        if previous is not None and previous.name != header.name:
            name = previous.name
        series.append(SeriesConfig(
            id=previous.id if previous else new_entry_id("series"),
            data_column=header.key,
            name=name,
            color=(previous.color if previous and previous.color else SERIES_PALETTE[index % len(SERIES_PALETTE)]),
            visible=previous.visible if previous else True,
        ))
    return series


def _derive_series_chart(
    chart_type: str,
    headers: List[PivotHeader],
    pivot: PivotConfig,
    current: ChartBinding,
    max_series: int
) -> Optional[AutoSelectResult]:
    rows, values, column_headers = split_headers(headers, pivot)
    is_scatter = chart_type == "scatter"

    x_header = rows[0] if rows else None
    if is_scatter and (x_header is None or not _is_numeric(x_header)):
        # 散点图 X 轴必须是数值
        x_header = _first_numeric(headers)
    x_axis_key = x_header.key if x_header else None

    if values:
        candidates = values
    else:
        candidates = column_headers

    if is_scatter:
        valid = [h for h in candidates if _is_numeric(h) and h.key != x_axis_key]
        if not valid and x_axis_key:
            fallback = _first_numeric(headers, exclude=x_axis_key)
            valid = [fallback] if fallback else []
    else:
        valid = [h for h in candidates if not h.value_id or _is_numeric(h)]

    if not x_axis_key and not candidates:
        return None

    limited = valid[:max_series]
    skipped = len(valid) - len(limited)
    binding = current.model_copy(update={
        "x_axis_key": x_axis_key,
        "series_configs": _build_series(limited, current),
    })
    return AutoSelectResult(binding=binding, skipped_count=skipped)


def _derive_pie(headers, pivot, current) -> Optional[AutoSelectResult]:
    rows, values, _ = split_headers(headers, pivot)
    if not rows or not values:
        return None
    value_header = _first_numeric(values)
    if value_header is None:
        return None
    binding = current.model_copy(update={"label_key": rows[0].key, "value_key": value_header.key})
    return AutoSelectResult(binding=binding)


def _derive_matrix(headers, pivot, current, first_field: str, second_field: str) -> Optional[AutoSelectResult]:
    """heatmap (x, y, value) 与 cycleplot (cycle, period, value) 共用的角色分配"""
    rows, values, _ = split_headers(headers, pivot)
    if not rows or not values:
        return None
    value_header = _first_numeric(values)
    if value_header is None:
        return None
    second = rows[1] if len(rows) > 1 else rows[0]
    binding = current.model_copy(update={
        first_field: rows[0].key,
        second_field: second.key,
        "value_key": value_header.key,
    })
    return AutoSelectResult(binding=binding)


def _derive_histogram(headers, pivot, current) -> Optional[AutoSelectResult]:
    """直方图只绑定 X 轴：优先值列，其次列维度列，再次非行维度数值列，最后第一列"""
    rows, values, column_headers = split_headers(headers, pivot)
    row_keys = {h.key for h in rows}
    chosen = (
        _first_numeric(values)
        or _first_numeric(column_headers)
        or next((h for h in headers if _is_numeric(h) and h.key not in row_keys), None)
        or (headers[0] if headers else None)
    )
    if chosen is None:
        return None
    return AutoSelectResult(binding=current.model_copy(update={"x_axis_key": chosen.key}))


def derive_binding(
    chart_type: str,
    headers: Optional[List[PivotHeader]],
    pivot: PivotConfig,
    current: Optional[ChartBinding] = None,
    max_series: Optional[int] = None
) -> Optional[AutoSelectResult]:
    """
    根据透视结果列推导图表绑定

    Returns:
        AutoSelectResult，无法推导时返回 None
    """
    if not headers:
        return None
    current = current or ChartBinding()
    max_series = max_series if max_series is not None else settings.max_auto_series

    if chart_type in SERIES_CHART_TYPES:
        return _derive_series_chart(chart_type, headers, pivot, current, max_series)
    if chart_type in ("pie", "donut"):
        return _derive_pie(headers, pivot, current)
    if chart_type == "heatmap":
        return _derive_matrix(headers, pivot, current, "x_axis_key", "y_axis_key")
    if chart_type == "cycleplot":
        return _derive_matrix(headers, pivot, current, "cycle_key", "period_key")
    if chart_type == "histogram":
        return _derive_histogram(headers, pivot, current)
    return None


def binding_changed(chart_type: str, current: ChartBinding, new: ChartBinding) -> bool:
    """只比较当前图表类型相关的字段；系列按 data_column 集合 + 名称比较"""
    for field in BINDING_FIELDS_BY_CHART_TYPE.get(chart_type, ()):
        if field == "series_configs":
            continue
        if getattr(current, field) != getattr(new, field):
            return True

    if "series_configs" not in BINDING_FIELDS_BY_CHART_TYPE.get(chart_type, ()):
        return False

    current_columns = {s.data_column for s in current.series_configs if s.data_column}
    new_columns = {s.data_column for s in new.series_configs if s.data_column}
    if current_columns != new_columns:
        return True

    current_names = {s.data_column: s.name for s in current.series_configs}
    return any(current_names.get(s.data_column) != s.name for s in new.series_configs)


def clear_binding(chart_type: str, current: ChartBinding) -> Optional[ChartBinding]:
    """清空图表类型相关字段；没有可清空的内容时返回 None"""
    fields = BINDING_FIELDS_BY_CHART_TYPE.get(chart_type, ())
    if not any(getattr(current, f) for f in fields):
        return None
    update = {f: ([] if f == "series_configs" else None) for f in fields}
    return current.model_copy(update=update)


def cleanup_binding(binding: ChartBinding, headers: List[PivotHeader]) -> ChartBinding:
    """
    移除引用了已不存在列的绑定

    清空某个单选键时，引用同一列的系列一并移除
    """
    known = set()
    for h in headers:
        known.update(k for k in (h.id, h.name, h.value_id) if k)

    update = {}
    removed = set()
    for field in ("x_axis_key", "y_axis_key", "value_key", "label_key", "cycle_key", "period_key"):
        value = getattr(binding, field)
        if value and value not in known:
            update[field] = None
            removed.add(value)

    series = [s for s in binding.series_configs if s.data_column in known and s.data_column not in removed]
    if len(series) != len(binding.series_configs):
        update["series_configs"] = series

    if not update:
        return binding
    log.info(f"清理失效绑定: {sorted(k for k in update)}")
    return binding.model_copy(update=update)


class AutoSeriesSelector:
    """
    自动系列选择器（每个配置会话一个）

    透视配置由调用方显式传入，不回读 store；透视结果异步产生，
    通过有限次轮询（或直接 await 调用方给出的结果）获取
    """

    def __init__(
        self,
        chart: Optional[ChartState] = None,
        schema_provider: Optional[SchemaProvider] = None,
        on_apply: Optional[Callable[[ChartBinding], None]] = None,
        on_warning: Optional[Callable[[str, str], None]] = None,
        max_series: Optional[int] = None,
        max_attempts: Optional[int] = None,
        interval_ms: Optional[int] = None
    ):
        self.chart = chart or ChartState()
        self.schema_provider = schema_provider
        self.on_apply = on_apply
        self.on_warning = on_warning
        self.max_series = max_series if max_series is not None else settings.max_auto_series
        self.max_attempts = max_attempts if max_attempts is not None else settings.schema_poll_max_attempts
        self.interval_ms = interval_ms if interval_ms is not None else settings.schema_poll_interval_ms
        self.alive = True
        # 每次触发递增；被更新的触发取代的结果不再应用
        self.generation = 0

    def close(self) -> None:
        """会话销毁：未完成的轮询不再写入结果"""
        self.alive = False

    def should_run(self, pivot: Optional[PivotConfig]) -> bool:
        if pivot is None:
            log.debug("[AutoSeries] 透视已清空，跳过")
            return False
        if not pivot.has_active_dimension:
            log.debug("[AutoSeries] 无透视维度，跳过")
            return False
        if not pivot.auto_select_enabled:
            log.debug("[AutoSeries] 自动选择已关闭，跳过")
            return False
        return True

    async def trigger(
        self,
        pivot: Optional[PivotConfig],
        schema: Optional[Awaitable[List[PivotHeader]]] = None
    ) -> Optional[ChartBinding]:
        """
        透视配置变更后触发

        Args:
            pivot: 变更后的透视配置
            schema: 可选，直接 await 的透视结果

        Returns:
            实际应用的新绑定；无变更或放弃时返回 None
        """
        self.generation += 1
        generation = self.generation
        if not self.should_run(pivot):
            return None

        log.info(
            f"[AutoSeries] 透视变更: rows={len(pivot.rows)}, columns={len(pivot.columns)}, "
            f"values={len(pivot.values)}, chart={self.chart.chart_type}"
        )
        if schema is not None:
            headers = await self._await_schema(schema)
        else:
            headers = await self._poll_schema()

        if not self.alive:
            return None
        if generation != self.generation:
            log.debug(f"[AutoSeries] 已被更新的触发取代，放弃: generation={generation}")
            return None
        if headers is None:
            log.debug("[AutoSeries] 透视结果不可用，放弃")
            return None
        return self.apply_schema(pivot, headers)

    async def on_chart_type_changed(self, chart_type: str, pivot: Optional[PivotConfig]) -> Optional[ChartBinding]:
        """图表类型变化且透视已启用时重新选择"""
        if chart_type == self.chart.chart_type:
            return None
        log.info(f"[AutoSeries] 图表类型变化: {self.chart.chart_type} -> {chart_type}")
        self.chart = self.chart.model_copy(update={"chart_type": chart_type})
        return await self.trigger(pivot)

    def apply_schema(self, pivot: PivotConfig, headers: List[PivotHeader]) -> Optional[ChartBinding]:
        """根据已就绪的透视结果更新绑定（同步部分）"""
        chart_type = self.chart.chart_type
        current = self.chart.binding
        result = derive_binding(chart_type, headers, pivot, current, self.max_series)

        if result is None:
            cleared = clear_binding(chart_type, current)
            if cleared is None:
                return None
            log.info("[AutoSeries] 无法推导，清空现有选择")
            return self._apply(cleared)

        if result.skipped_count > 0 and self.on_warning:
            self.on_warning(
                "Series Limit",
                f"Auto-selected {self.max_series} series. {result.skipped_count} additional series "
                f"were skipped to prevent chart overload. You can manually add more series if needed.",
            )

        if not binding_changed(chart_type, current, result.binding):
            log.debug("[AutoSeries] 绑定未变化，跳过")
            return None
        return self._apply(result.binding)

    def _apply(self, binding: ChartBinding) -> ChartBinding:
        self.chart = self.chart.model_copy(update={"binding": binding})
        if self.on_apply:
            self.on_apply(binding)
        return binding

    async def _poll_schema(self) -> Optional[List[PivotHeader]]:
        if self.schema_provider is None:
            return None
        for attempt in range(1, self.max_attempts + 1):
            await asyncio.sleep(self.interval_ms / 1000)
            if not self.alive:
                return None
            headers = self.schema_provider()
            if headers:
                log.debug(f"[AutoSeries] 透视结果就绪: attempts={attempt}, headers={len(headers)}")
                return headers
        return None

    async def _await_schema(self, schema: Awaitable[List[PivotHeader]]) -> Optional[List[PivotHeader]]:
        budget = self.max_attempts * self.interval_ms / 1000
        try:
            return await asyncio.wait_for(schema, timeout=budget)
        except asyncio.TimeoutError:
            return None
