"""Operations Preview - 已应用操作的只读摘要"""

import re
from typing import Any, List, Optional
import pandas as pd
from pydantic import BaseModel, Field

from datazones.core.constants import AGGREGATION_LABELS, FILTER_OPERATORS_BY_TYPE
from datazones.models.column import ColumnCatalog
from datazones.models.zones import FilterCondition, FilterSpec, ZoneStore

# 已知日期格式 → 粒度
_KNOWN_GRANULARITY = {
    "YYYY": "year",
    "YYYY-MM": "year_month",
    "YY-MM": "year_month",
    "MM/YY": "year_month",
    "MM/YYYY": "year_month",
    "DD Month YYYY": "date",
    "YYYY-MM-DD": "date",
    "DD/MM/YYYY": "date",
    "MM/DD/YYYY": "date",
    "YYYY/MM/DD": "date",
    "DD-MM-YYYY": "date",
    "MM-DD-YYYY": "date",
    "YYYY-MM-DD HH:mm:ss": "datetime",
    "YYYY-MM-DDTHH:mm:ss": "datetime",
}

_GRANULARITY_PATTERNS = {
    "year": "%Y",
    "year_month": "%Y-%m",
    "date": "%Y-%m-%d",
    "datetime": "%Y-%m-%d %H:%M:%S",
}


def granularity_from_format(fmt: Optional[str]) -> str:
    """根据列的日期格式推断展示粒度"""
    if not fmt:
        return "date"
    if fmt in _KNOWN_GRANULARITY:
        return _KNOWN_GRANULARITY[fmt]
    if ":" in fmt or re.search(r"H{1,2}", fmt):
        return "datetime"
    if re.search(r"D{1,2}", fmt):
        return "date"
    if re.search(r"Y{2,4}", fmt) and (re.search(r"M{1,2}", fmt) or "Month" in fmt):
        return "year_month"
    return "year"


class ValueFormatter:
    """
    展示值格式化

    Args:
        thousands_separator: 千分位分隔符
        decimal_separator: 小数分隔符
        max_listed: 多值条件最多列出的值个数
    """

    BLANK = "(blank)"

    def __init__(self, thousands_separator: str = ",", decimal_separator: str = ".", max_listed: int = 2):
        self.thousands_separator = thousands_separator
        self.decimal_separator = decimal_separator
        self.max_listed = max_listed

    def format_number(self, value: Any) -> str:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return str(value)
        text = f"{number:,.0f}" if number.is_integer() else f"{number:,}"
        return (
            text.replace(",", "\0")
            .replace(".", self.decimal_separator)
            .replace("\0", self.thousands_separator)
        )

    def format_date(self, value: Any, date_format: Optional[str] = None) -> str:
        pattern = _GRANULARITY_PATTERNS[granularity_from_format(date_format)]
        try:
            return pd.Timestamp(str(value)).strftime(pattern)
        except ValueError:
            return str(value).replace("T", " ")

    def format_value(self, column_type: str, value: Any, date_format: Optional[str] = None) -> str:
        if value is None or value == "":
            return self.BLANK
        if column_type == "date":
            return self.format_date(value, date_format)
        if column_type == "number":
            return self.format_number(value)
        return str(value)

    def format_condition_value(self, column_type: str, value: Any, date_format: Optional[str] = None) -> str:
        """单值或多值（equals 多选）"""
        if isinstance(value, list):
            if not value:
                return "(none selected)"
            formatted = [self.format_value(column_type, v, date_format) for v in value]
            if len(formatted) <= self.max_listed:
                return ", ".join(formatted)
            shown = ", ".join(formatted[:self.max_listed])
            return f"{shown}, +{len(formatted) - self.max_listed} more"
        return self.format_value(column_type, value, date_format)

    def operator_label(self, column_type: str, operator: str) -> str:
        for value, label in FILTER_OPERATORS_BY_TYPE.get(column_type, []):
            if value == operator:
                return label
        return operator.replace("_", " ")


class PreviewSection(BaseModel):
    """摘要分组"""
    title: str = Field(..., description="分组标题")
    items: List[str] = Field(default_factory=list, description="摘要行")


class OperationsPreview(BaseModel):
    """操作摘要"""
    sections: List[PreviewSection] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.sections

    def section(self, title: str) -> Optional[PreviewSection]:
        for s in self.sections:
            if s.title.startswith(title):
                return s
        return None

    def render_text(self) -> str:
        if self.is_empty:
            return "No operations applied yet"
        lines = []
        for s in self.sections:
            lines.append(s.title)
            lines.extend(f"  {item}" for item in s.items)
        return "\n".join(lines)


def _describe_condition(spec: FilterSpec, cond: FilterCondition, formatter: ValueFormatter, date_format) -> str:
    label = formatter.operator_label(spec.column_type, cond.operator)
    if cond.operator == "between":
        start = formatter.format_value(spec.column_type, cond.value, date_format)
        end = formatter.format_value(spec.column_type, cond.value_end, date_format)
        return f"{label} {start} - {end}"
    return f"{label} {formatter.format_condition_value(spec.column_type, cond.value, date_format)}"


def project(store: ZoneStore, catalog: ColumnCatalog, formatter: Optional[ValueFormatter] = None) -> OperationsPreview:
    """
    生成操作摘要（Filters / Sort / Aggregation / Pivot，空分组不出现）

    只读：不修改也不校验 store
    """
    formatter = formatter or ValueFormatter()
    sections = []

    if store.filters:
        items = []
        for spec in store.filters:
            column = catalog.get(spec.column_id)
            date_format = column.date_format if column else None
            name = spec.column_name or (column.name if column else spec.column_id)
            conditions = " or ".join(
                _describe_condition(spec, cond, formatter, date_format) for cond in spec.conditions
            )
            items.append(f"{name}: {conditions}" if conditions else name)
        sections.append(PreviewSection(title=f"Filters ({len(store.filters)})", items=items))

    if store.sort:
        items = [
            f"{index}. {catalog.name_of(level.column_id)} ({level.direction})"
            for index, level in enumerate(store.sort, start=1)
        ]
        sections.append(PreviewSection(title=f"Sort ({len(store.sort)} levels)", items=items))

    if store.group_by or store.metrics:
        items = []
        if store.group_by:
            names = [
                f"{catalog.name_of(gb.id)}{f' ({gb.time_unit})' if gb.time_unit else ''}"
                for gb in store.group_by
            ]
            items.append("Group by: " + ", ".join(names))
        if store.metrics:
            metrics = [
                f"{m.alias or f'{m.type}({catalog.name_of(m.column_id)})'} ({m.type})"
                for m in store.metrics
            ]
            items.append("Metrics: " + ", ".join(metrics))
        sections.append(PreviewSection(title="Aggregation", items=items))

    if store.has_pivot:
        items = []
        for label, dims in (("Rows", store.pivot_rows), ("Columns", store.pivot_columns), ("Filters", store.pivot_filters)):
            if dims:
                names = [f"{d.name}{f' ({d.time_unit})' if d.time_unit else ''}" for d in dims]
                items.append(f"{label}: " + ", ".join(names))
        if store.pivot_values:
            values = [
                v.alias or f"{AGGREGATION_LABELS[v.aggregation_type]} of {v.name}"
                for v in store.pivot_values
            ]
            items.append("Values: " + ", ".join(values))
        sections.append(PreviewSection(title="Pivot", items=items))

    return OperationsPreview(sections=sections)
