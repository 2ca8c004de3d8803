"""系统常量定义"""

from typing import Dict, List, Set, Tuple

# 列类型
COLUMN_TYPES: Set[str] = {"text", "number", "date"}

# 配置区（Zone）
ZONE_FILTERS = "filters"
ZONE_SORT = "sort"
ZONE_GROUP_BY = "group_by"
ZONE_METRICS = "metrics"
ZONE_PIVOT_ROWS = "pivot_rows"
ZONE_PIVOT_COLUMNS = "pivot_columns"
ZONE_PIVOT_VALUES = "pivot_values"
ZONE_PIVOT_FILTERS = "pivot_filters"

ALL_ZONES: Tuple[str, ...] = (
    ZONE_FILTERS,
    ZONE_SORT,
    ZONE_GROUP_BY,
    ZONE_METRICS,
    ZONE_PIVOT_ROWS,
    ZONE_PIVOT_COLUMNS,
    ZONE_PIVOT_VALUES,
    ZONE_PIVOT_FILTERS,
)

AGGREGATION_ZONES: Set[str] = {ZONE_GROUP_BY, ZONE_METRICS}
PIVOT_ZONES: Set[str] = {ZONE_PIVOT_ROWS, ZONE_PIVOT_COLUMNS, ZONE_PIVOT_VALUES, ZONE_PIVOT_FILTERS}
PIVOT_DIMENSION_ZONES: Set[str] = {ZONE_PIVOT_ROWS, ZONE_PIVOT_COLUMNS, ZONE_PIVOT_FILTERS}
# 按 (column_id, 操作) 去重的配置区，其余按 column_id 去重
OPERATION_ZONES: Set[str] = {ZONE_METRICS, ZONE_PIVOT_VALUES}

# 面向用户的配置区名称
ZONE_LABELS: Dict[str, str] = {
    ZONE_FILTERS: "Filters",
    ZONE_SORT: "Sort",
    ZONE_GROUP_BY: "Group By",
    ZONE_METRICS: "Metrics",
    ZONE_PIVOT_ROWS: "Rows",
    ZONE_PIVOT_COLUMNS: "Columns",
    ZONE_PIVOT_VALUES: "Values",
    ZONE_PIVOT_FILTERS: "Pivot Filters",
}

# 条目 ID 前缀
ENTRY_ID_PREFIXES: Dict[str, str] = {
    ZONE_FILTERS: "filter",
    ZONE_METRICS: "metric",
    ZONE_PIVOT_ROWS: "pivot-row",
    ZONE_PIVOT_COLUMNS: "pivot-col",
    ZONE_PIVOT_VALUES: "pivot-val",
    ZONE_PIVOT_FILTERS: "pivot-filter",
}

# 聚合操作（顺序即默认分配顺序）
AGGREGATION_TYPES: Tuple[str, ...] = ("sum", "average", "min", "max", "count")

# 列类型 → 允许的聚合操作
OPERATIONS_BY_COLUMN_TYPE: Dict[str, Tuple[str, ...]] = {
    "number": AGGREGATION_TYPES,
    "text": ("count",),
    "date": ("count",),
}

AGGREGATION_LABELS: Dict[str, str] = {
    "sum": "Sum",
    "average": "Average",
    "min": "Min",
    "max": "Max",
    "count": "Count",
}

# 列类型 → 过滤操作符（value, label）
FILTER_OPERATORS_BY_TYPE: Dict[str, List[Tuple[str, str]]] = {
    "text": [
        ("equals", "equals"),
        ("not_equals", "not equals"),
        ("contains", "contains"),
        ("not_contains", "not contains"),
        ("starts_with", "starts with"),
        ("ends_with", "ends with"),
    ],
    "number": [
        ("equals", "equals"),
        ("not_equals", "not equals"),
        ("greater_than", "greater than"),
        ("less_than", "less than"),
        ("between", "between"),
    ],
    "date": [
        ("equals", "equals"),
        ("greater_than", "greater than"),
        ("less_than", "less than"),
        ("between", "between"),
        ("after", "after"),
        ("before", "before"),
    ],
}

DEFAULT_FILTER_OPERATOR: Dict[str, str] = {
    "text": "contains",
    "number": "greater_than",
    "date": "greater_than",
}

# 日期粒度
TIME_UNITS: Tuple[str, ...] = ("day", "month", "quarter", "year")
DEFAULT_TIME_UNIT = "day"

SORT_DIRECTIONS: Set[str] = {"asc", "desc"}

# 图表类型
CHART_TYPES: Set[str] = {
    "line", "bar", "area", "scatter",
    "pie", "donut", "heatmap", "cycleplot", "histogram"
}
SERIES_CHART_TYPES: Set[str] = {"line", "bar", "area", "scatter"}

# 图表类型 → 相关绑定字段（清空时只动这些字段）
BINDING_FIELDS_BY_CHART_TYPE: Dict[str, Tuple[str, ...]] = {
    "line": ("x_axis_key", "series_configs"),
    "bar": ("x_axis_key", "series_configs"),
    "area": ("x_axis_key", "series_configs"),
    "scatter": ("x_axis_key", "series_configs"),
    "pie": ("label_key", "value_key"),
    "donut": ("label_key", "value_key"),
    "heatmap": ("x_axis_key", "y_axis_key", "value_key"),
    "cycleplot": ("cycle_key", "period_key", "value_key"),
    "histogram": ("x_axis_key",),
}

# 系列配色
SERIES_PALETTE: Tuple[str, ...] = (
    "#5470c6", "#91cc75", "#fac858", "#ee6666", "#73c0de",
    "#3ba272", "#fc8452", "#9a60b4", "#ea7ccc", "#2f4554",
)
