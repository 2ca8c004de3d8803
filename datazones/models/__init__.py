"""数据模型包"""

from datazones.models.column import (
    Column,
    ColumnCatalog,
    UnknownColumnError
)
from datazones.models.zones import (
    FilterCondition,
    FilterSpec,
    SortLevel,
    GroupByColumn,
    AggregationMetric,
    PivotDimension,
    PivotValue,
    PivotConfig,
    ZoneStore,
    new_entry_id
)
from datazones.models.chart import (
    SeriesConfig,
    ChartBinding,
    PivotHeader,
    ChartState,
    AutoSelectResult
)

__all__ = [
    # Column
    "Column",
    "ColumnCatalog",
    "UnknownColumnError",
    # Zones
    "FilterCondition",
    "FilterSpec",
    "SortLevel",
    "GroupByColumn",
    "AggregationMetric",
    "PivotDimension",
    "PivotValue",
    "PivotConfig",
    "ZoneStore",
    "new_entry_id",
    # Chart
    "SeriesConfig",
    "ChartBinding",
    "PivotHeader",
    "ChartState",
    "AutoSelectResult",
]
