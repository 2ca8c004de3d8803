"""Dataset Operations - 过滤 / 排序 / 聚合 / 透视重算

过滤、排序、聚合编译为参数化 SQL 由 DuckDB 执行；透视在 pandas 中完成，
产出的结果列即自动系列选择使用的透视结果
"""

import time
import duckdb
import pandas as pd
from typing import Any, Dict, List, Optional, Set, Tuple
from pydantic import BaseModel, Field

from datazones.core.constants import AGGREGATION_LABELS
from datazones.core.errors import RecomputeError
from datazones.models.chart import PivotHeader
from datazones.models.column import ColumnCatalog
from datazones.models.zones import (
    AggregationMetric,
    FilterCondition,
    FilterSpec,
    GroupByColumn,
    PivotConfig,
    PivotDimension,
    ZoneStore,
)
from datazones.utils.logger import log

TABLE_NAME = "dataset"
ROW_ORDER_COLUMN = "__row"

# SQL 日期粒度格式
_SQL_TIME_FORMATS = {
    "day": "%Y-%m-%d",
    "month": "%Y-%m",
    "year": "%Y",
}

_PANDAS_AGGREGATIONS = {
    "sum": "sum",
    "average": "mean",
    "min": "min",
    "max": "max",
    "count": "count",
}

# 数值清洗时去掉的格式字符
_NUMBER_NOISE = r"[,\s$€£¥₹]"


class RecomputeResult(BaseModel):
    """重算结果"""
    mode: str = Field("raw", description="raw / aggregation / pivot")
    headers: List[PivotHeader] = Field(default_factory=list, description="结果列")
    rows: List[List[Any]] = Field(default_factory=list, description="结果行")
    execution_time_ms: float = Field(0, description="执行时间（毫秒）")

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.rows, columns=[h.name for h in self.headers])


def bucket_date(value: Any, time_unit: Optional[str]) -> str:
    """按日期粒度取值（无法解析时原样返回）"""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ""
    if not time_unit:
        return str(value)
    ts = pd.to_datetime(value, errors="coerce")
    if pd.isna(ts):
        return str(value)
    if time_unit == "quarter":
        return f"{ts.year}-Q{(ts.month - 1) // 3 + 1}"
    return ts.strftime(_SQL_TIME_FORMATS[time_unit])


def _unique_name(name: str, used: Set[str]) -> str:
    candidate = name
    n = 2
    while candidate in used:
        candidate = f"{name} ({n})"
        n += 1
    used.add(candidate)
    return candidate


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == []


def parse_number(value: Any) -> Optional[float]:
    """过滤值 → 数值（允许千分位逗号），无法解析时返回 None"""
    try:
        return float(str(value).replace(",", ""))
    except ValueError:
        return None


def parse_timestamp(value: Any) -> Optional[pd.Timestamp]:
    if isinstance(value, (list, dict)):
        return None
    ts = pd.to_datetime(value, errors="coerce")
    if pd.isna(ts):
        return None
    return ts


def _to_float(value: Any) -> float:
    number = parse_number(value)
    if number is None:
        raise RecomputeError(f"过滤值不是数值: {value}")
    return number


def _to_timestamp(value: Any) -> str:
    ts = parse_timestamp(value)
    if ts is None:
        raise RecomputeError(f"过滤值不是日期: {value}")
    return ts.strftime("%Y-%m-%d %H:%M:%S")


class DatasetOperations:
    """数据集操作执行器"""

    def _quote_identifier(self, name: str) -> str:
        """安全引用标识符"""
        escaped = name.replace('"', '""')
        return f'"{escaped}"'

    def _escape_like(self, value: str) -> str:
        """转义 LIKE 模式字符"""
        return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")

    def _resolve(self, df: pd.DataFrame, column_id: str, catalog: ColumnCatalog) -> Optional[str]:
        """列 ID → DataFrame 列名（DataFrame 可以按 ID 或列名命名）"""
        if column_id in df.columns:
            return column_id
        name = catalog.name_of(column_id)
        if name in df.columns:
            return name
        return None

    def _require(self, df: pd.DataFrame, column_id: str, catalog: ColumnCatalog) -> str:
        resolved = self._resolve(df, column_id, catalog)
        if resolved is None:
            raise RecomputeError(f"数据集中不存在列: {column_id}")
        return resolved

    def _column_type(self, column_id: str, catalog: ColumnCatalog) -> str:
        column = catalog.get(column_id)
        return column.type if column else "text"

    def _text_expr(self, col: str) -> str:
        return f"lower(CAST({self._quote_identifier(col)} AS VARCHAR))"

    def _number_expr(self, col: str) -> str:
        return f"TRY_CAST({self._quote_identifier(col)} AS DOUBLE)"

    def _date_expr(self, col: str) -> str:
        return f"TRY_CAST({self._quote_identifier(col)} AS TIMESTAMP)"

    def _build_condition(self, col: str, column_type: str, cond: FilterCondition) -> Optional[Tuple[str, List[Any]]]:
        """
        构建单个过滤条件

        Returns:
            (SQL 片段, 参数)；值未填写的条件返回 None
        """
        op = cond.operator
        value = cond.value

        if op == "between":
            if _is_blank(value) or _is_blank(cond.value_end):
                return None
            if column_type == "date":
                expr = self._date_expr(col)
                return (
                    f"{expr} BETWEEN LEAST(CAST(? AS TIMESTAMP), CAST(? AS TIMESTAMP)) "
                    f"AND GREATEST(CAST(? AS TIMESTAMP), CAST(? AS TIMESTAMP))",
                    [_to_timestamp(value), _to_timestamp(cond.value_end), _to_timestamp(value), _to_timestamp(cond.value_end)],
                )
            low, high = sorted([_to_float(value), _to_float(cond.value_end)])
            return f"{self._number_expr(col)} BETWEEN ? AND ?", [low, high]

        if op in ("equals", "not_equals"):
            candidates = value if isinstance(value, list) else [value]
            candidates = [c for c in candidates if c is not None]
            if not candidates:
                return None
            placeholders = ", ".join(["?"] * len(candidates))
            if column_type == "number":
                clause = f"{self._number_expr(col)} IN ({placeholders})"
                params = [_to_float(c) for c in candidates]
            else:
                clause = f"CAST({self._quote_identifier(col)} AS VARCHAR) IN ({placeholders})"
                params = [str(c) for c in candidates]
            if op == "not_equals":
                clause = f"COALESCE(NOT ({clause}), TRUE)"
            return clause, params

        if _is_blank(value):
            return None

        if op in ("contains", "not_contains", "starts_with", "ends_with"):
            escaped = self._escape_like(str(value).lower())
            pattern = {
                "contains": f"%{escaped}%",
                "not_contains": f"%{escaped}%",
                "starts_with": f"{escaped}%",
                "ends_with": f"%{escaped}",
            }[op]
            clause = f"{self._text_expr(col)} LIKE ? ESCAPE '\\'"
            if op == "not_contains":
                clause = f"COALESCE(NOT ({clause}), TRUE)"
            return clause, [pattern]

        if op in ("greater_than", "less_than", "after", "before"):
            symbol = ">" if op in ("greater_than", "after") else "<"
            if column_type == "date":
                return f"{self._date_expr(col)} {symbol} CAST(? AS TIMESTAMP)", [_to_timestamp(value)]
            return f"{self._number_expr(col)} {symbol} ?", [_to_float(value)]

        raise ValueError(f"不支持的操作符: {op}")

    def _build_filter(self, df: pd.DataFrame, spec: FilterSpec, catalog: ColumnCatalog) -> Optional[Tuple[str, List[Any]]]:
        """同列条件 OR 连接"""
        col = self._resolve(df, spec.column_id, catalog)
        if col is None:
            log.warning(f"过滤列不存在，忽略: {spec.column_id}")
            return None
        clauses, params = [], []
        for cond in spec.conditions:
            built = self._build_condition(col, spec.column_type, cond)
            if built is None:
                continue
            clauses.append(built[0])
            params.extend(built[1])
        if not clauses:
            return None
        return f"({' OR '.join(clauses)})", params

    def _build_order(self, df: pd.DataFrame, store: ZoneStore, catalog: ColumnCatalog) -> List[str]:
        parts = []
        for level in store.sort:
            col = self._resolve(df, level.column_id, catalog)
            if col is None:
                log.warning(f"排序列不存在，忽略: {level.column_id}")
                continue
            column_type = self._column_type(level.column_id, catalog)
            if column_type == "number":
                expr = self._number_expr(col)
            elif column_type == "date":
                expr = self._date_expr(col)
            else:
                expr = self._text_expr(col)
            parts.append(f"{expr} {level.direction.upper()} NULLS LAST")
        parts.append(self._quote_identifier(ROW_ORDER_COLUMN))
        return parts

    def _build_time_bucket(self, col: str, time_unit: str) -> str:
        """构建时间分桶表达式"""
        ts = self._date_expr(col)
        if time_unit == "quarter":
            return f"strftime({ts}, '%Y') || '-Q' || CAST(quarter({ts}) AS VARCHAR)"
        return f"strftime({ts}, '{_SQL_TIME_FORMATS[time_unit]}')"

    def _group_expr(self, df: pd.DataFrame, gb: GroupByColumn, catalog: ColumnCatalog) -> str:
        col = self._require(df, gb.id, catalog)
        if gb.time_unit and self._column_type(gb.id, catalog) == "date":
            return self._build_time_bucket(col, gb.time_unit)
        return self._quote_identifier(col)

    def _metric_expr(self, df: pd.DataFrame, metric: AggregationMetric, catalog: ColumnCatalog) -> str:
        if metric.type == "count":
            return "COUNT(*)"
        col = self._require(df, metric.column_id, catalog)
        func = "AVG" if metric.type == "average" else metric.type.upper()
        return f"{func}({self._number_expr(col)})"

    def build_sql(self, df: pd.DataFrame, store: ZoneStore, catalog: ColumnCatalog) -> Tuple[str, List[Any], List[PivotHeader]]:
        """
        构建 SQL

        Returns:
            (sql, params, 结果列)
        """
        params: List[Any] = []
        conditions = []
        for spec in store.filters:
            built = self._build_filter(df, spec, catalog)
            if built is not None:
                conditions.append(built[0])
                params.extend(built[1])
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        order_parts = self._build_order(df, store, catalog)
        rank_col = self._quote_identifier("__rn")
        base_sql = " ".join(p for p in [
            f"SELECT *, ROW_NUMBER() OVER (ORDER BY {', '.join(order_parts)}) AS {rank_col}",
            f"FROM {TABLE_NAME}",
            where_clause,
        ] if p)

        if not store.has_aggregation:
            columns = [c for c in df.columns if c != ROW_ORDER_COLUMN]
            select_clause = ", ".join(self._quote_identifier(c) for c in columns)
            headers = [self._raw_header(c, catalog) for c in columns]
            sql = f"WITH base AS ({base_sql}) SELECT {select_clause} FROM base ORDER BY {rank_col}"
            return sql, params, headers

        used_names: Set[str] = set()
        select_parts, group_exprs, headers = [], [], []
        for gb in store.group_by:
            expr = self._group_expr(df, gb, catalog)
            name = _unique_name(gb.name + (f" ({gb.time_unit})" if gb.time_unit else ""), used_names)
            select_parts.append(f"{expr} AS {self._quote_identifier(name)}")
            group_exprs.append(expr)
            headers.append(PivotHeader(id=gb.id, name=name, type=self._column_type(gb.id, catalog)))

        for metric in store.metrics:
            if metric.alias:
                base_name = metric.alias
            elif metric.type == "count":
                base_name = "count()"
            else:
                base_name = f"{metric.type}({catalog.name_of(metric.column_id)})"
            name = _unique_name(base_name, used_names)
            select_parts.append(f"{self._metric_expr(df, metric, catalog)} AS {self._quote_identifier(name)}")
            headers.append(PivotHeader(id=metric.id, name=name, type="number"))

        sql = f"WITH base AS ({base_sql}) SELECT {', '.join(select_parts)} FROM base"
        if group_exprs:
            sql = f"{sql} GROUP BY {', '.join(group_exprs)} ORDER BY MIN({rank_col})"
        return sql, params, headers

    def _raw_header(self, col: str, catalog: ColumnCatalog) -> PivotHeader:
        column = catalog.get(col)
        if column is None:
            column = next((c for c in catalog if c.name == col), None)
        if column is None:
            return PivotHeader(id=col, name=col)
        return PivotHeader(id=column.id, name=column.name, type=column.type)

    def _execute(self, df: pd.DataFrame, sql: str, params: List[Any]) -> pd.DataFrame:
        frame = df.copy()
        frame[ROW_ORDER_COLUMN] = range(len(frame))
        conn = duckdb.connect()
        try:
            conn.register(TABLE_NAME, frame)
            return conn.execute(sql, params).fetchdf()
        except duckdb.Error as e:
            log.error(f"重算执行失败: {e} | SQL: {sql} | params: {params}")
            raise RecomputeError("重算执行失败", sql=sql, params=params, cause=e) from e
        finally:
            conn.close()

    def apply(self, df: pd.DataFrame, store: ZoneStore, catalog: ColumnCatalog) -> RecomputeResult:
        """
        按 filter → sort → aggregate / pivot 顺序执行

        Args:
            df: 原始数据（列名为列 ID 或列名）
            store: 配置
            catalog: 列目录

        Returns:
            RecomputeResult
        """
        start_time = time.time()
        log.info(f"执行重算: rows={len(df)}, filters={len(store.filters)}, sort={len(store.sort)}")

        sql, params, headers = self.build_sql(df, store, catalog)
        log.debug(f"生成 SQL: {sql}")
        result_df = self._execute(df, sql, params)

        if store.has_pivot:
            pivot = store.pivot_config()
            if pivot.rows or pivot.columns or pivot.values:
                headers, rows = self.pivot(result_df, pivot, catalog)
                mode = "pivot"
            else:
                rows = self._to_rows(result_df)
                mode = "raw"
        else:
            rows = self._to_rows(result_df)
            mode = "aggregation" if store.has_aggregation else "raw"

        execution_time = (time.time() - start_time) * 1000
        return RecomputeResult(
            mode=mode,
            headers=headers,
            rows=rows,
            execution_time_ms=round(execution_time, 2),
        )

    def _to_rows(self, frame: pd.DataFrame) -> List[List[Any]]:
        cleaned = frame.astype(object).where(pd.notna(frame), None)
        return cleaned.values.tolist()

    def _dimension_keys(self, df: pd.DataFrame, dim: PivotDimension, catalog: ColumnCatalog) -> pd.Series:
        col = self._require(df, dim.column_id, catalog)
        if dim.column_type == "date" and dim.time_unit:
            return df[col].map(lambda v: bucket_date(v, dim.time_unit))
        return df[col].map(lambda v: "" if v is None or (isinstance(v, float) and pd.isna(v)) else str(v))

    def _numeric(self, series: pd.Series) -> pd.Series:
        cleaned = series.astype(str).str.replace(_NUMBER_NOISE, "", regex=True)
        return pd.to_numeric(cleaned, errors="coerce")

    def pivot(self, df: pd.DataFrame, pivot: PivotConfig, catalog: ColumnCatalog) -> Tuple[List[PivotHeader], List[List[Any]]]:
        """
        透视

        行维度组合按字典序排列；有列维度时按列维度组合排序，每个组合下按值的配置顺序展开。
        值列命名 "<Op> of <Column>"，有列维度时追加 " (v1 | v2)"，别名优先
        """
        row_names = [f"__r{i}" for i in range(len(pivot.rows))]
        col_names = [f"__c{i}" for i in range(len(pivot.columns))]
        keys = pd.DataFrame(index=df.index)
        for name, dim in zip(row_names, pivot.rows):
            keys[name] = self._dimension_keys(df, dim, catalog)
        for name, dim in zip(col_names, pivot.columns):
            keys[name] = self._dimension_keys(df, dim, catalog)

        def _tuples(names: List[str]) -> List[Tuple[str, ...]]:
            if not names:
                return [()]
            return sorted({tuple(r) for r in keys[names].itertuples(index=False, name=None)})

        row_keys = _tuples(row_names)
        col_keys = _tuples(col_names)
        group_names = row_names + col_names
        cells: Dict[Tuple, Dict[Tuple, Any]] = {}

        for value in pivot.values:
            frame = keys.copy()
            if value.aggregation_type == "count":
                frame["__v"] = 1
            else:
                frame["__v"] = self._numeric(df[self._require(df, value.column_id, catalog)])
                frame = frame.dropna(subset=["__v"])
            func = _PANDAS_AGGREGATIONS[value.aggregation_type]
            if group_names:
                grouped = frame.groupby(group_names, sort=False)["__v"].agg(func)
                items = grouped.items()
            else:
                items = [((), frame["__v"].agg(func))] if len(frame) else []
            for key, result in items:
                key = key if isinstance(key, tuple) else (key,)
                row_key, col_key = key[:len(row_names)], key[len(row_names):]
                cells.setdefault(row_key, {})[(col_key, value.id)] = result.item() if hasattr(result, "item") else result

        if not pivot.values and col_names:
            for combo in keys[group_names].itertuples(index=False, name=None):
                cells.setdefault(combo[:len(row_names)], {})[(combo[len(row_names):], None)] = 0

        headers: List[PivotHeader] = []
        for dim in pivot.rows:
            column = catalog.get(dim.column_id)
            header_type = column.type if column else dim.column_type
            headers.append(PivotHeader(id=dim.id, name=dim.name, type=header_type))

        present_cols = {ck for row in cells.values() for ck, _ in row}
        columns_layout: List[Tuple[Tuple, Optional[str]]] = []
        for col_key in col_keys:
            if col_names and col_key not in present_cols:
                continue
            if pivot.values:
                for value in pivot.values:
                    columns_layout.append((col_key, value.id))
                    label = AGGREGATION_LABELS[value.aggregation_type]
                    column_name = catalog.name_of(value.column_id) if value.column_id in catalog else value.name
                    name = value.alias.strip() or f"{label} of {column_name}"
                    if col_names and not value.alias.strip():
                        name = f"{name} ({' | '.join(col_key)})"
                    headers.append(PivotHeader(id=f"col-{len(headers)}", name=name, type="number", value_id=value.id))
            elif col_names:
                columns_layout.append((col_key, None))
                headers.append(PivotHeader(id=f"col-{len(headers)}", name=" | ".join(col_key), type="number"))

        rows: List[List[Any]] = []
        for row_key in row_keys:
            row_cells = cells.get(row_key, {})
            row = list(row_key)
            for layout_key in columns_layout:
                if layout_key in row_cells:
                    row.append(row_cells[layout_key])
                else:
                    row.append(0 if pivot.values else None)
            rows.append(row)

        log.info(f"透视完成: rows={len(rows)}, columns={len(headers)}")
        return headers, rows


# 全局单例
_dataset_operations = None


def get_dataset_operations() -> DatasetOperations:
    """获取 DatasetOperations 单例"""
    global _dataset_operations
    if _dataset_operations is None:
        _dataset_operations = DatasetOperations()
    return _dataset_operations
