"""ZoneStore 导入 / 导出"""

import json
from typing import Any, Dict, Optional, Union
from pydantic import ValidationError

from datazones.core.constants import ALL_ZONES, OPERATION_ZONES
from datazones.core.errors import MalformedConfigError
from datazones.engines.assignment_validator import available_operations
from datazones.models.column import ColumnCatalog
from datazones.models.zones import ZoneStore
from datazones.utils.logger import log

REQUIRED_KEYS = ALL_ZONES


def serialize_store(store: ZoneStore) -> Dict[str, Any]:
    """导出为扁平 JSON 结构（每个配置区一个键，条目 ID 原样保留）"""
    return store.model_dump(mode="json")


def dumps_store(store: ZoneStore, indent: Optional[int] = 2) -> str:
    return json.dumps(serialize_store(store), ensure_ascii=False, indent=indent)


def deserialize_store(data: Union[Dict[str, Any], str], catalog: Optional[ColumnCatalog] = None) -> ZoneStore:
    """
    导入配置

    Args:
        data: 导出的 dict 或 JSON 字符串
        catalog: 可选，提供时校验列引用与列类型

    Raises:
        MalformedConfigError: 缺少必需键、结构不合法或违反配置区约束
    """
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise MalformedConfigError("Configuration is not valid JSON", cause=e)

    if not isinstance(data, dict):
        raise MalformedConfigError("Configuration must be an object")

    missing = [key for key in REQUIRED_KEYS if key not in data]
    if missing:
        log.warning(f"导入配置缺少键: {missing}")
        raise MalformedConfigError(f"Configuration is missing required keys: {', '.join(missing)}", missing_keys=missing)

    try:
        store = ZoneStore.model_validate(data)
    except ValidationError as e:
        log.warning(f"导入配置校验失败: {e.error_count()} errors")
        raise MalformedConfigError("Configuration is invalid", cause=e)

    if catalog is not None:
        _check_against_catalog(store, catalog)

    log.info(f"导入配置成功: {sum(len(store.entries(z)) for z in ALL_ZONES)} entries")
    return store


def _check_against_catalog(store: ZoneStore, catalog: ColumnCatalog) -> None:
    for zone in ALL_ZONES:
        for entry in store.entries(zone):
            column = catalog.get(entry.column_id)
            if column is None:
                raise MalformedConfigError(f"Configuration references unknown column: {entry.column_id}")
            if zone in OPERATION_ZONES and entry.operation not in available_operations(column.type):
                raise MalformedConfigError(
                    f'Operation "{entry.operation}" is not available for column "{column.name}"'
                )
