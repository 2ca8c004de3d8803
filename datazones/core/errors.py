"""异常定义

所有可恢复错误都不会修改 ZoneStore，只放弃引发错误的那次操作
"""

from typing import Any, Dict, List


class DataZonesError(Exception):
    """项目根异常（结构化：code / message / detail）"""

    code = "error"

    def __init__(self, message: str, code: str | None = None, detail: Dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.detail = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "detail": self.detail}


class ZoneRejection(DataZonesError):
    """配置区操作被拒绝（重复、操作用尽、非法转移等）"""

    code = "rejected"


class ModeConflict(ZoneRejection):
    """聚合 / 透视模式冲突，需要用户确认清空后切换"""

    code = "mode_conflict"

    def __init__(self, message: str, target_mode: str, zone: str, column_id: str | None = None):
        super().__init__(message, detail={"target_mode": target_mode, "zone": zone, "column_id": column_id})
        self.target_mode = target_mode
        self.zone = zone
        self.column_id = column_id


class MalformedConfigError(DataZonesError):
    """导入的配置不合法（整体拒绝，保留原状态）"""

    code = "malformed_config"

    def __init__(self, message: str, missing_keys: List[str] | None = None, cause: Exception | None = None):
        super().__init__(message, detail={"missing_keys": missing_keys or [], "cause": str(cause) if cause else None})
        self.missing_keys = missing_keys or []
        self.cause = str(cause) if cause else None


class RecomputeError(DataZonesError):
    """数据集操作执行错误"""

    code = "recompute_failed"

    def __init__(self, message: str, sql: str | None = None, params: List[Any] | None = None, cause: Exception | None = None):
        super().__init__(message, detail={"sql": sql, "cause": str(cause) if cause else None})
        self.sql = sql
        self.params = params or []
        self.cause = str(cause) if cause else None
