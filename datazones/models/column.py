"""列目录相关模型"""

from typing import Dict, Iterator, List, Literal, Optional
from pydantic import BaseModel, Field

ColumnType = Literal["text", "number", "date"]


class UnknownColumnError(KeyError):
    """列不存在"""

    def __init__(self, column_id: str):
        super().__init__(column_id)
        self.column_id = column_id

    def __str__(self) -> str:
        return f"Unknown column: {self.column_id}"


class Column(BaseModel):
    """数据集列（只读）"""
    id: str = Field(..., description="列唯一标识")
    name: str = Field(..., description="列名")
    type: ColumnType = Field("text", description="语义类型: text, number, date")
    date_format: Optional[str] = Field(None, description="日期格式（仅日期列）")

    model_config = {"frozen": True}


class ColumnCatalog:
    """列目录：来自数据集表头的只读视图"""

    def __init__(self, columns: List[Column]):
        self._columns: List[Column] = list(columns)
        self._by_id: Dict[str, Column] = {c.id: c for c in self._columns}

    @classmethod
    def from_headers(cls, headers: List[dict], default_date_format: Optional[str] = None) -> "ColumnCatalog":
        """
        从数据集表头构建目录

        Args:
            headers: 表头列表，支持 id / headerId / name / type / dateFormat 字段
            default_date_format: 数据集级别的日期格式（日期列缺省时使用）
        """
        columns = []
        for idx, h in enumerate(headers):
            col_type = h.get("type") or "text"
            columns.append(Column(
                id=str(h.get("id") or h.get("headerId") or h.get("name") or f"col_{idx + 1}"),
                name=h.get("name") or "",
                type=col_type,
                date_format=(h.get("dateFormat") or h.get("date_format") or default_date_format)
                if col_type == "date" else None,
            ))
        return cls(columns)

    def get(self, column_id: str) -> Optional[Column]:
        return self._by_id.get(column_id)

    def require(self, column_id: str) -> Column:
        """获取列，不存在时抛出 UnknownColumnError"""
        column = self._by_id.get(column_id)
        if column is None:
            raise UnknownColumnError(column_id)
        return column

    def name_of(self, column_id: str) -> str:
        column = self._by_id.get(column_id)
        return column.name if column else column_id

    def __iter__(self) -> Iterator[Column]:
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    def __contains__(self, column_id: object) -> bool:
        return column_id in self._by_id

    def to_list(self) -> List[dict]:
        return [c.model_dump() for c in self._columns]
