"""图表绑定相关模型"""

from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator

from datazones.core.constants import CHART_TYPES
from datazones.models.column import ColumnType

ChartType = Literal["line", "bar", "area", "scatter", "pie", "donut", "heatmap", "cycleplot", "histogram"]


class SeriesConfig(BaseModel):
    """图表系列"""
    id: str = Field(..., description="系列ID")
    data_column: str = Field(..., description="数据列（透视结果列名）")
    name: str = Field(..., description="显示名称")
    color: Optional[str] = Field(None, description="颜色")
    visible: bool = Field(True, description="是否显示")


class ChartBinding(BaseModel):
    """图表输入通道绑定（不同图表类型使用不同字段）"""
    x_axis_key: Optional[str] = Field(None, description="X轴（line/bar/area/scatter/heatmap/histogram）")
    y_axis_key: Optional[str] = Field(None, description="Y轴（heatmap）")
    value_key: Optional[str] = Field(None, description="数值列（pie/donut/heatmap/cycleplot）")
    label_key: Optional[str] = Field(None, description="标签列（pie/donut）")
    cycle_key: Optional[str] = Field(None, description="周期列（cycleplot）")
    period_key: Optional[str] = Field(None, description="期间列（cycleplot）")
    series_configs: List[SeriesConfig] = Field(default_factory=list, description="系列（line/bar/area/scatter）")


class PivotHeader(BaseModel):
    """透视结果列描述"""
    id: Optional[str] = Field(None, description="列ID")
    name: str = Field(..., description="列名")
    type: ColumnType = Field("text", description="列类型")
    value_id: Optional[str] = Field(None, description="来源透视值ID（值列才有）")

    @property
    def key(self) -> str:
        """绑定使用的列键"""
        return self.name


class ChartState(BaseModel):
    """当前图表状态"""
    chart_type: ChartType = Field("line", description="图表类型")
    binding: ChartBinding = Field(default_factory=ChartBinding, description="通道绑定")

    @field_validator("chart_type")
    @classmethod
    def validate_chart_type(cls, v: str) -> str:
        if v not in CHART_TYPES:
            raise ValueError(f"不支持的图表类型: {v}")
        return v


class AutoSelectResult(BaseModel):
    """自动选择结果"""
    binding: ChartBinding = Field(..., description="新的绑定")
    skipped_count: int = Field(0, ge=0, description="超出上限被跳过的系列数")
