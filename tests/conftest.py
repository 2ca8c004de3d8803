"""测试夹具"""

import pytest

from datazones.models import Column, ColumnCatalog


@pytest.fixture
def catalog() -> ColumnCatalog:
    """示例数据集：Date / Region / Country / Sales / Revenue"""
    return ColumnCatalog([
        Column(id="date", name="Date", type="date", date_format="YYYY-MM-DD"),
        Column(id="region", name="Region", type="text"),
        Column(id="country", name="Country", type="text"),
        Column(id="sales", name="Sales", type="number"),
        Column(id="revenue", name="Revenue", type="number"),
    ])
