"""HTTP 接口测试"""

import pytest
from fastapi.testclient import TestClient

from datazones.api.main import app
from datazones.engines.session import get_session_manager


COLUMNS = [
    {"id": "date", "name": "Date", "type": "date", "dateFormat": "YYYY-MM-DD"},
    {"id": "region", "name": "Region", "type": "text"},
    {"id": "country", "name": "Country", "type": "text"},
    {"id": "sales", "name": "Sales", "type": "number"},
]

ROWS = [
    ["2024-01-05", "East", "US", 100],
    ["2024-01-20", "West", "US", 50],
    ["2024-02-03", "East", "CA", 25],
]


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def session_id(client):
    response = client.post("/sessions", json={"columns": COLUMNS, "rows": ROWS})
    assert response.status_code == 200
    return response.json()["session_id"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_assign_and_duplicate(client, session_id):
    response = client.post(f"/sessions/{session_id}/assign", json={"zone": "sort", "column_id": "sales"})
    assert response.status_code == 200
    assert response.json()["store"]["sort"] == [{"column_id": "sales", "direction": "asc"}]

    response = client.post(f"/sessions/{session_id}/assign", json={"zone": "sort", "column_id": "sales"})
    assert response.status_code == 409
    assert response.json() == {"code": "duplicate_assignment", "message": 'Column "Sales" already exists in Sort'}


def test_unknown_zone(client, session_id):
    response = client.post(f"/sessions/{session_id}/assign", json={"zone": "nowhere", "column_id": "sales"})
    assert response.status_code == 400


def test_pivot_binding(client, session_id):
    client.post(f"/sessions/{session_id}/assign", json={"zone": "pivot_rows", "column_id": "country"})
    response = client.post(f"/sessions/{session_id}/assign", json={"zone": "pivot_values", "column_id": "sales"})
    assert response.status_code == 200

    body = response.json()
    assert body["mode"] == "pivot"
    binding = body["chart"]["binding"]
    assert binding["x_axis_key"] == "Country"
    assert [s["name"] for s in binding["series_configs"]] == ["Sum of Sales"]

    data = client.get(f"/sessions/{session_id}/data").json()
    assert [h["name"] for h in data["headers"]] == ["Country", "Sum of Sales"]
    assert data["rows"] == [["CA", 25], ["US", 150]]


def test_mode_switch(client, session_id):
    client.post(f"/sessions/{session_id}/assign", json={"zone": "group_by", "column_id": "region"})
    response = client.post(f"/sessions/{session_id}/assign", json={"zone": "pivot_rows", "column_id": "country"})
    assert response.status_code == 409
    assert response.json()["code"] == "mode_conflict"

    body = client.post(f"/sessions/{session_id}/mode-switch/confirm").json()
    assert body["store"]["group_by"] == []
    assert [d["column_id"] for d in body["store"]["pivot_rows"]] == ["country"]


def test_drag_end_after_move(client, session_id):
    body = client.post(f"/sessions/{session_id}/assign", json={"zone": "pivot_rows", "column_id": "region"}).json()
    entry_id = body["store"]["pivot_rows"][0]["id"]
    client.post(
        f"/sessions/{session_id}/move",
        json={"source_zone": "pivot_rows", "target_zone": "pivot_values", "entry_id": entry_id},
    )

    response = client.post(f"/sessions/{session_id}/drag-end", json={"zone": "pivot_rows", "entry_id": entry_id})
    assert response.status_code == 200
    assert len(response.json()["store"]["pivot_values"]) == 1
    assert get_session_manager().get(session_id).transfer.in_flight == set()


def test_import_export(client, session_id):
    client.post(f"/sessions/{session_id}/assign", json={"zone": "filters", "column_id": "region"})
    exported = client.get(f"/sessions/{session_id}/export").json()
    assert len(exported["filters"]) == 1

    response = client.post(f"/sessions/{session_id}/import", json={"filters": []})
    assert response.status_code == 422
    assert response.json()["code"] == "malformed_config"
    assert client.get(f"/sessions/{session_id}/export").json() == exported


def test_preview(client, session_id):
    assert client.get(f"/sessions/{session_id}/preview").json()["text"] == "No operations applied yet"
    client.post(f"/sessions/{session_id}/assign", json={"zone": "sort", "column_id": "date"})
    body = client.get(f"/sessions/{session_id}/preview").json()
    assert body["sections"][0]["items"] == ["1. Date (asc)"]


def test_delete_session(client, session_id):
    assert client.delete(f"/sessions/{session_id}").status_code == 200
    assert client.get(f"/sessions/{session_id}").status_code == 404
    assert client.delete(f"/sessions/{session_id}").status_code == 404


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
