"""API tests for the FastAPI application."""

from io import BytesIO
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook

from student_dashboard import assistant, main

HEADER = ["รหัสนักศึกษา", "ชื่อ", "นามสกุล", "สถานะ", "GPAX", "หลักสูตร3"]


def workbook_bytes(sheets):
    wb = Workbook()
    wb.remove(wb.active)
    for name, rows in sheets:
        ws = wb.create_sheet(title=name)
        for row in rows:
            ws.append(row)
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@pytest.fixture
def client():
    main.store.clear()
    yield TestClient(main.app)
    main.store.clear()


@pytest.fixture
def uploaded(client):
    file_bytes = workbook_bytes([
        ("2566", [HEADER, ["001", "ก", "ข", "ปกติ", 1.5, "IT"], ["002", "ค", "ง", "ปกติ", 3.6, "CS"]]),
        ("2567", [HEADER, ["003", "จ", "ฉ", "พ้นสภาพ", 1.0, "CS"]]),
        ("Notes", [["comment"], ["hello"]]),
    ])
    response = client.post("/upload", files={"file": ("students.xlsx", file_bytes, XLSX)})
    assert response.status_code == 200
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_upload(uploaded):
    """Test upload returns records count, skipped sheets and aggregates."""
    assert uploaded["success"] == True
    assert uploaded["record_count"] == 3
    assert uploaded["file_name"] == "students.xlsx"
    assert [s["name"] for s in uploaded["skipped_sheets"]] == ["Notes"]

    aggregates = uploaded["aggregates"]
    assert aggregates["total_records"] == 3
    assert aggregates["unique_curriculums"] == ["CS", "IT"]
    assert aggregates["probation"]["total"] == 1
    assert [r["academic_year"] for r in aggregates["year_crosstab"]] == ["2566", "2567"]


def test_records_and_analytics(client, uploaded):
    records = client.get("/records").json()
    assert [r["student_id"] for r in records["records"]] == ["001", "002", "003"]
    assert records["records"][2]["academic_year"] == "2567"

    analytics = client.get("/analytics").json()
    assert analytics["status_distribution"][0] == {"name": "ปกติ", "count": 2, "percentage_str": "66.67"}

    tables = client.get("/analytics/tables").json()
    assert tables["curriculum"]["rows"][0] == ["CS", 2, "66.67%"]


def test_no_dataset_returns_404(client):
    assert client.get("/records").status_code == 404
    assert client.get("/analytics").status_code == 404
    assert client.post("/ask", json={"question": "hi"}).status_code == 404


def test_upload_invalid_extension(client):
    response = client.post("/upload", files={"file": ("students.csv", b"a,b", "text/csv")})
    assert response.status_code == 400
    assert "Invalid file type" in response.json()["detail"]


def test_upload_without_valid_records(client):
    """Test a workbook with no usable sheet reports no valid data."""
    file_bytes = workbook_bytes([
        ("A", [["รหัสนักศึกษา", "สถานะ"], ["001", "ปกติ"]]),
        ("B", [HEADER]),
    ])
    response = client.post("/upload", files={"file": ("students.xlsx", file_bytes, XLSX)})

    assert response.status_code == 400
    assert "No valid student data found" in response.json()["detail"]


def test_failed_upload_keeps_previous_dataset(client, uploaded):
    response = client.post("/upload", files={"file": ("broken.xlsx", b"not excel", XLSX)})

    assert response.status_code == 400
    assert client.get("/records").json()["record_count"] == 3


def test_download_csv(client, uploaded):
    response = client.get("/download.csv")
    assert response.status_code == 200
    lines = response.text.strip().splitlines()
    assert lines[0].startswith("Student ID,Title,First Name")
    assert len(lines) == 4


def test_clear_dataset(client, uploaded):
    assert client.delete("/dataset").status_code == 200
    assert client.get("/records").status_code == 404


def test_ask(client, uploaded, monkeypatch):
    """Test the answer is returned along with its extracted blocks."""
    seen = {}

    def fake_ask(question, records, max_records=500):
        seen["question"] = question
        seen["count"] = len(records)
        return "Probation:\n| ID | GPAX |\n|---|---|\n| 001 | 1.50 |"

    monkeypatch.setattr(assistant, "ask", fake_ask)
    response = client.post("/ask", json={"question": "Who is on probation?"})

    assert response.status_code == 200
    body = response.json()
    assert seen == {"question": "Who is on probation?", "count": 3}
    assert body["truncated"] == False
    assert body["context_records"] == 3
    assert body["blocks"] == [
        {"kind": "paragraph", "text": "Probation:"},
        {"kind": "table", "headers": ["ID", "GPAX"], "rows": [["001", "1.50"]]},
    ]


def test_extract(client):
    response = client.post("/extract", json={"text": "| A | B |\n| 1 | 2 |"})
    assert response.status_code == 200
    assert response.json()["blocks"] == [
        {"kind": "paragraph", "text": "| A | B |"},
        {"kind": "paragraph", "text": "| 1 | 2 |"},
    ]


def test_ask_while_another_question_runs(client, uploaded, monkeypatch):
    """Test a second question is refused while one is being answered."""
    monkeypatch.setattr(main, "ask_lock", SimpleNamespace(locked=lambda: True))

    response = client.post("/ask", json={"question": "Who is on probation?"})

    assert response.status_code == 429
    assert "already being answered" in response.json()["detail"]


def test_superseded_upload_is_discarded(client, uploaded, monkeypatch):
    """Test an upload overtaken by a newer one does not replace the dataset."""
    real_ingest = main.ingest_workbook

    def ingest_then_newer_upload_starts(file_bytes):
        result = real_ingest(file_bytes)
        main.store.begin()
        return result

    monkeypatch.setattr(main, "ingest_workbook", ingest_then_newer_upload_starts)
    file_bytes = workbook_bytes([("2568", [HEADER, ["099", "ก", "ข", "ปกติ", 2.5, "DS"]])])
    response = client.post("/upload", files={"file": ("older.xlsx", file_bytes, XLSX)})

    assert response.status_code == 409
    records = client.get("/records").json()
    assert records["file_name"] == "students.xlsx"
    assert records["record_count"] == 3


def test_failed_newer_upload_does_not_block_older(client):
    """Test an upload that fails while an older one runs lets the older one commit."""
    older = main.store.begin()

    broken = client.post("/upload", files={"file": ("broken.xlsx", b"not excel", XLSX)})
    assert broken.status_code == 400

    result = main.ingest_workbook(workbook_bytes([("2568", [HEADER, ["099", "ก", "ข", "ปกติ", 2.5, "DS"]])]))
    assert main.store.commit(older, result, "older.xlsx") == True
    assert client.get("/records").json()["file_name"] == "older.xlsx"
