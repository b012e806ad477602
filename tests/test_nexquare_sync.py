from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock

import pytest

from nexquare import repository
from nexquare.service import NexquareSync


class FakeNexClient:
    base_url = "https://nex.test"

    def __init__(self, pages: dict[str, object] | None = None, json_handler=None) -> None:
        self.pages = pages or {}
        self.json_handler = json_handler
        self.json_calls: list[tuple[str, dict]] = []

    async def paginate_offset(self, path, extract, params=None, limit=100):
        for suffix, resp in self.pages.items():
            if path.endswith(suffix):
                return extract(resp)
        return []

    async def get_json(self, path, params=None):
        self.json_calls.append((path, dict(params or {})))
        return self.json_handler(path, params or {})


@pytest.fixture(autouse=True)
def school_lookup(monkeypatch):
    monkeypatch.setattr(repository, "get_school_sourced_id", AsyncMock(return_value="SRC-1"))


async def test_student_allocations_resolve_ids_and_replace_years(monkeypatch):
    for name in ("upsert_subjects", "upsert_cohorts", "upsert_groups", "upsert_homerooms"):
        monkeypatch.setattr(repository, name, AsyncMock(return_value=0))
    monkeypatch.setattr(
        repository,
        "bulk_get_student_ids",
        AsyncMock(return_value={"ST-1": {"id": 5, "sourced_id": "ST-1"}}),
    )
    monkeypatch.setattr(repository, "bulk_get_group_ids", AsyncMock(return_value={"G-1": 9}))
    replace = AsyncMock(return_value=2)
    monkeypatch.setattr(repository, "replace_student_allocations", replace)
    allocation = {
        "sourcedId": "ST-1",
        "academicYear": "2024-2025",
        "subject": [{"subjectSourcedId": "SUB-1", "subjectId": 3, "subjectName": "Maths", "allocationType": "core"}],
        "groups": [{"sourcedId": "G-1", "groupName": "Blue"}],
    }
    sync = NexquareSync(FakeNexClient(pages={"studentsAllocation": {"users": [allocation]}}), school_id="NX-1")

    await sync.get_student_allocations()

    repository.upsert_subjects.assert_awaited_once_with(
        [{"sourced_id": "SUB-1", "subject_id": 3, "subject_name": "Maths", "school_id": "SRC-1"}]
    )
    school_id, years, rows = replace.await_args.args
    assert school_id == "SRC-1"
    assert years == ["2024-2025"]
    assert [r.get("subject_sourced_id") for r in rows] == ["SUB-1", None]
    assert rows[0]["student_id"] == 5
    assert rows[1]["group_id"] == 9


async def test_staff_allocations_filter_year_and_clear_only_that_year(monkeypatch):
    monkeypatch.setattr(repository, "bulk_get_staff_ids", AsyncMock(return_value={"TCH-1": 4}))
    replace = AsyncMock(return_value=1)
    monkeypatch.setattr(repository, "replace_staff_allocations", replace)
    allocations = [
        {"sourcedId": "TCH-1", "academicYear": "2023-2024", "subject": [{"subjectSourcedId": "OLD"}]},
        {"sourcedId": "TCH-1", "academicYear": "2024-2025", "subject": [{"subjectSourcedId": "NEW"}]},
    ]
    sync = NexquareSync(FakeNexClient(pages={"staffAllocation": {"users": allocations}}), school_id="NX-1")

    await sync.get_staff_allocations(academic_year="2024-2025")

    school_id, years, rows = replace.await_args.args
    assert school_id == "SRC-1"
    assert years == ["2024-2025"]
    assert [(r["staff_id"], r["subject_sourced_id"]) for r in rows] == [(4, "NEW")]


async def test_staff_allocations_without_matching_year_write_nothing(monkeypatch):
    monkeypatch.setattr(repository, "bulk_get_staff_ids", AsyncMock(return_value={}))
    replace = AsyncMock()
    monkeypatch.setattr(repository, "replace_staff_allocations", replace)
    allocations = [{"sourcedId": "TCH-1", "academicYear": "2023-2024", "subject": [{"subjectSourcedId": "OLD"}]}]
    sync = NexquareSync(FakeNexClient(pages={"staffAllocation": {"users": allocations}}), school_id="NX-1")

    await sync.get_staff_allocations(academic_year="2025-2026")

    replace.assert_not_awaited()


async def test_daily_plans_fetch_week_windows_and_replace_range(monkeypatch):
    replace = AsyncMock(return_value=1)
    monkeypatch.setattr(repository, "replace_daily_plans", replace)

    def handler(path, params):
        if params["fromDate"] == "2024-01-01":
            return {"plans": [{"lessonId": "L1", "date": "2024-01-02"}]}
        return {"data": []}

    client = FakeNexClient(json_handler=handler)
    sync = NexquareSync(client, school_id="NX-1")

    await sync.get_daily_plans(from_date=date(2024, 1, 1), to_date=date(2024, 1, 10))

    windows = [(p["fromDate"], p["toDate"], p["schooolId"]) for _, p in client.json_calls]
    assert windows == [("2024-01-01", "2024-01-07", "NX-1"), ("2024-01-08", "2024-01-10", "NX-1")]
    school_id, start, end, rows = replace.await_args.args
    assert (school_id, start, end) == ("SRC-1", date(2024, 1, 1), date(2024, 1, 10))
    assert [(r["lesson_id"], r["plan_date"]) for r in rows] == [("L1", date(2024, 1, 2))]


async def test_daily_attendance_fetches_months_and_maps_students(monkeypatch):
    lookup = AsyncMock(return_value={"ST-42": {"id": 9, "sourced_id": "ST-42"}})
    monkeypatch.setattr(repository, "bulk_get_student_ids", lookup)
    replace = AsyncMock(return_value=1)
    monkeypatch.setattr(repository, "replace_daily_attendance", replace)

    def handler(path, params):
        if params["startDate"] == "2024-01-15":
            return {"attendance": [{"studentId": 42, "attendanceDate": "2024-01-16", "status": "P"}, {"status": "A"}]}
        return {"attendance": []}

    client = FakeNexClient(json_handler=handler)
    sync = NexquareSync(client, school_id="NX-1")

    records = await sync.get_daily_attendance(start_date=date(2024, 1, 15), end_date=date(2024, 2, 10))

    assert len(records) == 2
    assert [(p["startDate"], p["endDate"]) for _, p in client.json_calls] == [
        ("2024-01-15", "2024-01-31"),
        ("2024-02-01", "2024-02-10"),
    ]
    assert lookup.await_args.args[0] == ["42", "ST-42"]
    school_id, start, end, rows = replace.await_args.args
    assert (school_id, start, end) == ("SRC-1", date(2024, 1, 15), date(2024, 2, 10))
    assert len(rows) == 1
    assert rows[0]["student_id"] == 9
    assert rows[0]["attendance_date"] == date(2024, 1, 16)
