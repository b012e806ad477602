from __future__ import annotations

import io
import json
from datetime import date

import openpyxl
import pytest

from core.http import UpstreamError
from nexquare import service


def test_week_windows_cover_range_in_seven_day_chunks():
    windows = list(service.week_windows(date(2024, 1, 1), date(2024, 1, 16)))
    assert windows == [
        (date(2024, 1, 1), date(2024, 1, 7)),
        (date(2024, 1, 8), date(2024, 1, 14)),
        (date(2024, 1, 15), date(2024, 1, 16)),
    ]


def test_month_windows_split_on_month_end():
    windows = list(service.month_windows(date(2024, 1, 20), date(2024, 3, 5)))
    assert windows == [
        (date(2024, 1, 20), date(2024, 1, 31)),
        (date(2024, 2, 1), date(2024, 2, 29)),
        (date(2024, 3, 1), date(2024, 3, 5)),
    ]


def test_year_matches():
    assert service.year_matches("2024 - 2025", "2024 -  2025")
    assert service.year_matches("2024-2025", "2024")
    assert not service.year_matches("2023-2024", "2025")
    assert not service.year_matches(None, "2024-2025")


def test_list_from_shapes():
    assert service.list_from([1, 2], "orgs") == [1, 2]
    assert service.list_from({"orgs": [{"a": 1}]}, "orgs") == [{"a": 1}]
    assert service.list_from({"sourcedId": "x"}, "orgs") == [{"sourcedId": "x"}]
    assert service.list_from({"sourcedId": "x"}, "orgs", wrap_single=False) == []
    assert service.list_from({}, "orgs") == []
    assert service.list_from("nope", "orgs") == []


def test_map_student_builds_full_name_and_class_details():
    row = service.map_student(
        {
            "sourcedId": "ST-1",
            "givenName": "Ada",
            "familyName": "Lovelace",
            "classDetails": {"grade": "G5", "section": "B"},
            "grades": ["5"],
        },
        "SCH-1",
    )
    assert row["full_name"] == "Ada Lovelace"
    assert row["user_type"] == "student"
    assert row["class_grade"] == "G5"
    assert row["class_section"] == "B"
    assert json.loads(row["grades"]) == ["5"]


def test_map_attendance_resolves_numeric_ids_with_prefix():
    students = {"ST-42": {"id": 9, "sourced_id": "ST-42"}}
    row = service.map_attendance(
        {"studentId": 42, "attendanceDate": "2024-03-04", "status": {"status": "Present", "code": "P"}},
        "SCH-1",
        students,
        default_date=date(2024, 3, 1),
    )
    assert row["student_id"] == 9
    assert row["student_sourced_id"] == "ST-42"
    assert row["attendance_date"] == date(2024, 3, 4)
    assert row["status"] == "Present"
    assert row["category_code"] == "P"


def test_map_attendance_without_student_is_none():
    assert service.map_attendance({"status": "P"}, "SCH-1", {}, default_date=date(2024, 1, 1)) is None


def test_flatten_nested_attendance_list():
    records = service.flatten_attendance(
        {
            "data": {
                "attendanceList": [
                    {"studentId": "1", "attendanceList": [{"attendanceDate": "2024-01-02", "status": "P"}]},
                ]
            }
        }
    )
    assert records == [{"attendanceDate": "2024-01-02", "status": "P", "studentId": "1", "date": "2024-01-02"}]


def test_parse_csv_skips_blank_rows():
    content = "\ufeffStudent Name,Max Value\n Ada ,10\n,\n".encode("utf-8")
    assert service.parse_csv(content) == [{"Student Name": "Ada", "Max Value": "10"}]


def test_parse_excel_reads_first_sheet():
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.append(["Student Name", "Max Value", "Term ID"])
    sheet.append(["Ada", 10.0, 3])
    sheet.append([None, None, None])
    buffer = io.BytesIO()
    workbook.save(buffer)
    content = buffer.getvalue()

    assert service.is_excel(content, "application/octet-stream")
    assert service.parse_assessment_file(content, "application/octet-stream") == [
        {"Student Name": "Ada", "Max Value": "10", "Term ID": "3"}
    ]


def test_broken_excel_is_parse_error():
    with pytest.raises(UpstreamError) as exc:
        service.parse_assessment_file(b"PK\x03\x04garbage", "application/zip")
    assert exc.value.code == "PARSE_ERROR"


def test_map_assessment_truncates_and_parses_numbers():
    row = service.map_assessment(
        {"Component Value": "x" * 600, "Max Value": "12.5", "Academic Year": "2024-2025"},
        "SCH-1",
    )
    assert len(row["component_value"]) == service.COMPONENT_VALUE_MAX_CHARS
    assert row["max_value"] == 12.5
    assert row["academic_year"] == "2024-2025"
    assert service.map_assessment({"Max Value": "n/a"}, None)["max_value"] is None
