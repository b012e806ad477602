"""
Per-school Nexquare sync.

`NexquareSync` wraps one `NexquareClient` (one tenant config). Each `get_*`
method fetches one OneRoster resource for a school, maps it and writes it to
the nex schema, then returns the raw records it fetched.

Per-record mapping errors are counted and logged; a failed bulk write raises.
"""

from __future__ import annotations

import calendar
import csv
import io
import json
import logging
import re
import zipfile
from datetime import date, datetime, timedelta
from typing import Any, Callable, Iterator

import asyncpg
import openpyxl

from core import convert
from core.http import UpstreamError

from . import repository
from .client import ENDPOINTS, NexquareClient

logger = logging.getLogger(__name__)

PLAN_WINDOW_DAYS = 7
ATTENDANCE_PAGE_LIMIT = 1000
ASSESSMENT_CHUNK_SIZE = 10000
ASSESSMENT_FILE_NAME = "assessment-data"
ZIP_MAGIC = b"PK\x03\x04"
COMPONENT_VALUE_MAX_CHARS = 500

_DIGITS_RE = re.compile(r"^\d+$")


def format_date(value: date) -> str:
    return value.isoformat()


def list_from(response: Any, *keys: str, wrap_single: bool = True) -> list[Any]:
    """
    Pull a record list out of a response that may be a bare list, keyed, or a
    single object. With `wrap_single=False` an unkeyed object yields [].
    """
    if isinstance(response, list):
        return response
    if not isinstance(response, dict):
        return []
    for key in keys:
        value = response.get(key)
        if isinstance(value, list):
            return value
    if not response or not wrap_single:
        return []
    return [response]


def _json_or_none(value: Any) -> str | None:
    return json.dumps(value) if value else None


def week_windows(start: date, end: date) -> Iterator[tuple[date, date]]:
    cursor = start
    while cursor <= end:
        window_end = min(cursor + timedelta(days=PLAN_WINDOW_DAYS - 1), end)
        yield cursor, window_end
        cursor = window_end + timedelta(days=1)


def month_windows(start: date, end: date) -> Iterator[tuple[date, date]]:
    cursor = start
    while cursor <= end:
        last_day = calendar.monthrange(cursor.year, cursor.month)[1]
        window_end = min(date(cursor.year, cursor.month, last_day), end)
        yield cursor, window_end
        cursor = window_end + timedelta(days=1)


def normalize_year(value: str | None) -> str:
    return re.sub(r"\s+", " ", value or "").strip().lower()


def year_matches(row_year: str | None, wanted: str) -> bool:
    """
    Exact match after normalizing; a bare 4-digit year also matches spans like "2024-2025".
    """
    row = normalize_year(row_year)
    target = normalize_year(wanted)
    if row == target:
        return True
    return bool(re.fullmatch(r"\d{4}", target)) and target in row


# Mapping


def map_school(org: dict[str, Any]) -> dict[str, Any]:
    return {
        "sourced_id": org.get("sourcedId"),
        "name": convert.as_str(org.get("name")) or "",
        "identifier": convert.as_str(org.get("identifier")),
        "status": convert.as_str(org.get("status")),
        "type": convert.as_str(org.get("type")),
        "date_last_modified": convert.as_datetime(org.get("dateLastModified")),
        "metadata": _json_or_none(org.get("metadata")),
    }


def map_student(s: dict[str, Any], school_id: str | None) -> dict[str, Any]:
    given = convert.as_str(s.get("givenName"))
    family = convert.as_str(s.get("familyName"))
    details = s.get("classDetails") if isinstance(s.get("classDetails"), dict) else {}
    grades = s.get("grades")
    return {
        "school_id": school_id,
        "sourced_id": s.get("sourcedId"),
        "identifier": convert.as_str(s.get("identifier")),
        "full_name": convert.as_str(s.get("fullName")) or (f"{given or ''} {family or ''}".strip() or None),
        "first_name": given,
        "last_name": family,
        "email": convert.as_str(s.get("email")),
        "username": convert.as_str(s.get("username")),
        "user_type": convert.as_str(s.get("userType")) or "student",
        "status": convert.as_str(s.get("status")),
        "date_last_modified": convert.as_datetime(s.get("dateLastModified")),
        "academic_year": convert.as_str(s.get("academicYear")),
        "metadata": json.dumps(s),
        "current_grade": convert.as_str(s.get("currentGrade")),
        "current_class": convert.as_str(convert.pick(s, "currentClass", "currentClassName")),
        "current_class_id": convert.as_str(s.get("currentClassId")),
        "grades": json.dumps(grades) if isinstance(grades, list) else None,
        "phone": convert.as_str(s.get("phone")),
        "mobile_number": convert.as_str(s.get("mobileNumber")),
        "sms": convert.as_str(s.get("sms")),
        "gender": convert.as_str(s.get("gender")),
        "student_dob": convert.as_date(s.get("studentDob")),
        "religion": convert.as_str(s.get("religion")),
        "admission_date": convert.as_date(s.get("admissionDate")),
        "join_date": convert.as_date(s.get("joinDate")),
        "parent_name": convert.as_str(s.get("parentName")),
        "guardian_one_full_name": convert.as_str(s.get("guardianOneFullName")),
        "guardian_two_full_name": convert.as_str(s.get("guardianTwoFullName")),
        "guardian_one_mobile": convert.as_str(s.get("guardianOneMobile")),
        "guardian_two_mobile": convert.as_str(s.get("guardianTwoMobile")),
        "primary_contact": convert.as_str(s.get("primaryContact")),
        "student_reg_id": convert.as_str(s.get("studentRegID")),
        "family_code": convert.as_str(s.get("familyCode")),
        "student_national_id": convert.as_str(s.get("studentnationalId")),
        "student_status": convert.as_str(s.get("studentStatus")),
        "class_grade": convert.as_str(details.get("grade")),
        "class_section": convert.as_str(details.get("section")),
        "homeroom_teacher_sourced_id": convert.as_str(details.get("homeroomTeacherSourcedId")),
    }


def map_staff(s: dict[str, Any], school_id: str | None) -> dict[str, Any]:
    given = convert.as_str(s.get("givenName"))
    family = convert.as_str(s.get("familyName"))
    return {
        "school_id": school_id,
        "sourced_id": s.get("sourcedId"),
        "identifier": convert.as_str(s.get("identifier")),
        "full_name": f"{given or ''} {family or ''}".strip() or None,
        "first_name": given,
        "last_name": family,
        "email": convert.as_str(s.get("email")),
        "username": convert.as_str(s.get("username")),
        "user_type": convert.as_str(s.get("userType")) or "teacher",
        "role": convert.as_str(s.get("role")),
        "status": convert.as_str(s.get("status")),
        "date_last_modified": convert.as_datetime(s.get("dateLastModified")),
        "metadata": _json_or_none(s.get("metadata")),
    }


def map_class(c: dict[str, Any], school_id: str | None) -> dict[str, Any]:
    grades = c.get("grades")
    title = convert.as_str(c.get("title"))
    return {
        "school_id": school_id,
        "sourced_id": c.get("sourcedId"),
        "title": title,
        "class_name": title,
        "grade_name": convert.as_str(grades[0]) if isinstance(grades, list) and grades else None,
        "course_code": convert.as_str(c.get("classCode")),
        "status": convert.as_str(c.get("status")),
        "date_last_modified": convert.as_datetime(c.get("dateLastModified")),
        "metadata": _json_or_none(c.get("metadata")),
    }


def map_allocation_master(a: dict[str, Any], school_id: str | None) -> dict[str, Any]:
    return {
        "school_id": school_id,
        "sourced_id": convert.as_str(convert.pick(a, "sourcedId", "sourced_id")),
        "allocation_type": convert.as_str(convert.pick(a, "allocationType", "allocation_type")),
        "entity_type": convert.as_str(convert.pick(a, "entityType", "entity_type")),
        "entity_sourced_id": convert.as_str(convert.pick(a, "entitySourcedId", "entity_sourced_id")),
        "entity_name": convert.as_str(convert.pick(a, "entityName", "entity_name")),
        "status": convert.as_str(a.get("status")),
        "date_last_modified": convert.as_datetime(a.get("dateLastModified")),
        "metadata": _json_or_none(a.get("metadata")),
    }


def _nested(record: dict[str, Any], *keys: str) -> list[dict[str, Any]]:
    """
    First list under `keys` at the top level, then under `record["user"]`.
    """
    user = record.get("user") if isinstance(record.get("user"), dict) else {}
    for source in (record, user):
        for key in keys:
            value = source.get(key)
            if isinstance(value, list) and value:
                return [v for v in value if isinstance(v, dict)]
    return []


def extract_allocation_entities(allocations: list[dict[str, Any]], school_id: str | None) -> dict[str, list[dict[str, Any]]]:
    """
    Unique subjects, cohorts, groups and homerooms referenced by student allocations.
    """
    subjects: dict[str, dict[str, Any]] = {}
    cohorts: dict[str, dict[str, Any]] = {}
    groups: dict[str, dict[str, Any]] = {}
    homerooms: dict[str, dict[str, Any]] = {}
    for data in allocations:
        # subject.sourcedId is the allocation; subjectSourcedId is the subject itself
        for s in _nested(data, "subject", "subjects"):
            key = convert.as_str(convert.pick(s, "subjectSourcedId", "subject_sourced_id"))
            if key and key not in subjects:
                subjects[key] = {
                    "sourced_id": key,
                    "subject_id": convert.as_int(convert.pick(s, "subjectId", "subject_id")),
                    "subject_name": convert.as_str(convert.pick(s, "subjectName", "subject_name")) or "Unknown",
                    "school_id": school_id,
                }
        for c in _nested(data, "cohort", "cohorts"):
            key = convert.as_str(convert.pick(c, "sourcedId", "sourced_id"))
            if key and key not in cohorts:
                cohorts[key] = {
                    "sourced_id": key,
                    "cohort_id": convert.as_int(convert.pick(c, "cohortId", "cohort_id")),
                    "cohort_name": convert.as_str(convert.pick(c, "cohortName", "cohort_name")) or "Unknown",
                    "school_id": school_id,
                }
        for g in _nested(data, "group", "groups"):
            key = convert.as_str(convert.pick(g, "sourcedId", "sourced_id"))
            if key and key not in groups:
                groups[key] = {
                    "sourced_id": key,
                    "group_name": convert.as_str(convert.pick(g, "groupName", "group_name")) or "Unknown",
                    "unique_key": convert.as_str(convert.pick(g, "uniqueKey", "unique_key")),
                    "school_id": school_id,
                }
        for h in _nested(data, "homeRoom", "homeRooms", "homeroom", "homerooms"):
            key = convert.as_str(convert.pick(h, "sourcedId", "sourced_id"))
            if key and key not in homerooms:
                homerooms[key] = {
                    "sourced_id": key,
                    "class_name": convert.as_str(convert.pick(h, "className", "class_name")),
                    "grade_name": convert.as_str(convert.pick(h, "gradeName", "grade_name")),
                    "school_id": school_id,
                }
    return {
        "subjects": list(subjects.values()),
        "cohorts": list(cohorts.values()),
        "groups": list(groups.values()),
        "homerooms": list(homerooms.values()),
    }


def _map_each(
    items: list[dict[str, Any]],
    mapper: Callable[[dict[str, Any]], dict[str, Any]],
    label: str,
) -> list[dict[str, Any]]:
    rows = []
    skipped = 0
    for item in items:
        try:
            rows.append(mapper(item))
        except (TypeError, ValueError, AttributeError, KeyError) as e:
            skipped += 1
            logger.error("nexquare_map_failed kind=%s sourced_id=%s error=%s", label, item.get("sourcedId") if isinstance(item, dict) else None, e)
    if skipped:
        logger.warning("nexquare_map_skipped kind=%s count=%s", label, skipped)
    return rows


def _person_key(data: dict[str, Any], alt_key: str) -> str | None:
    return convert.as_str(data.get("sourcedId") or data.get(alt_key))


def _shared_allocation_rows(data: dict[str, Any], base: dict[str, Any]) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for s in _nested(data, "subject"):
        rows.append(
            {
                **base,
                "subject_sourced_id": convert.as_str(convert.pick(s, "subjectSourcedId", "subject_sourced_id")),
                "subject_id": convert.as_int(convert.pick(s, "subjectId", "subject_id")),
                "subject_name": convert.as_str(convert.pick(s, "subjectName", "subject_name")),
                "allocation_type": convert.as_str(convert.pick(s, "allocationType", "allocation_type")),
            }
        )
    for c in _nested(data, "cohort"):
        rows.append(
            {
                **base,
                "cohort_sourced_id": convert.as_str(convert.pick(c, "sourcedId", "sourced_id")),
                "cohort_id": convert.as_int(convert.pick(c, "cohortId", "cohort_id")),
                "cohort_name": convert.as_str(convert.pick(c, "cohortName", "cohort_name")),
            }
        )
    for lesson in _nested(data, "lesson"):
        rows.append(
            {
                **base,
                "lesson_sourced_id": convert.as_str(convert.pick(lesson, "sourcedId", "sourced_id")),
                "lesson_id": convert.as_str(convert.pick(lesson, "lessonId", "lesson_id")),
                "lesson_name": convert.as_str(convert.pick(lesson, "lessonName", "lesson_name")),
                "class_id": convert.as_int(convert.pick(lesson, "classId", "class_id")),
            }
        )
    return rows


def build_student_allocation_rows(
    allocations: list[dict[str, Any]],
    school_id: str | None,
    student_ids: dict[str, dict[str, Any]],
    group_ids: dict[str, int],
) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for data in allocations:
        student_sourced_id = _person_key(data, "studentSourcedId")
        if not student_sourced_id:
            continue
        info = student_ids.get(student_sourced_id) or {}
        base = {
            "student_id": info.get("id"),
            "student_sourced_id": student_sourced_id,
            "school_id": school_id,
            "academic_year": convert.as_str(data.get("academicYear")),
        }
        rows.extend(_shared_allocation_rows(data, base))
        for h in _nested(data, "homeRoom"):
            rows.append(
                {
                    **base,
                    "homeroom_sourced_id": convert.as_str(h.get("sourcedId")),
                    "homeroom_class_name": convert.as_str(h.get("className")),
                    "homeroom_grade_name": convert.as_str(h.get("gradeName")),
                }
            )
        for g in _nested(data, "group", "groups"):
            group_sourced_id = convert.as_str(convert.pick(g, "sourcedId", "sourced_id"))
            rows.append(
                {
                    **base,
                    "group_sourced_id": group_sourced_id,
                    "group_id": group_ids.get(group_sourced_id) if group_sourced_id else None,
                    "group_name": convert.as_str(convert.pick(g, "groupName", "group_name")),
                }
            )
    return rows


def build_staff_allocation_rows(
    allocations: list[dict[str, Any]],
    school_id: str | None,
    staff_ids: dict[str, int],
) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for data in allocations:
        staff_sourced_id = _person_key(data, "staffSourcedId")
        if not staff_sourced_id:
            continue
        base = {
            "staff_id": staff_ids.get(staff_sourced_id),
            "staff_sourced_id": staff_sourced_id,
            "school_id": school_id,
            "academic_year": convert.as_str(data.get("academicYear")),
        }
        rows.extend(_shared_allocation_rows(data, base))
    return rows


def map_daily_plan(plan: dict[str, Any], school_id: str | None, default_date: date) -> dict[str, Any]:
    def first(*keys: str) -> str | None:
        return convert.as_str(convert.pick(plan, *keys))

    return {
        "school_id": school_id,
        "plan_date": convert.as_date(convert.pick(plan, "date", "planDate", "plan_date")) or default_date,
        "timetable_lesson_sourced_id": first("timetableLessonSourcedId", "timetable_lesson_sourced_id", "ttLesson"),
        "lesson_id": first("lessonId", "lesson_id"),
        "lesson_name": first("lessonName", "lesson_name"),
        "subject_sourced_id": first("subjectSourcedId", "subject_sourced_id", "subject"),
        "subject_name": first("subjectName", "subject_name"),
        "class_sourced_id": first("classSourcedId", "class_sourced_id", "class"),
        "class_name": first("className", "class_name"),
        "cohort_sourced_id": first("cohortSourcedId", "cohort_sourced_id", "cohort"),
        "cohort_name": first("cohortName", "cohort_name"),
        "teacher_sourced_id": first("teacherSourcedId", "teacher_sourced_id", "teacher"),
        "teacher_name": first("teacherName", "teacher_name"),
        "location_sourced_id": first("locationSourcedId", "location_sourced_id", "location"),
        "location_name": first("locationName", "location_name"),
        "start_time": first("startTime", "start_time"),
        "end_time": first("endTime", "end_time"),
        "period_number": convert.as_int(convert.pick(plan, "periodNumber", "period_number")),
        "status": convert.as_str(plan.get("status")),
        "metadata": _json_or_none(plan.get("metadata")),
    }


def flatten_attendance(response: Any) -> list[dict[str, Any]]:
    """
    Flatten the attendance payload shapes into one record per student-day.
    """
    if isinstance(response, dict):
        data = response.get("data")
        if isinstance(data, dict) and isinstance(data.get("attendanceList"), list):
            records = []
            for student in data["attendanceList"]:
                student_id = convert.pick(student, "studentId", "student_id")
                for entry in student.get("attendanceList") or []:
                    day = convert.pick(entry, "attendanceDate", "date", "attendance_date")
                    records.append({**entry, "studentId": student_id, "date": day, "attendanceDate": day})
            return records
        if isinstance(response.get("students"), list):
            records = []
            for student in response["students"]:
                sourced = student.get("sourcedId") or student.get("id")
                if isinstance(student.get("attendance"), dict):
                    for day, entry in student["attendance"].items():
                        records.append({**(entry if isinstance(entry, dict) else {}), "studentSourcedId": sourced, "date": day})
                else:
                    records.append({**student, "studentSourcedId": sourced})
            return records
    return list_from(response, "attendance", "data", "dailyAttendance")


def attendance_student_key(record: dict[str, Any]) -> str | None:
    student_id = convert.pick(record, "studentId", "student_id")
    return convert.as_str(
        record.get("sourcedId") or record.get("studentSourcedId") or record.get("sourcedID") or student_id
    )


def _attendance_status(record: dict[str, Any]) -> str | None:
    raw = record.get("status")
    if isinstance(raw, dict):
        status = convert.pick(raw, "status", "code", "value", "name") or json.dumps(raw)
    else:
        status = raw or record.get("attendanceStatus")
    if status is None:
        return None
    return str(status).strip().strip("\"'").strip() or None


ATTENDANCE_METADATA_KEYS = (
    ("classId", "class_id"),
    ("lateStatus", "late_status"),
    ("staffId", "staff_id"),
    ("staffFullName", "staff_full_name"),
    ("createdOn", "created_on"),
    ("createdBy", "created_by"),
    ("smsStatus", "sms_status"),
    ("copyStatus", "copy_status"),
    ("leavingEarly", "leaving_early"),
    ("attendanceDay", "attendance_day"),
    ("day", "day"),
    ("studentStatus", "student_status"),
    ("createdBySourceId", "created_by_source_id"),
    ("modifiedBySourceID", "modified_by_source_id"),
    ("attendanceDateTimestamp", "attendance_date_timestamp"),
)


def map_attendance(
    record: dict[str, Any],
    school_id: str | None,
    student_ids: dict[str, dict[str, Any]],
    *,
    default_date: date,
    category_required: bool = False,
    range_type: int = 0,
) -> dict[str, Any] | None:
    """
    Map one flattened attendance record; None when it names no student.
    """
    sourced_id = attendance_student_key(record)
    if not sourced_id:
        return None

    student_id = None
    info = student_ids.get(sourced_id)
    if info is None and _DIGITS_RE.match(sourced_id):
        info = student_ids.get(f"ST-{sourced_id}")
    if info is not None:
        student_id = info["id"]
        sourced_id = info["sourced_id"]

    metadata = {camel: convert.pick(record, camel, snake) for camel, snake in ATTENDANCE_METADATA_KEYS}
    if isinstance(record.get("metadata"), dict):
        metadata.update(record["metadata"])

    status_obj = record.get("status") if isinstance(record.get("status"), dict) else {}
    category_code = convert.pick(record, "categoryCode", "category_code") or convert.pick(
        status_obj, "categoryCode", "category_code", "code"
    )
    category_name = convert.pick(record, "categoryName", "category_name") or convert.pick(
        status_obj, "categoryName", "category_name", "name"
    )

    required = record.get("categoryRequired")
    return {
        "school_id": school_id,
        "student_id": student_id,
        "student_sourced_id": sourced_id,
        "attendance_date": convert.as_date(convert.pick(record, "attendanceDate", "date", "attendance_date")) or default_date,
        "status": _attendance_status(record),
        "category_code": convert.as_str(category_code),
        "category_name": convert.as_str(category_name),
        "category_required": convert.as_bool(required) if required is not None else category_required,
        "range_type": convert.as_int(convert.pick(record, "rangeType", "range_type")) or range_type,
        "notes": convert.as_str(record.get("notes")),
        "metadata": json.dumps(metadata, default=str),
    }


# Assessment exports


def is_excel(content: bytes, content_type: str) -> bool:
    lowered = content_type.lower()
    return (
        "spreadsheet" in lowered
        or "excel" in lowered
        or "application/vnd.openxmlformats" in lowered
        or content[:4] == ZIP_MAGIC
    )


def _cell_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_excel(content: bytes) -> list[dict[str, Any]]:
    """
    Rows of the first worksheet keyed by the header row.
    """
    workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    try:
        if not workbook.worksheets:
            raise ValueError("No worksheets found in Excel file")
        rows = workbook.worksheets[0].iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            return []
        names = [(_cell_text(h) or "").strip() for h in header]
        records = []
        for row in rows:
            if row is None or all(v is None or v == "" for v in row):
                continue
            records.append({name: _cell_text(value) for name, value in zip(names, row) if name})
        return records
    finally:
        workbook.close()


def parse_csv(content: bytes) -> list[dict[str, Any]]:
    text = content.decode("utf-8-sig", errors="replace")
    reader = csv.DictReader(io.StringIO(text))
    records = []
    for row in reader:
        cleaned = {(k or "").strip(): (v.strip() if isinstance(v, str) else v) for k, v in row.items() if k}
        if any(v not in (None, "") for v in cleaned.values()):
            records.append(cleaned)
    return records


def parse_assessment_file(content: bytes, content_type: str) -> list[dict[str, Any]]:
    try:
        if is_excel(content, content_type):
            return parse_excel(content)
        return parse_csv(content)
    except (ValueError, KeyError, OSError, csv.Error, zipfile.BadZipFile) as e:
        kind = "Excel" if is_excel(content, content_type) else "CSV"
        raise UpstreamError("PARSE_ERROR", f"{kind} parsing failed: {e}") from e


def _text(record: dict[str, Any], column: str) -> str | None:
    return convert.as_str(record.get(column))


def _number(record: dict[str, Any], column: str) -> float | None:
    value = convert.as_str(record.get(column))
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def map_assessment(record: dict[str, Any], school_id: str | None) -> dict[str, Any]:
    component_value = _text(record, "Component Value")
    return {
        "school_id": school_id,
        "school_name": _text(record, "School Name"),
        "region_name": _text(record, "Region Name"),
        "student_name": _text(record, "Student Name"),
        "register_number": _text(record, "Register Number"),
        "student_status": _text(record, "Student Status"),
        "grade_name": _text(record, "Grade Name"),
        "section_name": _text(record, "Section Name"),
        "class_name": _text(record, "Class Name"),
        "academic_year": _text(record, "Academic Year"),
        "subject_id": _text(record, "Subject ID"),
        "subject_name": _text(record, "Subject Name"),
        "term_id": _text(record, "Term ID"),
        "term_name": _text(record, "Term Name"),
        "component_name": _text(record, "Component Name"),
        "component_value": component_value[:COMPONENT_VALUE_MAX_CHARS] if component_value else None,
        "max_value": _number(record, "Max Value"),
        "data_type": _text(record, "Data Type"),
        "calculation_method": _text(record, "Calculation Method"),
        "mark_grade_name": _text(record, "Mark Grade Name"),
        "mark_rubric_name": _text(record, "Mark Rubric Name"),
    }


class NexquareSync:
    def __init__(self, client: NexquareClient, *, school_id: str | None = None) -> None:
        self.client = client
        self.current_school_id: str | None = school_id

    def set_current_school_id(self, school_id: str | None) -> None:
        self.current_school_id = school_id

    def _target(self, school_id: str | None) -> str:
        target = school_id or self.current_school_id
        if not target:
            raise ValueError("School ID is required")
        return target

    async def _school_sourced_id(self, school_id: str) -> str | None:
        sourced = await repository.get_school_sourced_id(school_id)
        if not sourced:
            logger.warning("nexquare_school_not_found sourced_id=%s fallback=null", school_id)
        return sourced

    async def authenticate(self) -> dict[str, Any]:
        try:
            await self.client.get_token(force_refresh=True)
            return {"success": True}
        except UpstreamError as e:
            logger.warning("nexquare_auth_failed base_url=%s error=%s", self.client.base_url, e)
            return {"success": False, "error": str(e)}

    async def get_schools(self) -> list[dict[str, Any]]:
        resp = await self.client.get_json(ENDPOINTS["schools"], {"offset": 0, "limit": 100})
        orgs = resp.get("orgs") if isinstance(resp, dict) else None
        if not isinstance(orgs, list):
            raise UpstreamError("INVALID_RESPONSE", "Invalid response format: missing orgs array")

        saved = errors = 0
        for org in orgs:
            try:
                await repository.upsert_school(map_school(org))
                saved += 1
            except (asyncpg.PostgresError, RuntimeError) as e:
                errors += 1
                logger.error("nexquare_school_save_failed sourced_id=%s error=%s", org.get("sourcedId"), e)
        logger.info("nexquare_schools_synced saved=%s errors=%s", saved, errors)
        return orgs

    async def _fetch_school_list(
        self,
        school_id: str,
        suffix: str,
        *keys: str,
        params: dict[str, Any] | None = None,
        wrap_single: bool = False,
    ) -> list[Any]:
        path = f"{ENDPOINTS['school_scoped']}/{school_id}/{suffix}"
        return await self.client.paginate_offset(path, lambda resp: list_from(resp, *keys, wrap_single=wrap_single), params)

    async def get_students(self, school_id: str | None = None) -> list[dict[str, Any]]:
        target = self._target(school_id)
        students = await self._fetch_school_list(target, "students/", "users", params={"fetchMode": 1})
        sourced = await self._school_sourced_id(target)
        rows = _map_each(students, lambda s: map_student(s, sourced), "student")
        await repository.upsert_students(rows)
        logger.info("nexquare_students_synced school_id=%s fetched=%s saved=%s", target, len(students), len(rows))
        return students

    async def get_staff(self, school_id: str | None = None) -> list[dict[str, Any]]:
        target = self._target(school_id)
        staff = await self._fetch_school_list(target, "teachers", "users", "teachers")
        sourced = await self._school_sourced_id(target)
        rows = _map_each(staff, lambda s: map_staff(s, sourced), "staff")
        await repository.upsert_staff(rows)
        logger.info("nexquare_staff_synced school_id=%s fetched=%s saved=%s", target, len(staff), len(rows))
        return staff

    async def get_classes(self, school_id: str | None = None) -> list[dict[str, Any]]:
        target = self._target(school_id)
        classes = await self._fetch_school_list(target, "classes/", "classes")
        sourced = await self._school_sourced_id(target)
        rows = _map_each(classes, lambda c: map_class(c, sourced), "class")
        await repository.upsert_classes(rows)
        logger.info("nexquare_classes_synced school_id=%s fetched=%s saved=%s", target, len(classes), len(rows))
        return classes

    async def get_allocation_master(self, school_id: str | None = None) -> list[dict[str, Any]]:
        target = self._target(school_id)
        allocations = await self.client.paginate_offset(
            f"{ENDPOINTS['allocation_master']}/{target}",
            lambda resp: list_from(resp, "data", "allocations"),
        )
        sourced = await self._school_sourced_id(target)
        rows = _map_each(allocations, lambda a: map_allocation_master(a, sourced), "allocation")
        await repository.replace_allocation_master(sourced, rows)
        logger.info("nexquare_allocation_master_synced school_id=%s saved=%s", target, len(rows))
        return allocations

    async def get_student_allocations(self, school_id: str | None = None, academic_year: str | None = None) -> list[dict[str, Any]]:
        target = self._target(school_id)
        sourced = await self._school_sourced_id(target)
        allocations = await self._fetch_school_list(target, "studentsAllocation", "users", "data", wrap_single=True)

        entities = extract_allocation_entities(allocations, sourced)
        await repository.upsert_subjects(entities["subjects"])
        await repository.upsert_cohorts(entities["cohorts"])
        await repository.upsert_groups(entities["groups"])
        await repository.upsert_homerooms(entities["homerooms"])

        student_ids = await repository.bulk_get_student_ids(
            [k for k in (_person_key(a, "studentSourcedId") for a in allocations) if k]
        )
        group_ids = await repository.bulk_get_group_ids([g["sourced_id"] for g in entities["groups"]])
        rows = build_student_allocation_rows(allocations, sourced, student_ids, group_ids)
        if not rows:
            logger.info("nexquare_student_allocations_empty school_id=%s", target)
            return allocations

        # Nexquare only returns the current year, so replace whatever years came back.
        years = list(dict.fromkeys(r.get("academic_year") for r in rows))
        await repository.replace_student_allocations(sourced or target, years, rows)
        logger.info(
            "nexquare_student_allocations_synced school_id=%s rows=%s subjects=%s cohorts=%s groups=%s homerooms=%s",
            target,
            len(rows),
            len(entities["subjects"]),
            len(entities["cohorts"]),
            len(entities["groups"]),
            len(entities["homerooms"]),
        )
        return allocations

    async def get_staff_allocations(self, school_id: str | None = None, academic_year: str | None = None) -> list[dict[str, Any]]:
        target = self._target(school_id)
        sourced = await self._school_sourced_id(target)
        allocations = await self._fetch_school_list(target, "staffAllocation", "users", "data", wrap_single=True)

        staff_ids = await repository.bulk_get_staff_ids(
            [k for k in (_person_key(a, "staffSourcedId") for a in allocations) if k]
        )
        rows = build_staff_allocation_rows(allocations, sourced, staff_ids)
        if academic_year:
            rows = [r for r in rows if year_matches(r.get("academic_year"), academic_year)]
        # Only the years being reinserted are cleared.
        years = list(dict.fromkeys(r.get("academic_year") for r in rows))
        if not rows:
            logger.info("nexquare_staff_allocations_empty school_id=%s academic_year=%s", target, academic_year)
            return allocations

        await repository.replace_staff_allocations(sourced or target, years, rows)
        logger.info("nexquare_staff_allocations_synced school_id=%s rows=%s", target, len(rows))
        return allocations

    async def get_daily_plans(
        self,
        school_id: str | None = None,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> list[dict[str, Any]]:
        """
        Fetch timetable plans one week at a time (the API rejects longer ranges).
        """
        target = self._target(school_id)
        start = from_date or date.today()
        end = to_date or start + timedelta(days=PLAN_WINDOW_DAYS - 1)
        sourced = await self._school_sourced_id(target)

        plans: list[dict[str, Any]] = []
        rows: list[dict[str, Any]] = []
        for window_start, window_end in week_windows(start, end):
            resp = await self.client.get_json(
                ENDPOINTS["daily_plan"],
                # "schooolId" (three o's) is the parameter name the API expects.
                {"fromDate": format_date(window_start), "toDate": format_date(window_end), "schooolId": target},
            )
            batch = list_from(resp, "plans", "data", "dailyPlan")
            plans.extend(batch)
            rows.extend(_map_each(batch, lambda p: map_daily_plan(p, sourced, window_start), "daily plan"))

        await repository.replace_daily_plans(sourced, start, end, rows)
        logger.info("nexquare_daily_plans_synced school_id=%s from=%s to=%s rows=%s", target, start, end, len(rows))
        return plans

    async def _attendance_chunk(self, school_id: str, start: date, end: date, *, category_required: bool, range_type: int) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        offset = 0
        while True:
            resp = await self.client.get_json(
                ENDPOINTS["daily_attendance"],
                {
                    "limit": ATTENDANCE_PAGE_LIMIT,
                    "offset": offset,
                    "startDate": format_date(start),
                    "endDate": format_date(end),
                    "schoolId": school_id,
                    "categoryRequired": str(category_required).lower(),
                    "rangeType": range_type,
                },
            )
            page = flatten_attendance(resp)
            records.extend(page)
            if len(page) < ATTENDANCE_PAGE_LIMIT:
                return records
            offset += ATTENDANCE_PAGE_LIMIT

    async def get_daily_attendance(
        self,
        school_id: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        *,
        category_required: bool = False,
        range_type: int = 0,
    ) -> list[dict[str, Any]]:
        """
        Fetch attendance month by month, resolve students, replace the window.
        """
        target = self._target(school_id)
        today = date.today()
        start = start_date or date(today.year, 1, 1)
        end = end_date or today
        sourced = await self._school_sourced_id(target)

        records: list[dict[str, Any]] = []
        for chunk_start, chunk_end in month_windows(start, end):
            chunk = await self._attendance_chunk(
                target, chunk_start, chunk_end, category_required=category_required, range_type=range_type
            )
            logger.info("nexquare_attendance_chunk school_id=%s from=%s to=%s records=%s", target, chunk_start, chunk_end, len(chunk))
            records.extend(chunk)

        keys: list[str] = []
        for record in records:
            key = attendance_student_key(record)
            if key:
                keys.append(key)
                if _DIGITS_RE.match(key):
                    keys.append(f"ST-{key}")
        student_ids = await repository.bulk_get_student_ids(keys)

        rows: list[dict[str, Any]] = []
        skipped = 0
        for record in records:
            row = map_attendance(
                record,
                sourced,
                student_ids,
                default_date=start,
                category_required=category_required,
                range_type=range_type,
            )
            if row is None:
                skipped += 1
            else:
                rows.append(row)
        if skipped:
            logger.warning("nexquare_attendance_skipped school_id=%s count=%s reason=no_student", target, skipped)

        await repository.replace_daily_attendance(sourced, start, end, rows)
        logger.info("nexquare_attendance_synced school_id=%s rows=%s", target, len(rows))
        return records

    async def _resolve_export_schools(self, records: list[dict[str, Any]], fallback: str | None) -> dict[str, str | None]:
        resolved: dict[str, str | None] = {}
        for record in records:
            raw = convert.as_str(record.get("School ID"))
            if raw and raw not in resolved:
                resolved[raw] = await repository.resolve_school_sourced_id(raw) or fallback
        return resolved

    async def get_student_assessments(
        self,
        school_id: str | None = None,
        academic_year: str | None = None,
        *,
        file_name: str = ASSESSMENT_FILE_NAME,
        chunk_size: int = ASSESSMENT_CHUNK_SIZE,
    ) -> list[dict[str, Any]]:
        """
        Download the grade-book export in offset chunks and store it per grade.

        A grade that fails to save is logged and counted; the others still land.
        """
        target = self._target(school_id)
        year = academic_year or str(date.today().year)
        sourced = await self._school_sourced_id(target)

        records: list[dict[str, Any]] = []
        offset = 0
        while True:
            content, content_type = await self.client.request_file(
                ENDPOINTS["student_assessments"],
                {"schoolIds": target, "academicYear": year, "fileName": file_name, "limit": chunk_size, "offset": offset},
            )
            if not content:
                break
            chunk = parse_assessment_file(content, content_type)
            logger.info("nexquare_assessment_chunk school_id=%s offset=%s bytes=%s records=%s", target, offset, len(content), len(chunk))
            records.extend(chunk)
            if len(chunk) < chunk_size:
                break
            offset += chunk_size

        if not records:
            return []

        schools = await self._resolve_export_schools(records, sourced)
        grouped: dict[tuple[str | None, str | None, str | None], list[dict[str, Any]]] = {}
        for record in records:
            row = map_assessment(record, schools.get(convert.as_str(record.get("School ID")) or "", sourced))
            grouped.setdefault((row["school_id"], row["academic_year"], row["grade_name"]), []).append(row)

        saved = failed = 0
        for key in sorted(grouped, key=lambda k: tuple(v or "" for v in k)):
            try:
                saved += await repository.replace_student_assessments(*key, grouped[key])
            except (asyncpg.PostgresError, RuntimeError) as e:
                failed += 1
                logger.error("nexquare_assessment_grade_failed school_id=%s grade=%s error=%s", key[0], key[2], e)
        logger.info("nexquare_assessments_synced school_id=%s saved=%s failed_grades=%s", target, saved, failed)
        return records

    async def run_endpoint(
        self,
        endpoint: str,
        *,
        school_id: str | None = None,
        academic_year: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> Any:
        """
        Run one named endpoint sync (`schools`, `students`, ...).
        """
        if endpoint == "schools":
            return await self.get_schools()
        if endpoint == "students":
            return await self.get_students(school_id)
        if endpoint == "staff":
            return await self.get_staff(school_id)
        if endpoint == "classes":
            return await self.get_classes(school_id)
        if endpoint == "allocation-master":
            return await self.get_allocation_master(school_id)
        if endpoint == "student-allocations":
            return await self.get_student_allocations(school_id, academic_year)
        if endpoint == "staff-allocations":
            return await self.get_staff_allocations(school_id, academic_year)
        if endpoint == "daily-plans":
            return await self.get_daily_plans(school_id, start_date, end_date)
        if endpoint == "daily-attendance":
            return await self.get_daily_attendance(school_id, start_date, end_date)
        if endpoint == "student-assessments":
            return await self.get_student_assessments(school_id, academic_year)
        raise ValueError(f"Unknown Nexquare endpoint: {endpoint}")
