"""
Nexquare mirror tables (nex schema).

Entity tables are upserted on `sourced_id`. Fact tables (allocations, plans,
attendance, assessments) are replaced per school and window inside one
transaction so a rerun never duplicates rows.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from core import db
from core.http import chunked

LOOKUP_BATCH_SIZE = 1000

STUDENT_FIELDS = (
    "school_id",
    "sourced_id",
    "identifier",
    "full_name",
    "first_name",
    "last_name",
    "email",
    "username",
    "user_type",
    "status",
    "date_last_modified",
    "academic_year",
    "metadata",
    "current_grade",
    "current_class",
    "current_class_id",
    "grades",
    "phone",
    "mobile_number",
    "sms",
    "gender",
    "student_dob",
    "religion",
    "admission_date",
    "join_date",
    "parent_name",
    "guardian_one_full_name",
    "guardian_two_full_name",
    "guardian_one_mobile",
    "guardian_two_mobile",
    "primary_contact",
    "student_reg_id",
    "family_code",
    "student_national_id",
    "student_status",
    "class_grade",
    "class_section",
    "homeroom_teacher_sourced_id",
)

STAFF_FIELDS = (
    "school_id",
    "sourced_id",
    "identifier",
    "full_name",
    "first_name",
    "last_name",
    "email",
    "username",
    "user_type",
    "role",
    "status",
    "date_last_modified",
    "metadata",
)

CLASS_FIELDS = (
    "school_id",
    "sourced_id",
    "title",
    "class_name",
    "grade_name",
    "course_code",
    "status",
    "date_last_modified",
    "metadata",
)

ALLOCATION_MASTER_FIELDS = (
    "school_id",
    "sourced_id",
    "allocation_type",
    "entity_type",
    "entity_sourced_id",
    "entity_name",
    "status",
    "date_last_modified",
    "metadata",
)

STUDENT_ALLOCATION_FIELDS = (
    "student_id",
    "student_sourced_id",
    "school_id",
    "academic_year",
    "subject_sourced_id",
    "subject_id",
    "subject_name",
    "allocation_type",
    "cohort_sourced_id",
    "cohort_id",
    "cohort_name",
    "lesson_sourced_id",
    "lesson_id",
    "lesson_name",
    "class_id",
    "homeroom_sourced_id",
    "homeroom_class_name",
    "homeroom_grade_name",
    "group_sourced_id",
    "group_id",
    "group_name",
)

STAFF_ALLOCATION_FIELDS = (
    "staff_id",
    "staff_sourced_id",
    "school_id",
    "academic_year",
    "subject_sourced_id",
    "subject_id",
    "subject_name",
    "allocation_type",
    "cohort_sourced_id",
    "cohort_id",
    "cohort_name",
    "lesson_sourced_id",
    "lesson_id",
    "lesson_name",
    "class_id",
)

DAILY_PLAN_FIELDS = (
    "school_id",
    "plan_date",
    "timetable_lesson_sourced_id",
    "lesson_id",
    "lesson_name",
    "subject_sourced_id",
    "subject_name",
    "class_sourced_id",
    "class_name",
    "cohort_sourced_id",
    "cohort_name",
    "teacher_sourced_id",
    "teacher_name",
    "location_sourced_id",
    "location_name",
    "start_time",
    "end_time",
    "period_number",
    "status",
    "metadata",
)

ATTENDANCE_FIELDS = (
    "school_id",
    "student_id",
    "student_sourced_id",
    "attendance_date",
    "status",
    "category_code",
    "category_name",
    "category_required",
    "range_type",
    "notes",
    "metadata",
)

ASSESSMENT_FIELDS = (
    "school_id",
    "school_name",
    "region_name",
    "student_name",
    "register_number",
    "student_status",
    "grade_name",
    "section_name",
    "class_name",
    "academic_year",
    "subject_id",
    "subject_name",
    "term_id",
    "term_name",
    "component_name",
    "component_value",
    "max_value",
    "data_type",
    "calculation_method",
    "mark_grade_name",
    "mark_rubric_name",
)


def _rows(records: list[dict[str, Any]], fields: tuple[str, ...]) -> list[tuple[Any, ...]]:
    return [tuple(r.get(f) for f in fields) for r in records]


def _insert_sql(table: str, fields: tuple[str, ...]) -> str:
    placeholders = ", ".join(f"${i}" for i in range(1, len(fields) + 1))
    return f"INSERT INTO {table} ({', '.join(fields)}) VALUES ({placeholders})"


# Schools


async def upsert_school(school: dict[str, Any]) -> None:
    fields = ("sourced_id", "name", "identifier", "status", "type", "date_last_modified", "metadata")
    await db.execute(db.upsert_sql("nex.schools", fields, "sourced_id"), *(school.get(f) for f in fields))


async def get_school_sourced_id(school_id: str) -> str | None:
    return await db.fetch_val("SELECT sourced_id FROM nex.schools WHERE sourced_id = $1", school_id)


async def resolve_school_sourced_id(value: str) -> str | None:
    """
    Match an export's school column against sourced_id, identifier or numeric id.
    """
    row = await db.fetch_one(
        """
        SELECT sourced_id FROM nex.schools
        WHERE sourced_id = $1 OR identifier = $1 OR ($2::bigint IS NOT NULL AND id = $2::bigint)
        ORDER BY (sourced_id = $1) DESC, (identifier = $1) DESC
        LIMIT 1
        """,
        value,
        int(value) if value.isdigit() else None,
    )
    return row["sourced_id"] if row else None


# People and classes


async def upsert_students(students: list[dict[str, Any]]) -> int:
    return await db.execute_many(db.upsert_sql("nex.students", STUDENT_FIELDS, "sourced_id"), _rows(students, STUDENT_FIELDS))


async def upsert_staff(staff: list[dict[str, Any]]) -> int:
    return await db.execute_many(db.upsert_sql("nex.staff", STAFF_FIELDS, "sourced_id"), _rows(staff, STAFF_FIELDS))


async def upsert_classes(classes: list[dict[str, Any]]) -> int:
    return await db.execute_many(db.upsert_sql("nex.classes", CLASS_FIELDS, "sourced_id"), _rows(classes, CLASS_FIELDS))


async def replace_allocation_master(school_id: str | None, records: list[dict[str, Any]]) -> int:
    async with db.transaction() as conn:
        await conn.execute("DELETE FROM nex.allocation_master WHERE school_id IS NOT DISTINCT FROM $1", school_id)
        if records:
            await conn.executemany(
                _insert_sql("nex.allocation_master", ALLOCATION_MASTER_FIELDS),
                _rows(records, ALLOCATION_MASTER_FIELDS),
            )
    return len(records)


# Entities extracted from student allocations


async def upsert_subjects(rows: list[dict[str, Any]]) -> int:
    fields = ("sourced_id", "subject_id", "subject_name", "school_id")
    return await db.execute_many(db.upsert_sql("nex.subjects", fields, "sourced_id"), _rows(rows, fields))


async def upsert_cohorts(rows: list[dict[str, Any]]) -> int:
    fields = ("sourced_id", "cohort_id", "cohort_name", "school_id")
    return await db.execute_many(db.upsert_sql("nex.cohorts", fields, "sourced_id"), _rows(rows, fields))


async def upsert_groups(rows: list[dict[str, Any]]) -> int:
    fields = ("sourced_id", "group_name", "unique_key", "school_id")
    return await db.execute_many(db.upsert_sql("nex.groups", fields, "sourced_id"), _rows(rows, fields))


async def upsert_homerooms(rows: list[dict[str, Any]]) -> int:
    fields = ("sourced_id", "class_name", "grade_name", "school_id")
    return await db.execute_many(db.upsert_sql("nex.homerooms", fields, "sourced_id"), _rows(rows, fields))


# Bulk id lookups


async def bulk_get_student_ids(identifiers: list[str]) -> dict[str, dict[str, Any]]:
    """
    Map each sourced_id and identifier to `{id, sourced_id}` of its student.
    """
    found: dict[str, dict[str, Any]] = {}
    unique = list(dict.fromkeys(i for i in identifiers if i))
    for batch in chunked(unique, LOOKUP_BATCH_SIZE):
        rows = await db.fetch_all(
            """
            SELECT id, sourced_id, identifier
            FROM nex.students
            WHERE sourced_id = ANY($1::text[]) OR identifier = ANY($1::text[])
            """,
            batch,
        )
        for row in rows:
            info = {"id": row["id"], "sourced_id": row["sourced_id"]}
            found[row["sourced_id"]] = info
            if row.get("identifier"):
                found[row["identifier"]] = info
    return found


async def _bulk_ids(table: str, sourced_ids: list[str]) -> dict[str, int]:
    found: dict[str, int] = {}
    unique = list(dict.fromkeys(i for i in sourced_ids if i))
    for batch in chunked(unique, LOOKUP_BATCH_SIZE):
        rows = await db.fetch_all(f"SELECT id, sourced_id FROM {table} WHERE sourced_id = ANY($1::text[])", batch)
        found.update({row["sourced_id"]: row["id"] for row in rows})
    return found


async def bulk_get_group_ids(sourced_ids: list[str]) -> dict[str, int]:
    return await _bulk_ids("nex.groups", sourced_ids)


async def bulk_get_staff_ids(sourced_ids: list[str]) -> dict[str, int]:
    return await _bulk_ids("nex.staff", sourced_ids)


# Per-school fact tables


async def replace_student_allocations(school_id: str, years: list[str | None], records: list[dict[str, Any]]) -> int:
    async with db.transaction() as conn:
        for year in years:
            await conn.execute(
                "DELETE FROM nex.student_allocations WHERE school_id = $1 AND academic_year IS NOT DISTINCT FROM $2",
                school_id,
                year,
            )
        await conn.executemany(
            _insert_sql("nex.student_allocations", STUDENT_ALLOCATION_FIELDS),
            _rows(records, STUDENT_ALLOCATION_FIELDS),
        )
    return len(records)


async def replace_staff_allocations(school_id: str, years: list[str | None], records: list[dict[str, Any]]) -> int:
    async with db.transaction() as conn:
        for year in years:
            await conn.execute(
                "DELETE FROM nex.staff_allocations WHERE school_id = $1 AND academic_year IS NOT DISTINCT FROM $2",
                school_id,
                year,
            )
        await conn.executemany(
            _insert_sql("nex.staff_allocations", STAFF_ALLOCATION_FIELDS),
            _rows(records, STAFF_ALLOCATION_FIELDS),
        )
    return len(records)


async def replace_daily_plans(school_id: str | None, start: date, end: date, records: list[dict[str, Any]]) -> int:
    async with db.transaction() as conn:
        await conn.execute(
            """
            DELETE FROM nex.daily_plans
            WHERE school_id IS NOT DISTINCT FROM $1 AND plan_date BETWEEN $2 AND $3
            """,
            school_id,
            start,
            end,
        )
        if records:
            await conn.executemany(_insert_sql("nex.daily_plans", DAILY_PLAN_FIELDS), _rows(records, DAILY_PLAN_FIELDS))
    return len(records)


async def replace_daily_attendance(
    school_id: str | None,
    start: date,
    end: date,
    records: list[dict[str, Any]],
) -> int:
    async with db.transaction() as conn:
        await conn.execute(
            """
            DELETE FROM nex.daily_attendance
            WHERE school_id IS NOT DISTINCT FROM $1 AND attendance_date BETWEEN $2 AND $3
            """,
            school_id,
            start,
            end,
        )
        if records:
            await conn.executemany(_insert_sql("nex.daily_attendance", ATTENDANCE_FIELDS), _rows(records, ATTENDANCE_FIELDS))
    return len(records)


async def replace_student_assessments(
    school_id: str | None,
    academic_year: str | None,
    grade_name: str | None,
    records: list[dict[str, Any]],
) -> int:
    """
    Replace one grade's assessment rows for a school and academic year.
    """
    async with db.transaction() as conn:
        await conn.execute(
            """
            DELETE FROM nex.student_assessments
            WHERE school_id IS NOT DISTINCT FROM $1
              AND academic_year IS NOT DISTINCT FROM $2
              AND grade_name IS NOT DISTINCT FROM $3
            """,
            school_id,
            academic_year,
            grade_name,
        )
        await conn.executemany(_insert_sql("nex.student_assessments", ASSESSMENT_FIELDS), _rows(records, ASSESSMENT_FIELDS))
    return len(records)
