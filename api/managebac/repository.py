"""
ManageBac mirror tables (mb schema).

All writes are last-write-wins upserts keyed on the ManageBac ids.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from core import db

STUDENT_FIELDS = (
    "id",
    "school_id",
    "grade_id",
    "year_group_id",
    "uniq_student_id",
    "first_name",
    "last_name",
    "email",
    "gender",
    "birthday",
    "archived",
    "program",
    "program_code",
    "class_grade",
    "class_grade_number",
    "graduating_year",
    "nationalities",
    "languages",
    "timezone",
    "ui_language",
    "student_id",
    "identifier",
    "oa_id",
    "withdrawn_on",
    "photo_url",
    "homeroom_advisor_id",
    "attendance_start_date",
    "parent_ids",
    "additional_homeroom_advisor_ids",
)

CLASS_FIELDS = (
    "id",
    "school_id",
    "subject_id",
    "name",
    "description",
    "uniq_id",
    "class_section",
    "language",
    "program_code",
    "grade_number",
    "start_term_id",
    "end_term_id",
    "archived",
    "lock_memberships",
)


async def upsert_school(
    *,
    school_id: int,
    name: str,
    subdomain: str | None,
    country: str | None,
    language: str,
    session_in_may: bool,
    kbl_id: str | None,
) -> None:
    await db.execute(
        db.upsert_sql(
            "mb.schools",
            ("id", "name", "subdomain", "country", "language", "session_in_may", "kbl_id"),
            "id",
        ),
        school_id,
        name,
        subdomain,
        country,
        language,
        session_in_may,
        kbl_id,
    )


async def upsert_programs(school_id: int, programs: list[tuple[str, str]]) -> int:
    """
    `programs` is a list of (code, name).
    """
    return await db.execute_many(
        """
        INSERT INTO mb.programs (school_id, code, name, enabled)
        VALUES ($1, $2, $3, true)
        ON CONFLICT (school_id, code) DO UPDATE
          SET name = EXCLUDED.name, enabled = true, updated_at = now()
        """,
        [(school_id, code, name) for code, name in programs],
    )


async def upsert_academic_years(rows: list[tuple[int, int, str, str, date, date]]) -> int:
    """
    Rows are (id, school_id, program_code, name, starts_on, ends_on).
    """
    return await db.execute_many(
        db.upsert_sql(
            "mb.academic_years",
            ("id", "school_id", "program_code", "name", "starts_on", "ends_on"),
            "id",
        ),
        rows,
    )


async def upsert_academic_terms(rows: list[tuple[int, int, str, date, date, bool, bool]]) -> int:
    """
    Rows are (id, academic_year_id, name, starts_on, ends_on, locked, exam_grade).
    """
    return await db.execute_many(
        db.upsert_sql(
            "mb.academic_terms",
            ("id", "academic_year_id", "name", "starts_on", "ends_on", "locked", "exam_grade"),
            "id",
        ),
        rows,
    )


async def upsert_grades(rows: list[tuple[int, str, str, str | None, str | None, str, int | None]]) -> int:
    """
    Rows are (school_id, program_code, name, label, code, uid, grade_number).

    Grades are keyed by their ManageBac `uid`; the numeric id is local.
    """
    return await db.execute_many(
        db.upsert_sql(
            "mb.grades",
            ("school_id", "program_code", "name", "label", "code", "uid", "grade_number"),
            "uid",
        ),
        rows,
    )


async def upsert_subject_groups(rows: list[tuple[int, int, str, str, int | None]]) -> int:
    """
    Rows are (id, school_id, program_code, name, max_phase).
    """
    return await db.execute_many(
        db.upsert_sql("mb.subject_groups", ("id", "school_id", "program_code", "name", "max_phase"), "id"),
        rows,
    )


async def upsert_subjects(rows: list[tuple[Any, ...]]) -> int:
    """
    Rows are (id, school_id, subject_group_id, name, custom, sl, hl, self_taught, enabled).
    """
    return await db.execute_many(
        db.upsert_sql(
            "mb.subjects",
            ("id", "school_id", "subject_group_id", "name", "custom", "sl", "hl", "self_taught", "enabled"),
            "id",
        ),
        rows,
    )


async def upsert_teachers(school_id: int, teachers: list[dict[str, Any]]) -> int:
    """
    Teachers land in mb.users first (FK target), then mb.teachers.
    """
    users = [
        (
            t["id"],
            school_id,
            t["email"],
            t["first_name"],
            t["last_name"],
            "teacher",
            t["archived"],
        )
        for t in teachers
    ]
    details = [(t["id"], school_id, t["department"], t["timezone"], t["gender"]) for t in teachers]
    async with db.transaction() as conn:
        await conn.executemany(
            db.upsert_sql("mb.users", ("id", "school_id", "email", "first_name", "last_name", "role", "archived"), "id"),
            users,
        )
        await conn.executemany(
            db.upsert_sql("mb.teachers", ("id", "school_id", "department", "timezone", "gender"), "id"),
            details,
        )
    return len(teachers)


async def upsert_students(students: list[dict[str, Any]]) -> int:
    return await db.execute_many(
        db.upsert_sql("mb.students", STUDENT_FIELDS, "id"),
        [tuple(s.get(f) for f in STUDENT_FIELDS) for s in students],
    )


async def upsert_classes(classes: list[dict[str, Any]]) -> int:
    return await db.execute_many(
        db.upsert_sql("mb.classes", CLASS_FIELDS, "id"),
        [tuple(c.get(f) for f in CLASS_FIELDS) for c in classes],
    )


async def upsert_year_groups(rows: list[tuple[int, int, str, str | None, str, str, int]]) -> int:
    """
    Rows are (id, school_id, name, short_name, program, grade, grade_number).
    """
    return await db.execute_many(
        db.upsert_sql(
            "mb.year_groups",
            ("id", "school_id", "name", "short_name", "program", "grade", "grade_number"),
            "id",
        ),
        rows,
    )


async def upsert_year_group_student(year_group_id: int, student_id: int) -> None:
    await db.execute(
        """
        INSERT INTO mb.year_group_students (year_group_id, student_id)
        VALUES ($1, $2)
        ON CONFLICT (year_group_id, student_id) DO NOTHING
        """,
        year_group_id,
        student_id,
    )


async def list_year_groups(school_id: int) -> list[dict]:
    return await db.fetch_all(
        """
        SELECT id, school_id, name, short_name, program, grade, grade_number
        FROM mb.year_groups
        WHERE school_id = $1
        ORDER BY grade_number, id
        """,
        school_id,
    )


async def list_grades(school_id: int) -> list[dict]:
    return await db.fetch_all(
        """
        SELECT id, school_id, program_code, name, label, code, uid, grade_number
        FROM mb.grades
        WHERE school_id = $1
        ORDER BY program_code, grade_number
        """,
        school_id,
    )
