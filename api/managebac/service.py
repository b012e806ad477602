"""
Per-school ManageBac sync.

One `ManageBacSync` instance holds the school context for one run. The
orchestrator creates a fresh instance per school so runs never share it.

Each `get_*` method fetches from the API, maps the payload, upserts it into
the mb schema and returns what it fetched.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import date
from typing import Any

import asyncpg

from core import convert
from core.config import env_int
from core.http import UpstreamError, chunked

from . import repository
from .client import ENDPOINTS, ManageBacClient

logger = logging.getLogger(__name__)

ENRICH_BATCH_SIZE = 150
YEAR_GROUP_DETAIL_BATCH_SIZE = 25

# Program keys used by /school/academic-years.
PROGRAM_KEY_ALIASES = {
    "ib": "diploma",
    "dp": "diploma",
    "ibdp": "diploma",
    "ib diploma": "diploma",
    "diploma": "diploma",
    "pyp": "pyp",
    "ibpyp": "ibpyp",
    "myp": "myp",
    "ibmyp": "myp",
    "ms": "ms",
    "hs": "hs",
}

# Year-group program names mapped to API program codes.
PROGRAM_NAME_ALIASES = {
    "ib diploma": "diploma",
    "diploma": "diploma",
    "ib middle years": "myp",
    "middle years": "myp",
    "myp": "myp",
    "ib primary years": "pyp",
    "primary years": "pyp",
    "pyp": "pyp",
    "ibpyp": "pyp",
    "ib pyp": "pyp",
    "ms": "ms",
    "hs": "hs",
}

_YEAR_RE = re.compile(r"(\d{4})")


def default_enrich_delay_s() -> int:
    return env_int("MANAGEBAC_ENRICH_DELAY_S", 60)


def resolve_program_key(requested: str | None, academic_data: dict[str, Any]) -> str | None:
    if not requested:
        return None
    normalized = requested.lower()
    if normalized in academic_data:
        return normalized
    mapped = PROGRAM_KEY_ALIASES.get(normalized)
    if mapped and mapped in academic_data:
        return mapped
    return None


def resolve_program_code_from_name(program: str | None) -> str | None:
    if not program:
        return None
    normalized = program.lower().strip()
    return PROGRAM_NAME_ALIASES.get(normalized, normalized)


def academic_year_dates(year: dict[str, Any], today: date | None = None) -> tuple[date, date]:
    """
    Start/end dates for an academic year.

    Missing dates default to Aug 1 of the first 4-digit year in the name
    through Jul 31 of the following year (current year when the name has
    none).
    """
    starts_on = convert.as_date(year.get("starts_on"))
    ends_on = convert.as_date(year.get("ends_on"))
    if starts_on is None or ends_on is None:
        match = _YEAR_RE.search(str(year.get("name") or ""))
        start_year = int(match.group(1)) if match else (today or date.today()).year
        starts_on = starts_on or date(start_year, 8, 1)
        ends_on = ends_on or date(start_year + 1, 7, 31)
    return starts_on, ends_on


def map_student(s: dict[str, Any], school_id: int | None) -> dict[str, Any]:
    """
    Map a /students list or detail record onto mb.students columns.
    """
    student_pk = convert.as_int(s.get("id"))
    return {
        "id": student_pk,
        "school_id": school_id,
        "grade_id": convert.as_int(convert.pick(s, "grade_id", "gradeId")),
        "year_group_id": convert.as_int(convert.pick(s, "year_group_id", "yearGroupId")),
        "uniq_student_id": convert.as_str(
            convert.pick(s, "uniq_student_id", "uniqStudentId")
            or convert.pick(s, "student_id", "studentId")
            or s.get("identifier")
        ),
        "first_name": convert.as_str(convert.pick(s, "first_name", "firstName")) or "",
        "last_name": convert.as_str(convert.pick(s, "last_name", "lastName")) or "",
        "email": convert.as_str(s.get("email")) or f"mb-student-{student_pk}@placeholder.local",
        "gender": convert.as_str(s.get("gender")),
        "birthday": convert.as_date(s.get("birthday")),
        "archived": convert.as_bool(s.get("archived")),
        "program": convert.as_str(s.get("program")),
        "program_code": convert.as_str(convert.pick(s, "program_code", "programCode")),
        "class_grade": convert.as_str(convert.pick(s, "class_grade", "classGrade")),
        "class_grade_number": convert.as_int(convert.pick(s, "class_grade_number", "classGradeNumber")),
        "graduating_year": convert.as_int(convert.pick(s, "graduating_year", "graduatingYear")),
        "nationalities": convert.json_text(s.get("nationalities")),
        "languages": convert.json_text(s.get("languages")),
        "timezone": convert.as_str(s.get("timezone")),
        "ui_language": convert.as_str(convert.pick(s, "ui_language", "uiLanguage")),
        "student_id": convert.as_str(convert.pick(s, "student_id", "studentId") or s.get("identifier")),
        "identifier": convert.as_str(s.get("identifier")),
        "oa_id": convert.as_str(convert.pick(s, "oa_id", "oaId")),
        "withdrawn_on": convert.as_date(convert.pick(s, "withdrawn_on", "withdrawnOn")),
        "photo_url": convert.as_str(convert.pick(s, "photo_url", "photoUrl")),
        "homeroom_advisor_id": convert.as_int(convert.pick(s, "homeroom_advisor_id", "homeroomAdvisorId")),
        "attendance_start_date": convert.as_date(convert.pick(s, "attendance_start_date", "attendanceStartDate")),
        "parent_ids": convert.json_text(convert.pick(s, "parent_ids", "parentIds")),
        "additional_homeroom_advisor_ids": convert.json_text(
            convert.pick(s, "additional_homeroom_advisor_ids", "additionalHomeroomAdvisorIds")
        ),
    }


def map_placed_student(
    s: dict[str, Any], school_id: int | None, *, grade_id: int | None, year_group_id: int | None
) -> dict[str, Any]:
    """
    Map a /students/{id} detail record found through a year group.
    """
    row = map_student(s, school_id)
    row.update(
        grade_id=grade_id,
        year_group_id=year_group_id,
        birthday=convert.as_date(s.get("date_of_birth") or s.get("birthday")),
        archived=not convert.as_bool(s.get("is_active"), default=True),
        class_grade=convert.as_str(s.get("grade")) or row["class_grade"],
        class_grade_number=convert.as_int(s.get("grade_number")) or row["class_grade_number"],
    )
    return row


def needs_enrichment(students: list[dict[str, Any]]) -> bool:
    """
    True when any of the first 3 list records carries no placement at all.
    """
    for s in students[:3]:
        if not (
            convert.pick(s, "year_group_id", "yearGroupId")
            or convert.pick(s, "class_grade", "classGrade")
            or s.get("program")
        ):
            return True
    return False


def map_class(c: dict[str, Any], school_id: int) -> dict[str, Any]:
    return {
        "id": convert.as_int(c.get("id")),
        "school_id": school_id,
        "subject_id": convert.as_int(c.get("subject_id")),
        "name": convert.as_str(c.get("name")) or "",
        "description": convert.as_str(c.get("description")),
        "uniq_id": convert.as_str(c.get("uniq_id")),
        "class_section": convert.as_str(c.get("class_section")),
        "language": convert.as_str(c.get("language")) or "en",
        "program_code": convert.as_str(c.get("program_code")),
        "grade_number": convert.as_int(c.get("grade_number")),
        "start_term_id": convert.as_int(c.get("start_term_id")),
        "end_term_id": convert.as_int(c.get("end_term_id")),
        "archived": convert.as_bool(c.get("archived")),
        "lock_memberships": convert.as_str(c.get("lock_memberships")),
    }


def map_teacher(t: dict[str, Any]) -> dict[str, Any]:
    teacher_pk = convert.as_int(t.get("id"))
    return {
        "id": teacher_pk,
        "email": convert.as_str(t.get("email")) or f"mb-teacher-{teacher_pk}@placeholder.local",
        "first_name": convert.as_str(t.get("first_name")) or "",
        "last_name": convert.as_str(t.get("last_name")) or "",
        "archived": convert.as_bool(t.get("archived")),
        "department": convert.as_str(t.get("department")),
        "timezone": convert.as_str(t.get("timezone")),
        "gender": convert.as_str(t.get("gender")),
    }


class ManageBacSync:
    def __init__(
        self,
        client: ManageBacClient,
        *,
        school_id: int | None = None,
        enrich_delay_s: float | None = None,
    ) -> None:
        self.client = client
        self.current_school_id: int | None = school_id
        self.enrich_delay_s = default_enrich_delay_s() if enrich_delay_s is None else enrich_delay_s
        self._year_group_students_synced = False

    def set_current_school_id(self, school_id: int) -> None:
        self.current_school_id = school_id
        self._year_group_students_synced = False

    async def authenticate(self) -> dict[str, Any]:
        try:
            await self.client.request(ENDPOINTS["school"])
            return {"success": True}
        except UpstreamError as e:
            logger.warning("managebac_auth_failed base_url=%s error=%s", self.client.base_url, e)
            return {"success": False, "error": str(e)}

    async def get_school_details(self) -> dict[str, Any]:
        data = await self.client.get_data(ENDPOINTS["school"])
        school = data.get("school") if isinstance(data, dict) and isinstance(data.get("school"), dict) else data
        if not isinstance(school, dict):
            raise UpstreamError("INVALID_RESPONSE", "Invalid response format: missing school object")
        school_id = convert.as_int(school.get("id"))
        self.current_school_id = school_id

        name = convert.as_str(school.get("name")) or ""
        await repository.upsert_school(
            school_id=school_id,
            name=name,
            subdomain=convert.as_str(school.get("subdomain")) or re.sub(r"\s+", "-", name.lower()),
            country=convert.as_str(school.get("country")) or "Unknown",
            language=convert.as_str(school.get("language")) or "en",
            session_in_may=convert.as_bool(school.get("session_in_may")),
            kbl_id=convert.as_str(school.get("kbl_id")),
        )

        programs = [
            (str(p.get("code")), str(p.get("name")))
            for p in school.get("enabled_programs") or []
            if isinstance(p, dict) and p.get("code")
        ]
        if programs:
            await repository.upsert_programs(school_id, programs)
        logger.info("managebac_school_saved school_id=%s programs=%s", school_id, len(programs))
        return school

    async def get_academic_years(self, program_code: str | None = None) -> dict[str, Any]:
        data = await self.client.get_data(ENDPOINTS["academic_years"])
        academic_data = data.get("academic_years") if isinstance(data, dict) else None
        if self.current_school_id is None or not isinstance(academic_data, dict):
            return data

        programs = academic_data
        if program_code:
            key = resolve_program_key(program_code, academic_data)
            if key is not None:
                programs = {key: academic_data[key]}
            else:
                logger.warning("managebac_program_not_found program=%s processing=all", program_code)

        for program_key, info in programs.items():
            raw_years = (info or {}).get("academic_years") or []
            if not raw_years:
                continue
            years = []
            terms = []
            for raw in raw_years:
                year_id = convert.as_int(raw.get("id"))
                starts_on, ends_on = academic_year_dates(raw)
                years.append((year_id, self.current_school_id, program_key, str(raw.get("name") or ""), starts_on, ends_on))
                for term in raw.get("academic_terms") or []:
                    terms.append(
                        (
                            convert.as_int(term.get("id")),
                            year_id,
                            str(term.get("name") or ""),
                            convert.as_date(term.get("starts_on")) or starts_on,
                            convert.as_date(term.get("ends_on")) or ends_on,
                            convert.as_bool(term.get("locked")),
                            convert.as_bool(term.get("exam_grade")),
                        )
                    )
            await repository.upsert_academic_years(years)
            if terms:
                await repository.upsert_academic_terms(terms)
            logger.info(
                "managebac_academic_years_saved school_id=%s program=%s years=%s terms=%s",
                self.current_school_id,
                program_key,
                len(years),
                len(terms),
            )
        return data

    async def get_grades(self, academic_year_id: str | None = None) -> Any:
        params = {"academic_year_id": academic_year_id} if academic_year_id else None
        data = await self.client.get_data(ENDPOINTS["grades"], params=params)
        programs = ((data or {}).get("school") or {}).get("programs") if isinstance(data, dict) else None
        if self.current_school_id is None or not programs:
            return data

        rows = []
        for program in programs:
            for grade in program.get("grades") or []:
                label = grade.get("label")
                rows.append(
                    (
                        self.current_school_id,
                        str(program.get("code") or ""),
                        str(grade.get("name") or ""),
                        label if label not in (None, "") else None,
                        convert.as_str(grade.get("code")),
                        str(grade.get("uid")),
                        convert.as_int(grade.get("grade_number")),
                    )
                )
        if rows:
            await repository.upsert_grades(rows)
        logger.info("managebac_grades_saved school_id=%s grades=%s", self.current_school_id, len(rows))
        return data

    async def get_subjects(self) -> list[dict[str, Any]]:
        payload = await self.client.get_data(ENDPOINTS["subjects"])
        if isinstance(payload, list):
            by_program: dict[str, Any] = {"general": payload}
        elif isinstance(payload, dict) and isinstance(payload.get("subjects"), dict):
            by_program = payload["subjects"]
        elif isinstance(payload, dict):
            by_program = payload
        else:
            by_program = {}

        flattened: list[dict[str, Any]] = []
        groups: dict[int, tuple] = {}
        subjects: list[tuple] = []
        for program_key, program_subjects in by_program.items():
            if not isinstance(program_subjects, list):
                continue
            program_code = program_key.lower()
            for subject in program_subjects:
                subject_id = convert.as_int(subject.get("id"))
                group_id = convert.as_int(subject.get("group_id"))
                flattened.append({**subject, "id": subject_id, "group_id": group_id, "program_code": program_code})
                if self.current_school_id is None:
                    continue
                if group_id and group_id not in groups:
                    groups[group_id] = (
                        group_id,
                        self.current_school_id,
                        program_code,
                        str(subject.get("group") or "Unknown"),
                        convert.as_int(subject.get("max_phase")),
                    )
                subjects.append(
                    (
                        subject_id,
                        self.current_school_id,
                        group_id or None,
                        str(subject.get("name") or ""),
                        convert.as_bool(subject.get("custom")),
                        convert.as_bool(subject.get("sl")),
                        convert.as_bool(subject.get("hl")),
                        convert.as_bool(subject.get("self_taught")),
                        convert.as_bool(subject.get("enabled"), default=True),
                    )
                )

        if subjects:
            if groups:
                await repository.upsert_subject_groups(list(groups.values()))
            await repository.upsert_subjects(subjects)
        logger.info(
            "managebac_subjects_saved school_id=%s groups=%s subjects=%s",
            self.current_school_id,
            len(groups),
            len(subjects),
        )
        return flattened

    async def get_teachers(self, *, department: str | None = None, active_only: bool = False) -> list[dict[str, Any]]:
        params: dict[str, Any] = {}
        if department:
            params["department"] = department
        if active_only:
            params["active_only"] = "true"
        teachers = await self.client.fetch_all_paginated(ENDPOINTS["teachers"], "teachers", params)
        if self.current_school_id is not None and teachers:
            await repository.upsert_teachers(self.current_school_id, [map_teacher(t) for t in teachers])
        elif self.current_school_id is None:
            logger.warning("managebac_teachers_not_saved reason=no_school_id")
        logger.info("managebac_teachers_synced school_id=%s count=%s", self.current_school_id, len(teachers))
        return teachers

    async def _fetch_student_detail(self, student: dict[str, Any]) -> dict[str, Any]:
        try:
            data = await self.client.get_data(f"/students/{student.get('id')}")
        except UpstreamError as e:
            logger.warning("managebac_student_detail_failed student_id=%s error=%s", student.get("id"), e)
            return student
        if isinstance(data, dict):
            full = data.get("student")
            return full if isinstance(full, dict) else data
        return student

    async def enrich_students(self, students: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Replace minimal list records with /students/{id} details.

        Runs in batches of 150 with a pause between batches; a failed
        detail fetch keeps the original record.
        """
        enriched: list[dict[str, Any]] = []
        for index, batch in enumerate(chunked(students, ENRICH_BATCH_SIZE)):
            if index > 0 and self.enrich_delay_s > 0:
                logger.info("managebac_enrich_pause seconds=%s", self.enrich_delay_s)
                await asyncio.sleep(self.enrich_delay_s)
            enriched.extend(await asyncio.gather(*(self._fetch_student_detail(s) for s in batch)))
            logger.info("managebac_enrich_progress done=%s total=%s", len(enriched), len(students))
        return enriched

    async def get_students(
        self,
        *,
        grade_id: str | None = None,
        academic_year_id: str | None = None,
        active_only: bool = False,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {}
        if grade_id:
            params["grade_id"] = grade_id
        if academic_year_id:
            params["academic_year_id"] = academic_year_id
        if active_only:
            params["active_only"] = "true"

        students = await self.client.fetch_all_paginated(ENDPOINTS["students"], "students", params)
        if students and needs_enrichment(students):
            students = await self.enrich_students(students)

        if self.current_school_id is None:
            logger.warning("managebac_students_not_saved reason=no_school_id")
            return students

        if students:
            await repository.upsert_students([map_student(s, self.current_school_id) for s in students])
            logger.info("managebac_students_saved school_id=%s count=%s", self.current_school_id, len(students))
            if not self._year_group_students_synced:
                await self.sync_year_group_students()
        return students

    async def _year_group_student_ids(self, year_group_id: int) -> list[int]:
        try:
            data = await self.client.get_data(f"/year-groups/{year_group_id}/students")
        except UpstreamError as e:
            logger.warning("managebac_year_group_students_failed year_group_id=%s error=%s", year_group_id, e)
            return []
        data = data if isinstance(data, dict) else {}
        if isinstance(data.get("student_ids"), list):
            raw_ids = data["student_ids"]
        elif isinstance(data.get("students"), list):
            raw_ids = [s.get("id") for s in data["students"] if isinstance(s, dict)]
        else:
            raw_ids = []
        return [i for i in (convert.as_int(r) for r in raw_ids) if i]

    async def sync_year_group_students(self) -> dict[str, int]:
        """
        Link students to year groups by matching grades to year groups on
        `program_code:grade_number`.
        """
        result = {"students": 0, "links": 0, "link_errors": 0}
        school_id = self.current_school_id
        if school_id is None or self._year_group_students_synced:
            return result

        year_groups = await repository.list_year_groups(school_id)
        if not year_groups:
            await self.get_year_groups()
            year_groups = await repository.list_year_groups(school_id)
        if not year_groups:
            logger.warning("managebac_year_group_link_skipped school_id=%s reason=no_year_groups", school_id)
            return result

        grades = await repository.list_grades(school_id)
        if not grades:
            await self.get_grades()
            grades = await repository.list_grades(school_id)
        if not grades:
            logger.warning("managebac_year_group_link_skipped school_id=%s reason=no_grades", school_id)
            return result

        by_key: dict[str, list[dict]] = {}
        for group in year_groups:
            code = resolve_program_code_from_name(group.get("program"))
            number = convert.as_int(group.get("grade_number"))
            if not code or number is None:
                continue
            by_key.setdefault(f"{code}:{number}", []).append(group)

        placement: dict[int, tuple[int | None, int]] = {}
        for grade in grades:
            if not grade.get("id"):
                continue
            code = str(grade.get("program_code") or "").lower().strip()
            groups = by_key.get(f"{code}:{grade.get('grade_number')}")
            if not groups:
                alt = {"ibpyp": "pyp", "pyp": "ibpyp"}.get(code)
                groups = by_key.get(f"{alt}:{grade.get('grade_number')}") if alt else None
            for group in groups or []:
                for student_id in await self._year_group_student_ids(int(group["id"])):
                    placement.setdefault(student_id, (grade["id"], int(group["id"])))

        for batch in chunked(list(placement), YEAR_GROUP_DETAIL_BATCH_SIZE):
            rows = []
            for student_id in batch:
                try:
                    data = await self.client.get_data(f"/students/{student_id}")
                except UpstreamError as e:
                    logger.warning("managebac_student_detail_failed student_id=%s error=%s", student_id, e)
                    continue
                detail = data.get("student") if isinstance(data, dict) and isinstance(data.get("student"), dict) else data
                if not isinstance(detail, dict):
                    continue
                grade_id, year_group_id = placement[student_id]
                rows.append(map_placed_student(detail, school_id, grade_id=grade_id, year_group_id=year_group_id))
            if not rows:
                continue
            await repository.upsert_students(rows)
            result["students"] += len(rows)
            for row in rows:
                _, year_group_id = placement.get(row["id"], (None, None))
                if not year_group_id:
                    continue
                try:
                    await repository.upsert_year_group_student(year_group_id, row["id"])
                    result["links"] += 1
                except (asyncpg.PostgresError, RuntimeError):
                    result["link_errors"] += 1
                    logger.exception(
                        "managebac_year_group_link_failed year_group_id=%s student_id=%s",
                        year_group_id,
                        row["id"],
                    )

        if result["link_errors"]:
            logger.warning("managebac_year_group_link_errors school_id=%s errors=%s", school_id, result["link_errors"])
        logger.info(
            "managebac_year_group_students_synced school_id=%s students=%s links=%s",
            school_id,
            result["students"],
            result["links"],
        )
        self._year_group_students_synced = True
        return result

    async def get_classes(self) -> list[dict[str, Any]]:
        classes = await self.client.fetch_all_paginated(ENDPOINTS["classes"], "classes")
        if self.current_school_id is not None and classes:
            await repository.upsert_classes([map_class(c, self.current_school_id) for c in classes])
        logger.info("managebac_classes_synced school_id=%s count=%s", self.current_school_id, len(classes))
        return classes

    async def get_year_groups(self) -> list[dict[str, Any]]:
        if self.current_school_id is None:
            try:
                await self.get_school_details()
            except UpstreamError as e:
                logger.warning("managebac_school_lookup_failed error=%s", e)

        raw_groups = await self.client.fetch_all_paginated(ENDPOINTS["year_groups"], "year_groups")
        groups = [
            {**g, "id": convert.as_int(g.get("id")), "grade_number": convert.as_int(g.get("grade_number"))}
            for g in raw_groups
        ]
        if self.current_school_id is None:
            logger.warning("managebac_year_groups_not_saved reason=no_school_id")
            return groups
        if groups:
            await repository.upsert_year_groups(
                [
                    (
                        g["id"],
                        self.current_school_id,
                        str(g.get("name") or ""),
                        convert.as_str(g.get("short_name")),
                        convert.as_str(g.get("program")) or "Unknown",
                        convert.as_str(g.get("grade")) or "Unknown",
                        g["grade_number"] or 0,
                    )
                    for g in groups
                ]
            )
        logger.info("managebac_year_groups_saved school_id=%s count=%s", self.current_school_id, len(groups))
        return groups

    async def resolve_academic_year_id(self, academic_year: str | None) -> str | None:
        """
        Id of the first academic year whose name contains `academic_year`.
        """
        if not academic_year:
            return None
        try:
            data = await self.get_academic_years()
        except UpstreamError as e:
            logger.warning("managebac_academic_year_lookup_failed year=%s error=%s", academic_year, e)
            return None
        programs = data.get("academic_years", data) if isinstance(data, dict) else None
        if not isinstance(programs, dict):
            return None
        for program in programs.values():
            for year in (program or {}).get("academic_years") or []:
                if academic_year in str(year.get("name") or ""):
                    year_id = year.get("id", year.get("uid"))
                    return str(year_id) if year_id is not None else None
        return None

    async def run_endpoint(self, endpoint: str, *, academic_year: str | None = None) -> Any:
        """
        Run one named endpoint sync (`school`, `academic-years`, ...).
        """
        if endpoint == "school":
            return await self.get_school_details()
        if endpoint == "academic-years":
            return await self.get_academic_years()
        if endpoint == "grades":
            return await self.get_grades(await self.resolve_academic_year_id(academic_year))
        if endpoint == "subjects":
            return await self.get_subjects()
        if endpoint == "teachers":
            return await self.get_teachers()
        if endpoint == "students":
            return await self.get_students()
        if endpoint == "classes":
            return await self.get_classes()
        if endpoint == "year-groups":
            return await self.get_year_groups()
        raise ValueError(f"Unknown ManageBac endpoint: {endpoint}")
