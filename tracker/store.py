"""
SQLite-backed entity stores.

The stores enforce record invariants (required fields, foreign-key existence)
and have no knowledge of who is allowed to call them. Authorization is always
a pre-check performed by the caller.
"""

import sqlite3
from datetime import date
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

from tracker.db import get_db_connection, utcnow
from tracker.errors import NotFound, ValidationFailed
from tracker.models import (
    CreateProgressReportRequest,
    DueDate,
    DueDateRequest,
    Indicator,
    IndicatorRequest,
    ProgressReport,
    Role,
    UpdateProgressReportRequest,
    User,
)

BLANK = "can't be blank"
MUST_EXIST = "must exist"
WRONG_INDICATOR = "must belong to the indicator"

MAX_ID = 2 ** 63 - 1
MIN_ID = -(2 ** 63)


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def _valid_id(record_id) -> bool:
    # SQLite INTEGER is a signed 64-bit value; ids outside it can never match a row
    return isinstance(record_id, int) and MIN_ID <= record_id <= MAX_ID


def _exists(conn: sqlite3.Connection, table: str, record_id: int) -> bool:
    if not _valid_id(record_id):
        return False
    row = conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (record_id,)).fetchone()
    return row is not None


class _Store:
    def __init__(self, db_path: Union[str, Path]):
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        return get_db_connection(self.db_path)


class UserStore(_Store):
    """User/Role registry."""

    def find(self, user_id: int) -> User:
        if not _valid_id(user_id):
            raise NotFound("User", user_id)
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT id, email, name, role FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFound("User", user_id)
        return User(**dict(row))

    def find_by_email(self, email: str) -> Optional[User]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT id, email, name, role FROM users WHERE email = ?", (email,)
            ).fetchone()
        finally:
            conn.close()
        return User(**dict(row)) if row else None

    def create(self, email: str, name: Optional[str] = None, role: Role = Role.GUEST) -> User:
        if _is_blank(email):
            raise ValidationFailed({"email": [BLANK]})
        conn = self._connect()
        try:
            try:
                cursor = conn.execute(
                    "INSERT INTO users (email, name, role, created_at) VALUES (?, ?, ?, ?)",
                    (email, name, Role(role).value, utcnow()),
                )
            except sqlite3.IntegrityError:
                raise ValidationFailed({"email": ["has already been taken"]})
            conn.commit()
            user_id = cursor.lastrowid
        finally:
            conn.close()
        return self.find(user_id)


class InMemoryIndicatorOwnership:
    """Indicator ownership map backed by a plain dict of indicator id -> manager id."""

    def __init__(self, mapping: Optional[Mapping[int, Optional[int]]] = None):
        self._mapping = dict(mapping or {})

    def manager_id_for(self, indicator_id: Optional[int]) -> Optional[int]:
        if indicator_id is None:
            return None
        return self._mapping.get(indicator_id)


class IndicatorStore(_Store):
    """Indicators, doubling as the ownership map consulted by the policy."""

    def manager_id_for(self, indicator_id: Optional[int]) -> Optional[int]:
        if not _valid_id(indicator_id):
            return None
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT manager_id FROM indicators WHERE id = ?", (indicator_id,)
            ).fetchone()
        finally:
            conn.close()
        return row["manager_id"] if row else None

    def find(self, indicator_id: int) -> Indicator:
        if not _valid_id(indicator_id):
            raise NotFound("Indicator", indicator_id)
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM indicators WHERE id = ?", (indicator_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFound("Indicator", indicator_id)
        return Indicator(**dict(row))

    def list(self) -> List[Indicator]:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT * FROM indicators ORDER BY id").fetchall()
        finally:
            conn.close()
        return [Indicator(**dict(row)) for row in rows]

    def _validate(self, conn: sqlite3.Connection, values: Dict, creating: bool) -> None:
        errors: Dict[str, List[str]] = {}
        if (creating or "title" in values) and _is_blank(values.get("title")):
            errors["title"] = [BLANK]
        manager_id = values.get("manager_id")
        if manager_id is not None:
            row = None
            if _valid_id(manager_id):
                row = conn.execute("SELECT role FROM users WHERE id = ?", (manager_id,)).fetchone()
            if row is None:
                errors["manager"] = [MUST_EXIST]
            elif row["role"] == Role.GUEST.value:
                errors["manager"] = ["must be a contributor or manager"]
        if errors:
            raise ValidationFailed(errors)

    def create(self, attrs: IndicatorRequest) -> Indicator:
        values = attrs.model_dump()
        conn = self._connect()
        try:
            self._validate(conn, values, creating=True)
            now = utcnow()
            cursor = conn.execute(
                """
                INSERT INTO indicators (title, description, manager_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (values["title"], values["description"], values["manager_id"], now, now),
            )
            conn.commit()
            indicator_id = cursor.lastrowid
        finally:
            conn.close()
        return self.find(indicator_id)

    def update(self, indicator_id: int, attrs: IndicatorRequest) -> Indicator:
        values = attrs.model_dump(exclude_unset=True)
        conn = self._connect()
        try:
            if not _exists(conn, "indicators", indicator_id):
                raise NotFound("Indicator", indicator_id)
            self._validate(conn, values, creating=False)
            values["updated_at"] = utcnow()
            assignments = ", ".join(f"{column} = ?" for column in values)
            conn.execute(
                f"UPDATE indicators SET {assignments} WHERE id = ?",
                (*values.values(), indicator_id),
            )
            conn.commit()
        finally:
            conn.close()
        return self.find(indicator_id)

    def delete(self, indicator_id: int) -> None:
        if not _valid_id(indicator_id):
            raise NotFound("Indicator", indicator_id)
        conn = self._connect()
        try:
            cursor = conn.execute("DELETE FROM indicators WHERE id = ?", (indicator_id,))
            conn.commit()
            deleted = cursor.rowcount
        finally:
            conn.close()
        if deleted == 0:
            raise NotFound("Indicator", indicator_id)


class DueDateStore(_Store):
    def find(self, due_date_id: int) -> DueDate:
        if not _valid_id(due_date_id):
            raise NotFound("DueDate", due_date_id)
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM due_dates WHERE id = ?", (due_date_id,)).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFound("DueDate", due_date_id)
        return DueDate(**dict(row))

    def list(self, indicator_id: Optional[int] = None) -> List[DueDate]:
        if indicator_id is not None and not _valid_id(indicator_id):
            return []
        conn = self._connect()
        try:
            if indicator_id is None:
                rows = conn.execute("SELECT * FROM due_dates ORDER BY due_date, id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM due_dates WHERE indicator_id = ? ORDER BY due_date, id",
                    (indicator_id,),
                ).fetchall()
        finally:
            conn.close()
        return [DueDate(**dict(row)) for row in rows]

    def create(self, attrs: DueDateRequest) -> DueDate:
        conn = self._connect()
        try:
            errors: Dict[str, List[str]] = {}
            if attrs.indicator_id is None or not _exists(conn, "indicators", attrs.indicator_id):
                errors["indicator"] = [MUST_EXIST]
            if _is_blank(attrs.due_date):
                errors["due_date"] = [BLANK]
            else:
                try:
                    date.fromisoformat(attrs.due_date.strip())
                except ValueError:
                    errors["due_date"] = ["is not a valid date"]
            if errors:
                raise ValidationFailed(errors)

            cursor = conn.execute(
                "INSERT INTO due_dates (indicator_id, due_date, created_at) VALUES (?, ?, ?)",
                (attrs.indicator_id, attrs.due_date.strip(), utcnow()),
            )
            conn.commit()
            due_date_id = cursor.lastrowid
        finally:
            conn.close()
        return self.find(due_date_id)

    def delete(self, due_date_id: int) -> None:
        if not _valid_id(due_date_id):
            raise NotFound("DueDate", due_date_id)
        conn = self._connect()
        try:
            cursor = conn.execute("DELETE FROM due_dates WHERE id = ?", (due_date_id,))
            conn.commit()
            deleted = cursor.rowcount
        finally:
            conn.close()
        if deleted == 0:
            raise NotFound("DueDate", due_date_id)


def _report_from_row(row: sqlite3.Row) -> ProgressReport:
    data = dict(row)
    data["draft"] = bool(data["draft"])
    data["document_public"] = bool(data["document_public"])
    return ProgressReport(**data)


class ProgressReportStore(_Store):
    """
    Progress report entity store.

    Every write stamps ``last_modified_user_id`` with the actor id supplied
    by the caller. Concurrent writes are serialized by SQLite; the last
    writer's stamp wins.
    """

    def find(self, report_id: int) -> ProgressReport:
        if not _valid_id(report_id):
            raise NotFound("ProgressReport", report_id)
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM progress_reports WHERE id = ?", (report_id,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFound("ProgressReport", report_id)
        return _report_from_row(row)

    def list(
        self, draft: Optional[bool] = None, indicator_id: Optional[int] = None
    ) -> List[ProgressReport]:
        clauses = []
        params: list = []
        if draft is not None:
            clauses.append("draft = ?")
            params.append(int(draft))
        if indicator_id is not None:
            if not _valid_id(indicator_id):
                return []
            clauses.append("indicator_id = ?")
            params.append(indicator_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT * FROM progress_reports {where} ORDER BY id", params
            ).fetchall()
        finally:
            conn.close()
        return [_report_from_row(row) for row in rows]

    def _validate(
        self, conn: sqlite3.Connection, values: Dict, current: Optional[sqlite3.Row] = None
    ) -> None:
        creating = current is None
        errors: Dict[str, List[str]] = {}
        if (creating or "title" in values) and _is_blank(values.get("title")):
            errors["title"] = [BLANK]

        for field, table, key in (
            ("indicator_id", "indicators", "indicator"),
            ("due_date_id", "due_dates", "due_date"),
        ):
            if not creating and field not in values:
                continue
            record_id = values.get(field)
            if record_id is None or not _exists(conn, table, record_id):
                errors[key] = [MUST_EXIST]

        if not errors and ("indicator_id" in values or "due_date_id" in values):
            merged = dict(current) if current is not None else {}
            merged.update(values)
            indicator_id = merged.get("indicator_id")
            due_date_id = merged.get("due_date_id")
            row = conn.execute(
                "SELECT indicator_id FROM due_dates WHERE id = ?", (due_date_id,)
            ).fetchone()
            if row is None or row["indicator_id"] != indicator_id:
                errors["due_date"] = [WRONG_INDICATOR]

        if errors:
            raise ValidationFailed(errors)

    def create(self, attrs: CreateProgressReportRequest, actor_id: int) -> ProgressReport:
        values = attrs.model_dump()
        conn = self._connect()
        try:
            self._validate(conn, values)
            now = utcnow()
            cursor = conn.execute(
                """
                INSERT INTO progress_reports
                    (indicator_id, due_date_id, title, description, document_url,
                     document_public, draft, last_modified_user_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    values["indicator_id"],
                    values["due_date_id"],
                    values["title"],
                    values["description"],
                    values["document_url"],
                    int(bool(values["document_public"])),
                    int(bool(values["draft"])),
                    actor_id,
                    now,
                    now,
                ),
            )
            conn.commit()
            report_id = cursor.lastrowid
        finally:
            conn.close()
        return self.find(report_id)

    def update(
        self, report_id: int, attrs: UpdateProgressReportRequest, actor_id: int
    ) -> ProgressReport:
        values = attrs.model_dump(exclude_unset=True)
        # Flags are NOT NULL columns; an explicit null leaves them unchanged
        for flag in ("draft", "document_public"):
            if flag in values:
                if values[flag] is None:
                    del values[flag]
                else:
                    values[flag] = int(values[flag])

        conn = self._connect()
        try:
            current = None
            if _valid_id(report_id):
                current = conn.execute(
                    "SELECT * FROM progress_reports WHERE id = ?", (report_id,)
                ).fetchone()
            if current is None:
                raise NotFound("ProgressReport", report_id)
            self._validate(conn, values, current)
            values["last_modified_user_id"] = actor_id
            values["updated_at"] = utcnow()
            assignments = ", ".join(f"{column} = ?" for column in values)
            conn.execute(
                f"UPDATE progress_reports SET {assignments} WHERE id = ?",
                (*values.values(), report_id),
            )
            conn.commit()
        finally:
            conn.close()
        return self.find(report_id)

    def delete(self, report_id: int) -> None:
        if not _valid_id(report_id):
            raise NotFound("ProgressReport", report_id)
        conn = self._connect()
        try:
            cursor = conn.execute("DELETE FROM progress_reports WHERE id = ?", (report_id,))
            conn.commit()
            deleted = cursor.rowcount
        finally:
            conn.close()
        if deleted == 0:
            raise NotFound("ProgressReport", report_id)
