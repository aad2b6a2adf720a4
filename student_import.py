"""
Student import and roll-number reconciliation.

Rows are resolved against the students of one (teacher, division) scope:

- a row without a roll number gets the next number in its division, counted
  from the highest numeric roll number among active students and carried
  forward across the batch
- a row whose roll number or UID matches an active student in the division is
  skipped and reported as a duplicate
- a row matching a soft-deleted student on its uniqueness key revives that
  student instead of inserting a new one
- any other failure is recorded against the row and the batch continues

The single-student create route goes through the same ``save_student`` path.
"""
import io
import math
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from bson import ObjectId
from pydantic import Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from app_logger import get_logger
from database import ACTIVE, CREATED, REACTIVATED, find_active_or_reactivate, utcnow
from errors import DUPLICATE_ROLL_NUMBER, DUPLICATE_UID, ApiError
from schemas import CamelModel

log = get_logger("student_import")


# -------------------- Field cleaning --------------------
def _cell_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            return str(int(value))
    text = str(value).strip()
    if not text or text.lower() in ("nan", "none", "null"):
        return None
    return text


def clean_roll_number(value: Any) -> Optional[str]:
    """Blank or whitespace-only roll numbers count as absent."""
    text = _cell_text(value)
    if text and re.fullmatch(r"\d+\.0+", text):
        text = text.split(".", 1)[0]
    return text


def clean_phone_number(value: Any) -> Optional[str]:
    """
    Reduce a phone number to 10 digits, dropping a leading "1" (11 digits) or
    "91" (12 digits). Anything else is discarded.
    """
    text = _cell_text(value)
    if not text:
        return None
    digits = re.sub(r"\D", "", text)
    if len(digits) == 10:
        return digits
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    if len(digits) == 12 and digits.startswith("91"):
        return digits[2:]
    return None


def parse_date_of_birth(value: Any) -> Optional[datetime]:
    """Accepts DD/MM/YYYY, DD-MM-YYYY and ISO dates. Unparseable input gives None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    text = _cell_text(value)
    if not text:
        return None

    for sep in ("/", "-"):
        parts = text.split(sep)
        if len(parts) == 3 and all(p.strip().isdigit() for p in parts):
            day, month, year = (int(p) for p in parts)
            if 1 <= day <= 31 and 1 <= month <= 12 and year > 1900:
                try:
                    return datetime(year, month, day)
                except ValueError:
                    return None

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed.replace(tzinfo=None)


def clean_gender(value: Any) -> Optional[str]:
    text = _cell_text(value)
    if not text:
        return None
    text = text.capitalize()
    if text in ("M", "F"):
        text = {"M": "Male", "F": "Female"}[text]
    return text if text in ("Male", "Female", "Other") else None


def normalize_row(raw: Dict[str, Any]) -> Dict[str, Any]:
    name = _cell_text(raw.get("name"))
    if not name:
        raise ValueError("Name is required")
    return {
        "name": name,
        "roll_number": clean_roll_number(raw.get("roll_number")),
        "uid": _cell_text(raw.get("uid")),
        "date_of_birth": parse_date_of_birth(raw.get("date_of_birth")),
        "gender": clean_gender(raw.get("gender")),
        "address": _cell_text(raw.get("address")),
        "parent_contact": {
            "phone": clean_phone_number(raw.get("phone")),
            "email": _cell_text(raw.get("email")),
        },
    }


# -------------------- Roll numbers and conflicts --------------------
def max_roll_number(database: Database, teacher_id: ObjectId, division_id: ObjectId) -> int:
    """Highest numeric roll number among active students; non-numeric ones count as 0."""
    highest = 0
    cursor = database["student"].find(
        {"division_id": division_id, "created_by": teacher_id, "is_active": True},
        {"roll_number": 1},
    )
    for doc in cursor:
        roll = doc.get("roll_number")
        if isinstance(roll, str) and roll.strip().isdigit():
            highest = max(highest, int(roll))
    return highest


class RollNumberAllocator:
    """Hands out roll numbers per division, seeded once from the database."""

    def __init__(self, database: Database, teacher_id: ObjectId):
        self.database = database
        self.teacher_id = teacher_id
        self._counters: Dict[ObjectId, int] = {}

    def _counter(self, division_id: ObjectId) -> int:
        if division_id not in self._counters:
            self._counters[division_id] = max_roll_number(self.database, self.teacher_id, division_id)
        return self._counters[division_id]

    def next(self, division_id: ObjectId) -> str:
        value = self._counter(division_id) + 1
        self._counters[division_id] = value
        return str(value)

    def observe(self, division_id: ObjectId, roll_number: Optional[str]) -> None:
        """Keep the counter ahead of explicitly supplied numeric roll numbers."""
        if roll_number and roll_number.isdigit():
            current = self._counter(division_id)
            self._counters[division_id] = max(current, int(roll_number))

    def release(self, division_id: ObjectId, roll_number: str) -> None:
        """Give back the last number handed out when its row was not saved."""
        if self._counters.get(division_id) == int(roll_number):
            self._counters[division_id] -= 1


def find_conflicts(
    database: Database,
    teacher_id: ObjectId,
    division_id: ObjectId,
    roll_number: Optional[str],
    uid: Optional[str],
    exclude_id: Optional[ObjectId] = None,
) -> List[Tuple[str, str]]:
    """Active students in the division clashing on roll number or UID, as (field, value)."""
    conflicts = []
    base: Dict[str, Any] = {"division_id": division_id, "created_by": teacher_id, "is_active": True}
    if exclude_id is not None:
        base["_id"] = {"$ne": exclude_id}
    if roll_number and database["student"].find_one({**base, "roll_number": roll_number}, {"_id": 1}):
        conflicts.append(("rollNumber", roll_number))
    if uid and database["student"].find_one({**base, "uid": uid}, {"_id": 1}):
        conflicts.append(("uid", uid))
    return conflicts


def conflict_error(field: str, value: str) -> ApiError:
    if field == "uid":
        return ApiError(400, f'UID "{value}" already exists in this division', error=DUPLICATE_UID)
    return ApiError(
        400,
        f'Roll number "{value}" already exists in this division',
        error=DUPLICATE_ROLL_NUMBER,
    )


def duplicate_key_error(exc: DuplicateKeyError) -> ApiError:
    """Translate a unique index violation on the student collection."""
    text = str(exc)
    if "uid" in text:
        return ApiError(400, "UID already exists in this division", error=DUPLICATE_UID)
    return ApiError(400, "Roll number already exists in this division", error=DUPLICATE_ROLL_NUMBER)


def save_student(
    database: Database,
    teacher_id: ObjectId,
    standard_id: ObjectId,
    division_id: ObjectId,
    values: Dict[str, Any],
    roll_supplied: bool,
) -> Tuple[dict, str]:
    """
    Insert or revive one student whose conflicts have already been checked.

    The reactivation key is the supplied roll number, else the UID. An
    auto-assigned roll number never revives anyone.
    """
    fields = {
        **values,
        "standard_id": standard_id,
        "division_id": division_id,
        "created_by": teacher_id,
    }
    scope = {"division_id": division_id, "created_by": teacher_id}
    key = None
    if roll_supplied and fields.get("roll_number"):
        key = {**scope, "roll_number": fields["roll_number"]}
    elif fields.get("uid"):
        key = {**scope, "uid": fields["uid"]}

    if key is None:
        now = utcnow()
        doc = {**fields, "is_active": True, "created_at": now, "updated_at": now}
        doc["_id"] = database["student"].insert_one(doc).inserted_id
        return doc, CREATED

    doc, outcome = find_active_or_reactivate(database["student"], key, fields)
    if outcome == ACTIVE:
        # Created between the conflict check and now
        field = "rollNumber" if "roll_number" in key else "uid"
        raise conflict_error(field, key.get("roll_number") or key.get("uid"))
    return doc, outcome


# -------------------- Batch import --------------------
class DuplicateRow(CamelModel):
    row: int
    name: str
    field: str
    value: str


class RowError(CamelModel):
    row: int
    name: Optional[str] = None
    message: str


class ImportSummary(CamelModel):
    success_count: int = 0
    reactivated_count: int = 0
    duplicate_count: int = 0
    error_count: int = 0
    duplicates: List[DuplicateRow] = Field(default_factory=list)
    errors: List[RowError] = Field(default_factory=list)
    students: List[dict] = Field(default_factory=list)


class StudentImporter:
    def __init__(self, database: Database, teacher: dict, standard: dict, division: dict):
        self.database = database
        self.teacher_id = teacher["_id"]
        self.standard_id = standard["_id"]
        self.division_id = division["_id"]
        self.allocator = RollNumberAllocator(database, self.teacher_id)

    def run(self, rows: List[Dict[str, Any]]) -> Tuple[ImportSummary, List[dict]]:
        """Returns the summary (without students) and the saved documents."""
        summary = ImportSummary()
        saved: List[dict] = []
        for index, raw in enumerate(rows, start=1):
            try:
                values = normalize_row(raw)
            except ValueError as e:
                summary.errors.append(RowError(row=index, name=_cell_text(raw.get("name")), message=str(e)))
                continue

            roll_supplied = values["roll_number"] is not None
            if not roll_supplied:
                values["roll_number"] = self.allocator.next(self.division_id)

            conflicts = find_conflicts(
                self.database, self.teacher_id, self.division_id, values["roll_number"], values["uid"]
            )
            if conflicts:
                for field, value in conflicts:
                    summary.duplicates.append(DuplicateRow(row=index, name=values["name"], field=field, value=value))
            else:
                try:
                    doc, outcome = save_student(
                        self.database, self.teacher_id, self.standard_id, self.division_id, values, roll_supplied
                    )
                except ApiError as e:
                    summary.errors.append(RowError(row=index, name=values["name"], message=e.message))
                except DuplicateKeyError as e:
                    summary.errors.append(
                        RowError(row=index, name=values["name"], message=duplicate_key_error(e).message)
                    )
                else:
                    self.allocator.observe(self.division_id, values["roll_number"])
                    saved.append(doc)
                    summary.success_count += 1
                    if outcome == REACTIVATED:
                        summary.reactivated_count += 1
                    continue

            if not roll_supplied:
                self.allocator.release(self.division_id, values["roll_number"])

        summary.duplicate_count = len({d.row for d in summary.duplicates})
        summary.error_count = len(summary.errors)
        log.info(
            "Student import finished",
            extra={
                "division_id": str(self.division_id),
                "rows": len(rows),
                "success": summary.success_count,
                "reactivated": summary.reactivated_count,
                "duplicates": summary.duplicate_count,
                "errors": summary.error_count,
            },
        )
        return summary, saved


# -------------------- Spreadsheets --------------------
HEADER_ALIASES: Dict[str, List[str]] = {
    "roll_number": ["ROLLNUMBER", "ROLL_NUMBER", "ROLL NO", "ROLL"],
    "name": ["NAME", "STUDENT NAME", "STUDENT_NAME", "FULL NAME"],
    "uid": ["UID", "STUDENT UID", "GR NO"],
    "date_of_birth": ["DATEOFBIRTH", "DATE_OF_BIRTH", "DATE OF BIRTH", "DOB"],
    "phone": ["MOBILE_NUMBER", "MOBILE NUMBER", "MOBILE", "PHONE", "PARENT PHONE", "CONTACT"],
    "email": ["EMAIL", "PARENT EMAIL"],
    "gender": ["GENDER"],
    "address": ["ADDRESS"],
}


def normalize_header(value: Any) -> str:
    return re.sub(r"[^a-z0-9]+", "", str(value).lower())


_ALIASES_NORMALIZED = {key: [normalize_header(a) for a in aliases] for key, aliases in HEADER_ALIASES.items()}


def _header_score(row) -> int:
    normalized_row = [normalize_header(val) for val in row if pd.notna(val)]
    if not normalized_row:
        return -1
    return sum(1 for aliases in _ALIASES_NORMALIZED.values() if any(a in normalized_row for a in aliases))


def read_spreadsheet(content: bytes, filename: str) -> List[Dict[str, Any]]:
    """
    Read a CSV or Excel file into rows keyed by canonical field name.
    The header row is the one among the first 10 that matches the most aliases.
    """
    best_header_row = 0
    best_score = -1
    try:
        if filename.lower().endswith(".csv"):
            preview = pd.read_csv(io.BytesIO(content), header=None, nrows=10, dtype=str)
            for idx, row in preview.iterrows():
                score = _header_score(row)
                if score > best_score:
                    best_score, best_header_row = score, idx
            df = pd.read_csv(io.BytesIO(content), header=best_header_row, dtype=str)
        else:
            xl = pd.ExcelFile(io.BytesIO(content))
            best_sheet = xl.sheet_names[0]
            for sheet in xl.sheet_names:
                preview = xl.parse(sheet, header=None, nrows=10)
                for idx, row in preview.iterrows():
                    score = _header_score(row)
                    if score > best_score:
                        best_score, best_sheet, best_header_row = score, sheet, idx
            df = xl.parse(best_sheet, header=best_header_row, dtype=str)
    except (ValueError, OSError, ImportError, pd.errors.ParserError) as e:
        raise ApiError(400, f"Invalid spreadsheet file: {e}")

    df.columns = [str(col).strip() for col in df.columns]
    normalized_cols = {normalize_header(col): col for col in df.columns}
    column_lookup: Dict[str, str] = {}
    for key, aliases in _ALIASES_NORMALIZED.items():
        for alias in aliases:
            if alias in normalized_cols:
                column_lookup[key] = normalized_cols[alias]
                break
    if "name" not in column_lookup:
        raise ApiError(400, "Could not find a NAME column in the uploaded file")

    rows = []
    for record in df.to_dict(orient="records"):
        row = {key: record.get(col) for key, col in column_lookup.items()}
        if all(_cell_text(v) is None for v in row.values()):
            continue
        rows.append(row)
    return rows
