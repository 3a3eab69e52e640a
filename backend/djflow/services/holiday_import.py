"""
Holiday spreadsheet import/export for DJ Flow.

Template columns: Name | Date | Type | Recurring
- Date accepts DD/MM/YYYY, YYYY-MM-DD, real Excel dates and Excel serial numbers
- Type is government or company (default government)
- Recurring accepts yes/no, true/false, 1/0

Import upserts by date: an existing holiday on the same date is updated.
"""
import io
import logging
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font

from djflow.core.database import SupabaseClient, get_supabase_client
from djflow.core.exceptions import FileFormatError, ValidationError
from djflow.models.enums import HolidayType
from djflow.models.schemas import HolidayImportSummary
from djflow.services.holiday_calendar import invalidate_holiday_cache


logger = logging.getLogger(__name__)


COLUMNS = ["Name", "Date", "Type", "Recurring"]
EXCEL_EPOCH = date(1899, 12, 30)


class HolidayExcelParser:
    """Parse a holiday sheet into `holidays` rows."""

    VALID_EXTENSIONS = {".xlsx", ".xlsm"}

    def __init__(self, content: bytes, filename: str):
        self.content = content
        self.filename = filename

    def _validate_file_type(self) -> None:
        ext = Path(self.filename).suffix.lower()
        if ext not in self.VALID_EXTENSIONS:
            raise FileFormatError(
                f"Invalid file type: {ext or 'none'}",
                expected_format=", ".join(sorted(self.VALID_EXTENSIONS)),
                file_name=self.filename
            )

    def _load(self) -> pd.DataFrame:
        try:
            df = pd.read_excel(io.BytesIO(self.content), engine="openpyxl", dtype=object)
        except Exception as e:
            raise FileFormatError(
                f"Failed to read Excel file: {e}",
                expected_format="xlsx",
                file_name=self.filename
            ) from e

        df.columns = [str(col).strip() for col in df.columns]
        missing = [col for col in ("Name", "Date") if col not in df.columns]
        if missing:
            raise FileFormatError(
                f"Missing columns: {', '.join(missing)}",
                expected_format=" | ".join(COLUMNS),
                file_name=self.filename
            )
        return df

    def _parse_date(self, value: Any, row_num: int) -> date:
        if pd.isna(value) or value == "":
            raise ValidationError("Date is required", field="Date", row=row_num)

        if isinstance(value, (datetime, pd.Timestamp)):
            return value.date()

        if isinstance(value, date):
            return value

        if isinstance(value, (int, float)):
            return EXCEL_EPOCH + timedelta(days=int(value))

        if isinstance(value, str):
            text = value.strip()
            if text.isdigit():
                return EXCEL_EPOCH + timedelta(days=int(text))
            for fmt in ["%d/%m/%Y", "%Y-%m-%d"]:
                try:
                    return datetime.strptime(text, fmt).date()
                except ValueError:
                    continue

        raise ValidationError("Invalid date format", field="Date", value=value, row=row_num)

    def _parse_type(self, value: Any, row_num: int) -> HolidayType:
        if pd.isna(value) or value == "":
            return HolidayType.GOVERNMENT
        try:
            return HolidayType(str(value).strip().lower())
        except ValueError:
            raise ValidationError("Invalid holiday type", field="Type", value=value, row=row_num)

    def _parse_bool(self, value: Any) -> bool:
        if pd.isna(value) or value == "":
            return False
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("yes", "true", "1", "y")
        return bool(value)

    def parse(self) -> tuple[list[dict], list[str]]:
        """
        Returns:
            (rows ready for the holidays table, per-row error messages)
        """
        self._validate_file_type()
        df = self._load()

        rows: list[dict] = []
        errors: list[str] = []

        for index, record in df.iterrows():
            row_num = int(index) + 2  # Header is row 1
            name = record.get("Name")
            if pd.isna(name) or str(name).strip() == "":
                if pd.isna(record.get("Date")):
                    continue  # Blank line
                errors.append(f"Row {row_num}: Name is required")
                continue

            try:
                rows.append({
                    "name": str(name).strip(),
                    "holiday_date": self._parse_date(record.get("Date"), row_num).isoformat(),
                    "holiday_type": self._parse_type(record.get("Type"), row_num).value,
                    "is_recurring": self._parse_bool(record.get("Recurring")),
                })
            except ValidationError as e:
                errors.append(f"Row {row_num}: {e.message}")

        return rows, errors


def import_holidays(
    content: bytes,
    filename: str,
    db: Optional[SupabaseClient] = None
) -> HolidayImportSummary:
    """Upsert holidays from a spreadsheet, keyed by date."""
    db = db or get_supabase_client()
    rows, errors = HolidayExcelParser(content, filename).parse()
    summary = HolidayImportSummary(failed=len(errors), errors=errors)

    for row in rows:
        try:
            existing = db.get_holiday_by_date(date.fromisoformat(row["holiday_date"]))
            if existing:
                db.update_holiday(existing["id"], row)
                summary.updated += 1
            else:
                db.create_holiday(row)
                summary.added += 1
        except Exception as e:
            logger.error(f"Holiday import failed for {row['holiday_date']}: {e}")
            summary.failed += 1
            summary.errors.append(f"{row['holiday_date']}: {e}")

    invalidate_holiday_cache()
    logger.info(
        f"Holiday import {filename}: {summary.added} added, "
        f"{summary.updated} updated, {summary.failed} failed"
    )
    return summary


def _workbook_bytes(workbook: Workbook) -> bytes:
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def build_holiday_template() -> bytes:
    """An empty import sheet with one example row."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Holidays"
    sheet.append(COLUMNS)
    for cell in sheet[1]:
        cell.font = Font(bold=True)
    sheet.append(["New Year's Day", "01/01/2026", HolidayType.GOVERNMENT.value, "yes"])
    sheet.column_dimensions["A"].width = 32
    sheet.column_dimensions["B"].width = 14
    return _workbook_bytes(workbook)


def export_holidays(year: Optional[int] = None, db: Optional[SupabaseClient] = None) -> bytes:
    """Holidays (of one year, when given) in the import sheet layout."""
    db = db or get_supabase_client()
    holidays = db.get_holidays(year)

    df = pd.DataFrame(
        [
            {
                "Name": row["name"],
                "Date": date.fromisoformat(str(row["holiday_date"])[:10]).strftime("%d/%m/%Y"),
                "Type": row.get("holiday_type") or HolidayType.GOVERNMENT.value,
                "Recurring": "yes" if row.get("is_recurring") else "no",
            }
            for row in holidays
        ],
        columns=COLUMNS
    )

    buffer = io.BytesIO()
    df.to_excel(buffer, index=False, sheet_name="Holidays", engine="openpyxl")
    return buffer.getvalue()
