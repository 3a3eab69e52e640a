"""
Holiday Calendar API Routes for DJ Flow.

Provides endpoints for managing the holiday calendar used in working
day calculations, including spreadsheet import and export. Every write
drops the cached calendar so due dates see the change immediately.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, File, Header, HTTPException, Path, Query, Response, UploadFile

from djflow.core.config import settings
from djflow.core.database import get_supabase_client
from djflow.models.enums import Action
from djflow.models.schemas import HolidayCreate, HolidayInDB, HolidayUpdate
from djflow.services.business_days import add_working_days, is_weekend, is_working_day
from djflow.services.holiday_calendar import invalidate_holiday_cache, load_holiday_calendar
from djflow.services.holiday_import import build_holiday_template, export_holidays, import_holidays
from djflow.services.permissions import CapabilityEvaluator


router = APIRouter(prefix="/api/holidays", tags=["Holidays"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _require_manager(user_id: int) -> None:
    CapabilityEvaluator(get_supabase_client()).require(user_id, Action.MANAGE_HOLIDAYS)


def _xlsx_response(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


# ==========================================
# CALCULATION ENDPOINTS
# ==========================================

@router.get(
    "/check-working-day",
    summary="Check Working Day",
    description="Check if a specific date is a working day"
)
async def check_working_day(
    check_date: date = Query(..., description="Date to check")
) -> dict:
    calendar = load_holiday_calendar(get_supabase_client())
    holiday_name = calendar.holiday_name(check_date)

    return {
        "date": check_date.isoformat(),
        "day_of_week": check_date.strftime("%A"),
        "is_working_day": is_working_day(check_date, calendar),
        "is_weekend": is_weekend(check_date),
        "is_holiday": holiday_name is not None,
        "holiday_name": holiday_name,
    }


@router.get(
    "/add-working-days",
    summary="Add Working Days",
    description="Date that is N working days after the start date"
)
async def preview_working_days(
    start_date: date = Query(...),
    days: int = Query(..., ge=0, le=365)
) -> dict:
    calendar = load_holiday_calendar(get_supabase_client())
    try:
        result = add_working_days(start_date, days, calendar)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {
        "start_date": start_date.isoformat(),
        "days": days,
        "result": result.isoformat(),
    }


# ==========================================
# SPREADSHEET ENDPOINTS
# ==========================================

@router.get(
    "/template",
    summary="Download Import Template"
)
async def download_template() -> Response:
    return _xlsx_response(build_holiday_template(), "holiday_template.xlsx")


@router.get(
    "/export",
    summary="Export Holidays",
    description="Holidays in the import sheet layout"
)
async def export_holiday_sheet(
    year: Optional[int] = Query(None, description="Limit to one year")
) -> Response:
    content = export_holidays(year, get_supabase_client())
    filename = f"holidays_{year}.xlsx" if year else "holidays.xlsx"
    return _xlsx_response(content, filename)


@router.post(
    "/import",
    summary="Import Holidays",
    description="Upsert holidays from an Excel sheet (Name | Date | Type | Recurring)"
)
async def import_holiday_sheet(
    file: UploadFile = File(..., description="Excel file (.xlsx)"),
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    _require_manager(x_user_id)

    if not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")

    content = await file.read()
    max_size = settings.max_upload_size_mb * 1024 * 1024
    if len(content) > max_size:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {settings.max_upload_size_mb}MB"
        )

    summary = import_holidays(content, file.filename, get_supabase_client())
    return {
        "success": summary.failed == 0,
        "summary": summary.model_dump()
    }


# ==========================================
# HOLIDAY CRUD ENDPOINTS
# ==========================================

@router.get(
    "",
    summary="List Holidays",
    description="Get holidays, optionally for one year (recurring holidays are always included)"
)
async def list_holidays(
    year: Optional[int] = Query(None, description="Filter by year")
) -> dict:
    db = get_supabase_client()
    holidays = [HolidayInDB(**row).model_dump(mode="json") for row in db.get_holidays(year)]
    return {
        "holidays": holidays,
        "count": len(holidays),
        "year": year
    }


@router.get(
    "/{holiday_id}",
    summary="Get Holiday"
)
async def get_holiday(holiday_id: int = Path(...)) -> dict:
    db = get_supabase_client()
    holiday = db.get_holiday(holiday_id)
    if holiday is None:
        raise HTTPException(status_code=404, detail="Holiday not found")
    return HolidayInDB(**holiday).model_dump(mode="json")


@router.post(
    "",
    summary="Create Holiday"
)
async def create_holiday(
    body: HolidayCreate,
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    _require_manager(x_user_id)
    db = get_supabase_client()

    if db.get_holiday_by_date(body.holiday_date):
        raise HTTPException(
            status_code=400,
            detail=f"Holiday already exists on {body.holiday_date}"
        )

    holiday = HolidayInDB(**db.create_holiday(body.model_dump(mode="json")))
    invalidate_holiday_cache()
    return {"success": True, "holiday": holiday.model_dump(mode="json")}


@router.put(
    "/{holiday_id}",
    summary="Update Holiday"
)
async def update_holiday(
    body: HolidayUpdate,
    holiday_id: int = Path(...),
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    _require_manager(x_user_id)
    db = get_supabase_client()

    if db.get_holiday(holiday_id) is None:
        raise HTTPException(status_code=404, detail="Holiday not found")

    if body.holiday_date:
        clash = db.get_holiday_by_date(body.holiday_date)
        if clash and clash["id"] != holiday_id:
            raise HTTPException(
                status_code=400,
                detail=f"Holiday already exists on {body.holiday_date}"
            )

    holiday = HolidayInDB(**db.update_holiday(holiday_id, body.model_dump(mode="json", exclude_none=True)))
    invalidate_holiday_cache()
    return {"success": True, "holiday": holiday.model_dump(mode="json")}


@router.delete(
    "/{holiday_id}",
    summary="Delete Holiday"
)
async def delete_holiday(
    holiday_id: int = Path(...),
    x_user_id: int = Header(..., alias="X-User-Id")
) -> dict:
    _require_manager(x_user_id)
    db = get_supabase_client()

    holiday = db.get_holiday(holiday_id)
    if holiday is None:
        raise HTTPException(status_code=404, detail="Holiday not found")

    db.delete_holiday(holiday_id)
    invalidate_holiday_cache()
    return {"success": True, "deleted": holiday}
