import logging
from datetime import date

from database import get_config
from exporters import to_csv, to_text
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse
from reports import generate_report
from routers.admin import require_admin

logger = logging.getLogger(__name__)
router = APIRouter()

FORMATS = ("json", "csv", "text")


@router.get("/reports")
def get_report(
    start: date,
    end: date,
    owner_id: str | None = None,
    format: str = "json",
    auth=Depends(require_admin),
):
    """Per-track play totals for an inclusive date range."""
    if format not in FORMATS:
        raise HTTPException(400, f"format must be one of {', '.join(FORMATS)}")
    try:
        report = generate_report(start, end, owner_id=owner_id)
    except ValueError as e:
        raise HTTPException(400, str(e))

    if format == "json":
        return report.to_dict()

    pro_name = get_config("pro_name")
    stamp = f"{start.isoformat()}_to_{end.isoformat()}"
    if format == "csv":
        return PlainTextResponse(
            to_csv(report, pro_name),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{pro_name}_Report_{stamp}.csv"'},
        )
    return PlainTextResponse(
        to_text(report, pro_name),
        headers={"Content-Disposition": f'attachment; filename="{pro_name}_Report_{stamp}.txt"'},
    )
