"""
api/routes/v1/reports.py -- Exception report endpoint.

Returns the expiring-exceptions list, the unenforced-controls list and the
active-exception summary in one payload. Read-only; every request runs a
full scan (see core/reports.py), so the rate limit is deliberately low.
"""

from typing import Optional

from fastapi import APIRouter, Query, Request

from api.limiter import limiter
from api.models import ReportResponse
from core.config import Settings
from core.reports import ReportCompiler

router = APIRouter()


@router.get("/reports", response_model=ReportResponse)
@limiter.limit("20/minute")
def get_reports(
    request: Request,
    expiring_window: Optional[int] = Query(None, ge=1, le=3650),
    unenforced_limit: Optional[int] = Query(None, ge=10),
) -> ReportResponse:
    """Compile exception reports.

    Query params (defaults come from settings):
      expiring_window   -- days ahead that count as "approaching expiration" (>= 1)
      unenforced_limit  -- maximum unenforced rows returned (>= 10)
    """
    settings: Settings = request.app.state.settings
    compiler: ReportCompiler = request.app.state.reports
    window = expiring_window or settings.report_expiring_window_days
    limit = unenforced_limit if unenforced_limit is not None else settings.report_unenforced_limit

    report = compiler.compile(expiring_window_days=window, unenforced_limit=limit)
    return ReportResponse(
        expiring_window_days=window,
        unenforced_limit=limit,
        **report.to_dict(),
    )
