from fastapi import APIRouter, Depends

from app.core.admin_auth import require_roles
from app.core.supabase import SupabaseGateway, get_gateway
from app.schemas.certificates import ReportResponse, ReportSummary
from app.services.reports_service import build_summary

router = APIRouter(
    prefix="/api/reports",
    tags=["reports"],
    dependencies=[Depends(require_roles("admin", "auditor"))],
)


@router.get("/summary", response_model=ReportResponse)
def report_summary(gateway: SupabaseGateway = Depends(get_gateway)):
    """Certificate counts per status and month, users per role."""
    return ReportResponse(summary=ReportSummary(**build_summary(gateway)))
