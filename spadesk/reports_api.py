from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from .authn import AuthIdentity, require_admin, require_identity
from .csv_export import export_filename, export_rows_csv
from .db import get_db
from .models import utc_now_naive
from .reports import (
    clients_report,
    daily_report,
    dashboard,
    export_data,
    revenue_report,
    services_report,
    staff_report,
)
from .schemas import (
    ClientsReportOut,
    DailyReportOut,
    DailySummaryOut,
    DashboardOut,
    ExportOut,
    RevenueReportOut,
    ServicesReportOut,
    StaffReportOut,
    VisitOut,
)
from .services import parse_datetime_param, resolve_range

router = APIRouter(prefix="/api/reports", tags=["reports"], dependencies=[Depends(require_identity)])


@router.get("/revenue", response_model=RevenueReportOut)
def get_revenue_report(
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    group_by: str = Query(default="day"),
    db: Session = Depends(get_db),
):
    start, end = resolve_range(start_date, end_date, default_days=30)
    return RevenueReportOut(**revenue_report(db, start, end, group_by))


@router.get("/services", response_model=ServicesReportOut)
def get_services_report(
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    start, end = resolve_range(start_date, end_date, default_days=30)
    return ServicesReportOut(**services_report(db, start, end, limit=limit))


@router.get("/clients", response_model=ClientsReportOut)
def get_clients_report(
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    _: AuthIdentity = Depends(require_admin),
):
    start, end = resolve_range(start_date, end_date, default_days=90)
    return ClientsReportOut(**clients_report(db, start, end))


@router.get("/staff", response_model=StaffReportOut)
def get_staff_report(
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    _: AuthIdentity = Depends(require_admin),
):
    start, end = resolve_range(start_date, end_date, default_days=30)
    return StaffReportOut(**staff_report(db, start, end))


@router.get("/daily", response_model=DailyReportOut)
def get_daily_report(
    date: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    day = parse_datetime_param(date) or utc_now_naive()
    report = daily_report(db, day.date())
    return DailyReportOut(
        date=report["date"],
        visits=[VisitOut.from_visit(v) for v in report["visits"]],
        summary=DailySummaryOut(**report["summary"]),
    )


@router.get("/dashboard", response_model=DashboardOut)
def get_dashboard(db: Session = Depends(get_db)):
    data = dashboard(db)
    data["upcoming_visits"] = [VisitOut.from_visit(v) for v in data["upcoming_visits"]]
    return DashboardOut(**data)


@router.get("/export/{export_type}", response_model=ExportOut)
def get_export(
    export_type: str,
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    format: str = Query(default="json", pattern="^(json|csv)$"),
    db: Session = Depends(get_db),
    _: AuthIdentity = Depends(require_admin),
):
    exported = export_data(db, export_type, start_date, end_date)
    if format == "csv":
        filename = export_filename(export_type, exported["exported_at"])
        return Response(
            content=export_rows_csv(exported["data"]),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}"},
        )
    return ExportOut(**exported)
