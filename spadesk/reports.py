"""Read-only report aggregations over recorded visits.

Ranges are inclusive and the end bound always covers its whole day. Unless
a report says otherwise only completed visits are counted. Line-item
revenue always uses the price captured on the visit, never the current
catalog price.
"""

from datetime import date, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import InvalidInputError
from .models import Client, Service, User, Visit, VisitService, utc_now_naive
from .services import end_of_day, parse_datetime_param, start_of_day, visit_loaders

GROUP_FORMATS = {
    "day": "%Y-%m-%d",
    "week": "%G-W%V",
    "month": "%Y-%m",
    "year": "%Y",
}
EXPORT_TYPES = ("visits", "clients", "services", "staff")


def _round(value: float) -> float:
    return round(float(value or 0), 2)


def _completed_in(start: datetime, end: datetime):
    return (
        Visit.payment_status == "completed",
        Visit.date >= start,
        Visit.date <= end,
    )


def _revenue_and_count(db: Session, start: datetime, end: datetime) -> tuple[float, int]:
    total, count = db.execute(
        select(func.coalesce(func.sum(Visit.total_amount), 0), func.count(Visit.id)).where(
            *_completed_in(start, end)
        )
    ).one()
    return float(total), int(count)


def revenue_report(db: Session, start: datetime, end: datetime, group_by: str = "day") -> dict:
    group = group_by if group_by in GROUP_FORMATS else "day"
    fmt = GROUP_FORMATS[group]

    rows = db.execute(
        select(Visit.date, Visit.total_amount, Visit.payment_method)
        .where(*_completed_in(start, end))
        .order_by(Visit.date.asc())
    ).all()

    buckets: dict[str, list[float]] = {}
    methods: dict[str, list[float]] = {}
    for visit_date, amount, method in rows:
        amount = float(amount or 0)
        bucket = buckets.setdefault(visit_date.strftime(fmt), [0.0, 0])
        bucket[0] += amount
        bucket[1] += 1
        method_row = methods.setdefault(method, [0.0, 0])
        method_row[0] += amount
        method_row[1] += 1

    time_series = [
        {
            "period": period,
            "total_revenue": _round(total),
            "visit_count": count,
            "average_ticket": _round(total / count),
        }
        for period, (total, count) in sorted(buckets.items())
    ]
    payment_methods = [
        {"payment_method": method, "total": _round(total), "count": count}
        for method, (total, count) in sorted(methods.items(), key=lambda item: (-item[1][0], item[0]))
    ]

    total_revenue = sum(float(row[1] or 0) for row in rows)
    total_visits = len(rows)
    return {
        "group_by": group,
        "time_series": time_series,
        "payment_methods": payment_methods,
        "summary": {
            "total_revenue": _round(total_revenue),
            "total_visits": total_visits,
            "average_ticket": _round(total_revenue / total_visits) if total_visits else 0.0,
        },
    }


def services_report(db: Session, start: datetime, end: datetime, limit: int = 10) -> dict:
    rows = db.execute(
        select(
            Service.id,
            Service.name,
            Service.category,
            func.count(VisitService.id),
            func.coalesce(func.sum(VisitService.price), 0),
        )
        .join(VisitService, VisitService.service_id == Service.id)
        .join(Visit, Visit.id == VisitService.visit_id)
        .where(*_completed_in(start, end))
        .group_by(Service.id, Service.name, Service.category)
    ).all()

    usage = [
        {
            "service_id": service_id,
            "name": name,
            "category": category,
            "count": int(count),
            "revenue": _round(revenue),
        }
        for service_id, name, category, count, revenue in rows
    ]
    usage.sort(key=lambda row: (-row["count"], -row["revenue"], row["name"]))

    categories: dict[str, dict] = {}
    for row in usage:
        entry = categories.setdefault(row["category"], {"category": row["category"], "count": 0, "revenue": 0.0})
        entry["count"] += row["count"]
        entry["revenue"] = _round(entry["revenue"] + row["revenue"])

    return {
        "top_services": usage[: max(1, int(limit))],
        "services_by_category": sorted(categories.values(), key=lambda row: (-row["revenue"], row["category"])),
    }


def _first_visit_ids(db: Session, client_ids: set[int]) -> set[int]:
    """Id of each client's earliest recorded visit, by date then id."""
    if not client_ids:
        return set()
    rows = db.execute(
        select(Visit.client_id, Visit.id)
        .where(Visit.client_id.in_(client_ids))
        .order_by(Visit.client_id.asc(), Visit.date.asc(), Visit.id.asc())
    ).all()
    first: dict[int, int] = {}
    for client_id, visit_id in rows:
        first.setdefault(client_id, visit_id)
    return set(first.values())


def clients_report(db: Session, start: datetime, end: datetime) -> dict:
    signup_dates = db.execute(
        select(Client.created_at).where(Client.created_at >= start, Client.created_at <= end)
    ).scalars().all()
    signups: dict[str, int] = {}
    for created_at in signup_dates:
        month = created_at.strftime("%Y-%m")
        signups[month] = signups.get(month, 0) + 1

    visits = db.execute(
        select(Visit.id, Visit.client_id, Visit.date, Visit.total_amount)
        .where(*_completed_in(start, end))
        .order_by(Visit.date.asc())
    ).all()
    active_ids = {row.client_id for row in visits}
    first_visits = _first_visit_ids(db, active_ids)

    visit_types: dict[tuple[str, bool], list[float]] = {}
    spend: dict[int, float] = {}
    for visit_id, client_id, visit_date, amount in visits:
        key = (visit_date.strftime("%Y-%m"), visit_id in first_visits)
        entry = visit_types.setdefault(key, [0, 0.0])
        entry[0] += 1
        entry[1] += float(amount or 0)
        spend[client_id] = spend.get(client_id, 0.0) + float(amount or 0)

    top_ids = [client_id for client_id, _ in sorted(spend.items(), key=lambda item: (-item[1], item[0]))[:10]]
    clients_by_id = {}
    if top_ids:
        clients_by_id = {
            client.id: client
            for client in db.execute(select(Client).where(Client.id.in_(top_ids))).scalars().all()
        }
    top_clients = []
    for client_id in top_ids:
        client = clients_by_id[client_id]
        top_clients.append(
            {
                "client_id": client.id,
                "first_name": client.first_name,
                "last_name": client.last_name,
                "phone": client.phone,
                "email": client.email,
                "total_spent": _round(spend[client_id]),
                "visit_count": int(client.visit_count or 0),
                "membership_level": client.membership_level,
                "loyalty_points": int(client.loyalty_points or 0),
            }
        )

    total_clients = db.execute(select(func.count(Client.id)).where(Client.created_at <= end)).scalar_one()
    total_clients = int(total_clients)
    retention_rate = _round(len(active_ids) / total_clients * 100) if total_clients else 0.0

    return {
        "new_client_signups": [{"month": month, "count": count} for month, count in sorted(signups.items())],
        "client_visit_types": [
            {"month": month, "is_new": is_new, "count": count, "revenue": _round(revenue)}
            for (month, is_new), (count, revenue) in sorted(visit_types.items(), key=lambda item: (item[0][0], not item[0][1]))
        ],
        "top_clients": top_clients,
        "retention_rate": retention_rate,
        "total_clients": total_clients,
        "active_clients": len(active_ids),
    }


def staff_report(db: Session, start: datetime, end: datetime) -> dict:
    staff_rows = db.execute(
        select(
            User.id,
            User.first_name,
            User.last_name,
            User.position,
            func.count(VisitService.id),
            func.coalesce(func.sum(VisitService.price), 0),
        )
        .join(VisitService, VisitService.staff_id == User.id)
        .join(Visit, Visit.id == VisitService.visit_id)
        .where(*_completed_in(start, end))
        .group_by(User.id, User.first_name, User.last_name, User.position)
    ).all()
    staff_performance = [
        {
            "user_id": user_id,
            "first_name": first_name,
            "last_name": last_name,
            "position": position,
            "service_count": int(count),
            "revenue": _round(revenue),
        }
        for user_id, first_name, last_name, position, count, revenue in staff_rows
    ]
    staff_performance.sort(key=lambda row: (-row["revenue"], row["user_id"]))

    receptionist_rows = db.execute(
        select(
            User.id,
            User.first_name,
            User.last_name,
            User.role,
            func.count(Visit.id),
            func.coalesce(func.sum(Visit.total_amount), 0),
        )
        .join(Visit, Visit.receptionist_id == User.id)
        .where(*_completed_in(start, end))
        .group_by(User.id, User.first_name, User.last_name, User.role)
    ).all()
    receptionist_performance = []
    for user_id, first_name, last_name, role, count, revenue in receptionist_rows:
        count = int(count)
        revenue = float(revenue)
        receptionist_performance.append(
            {
                "user_id": user_id,
                "first_name": first_name,
                "last_name": last_name,
                "role": role,
                "visit_count": count,
                "revenue": _round(revenue),
                "average_ticket": _round(revenue / count) if count else 0.0,
            }
        )
    receptionist_performance.sort(key=lambda row: (-row["revenue"], row["user_id"]))

    return {
        "staff_performance": staff_performance,
        "receptionist_performance": receptionist_performance,
    }


def daily_report(db: Session, day: date) -> dict:
    start = start_of_day(day)
    end = end_of_day(day)
    visits = (
        db.execute(
            select(Visit)
            .options(*visit_loaders())
            .where(Visit.date >= start, Visit.date <= end)
            .order_by(Visit.date.asc(), Visit.id.asc())
        )
        .scalars()
        .all()
    )

    total_revenue = 0.0
    payment_methods: dict[str, int] = {}
    service_count = 0
    for visit in visits:
        if visit.payment_status == "completed":
            total_revenue += float(visit.total_amount or 0)
            payment_methods[visit.payment_method] = payment_methods.get(visit.payment_method, 0) + 1
        service_count += len(visit.services)

    new_clients = db.execute(
        select(func.count(Client.id)).where(Client.created_at >= start, Client.created_at <= end)
    ).scalar_one()

    return {
        "date": start.date(),
        "visits": visits,
        "summary": {
            "total_visits": len(visits),
            "total_revenue": _round(total_revenue),
            "payment_methods": payment_methods,
            "service_count": service_count,
            "new_clients": int(new_clients),
        },
    }


def _month_start(value: datetime) -> datetime:
    return datetime(value.year, value.month, 1)


def dashboard(db: Session, now: datetime | None = None) -> dict:
    now = now or utc_now_naive()
    month_start = _month_start(now)
    next_month = _month_start(month_start + timedelta(days=32))
    month_end = next_month - timedelta(microseconds=1)
    prev_month_start = _month_start(month_start - timedelta(days=1))
    prev_month_end = month_start - timedelta(microseconds=1)

    today_revenue, today_visits = _revenue_and_count(db, start_of_day(now), end_of_day(now))
    month_revenue, month_visits = _revenue_and_count(db, month_start, month_end)
    prev_revenue, _ = _revenue_and_count(db, prev_month_start, prev_month_end)
    growth = (month_revenue - prev_revenue) / prev_revenue * 100 if prev_revenue > 0 else 0.0

    total_clients = db.execute(select(func.count(Client.id))).scalar_one()
    new_clients = db.execute(
        select(func.count(Client.id)).where(Client.created_at >= month_start, Client.created_at <= month_end)
    ).scalar_one()
    upcoming = (
        db.execute(
            select(Visit)
            .options(*visit_loaders())
            .where(Visit.date > now, Visit.payment_status != "cancelled")
            .order_by(Visit.date.asc(), Visit.id.asc())
            .limit(5)
        )
        .scalars()
        .all()
    )

    return {
        "today_revenue": _round(today_revenue),
        "today_visits": today_visits,
        "month_revenue": _round(month_revenue),
        "month_visits": month_visits,
        "revenue_growth": _round(growth),
        "total_clients": int(total_clients),
        "new_clients_this_month": int(new_clients),
        "upcoming_visits": upcoming,
    }


# --- export -----------------------------------------------------------------


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def _visit_row(visit: Visit) -> dict:
    client = visit.client
    return {
        "id": visit.id,
        "date": _iso(visit.date),
        "client_id": visit.client_id,
        "client_name": client.full_name if client else None,
        "client_phone": client.phone if client else None,
        "client_email": client.email if client else None,
        "services": "; ".join(item.service.name for item in visit.services if item.service),
        "staff": "; ".join(item.staff.full_name for item in visit.services if item.staff),
        "total_amount": _round(visit.total_amount),
        "payment_method": visit.payment_method,
        "payment_status": visit.payment_status,
        "loyalty_points_earned": int(visit.loyalty_points_earned or 0),
        "receptionist": visit.receptionist.full_name if visit.receptionist else None,
        "sms_sent": bool(visit.sms_sent),
        "notes": visit.notes,
    }


def _client_row(client: Client) -> dict:
    return {
        "id": client.id,
        "first_name": client.first_name,
        "last_name": client.last_name,
        "phone": client.phone,
        "email": client.email,
        "gender": client.gender,
        "birthdate": _iso(client.birthdate),
        "city": client.city,
        "marketing_consent": bool(client.marketing_consent),
        "visit_count": int(client.visit_count or 0),
        "total_spent": _round(client.total_spent),
        "loyalty_points": int(client.loyalty_points or 0),
        "membership_level": client.membership_level,
        "created_at": _iso(client.created_at),
    }


def _service_row(service: Service) -> dict:
    return {
        "id": service.id,
        "name": service.name,
        "category": service.category,
        "duration": int(service.duration),
        "price": _round(service.price),
        "loyalty_points_earned": int(service.loyalty_points_earned or 0),
        "is_active": bool(service.is_active),
    }


def _staff_row(user: User) -> dict:
    return {
        "id": user.id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
        "phone": user.phone,
        "role": user.role,
        "position": user.position,
        "is_active": bool(user.is_active),
        "last_login": _iso(user.last_login),
    }


def export_data(db: Session, type: str, start: str | None = None, end: str | None = None) -> dict:
    if type not in EXPORT_TYPES:
        raise InvalidInputError("Invalid export type")

    if type == "visits":
        stmt = select(Visit).options(*visit_loaders())
        start_dt = parse_datetime_param(start)
        end_dt = parse_datetime_param(end)
        if start_dt is not None and end_dt is not None:
            stmt = stmt.where(Visit.date >= start_dt, Visit.date <= end_of_day(end_dt))
        rows = [_visit_row(v) for v in db.execute(stmt.order_by(Visit.date.desc(), Visit.id.desc())).scalars()]
    elif type == "clients":
        stmt = select(Client).order_by(Client.last_name.asc(), Client.first_name.asc(), Client.id.asc())
        rows = [_client_row(c) for c in db.execute(stmt).scalars()]
    elif type == "services":
        stmt = select(Service).order_by(Service.category.asc(), Service.name.asc())
        rows = [_service_row(s) for s in db.execute(stmt).scalars()]
    else:
        stmt = select(User).order_by(User.role.asc(), User.last_name.asc(), User.id.asc())
        rows = [_staff_row(u) for u in db.execute(stmt).scalars()]

    return {
        "type": type,
        "exported_at": utc_now_naive(),
        "count": len(rows),
        "data": rows,
    }
