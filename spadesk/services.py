import math
from datetime import date, datetime, time, timedelta, timezone

import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from .errors import ConflictError, InvalidInputError, InvalidStateError, NotFoundError, NotificationError
from .loyalty import erase_visit, reconcile_points, record_visit, set_loyalty_points, void_visit_points
from .models import (
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    Client,
    Service,
    User,
    Visit,
    VisitService,
    utc_now_naive,
)
from .notifications import HubtelSmsGateway, mark_sms_sent

logger = structlog.get_logger("spadesk.services")

CLIENT_SORT_FIELDS = {
    "first_name": Client.first_name,
    "last_name": Client.last_name,
    "phone": Client.phone,
    "created_at": Client.created_at,
    "visit_count": Client.visit_count,
    "total_spent": Client.total_spent,
    "loyalty_points": Client.loyalty_points,
    "membership_level": Client.membership_level,
}
SERVICE_SORT_FIELDS = {
    "name": Service.name,
    "category": Service.category,
    "price": Service.price,
    "duration": Service.duration,
    "created_at": Service.created_at,
}
VISIT_SORT_FIELDS = {
    "date": Visit.date,
    "total_amount": Visit.total_amount,
    "created_at": Visit.created_at,
    "payment_status": Visit.payment_status,
}


# --- dates ------------------------------------------------------------------


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def start_of_day(value: datetime | date) -> datetime:
    day = value.date() if isinstance(value, datetime) else value
    return datetime.combine(day, time.min)


def end_of_day(value: datetime | date) -> datetime:
    day = value.date() if isinstance(value, datetime) else value
    return datetime.combine(day, time.max)


def parse_datetime_param(value: str | None) -> datetime | None:
    raw = str(value or "").strip()
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        raise InvalidInputError("Invalid date format") from None
    return to_utc_naive(parsed)


def resolve_range(start: str | None, end: str | None, default_days: int) -> tuple[datetime, datetime]:
    """Parse a ``[start, end]`` report range; ``end`` always covers its whole day."""
    now = utc_now_naive()
    start_dt = parse_datetime_param(start)
    end_dt = parse_datetime_param(end)
    if start_dt is None:
        start_dt = start_of_day(now - timedelta(days=default_days))
    if end_dt is None:
        end_dt = now
    return start_dt, end_of_day(end_dt)


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _order(column, sort_order: str):
    return column.asc() if (sort_order or "").lower() == "asc" else column.desc()


def total_pages(total: int, limit: int) -> int:
    return int(math.ceil(total / limit)) if limit else 0


# --- clients ----------------------------------------------------------------


def get_client(db: Session, client_id: int) -> Client:
    client = db.get(Client, client_id)
    if not client:
        raise NotFoundError("Client not found")
    return client


def _lock_client(db: Session, client_id: int) -> Client:
    client = db.execute(
        select(Client).where(Client.id == client_id).with_for_update()
    ).scalar_one_or_none()
    if not client:
        raise NotFoundError("Client not found")
    return client


def list_clients(
    db: Session,
    *,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "last_name",
    sort_order: str = "asc",
    search: str | None = None,
    membership_level: str | None = None,
) -> tuple[list[Client], int]:
    conditions = []
    term = (search or "").strip()
    if term:
        pattern = _like_pattern(term)
        conditions.append(
            Client.first_name.ilike(pattern, escape="\\")
            | Client.last_name.ilike(pattern, escape="\\")
            | Client.phone.ilike(pattern, escape="\\")
            | Client.email.ilike(pattern, escape="\\")
        )
    if membership_level:
        conditions.append(Client.membership_level == membership_level.strip().lower())

    total = db.execute(select(func.count(Client.id)).where(*conditions)).scalar_one()
    column = CLIENT_SORT_FIELDS.get(sort_by, Client.last_name)
    rows = (
        db.execute(
            select(Client)
            .where(*conditions)
            .order_by(_order(column, sort_order), Client.id.asc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return rows, int(total)


def _phone_taken(db: Session, phone: str, exclude_id: int | None = None) -> Client | None:
    stmt = select(Client).where(Client.phone == phone)
    if exclude_id is not None:
        stmt = stmt.where(Client.id != exclude_id)
    return db.execute(stmt).scalar_one_or_none()


def _apply_address(client: Client, address: dict | None) -> None:
    if address is None:
        return
    client.street = address.get("street")
    client.city = address.get("city")
    client.state = address.get("state")
    client.zip = address.get("zip")


def create_client(
    db: Session,
    *,
    first_name: str,
    last_name: str,
    phone: str,
    email: str | None = None,
    gender: str = "prefer not to say",
    birthdate: date | None = None,
    address: dict | None = None,
    notes: str | None = None,
    marketing_consent: bool = False,
) -> Client:
    first_name = first_name.strip()
    last_name = last_name.strip()
    if not first_name or not last_name:
        raise InvalidInputError("first_name and last_name are required")
    normalized_phone = phone.strip()
    if _phone_taken(db, normalized_phone):
        raise ConflictError("Client with this phone number already exists")

    client = Client(
        first_name=first_name,
        last_name=last_name,
        phone=normalized_phone,
        email=email,
        gender=gender or "prefer not to say",
        birthdate=birthdate,
        notes=notes,
        marketing_consent=bool(marketing_consent),
        visit_count=0,
        total_spent=0,
        loyalty_points=0,
        membership_level="standard",
    )
    _apply_address(client, address)
    db.add(client)
    db.commit()
    db.refresh(client)
    logger.info("client_created", client_id=client.id)
    return client


def update_client(db: Session, client_id: int, changes: dict) -> Client:
    client = get_client(db, client_id)
    changes = dict(changes)

    if changes.get("phone"):
        changes["phone"] = changes["phone"].strip()
        if _phone_taken(db, changes["phone"], exclude_id=client.id):
            raise ConflictError("Client with this phone number already exists")

    for key in ("first_name", "last_name"):
        if changes.get(key) is not None:
            changes[key] = changes[key].strip()
            if not changes[key]:
                raise InvalidInputError(f"{key} is required")

    _apply_address(client, changes.pop("address", None))
    for key in ("first_name", "last_name", "phone", "email", "gender", "birthdate", "notes", "marketing_consent"):
        if key in changes:
            value = changes[key]
            if value is None and key in {"first_name", "last_name", "phone", "gender", "marketing_consent"}:
                continue
            setattr(client, key, value)

    db.commit()
    db.refresh(client)
    return client


def get_client_detail(db: Session, client_id: int) -> tuple[Client, list[Visit]]:
    client = get_client(db, client_id)
    visits = (
        db.execute(
            select(Visit)
            .options(*visit_loaders())
            .where(Visit.client_id == client.id)
            .order_by(Visit.date.desc(), Visit.id.desc())
        )
        .scalars()
        .all()
    )
    return client, visits


def search_clients(db: Session, query: str, limit: int = 10) -> list[Client]:
    pattern = _like_pattern(query.strip())
    return (
        db.execute(
            select(Client)
            .where(
                Client.first_name.ilike(pattern, escape="\\")
                | Client.last_name.ilike(pattern, escape="\\")
                | Client.phone.ilike(pattern, escape="\\")
            )
            .order_by(Client.last_name.asc(), Client.first_name.asc(), Client.id.asc())
            .limit(limit)
        )
        .scalars()
        .all()
    )


def list_loyalty_clients(db: Session, min_points: int = 0) -> list[Client]:
    return (
        db.execute(
            select(Client)
            .where(Client.loyalty_points >= int(min_points))
            .order_by(Client.loyalty_points.desc(), Client.id.asc())
        )
        .scalars()
        .all()
    )


def update_client_loyalty(db: Session, client_id: int, points: int, adjustment: bool = False) -> Client:
    client = _lock_client(db, client_id)
    set_loyalty_points(client, points, adjustment=adjustment)
    db.commit()
    db.refresh(client)
    logger.info(
        "loyalty_points_updated",
        client_id=client.id,
        points=points,
        adjustment=bool(adjustment),
        loyalty_points=client.loyalty_points,
    )
    return client


def delete_client(db: Session, client_id: int) -> None:
    client = get_client(db, client_id)
    visit_count = db.execute(select(func.count(Visit.id)).where(Visit.client_id == client.id)).scalar_one()
    if visit_count > 0:
        raise InvalidStateError("Cannot delete client with visit history. Consider archiving instead.")
    db.delete(client)
    db.commit()
    logger.info("client_deleted", client_id=client_id)


# --- service catalog --------------------------------------------------------


def get_service(db: Session, service_id: int) -> Service:
    service = db.get(Service, service_id)
    if not service:
        raise NotFoundError("Service not found")
    return service


def list_services(
    db: Session,
    *,
    category: str | None = None,
    is_active: bool | None = None,
    sort_by: str = "name",
    sort_order: str = "asc",
) -> list[Service]:
    stmt = select(Service)
    if category:
        stmt = stmt.where(Service.category == category)
    if is_active is not None:
        stmt = stmt.where(Service.is_active.is_(bool(is_active)))
    column = SERVICE_SORT_FIELDS.get(sort_by, Service.name)
    return db.execute(stmt.order_by(_order(column, sort_order), Service.id.asc())).scalars().all()


def _service_name_taken(db: Session, name: str, exclude_id: int | None = None) -> bool:
    stmt = select(Service.id).where(Service.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Service.id != exclude_id)
    return db.execute(stmt).first() is not None


def create_service(
    db: Session,
    *,
    name: str,
    duration: int,
    price: float,
    category: str = "other",
    description: str | None = None,
    loyalty_points_earned: int | None = None,
) -> Service:
    normalized_name = name.strip()
    if not normalized_name:
        raise InvalidInputError("name is required")
    if _service_name_taken(db, normalized_name):
        raise ConflictError("Service with this name already exists")

    points = loyalty_points_earned
    if points is None:
        points = int(math.floor(float(price) / 10))

    service = Service(
        name=normalized_name,
        description=description,
        category=category or "other",
        duration=int(duration),
        price=round(float(price), 2),
        loyalty_points_earned=int(points),
        is_active=True,
    )
    db.add(service)
    db.commit()
    db.refresh(service)
    logger.info("service_created", service_id=service.id, price=float(service.price))
    return service


def update_service(db: Session, service_id: int, changes: dict) -> Service:
    service = get_service(db, service_id)
    name = (changes.get("name") or "").strip()
    if changes.get("name") is not None and not name:
        raise InvalidInputError("name is required")
    if name and _service_name_taken(db, name, exclude_id=service.id):
        raise ConflictError("Another service with this name already exists")

    for key in ("name", "description", "category", "duration", "price", "loyalty_points_earned", "is_active"):
        if key not in changes or changes[key] is None:
            continue
        value = changes[key]
        if key == "name":
            value = name
        elif key == "price":
            value = round(float(value), 2)
        setattr(service, key, value)

    db.commit()
    db.refresh(service)
    logger.info("service_updated", service_id=service.id)
    return service


def set_service_status(db: Session, service_id: int, is_active: bool) -> Service:
    service = get_service(db, service_id)
    service.is_active = bool(is_active)
    db.commit()
    db.refresh(service)
    logger.info("service_status_changed", service_id=service.id, is_active=service.is_active)
    return service


def list_service_categories(db: Session) -> list[str]:
    rows = db.execute(select(Service.category).distinct().order_by(Service.category.asc())).scalars().all()
    return [row for row in rows if row]


def service_stats(db: Session, service_id: int, start: str | None = None, end: str | None = None) -> tuple[Service, dict]:
    service = get_service(db, service_id)
    start_dt = parse_datetime_param(start)
    end_dt = parse_datetime_param(end)

    stmt = (
        select(Visit.id, Visit.date, VisitService.price)
        .join(VisitService, VisitService.visit_id == Visit.id)
        .where(VisitService.service_id == service.id, Visit.payment_status == "completed")
    )
    if start_dt is not None:
        stmt = stmt.where(Visit.date >= start_dt)
    if end_dt is not None:
        stmt = stmt.where(Visit.date <= end_of_day(end_dt))

    visit_days: dict[int, str] = {}
    total_revenue = 0.0
    for visit_id, visit_date, price in db.execute(stmt).all():
        visit_days[visit_id] = visit_date.date().isoformat()
        total_revenue += float(price or 0)

    daily_usage: dict[str, int] = {}
    for day in visit_days.values():
        daily_usage[day] = daily_usage.get(day, 0) + 1

    total_usage = len(visit_days)
    stats = {
        "total_usage": total_usage,
        "total_revenue": round(total_revenue, 2),
        "average_revenue": round(total_revenue / total_usage, 2) if total_usage else 0.0,
        "daily_usage": dict(sorted(daily_usage.items())),
    }
    return service, stats


# --- visits -----------------------------------------------------------------


def visit_loaders():
    return (
        selectinload(Visit.client),
        selectinload(Visit.receptionist),
        selectinload(Visit.services).selectinload(VisitService.service),
        selectinload(Visit.services).selectinload(VisitService.staff),
    )


def get_visit(db: Session, visit_id: int) -> Visit:
    visit = db.execute(
        select(Visit).options(*visit_loaders()).where(Visit.id == visit_id)
    ).scalar_one_or_none()
    if not visit:
        raise NotFoundError("Visit not found")
    return visit


def list_visits(
    db: Session,
    *,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "date",
    sort_order: str = "desc",
    start_date: str | None = None,
    end_date: str | None = None,
    client_id: int | None = None,
    payment_method: str | None = None,
    payment_status: str | None = None,
    service_id: int | None = None,
) -> tuple[list[Visit], int]:
    conditions = []
    start_dt = parse_datetime_param(start_date)
    end_dt = parse_datetime_param(end_date)
    if start_dt is not None:
        conditions.append(Visit.date >= start_dt)
    if end_dt is not None:
        conditions.append(Visit.date <= end_of_day(end_dt))
    if client_id is not None:
        conditions.append(Visit.client_id == client_id)
    if payment_method:
        conditions.append(Visit.payment_method == payment_method)
    if payment_status:
        conditions.append(Visit.payment_status == payment_status)
    if service_id is not None:
        conditions.append(Visit.services.any(VisitService.service_id == service_id))

    total = db.execute(select(func.count(Visit.id)).where(*conditions)).scalar_one()
    column = VISIT_SORT_FIELDS.get(sort_by, Visit.date)
    rows = (
        db.execute(
            select(Visit)
            .options(*visit_loaders())
            .where(*conditions)
            .order_by(_order(column, sort_order), Visit.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return rows, int(total)


def _price_line_items(db: Session, items: list[dict]) -> tuple[list[VisitService], float, int]:
    """Resolve line items against the catalog and snapshot their prices and points."""
    lines: list[VisitService] = []
    total_amount = 0.0
    total_points = 0

    for position, item in enumerate(items):
        service_id = item.get("service_id")
        service = db.get(Service, service_id) if service_id is not None else None
        if not service:
            raise NotFoundError(f"Service not found: {service_id}")
        if not service.is_active:
            raise InvalidStateError(f"Service is not active: {service.name}")

        staff_id = item.get("staff_id")
        if staff_id is not None and db.get(User, staff_id) is None:
            raise NotFoundError(f"Staff member not found: {staff_id}")

        # A missing or zero override falls back to the catalog price.
        price = round(float(item.get("price") or service.price or 0), 2)
        total_amount += price
        total_points += int(service.loyalty_points_earned or 0)
        lines.append(
            VisitService(
                position=position,
                service_id=service.id,
                price=price,
                staff_id=staff_id,
                notes=item.get("notes"),
            )
        )

    return lines, round(total_amount, 2), total_points


def _check_choice(value: str | None, allowed: tuple[str, ...], field_name: str) -> None:
    if value is not None and value not in allowed:
        raise InvalidInputError(f"{field_name} must be one of: {', '.join(allowed)}")


def create_visit(
    db: Session,
    *,
    client_id: int,
    items: list[dict],
    receptionist_id: int,
    payment_method: str,
    date: datetime | None = None,
    payment_status: str | None = None,
    discount_applied: float = 0,
    notes: str | None = None,
) -> Visit:
    _check_choice(payment_method, PAYMENT_METHODS, "payment_method")
    _check_choice(payment_status, PAYMENT_STATUSES, "payment_status")
    if not items:
        raise InvalidInputError("At least one service is required")

    client = _lock_client(db, client_id)
    lines, total_amount, total_points = _price_line_items(db, items)

    visit = Visit(
        client_id=client.id,
        date=to_utc_naive(date) if date else utc_now_naive(),
        total_amount=total_amount,
        payment_method=payment_method,
        payment_status=payment_status or "completed",
        discount_applied=round(float(discount_applied or 0), 2),
        loyalty_points_earned=total_points,
        receptionist_id=receptionist_id,
        notes=notes,
        sms_sent=False,
    )
    visit.services = lines
    db.add(visit)

    # Visit and client cascade are committed together.
    record_visit(client, total_amount, total_points)
    db.commit()

    logger.info(
        "visit_recorded",
        visit_id=visit.id,
        client_id=client.id,
        total_amount=total_amount,
        loyalty_points=total_points,
        membership_level=client.membership_level,
    )
    return get_visit(db, visit.id)


def update_visit(
    db: Session,
    visit_id: int,
    *,
    items: list[dict] | None = None,
    date: datetime | None = None,
    payment_method: str | None = None,
    payment_status: str | None = None,
    discount_applied: float | None = None,
    notes: str | None = None,
) -> Visit:
    _check_choice(payment_method, PAYMENT_METHODS, "payment_method")
    _check_choice(payment_status, PAYMENT_STATUSES, "payment_status")

    visit = get_visit(db, visit_id)
    client = _lock_client(db, visit.client_id)
    previous_points = int(visit.loyalty_points_earned or 0)

    if items:
        lines, total_amount, total_points = _price_line_items(db, items)
        visit.services = lines
        visit.total_amount = total_amount
        visit.loyalty_points_earned = total_points
    if date is not None:
        visit.date = to_utc_naive(date)
    if payment_method:
        visit.payment_method = payment_method
    if payment_status:
        visit.payment_status = payment_status
    if discount_applied is not None:
        visit.discount_applied = round(float(discount_applied), 2)
    if notes is not None:
        visit.notes = notes

    # Corrections reconcile points only; visit count and spend keep their values.
    loyalty_difference = int(visit.loyalty_points_earned or 0) - previous_points
    if loyalty_difference != 0:
        reconcile_points(client, loyalty_difference)
    db.commit()

    logger.info("visit_updated", visit_id=visit_id, loyalty_difference=loyalty_difference)
    db.expire_all()
    return get_visit(db, visit_id)


def cancel_visit(db: Session, visit_id: int) -> Visit:
    visit = get_visit(db, visit_id)
    if visit.payment_status == "cancelled":
        raise InvalidStateError("Visit is already cancelled")
    client = _lock_client(db, visit.client_id)

    original_status = visit.payment_status
    visit.payment_status = "cancelled"
    if original_status == "completed":
        void_visit_points(client, int(visit.loyalty_points_earned or 0))
    db.commit()

    logger.info("visit_cancelled", visit_id=visit.id, from_status=original_status)
    return get_visit(db, visit.id)


def delete_visit(db: Session, visit_id: int) -> None:
    visit = get_visit(db, visit_id)
    client = db.execute(
        select(Client).where(Client.id == visit.client_id).with_for_update()
    ).scalar_one_or_none()
    if client:
        erase_visit(client, float(visit.total_amount or 0), int(visit.loyalty_points_earned or 0))

    db.delete(visit)
    db.commit()
    logger.info("visit_deleted", visit_id=visit_id, client_id=visit.client_id)


def resend_visit_sms(db: Session, visit_id: int, gateway: HubtelSmsGateway) -> Visit:
    visit = get_visit(db, visit_id)
    if not visit.client or not visit.client.marketing_consent:
        raise InvalidStateError("Client has not consented to receive marketing messages")

    result = gateway.send_thank_you(visit)
    if not result.success:
        raise NotificationError(f"Error sending SMS: {result.error}")

    mark_sms_sent(db, visit)
    logger.info("thank_you_sms_resent", visit_id=visit.id)
    return get_visit(db, visit.id)
