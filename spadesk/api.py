from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from sqlalchemy.orm import Session

from .authn import AuthIdentity, require_admin, require_identity
from .db import SessionLocal, get_db
from .notifications import HubtelSmsGateway, deliver_thank_you_sms, get_sms_gateway
from .schemas import (
    ClientCreate,
    ClientDetailOut,
    ClientListOut,
    ClientMessageOut,
    ClientOut,
    ClientUpdate,
    LoyaltyUpdate,
    MessageOut,
    ServiceCreate,
    ServiceMessageOut,
    ServiceOut,
    ServiceStatsOut,
    ServiceStatsSummary,
    ServiceStatusIn,
    ServiceUpdate,
    VisitCreate,
    VisitListOut,
    VisitMessageOut,
    VisitOut,
    VisitUpdate,
)
from .services import (
    cancel_visit,
    create_client,
    create_service,
    create_visit,
    delete_client,
    delete_visit,
    get_client_detail,
    get_service,
    get_visit,
    list_clients,
    list_loyalty_clients,
    list_service_categories,
    list_services,
    list_visits,
    resend_visit_sms,
    search_clients,
    service_stats,
    set_service_status,
    total_pages,
    update_client,
    update_client_loyalty,
    update_service,
    update_visit,
)

clients_router = APIRouter(prefix="/api/clients", tags=["clients"], dependencies=[Depends(require_identity)])
services_router = APIRouter(prefix="/api/services", tags=["services"], dependencies=[Depends(require_identity)])
visits_router = APIRouter(prefix="/api/visits", tags=["visits"], dependencies=[Depends(require_identity)])


# --- clients ----------------------------------------------------------------


@clients_router.get("", response_model=ClientListOut)
def get_clients(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    sort_by: str = Query(default="last_name"),
    sort_order: str = Query(default="asc"),
    search: Optional[str] = Query(default=None, max_length=120),
    membership_level: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    rows, total = list_clients(
        db,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        search=search,
        membership_level=membership_level,
    )
    return ClientListOut(
        clients=[ClientOut.from_client(c) for c in rows],
        total_pages=total_pages(total, limit),
        current_page=page,
        total_clients=total,
    )


@clients_router.post("", response_model=ClientMessageOut, status_code=status.HTTP_201_CREATED)
def post_client(payload: ClientCreate, db: Session = Depends(get_db)):
    client = create_client(
        db,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        email=payload.email,
        gender=payload.gender,
        birthdate=payload.birthdate,
        address=payload.address.model_dump() if payload.address else None,
        notes=payload.notes,
        marketing_consent=payload.marketing_consent,
    )
    return ClientMessageOut(message="Client created successfully", client=ClientOut.from_client(client))


@clients_router.get("/search/{query}", response_model=List[ClientOut])
def get_client_search(query: str, db: Session = Depends(get_db)):
    return [ClientOut.from_client(c) for c in search_clients(db, query)]


@clients_router.get("/loyalty/list", response_model=List[ClientOut])
def get_loyalty_clients(
    min_points: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    _: AuthIdentity = Depends(require_admin),
):
    return [ClientOut.from_client(c) for c in list_loyalty_clients(db, min_points)]


@clients_router.get("/{client_id}", response_model=ClientDetailOut)
def get_client(client_id: int, db: Session = Depends(get_db)):
    client, visits = get_client_detail(db, client_id)
    return ClientDetailOut(
        client=ClientOut.from_client(client),
        visits=[VisitOut.from_visit(v) for v in visits],
    )


@clients_router.put("/{client_id}", response_model=ClientMessageOut)
def put_client(client_id: int, payload: ClientUpdate, db: Session = Depends(get_db)):
    client = update_client(db, client_id, payload.model_dump(exclude_unset=True))
    return ClientMessageOut(message="Client updated successfully", client=ClientOut.from_client(client))


@clients_router.patch("/{client_id}/loyalty", response_model=ClientMessageOut)
def patch_client_loyalty(
    client_id: int,
    payload: LoyaltyUpdate,
    db: Session = Depends(get_db),
    _: AuthIdentity = Depends(require_admin),
):
    client = update_client_loyalty(db, client_id, payload.points, adjustment=payload.adjustment)
    return ClientMessageOut(message="Loyalty points updated successfully", client=ClientOut.from_client(client))


@clients_router.delete("/{client_id}", response_model=MessageOut)
def remove_client(
    client_id: int,
    db: Session = Depends(get_db),
    _: AuthIdentity = Depends(require_admin),
):
    delete_client(db, client_id)
    return MessageOut(message="Client deleted successfully")


# --- service catalog --------------------------------------------------------


@services_router.get("", response_model=List[ServiceOut])
def get_services(
    category: Optional[str] = Query(default=None),
    is_active: Optional[bool] = Query(default=None),
    sort_by: str = Query(default="name"),
    sort_order: str = Query(default="asc"),
    db: Session = Depends(get_db),
):
    rows = list_services(db, category=category, is_active=is_active, sort_by=sort_by, sort_order=sort_order)
    return [ServiceOut.from_service(s) for s in rows]


@services_router.post("", response_model=ServiceMessageOut, status_code=status.HTTP_201_CREATED)
def post_service(
    payload: ServiceCreate,
    db: Session = Depends(get_db),
    _: AuthIdentity = Depends(require_admin),
):
    service = create_service(db, **payload.model_dump())
    return ServiceMessageOut(message="Service created successfully", service=ServiceOut.from_service(service))


@services_router.get("/categories/list", response_model=List[str])
def get_service_categories(db: Session = Depends(get_db)):
    return list_service_categories(db)


@services_router.get("/{service_id}", response_model=ServiceOut)
def get_service_by_id(service_id: int, db: Session = Depends(get_db)):
    return ServiceOut.from_service(get_service(db, service_id))


@services_router.put("/{service_id}", response_model=ServiceMessageOut)
def put_service(
    service_id: int,
    payload: ServiceUpdate,
    db: Session = Depends(get_db),
    _: AuthIdentity = Depends(require_admin),
):
    service = update_service(db, service_id, payload.model_dump(exclude_unset=True))
    return ServiceMessageOut(message="Service updated successfully", service=ServiceOut.from_service(service))


@services_router.get("/{service_id}/stats", response_model=ServiceStatsOut)
def get_service_stats(
    service_id: int,
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    _: AuthIdentity = Depends(require_admin),
):
    service, stats = service_stats(db, service_id, start_date, end_date)
    return ServiceStatsOut(service=ServiceOut.from_service(service), stats=ServiceStatsSummary(**stats))


@services_router.patch("/{service_id}/status", response_model=ServiceMessageOut)
def patch_service_status(
    service_id: int,
    payload: ServiceStatusIn,
    db: Session = Depends(get_db),
    _: AuthIdentity = Depends(require_admin),
):
    service = set_service_status(db, service_id, payload.is_active)
    state = "activated" if service.is_active else "deactivated"
    return ServiceMessageOut(message=f"Service {state} successfully", service=ServiceOut.from_service(service))


# --- visits -----------------------------------------------------------------


@visits_router.get("", response_model=VisitListOut)
def get_visits(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    sort_by: str = Query(default="date"),
    sort_order: str = Query(default="desc"),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    client_id: Optional[int] = Query(default=None),
    payment_method: Optional[str] = Query(default=None),
    payment_status: Optional[str] = Query(default=None),
    service_id: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
):
    rows, total = list_visits(
        db,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        start_date=start_date,
        end_date=end_date,
        client_id=client_id,
        payment_method=payment_method,
        payment_status=payment_status,
        service_id=service_id,
    )
    return VisitListOut(
        visits=[VisitOut.from_visit(v) for v in rows],
        total_pages=total_pages(total, limit),
        current_page=page,
        total_visits=total,
    )


@visits_router.post("", response_model=VisitMessageOut, status_code=status.HTTP_201_CREATED)
def post_visit(
    payload: VisitCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    identity: AuthIdentity = Depends(require_identity),
    db: Session = Depends(get_db),
    gateway: HubtelSmsGateway = Depends(get_sms_gateway),
):
    visit = create_visit(
        db,
        client_id=payload.client_id,
        items=[item.model_dump() for item in payload.services],
        receptionist_id=identity.user_id,
        payment_method=payload.payment_method,
        date=payload.date,
        payment_status=payload.payment_status,
        discount_applied=payload.discount_applied,
        notes=payload.notes,
    )

    if payload.send_sms and visit.client.marketing_consent:
        session_factory = getattr(request.app.state, "session_local", SessionLocal)
        background_tasks.add_task(deliver_thank_you_sms, session_factory, gateway, visit.id)

    return VisitMessageOut(message="Visit recorded successfully", visit=VisitOut.from_visit(visit))


@visits_router.get("/{visit_id}", response_model=VisitOut)
def get_visit_by_id(visit_id: int, db: Session = Depends(get_db)):
    return VisitOut.from_visit(get_visit(db, visit_id))


@visits_router.put("/{visit_id}", response_model=VisitMessageOut)
def put_visit(visit_id: int, payload: VisitUpdate, db: Session = Depends(get_db)):
    visit = update_visit(
        db,
        visit_id,
        items=[item.model_dump() for item in payload.services] if payload.services else None,
        date=payload.date,
        payment_method=payload.payment_method,
        payment_status=payload.payment_status,
        discount_applied=payload.discount_applied,
        notes=payload.notes,
    )
    return VisitMessageOut(message="Visit updated successfully", visit=VisitOut.from_visit(visit))


@visits_router.patch("/{visit_id}/cancel", response_model=VisitMessageOut)
def patch_visit_cancel(visit_id: int, db: Session = Depends(get_db)):
    visit = cancel_visit(db, visit_id)
    return VisitMessageOut(message="Visit cancelled successfully", visit=VisitOut.from_visit(visit))


@visits_router.post("/{visit_id}/resend-sms", response_model=VisitMessageOut)
def post_visit_resend_sms(
    visit_id: int,
    db: Session = Depends(get_db),
    gateway: HubtelSmsGateway = Depends(get_sms_gateway),
):
    visit = resend_visit_sms(db, visit_id, gateway)
    return VisitMessageOut(message="SMS sent successfully", visit=VisitOut.from_visit(visit))


@visits_router.delete("/{visit_id}", response_model=MessageOut)
def remove_visit(
    visit_id: int,
    db: Session = Depends(get_db),
    _: AuthIdentity = Depends(require_admin),
):
    delete_visit(db, visit_id)
    return MessageOut(message="Visit deleted successfully")
