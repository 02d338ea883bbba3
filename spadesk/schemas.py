import re
from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .models import Client, Service, User, Visit, VisitService

Gender = Literal["male", "female", "other", "prefer not to say"]
MembershipLevel = Literal["standard", "silver", "gold", "platinum"]
ServiceCategory = Literal["hair", "facial", "massage", "nails", "makeup", "spa", "other"]
PaymentMethod = Literal["cash", "credit_card", "debit_card", "mobile_money", "other"]
PaymentStatus = Literal["pending", "completed", "refunded", "cancelled"]
UserRole = Literal["admin", "staff", "receptionist"]

_EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")


def _validate_email(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip().lower()
    if not cleaned:
        return None
    if not _EMAIL_RE.match(cleaned):
        raise ValueError("Please use a valid email address.")
    return cleaned


class MessageOut(BaseModel):
    message: str


# --- users -----------------------------------------------------------------


class UserRegisterIn(BaseModel):
    first_name: str = Field(min_length=1, max_length=80)
    last_name: str = Field(min_length=1, max_length=80)
    email: str = Field(min_length=3, max_length=160)
    password: str = Field(min_length=6, max_length=200)
    phone: str | None = Field(default=None, max_length=40)
    role: UserRole | None = None
    position: str | None = Field(default=None, max_length=80)

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        cleaned = _validate_email(value)
        if not cleaned:
            raise ValueError("email is required")
        return cleaned


class LoginIn(BaseModel):
    email: str = Field(min_length=3, max_length=160)
    password: str = Field(min_length=1, max_length=200)


class PasswordChangeIn(BaseModel):
    current_password: str = Field(min_length=1, max_length=200)
    new_password: str = Field(min_length=6, max_length=200)


class UserStatusIn(BaseModel):
    is_active: bool


class UserOut(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    role: str
    position: str | None = None
    is_active: bool
    last_login: datetime | None = None
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            phone=user.phone,
            role=user.role,
            position=user.position,
            is_active=bool(user.is_active),
            last_login=user.last_login,
            created_at=user.created_at,
        )


class UserMessageOut(BaseModel):
    message: str
    user: UserOut


class LoginOut(BaseModel):
    message: str
    token: str
    token_type: str = "bearer"
    expires_in_seconds: int
    user: UserOut


# --- clients ---------------------------------------------------------------


class Address(BaseModel):
    street: str | None = Field(default=None, max_length=160)
    city: str | None = Field(default=None, max_length=80)
    state: str | None = Field(default=None, max_length=80)
    zip: str | None = Field(default=None, max_length=20)


class ClientCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=80)
    last_name: str = Field(min_length=1, max_length=80)
    phone: str = Field(min_length=5, max_length=40)
    email: str | None = Field(default=None, max_length=160)
    gender: Gender = "prefer not to say"
    birthdate: date | None = None
    address: Address | None = None
    notes: str | None = Field(default=None, max_length=2000)
    marketing_consent: bool = False

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        return _validate_email(value)


class ClientUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=80)
    last_name: str | None = Field(default=None, min_length=1, max_length=80)
    phone: str | None = Field(default=None, min_length=5, max_length=40)
    email: str | None = Field(default=None, max_length=160)
    gender: Gender | None = None
    birthdate: date | None = None
    address: Address | None = None
    notes: str | None = Field(default=None, max_length=2000)
    marketing_consent: bool | None = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        return _validate_email(value)


class LoyaltyUpdate(BaseModel):
    points: int
    adjustment: bool = False


class ClientOut(BaseModel):
    id: int
    first_name: str
    last_name: str
    full_name: str
    phone: str
    email: str | None = None
    gender: str
    birthdate: date | None = None
    address: Address
    notes: str | None = None
    marketing_consent: bool
    visit_count: int
    total_spent: float
    loyalty_points: int
    membership_level: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_client(cls, client: Client) -> "ClientOut":
        return cls(
            id=client.id,
            first_name=client.first_name,
            last_name=client.last_name,
            full_name=client.full_name,
            phone=client.phone,
            email=client.email,
            gender=client.gender,
            birthdate=client.birthdate,
            address=Address(street=client.street, city=client.city, state=client.state, zip=client.zip),
            notes=client.notes,
            marketing_consent=bool(client.marketing_consent),
            visit_count=int(client.visit_count or 0),
            total_spent=float(client.total_spent or 0),
            loyalty_points=int(client.loyalty_points or 0),
            membership_level=client.membership_level,
            created_at=client.created_at,
            updated_at=client.updated_at,
        )


class ClientMessageOut(BaseModel):
    message: str
    client: ClientOut


class ClientListOut(BaseModel):
    clients: list[ClientOut]
    total_pages: int
    current_page: int
    total_clients: int


# --- service catalog ------------------------------------------------------


class ServiceCreate(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    description: str | None = Field(default=None, max_length=2000)
    category: ServiceCategory = "other"
    duration: int = Field(ge=5, le=1440)
    price: float = Field(ge=0)
    loyalty_points_earned: int | None = Field(default=None, ge=0)


class ServiceUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=120)
    description: str | None = Field(default=None, max_length=2000)
    category: ServiceCategory | None = None
    duration: int | None = Field(default=None, ge=5, le=1440)
    price: float | None = Field(default=None, ge=0)
    loyalty_points_earned: int | None = Field(default=None, ge=0)
    is_active: bool | None = None


class ServiceStatusIn(BaseModel):
    is_active: bool


class ServiceOut(BaseModel):
    id: int
    name: str
    description: str | None = None
    category: str
    duration: int
    price: float
    loyalty_points_earned: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_service(cls, service: Service) -> "ServiceOut":
        return cls(
            id=service.id,
            name=service.name,
            description=service.description,
            category=service.category,
            duration=int(service.duration),
            price=float(service.price or 0),
            loyalty_points_earned=int(service.loyalty_points_earned or 0),
            is_active=bool(service.is_active),
            created_at=service.created_at,
            updated_at=service.updated_at,
        )


class ServiceMessageOut(BaseModel):
    message: str
    service: ServiceOut


class ServiceStatsSummary(BaseModel):
    total_usage: int
    total_revenue: float
    average_revenue: float
    daily_usage: dict[str, int]


class ServiceStatsOut(BaseModel):
    service: ServiceOut
    stats: ServiceStatsSummary


# --- visits -----------------------------------------------------------------


class VisitItemIn(BaseModel):
    service_id: int
    price: float | None = Field(default=None, ge=0)
    staff_id: int | None = None
    notes: str | None = Field(default=None, max_length=1000)


class VisitCreate(BaseModel):
    client_id: int
    services: list[VisitItemIn] = Field(min_length=1)
    date: datetime | None = None
    payment_method: PaymentMethod
    payment_status: PaymentStatus | None = None
    discount_applied: float = Field(default=0, ge=0)
    notes: str | None = Field(default=None, max_length=2000)
    send_sms: bool = False


class VisitUpdate(BaseModel):
    services: list[VisitItemIn] | None = None
    date: datetime | None = None
    payment_method: PaymentMethod | None = None
    payment_status: PaymentStatus | None = None
    discount_applied: float | None = Field(default=None, ge=0)
    notes: str | None = Field(default=None, max_length=2000)


class VisitItemOut(BaseModel):
    service_id: int
    service_name: str | None = None
    category: str | None = None
    price: float
    staff_id: int | None = None
    staff_name: str | None = None
    notes: str | None = None

    @classmethod
    def from_item(cls, item: VisitService) -> "VisitItemOut":
        return cls(
            service_id=item.service_id,
            service_name=item.service.name if item.service else None,
            category=item.service.category if item.service else None,
            price=float(item.price or 0),
            staff_id=item.staff_id,
            staff_name=item.staff.full_name if item.staff else None,
            notes=item.notes,
        )


class VisitOut(BaseModel):
    id: int
    client_id: int
    client_name: str | None = None
    client_phone: str | None = None
    services: list[VisitItemOut]
    date: datetime
    total_amount: float
    payment_method: str
    payment_status: str
    loyalty_points_earned: int
    discount_applied: float
    receptionist_id: int
    receptionist_name: str | None = None
    notes: str | None = None
    sms_sent: bool
    sms_sent_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_visit(cls, visit: Visit) -> "VisitOut":
        return cls(
            id=visit.id,
            client_id=visit.client_id,
            client_name=visit.client.full_name if visit.client else None,
            client_phone=visit.client.phone if visit.client else None,
            services=[VisitItemOut.from_item(item) for item in visit.services],
            date=visit.date,
            total_amount=float(visit.total_amount or 0),
            payment_method=visit.payment_method,
            payment_status=visit.payment_status,
            loyalty_points_earned=int(visit.loyalty_points_earned or 0),
            discount_applied=float(visit.discount_applied or 0),
            receptionist_id=visit.receptionist_id,
            receptionist_name=visit.receptionist.full_name if visit.receptionist else None,
            notes=visit.notes,
            sms_sent=bool(visit.sms_sent),
            sms_sent_at=visit.sms_sent_at,
            created_at=visit.created_at,
            updated_at=visit.updated_at,
        )


class VisitMessageOut(BaseModel):
    message: str
    visit: VisitOut


class VisitListOut(BaseModel):
    visits: list[VisitOut]
    total_pages: int
    current_page: int
    total_visits: int


class ClientDetailOut(BaseModel):
    client: ClientOut
    visits: list[VisitOut]


# --- reports ----------------------------------------------------------------


class RevenueBucketOut(BaseModel):
    period: str
    total_revenue: float
    visit_count: int
    average_ticket: float


class PaymentMethodRowOut(BaseModel):
    payment_method: str
    total: float
    count: int


class RevenueSummaryOut(BaseModel):
    total_revenue: float
    total_visits: int
    average_ticket: float


class RevenueReportOut(BaseModel):
    group_by: str
    time_series: list[RevenueBucketOut]
    payment_methods: list[PaymentMethodRowOut]
    summary: RevenueSummaryOut


class ServiceUsageOut(BaseModel):
    service_id: int
    name: str
    category: str
    count: int
    revenue: float


class CategoryUsageOut(BaseModel):
    category: str
    count: int
    revenue: float


class ServicesReportOut(BaseModel):
    top_services: list[ServiceUsageOut]
    services_by_category: list[CategoryUsageOut]


class MonthlyCountOut(BaseModel):
    month: str
    count: int


class VisitTypeRowOut(BaseModel):
    month: str
    is_new: bool
    count: int
    revenue: float


class TopClientOut(BaseModel):
    client_id: int
    first_name: str
    last_name: str
    phone: str
    email: str | None = None
    total_spent: float
    visit_count: int
    membership_level: str
    loyalty_points: int


class ClientsReportOut(BaseModel):
    new_client_signups: list[MonthlyCountOut]
    client_visit_types: list[VisitTypeRowOut]
    top_clients: list[TopClientOut]
    retention_rate: float
    total_clients: int
    active_clients: int


class StaffPerformanceOut(BaseModel):
    user_id: int
    first_name: str
    last_name: str
    position: str | None = None
    service_count: int
    revenue: float


class ReceptionistPerformanceOut(BaseModel):
    user_id: int
    first_name: str
    last_name: str
    role: str
    visit_count: int
    revenue: float
    average_ticket: float


class StaffReportOut(BaseModel):
    staff_performance: list[StaffPerformanceOut]
    receptionist_performance: list[ReceptionistPerformanceOut]


class DailySummaryOut(BaseModel):
    total_visits: int
    total_revenue: float
    payment_methods: dict[str, int]
    service_count: int
    new_clients: int


class DailyReportOut(BaseModel):
    date: date
    visits: list[VisitOut]
    summary: DailySummaryOut


class DashboardOut(BaseModel):
    today_revenue: float
    today_visits: int
    month_revenue: float
    month_visits: int
    revenue_growth: float
    total_clients: int
    new_clients_this_month: int
    upcoming_visits: list[VisitOut]


class ExportOut(BaseModel):
    type: str
    exported_at: datetime
    count: int
    data: list[dict]
