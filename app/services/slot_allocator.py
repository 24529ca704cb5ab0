"""
Booking creation and slot inventory.

A booking is validated entirely before the database is touched, then the firm
and service are resolved, the consultation row is inserted and, when the
requested instant is in the inventory, that exact slot is deleted in the same
transaction. The delete is conditional: if a concurrent booking already took
the slot it removes nothing and the booking is rolled back with a conflict.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, func, or_, select

from app.errors import AuthorizationDenied, Conflict, NotFound, ValidationError
from app.extensions import db
from app.models import (
    CONSULTATION_STATUSES,
    Consultation,
    Firm,
    FirmSlot,
    Service,
    ServiceSlot,
)
from app.utils.time_utils import parse_instant, to_utc_z, utcnow

logger = logging.getLogger(__name__)

# 11-digit mainland mobile numbers, or 10-digit local numbers with a leading 0
PHONE_RE = re.compile(r"^(?:1[3-9]\d{9}|0\d{9})$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

REQUIRED_FIELDS = ("name", "phone", "firm_id", "service_id", "time")
MAX_PAGE_SIZE = 100

_FIELD_ALIASES = {
    "firm_id": ("firm_id", "firmId", "firm"),
    "service_id": ("service_id", "serviceId", "service"),
    "time": ("time", "preferred_time", "preferredTime", "appointment_time", "appointmentTime"),
    "remark": ("remark", "message", "notes"),
}


@dataclass
class BookingRequest:
    name: str
    phone: str
    firm_id: int
    service_id: int
    preferred_time: object
    email: Optional[str] = None
    remark: Optional[str] = None


@dataclass
class BookingResult:
    consultation: Consultation
    message: str
    slot_retired: bool


def normalize_booking_payload(data) -> dict:
    """Reconcile legacy field names into one canonical payload."""
    data = data if isinstance(data, dict) else {}
    normalized = {}
    for key in ("name", "phone", "email"):
        normalized[key] = data.get(key)
    for key, aliases in _FIELD_ALIASES.items():
        normalized[key] = next(
            (data[alias] for alias in aliases if data.get(alias) not in (None, "")),
            None,
        )
    return normalized


def _text(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _parse_id(value, field):
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}", field=field)
    if parsed <= 0:
        raise ValidationError(f"Invalid {field}", field=field)
    return parsed


def validate_booking(payload, now=None) -> BookingRequest:
    """Pure input validation; raises ValidationError naming the first bad field."""
    now = now or utcnow()
    name = _text(payload.get("name"))
    phone = _text(payload.get("phone"))
    email = _text(payload.get("email"))
    values = {
        "name": name,
        "phone": phone,
        "firm_id": payload.get("firm_id"),
        "service_id": payload.get("service_id"),
        "time": payload.get("time"),
    }

    missing = [f for f in REQUIRED_FIELDS if values[f] in (None, "")]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            field=missing[0],
            required=list(REQUIRED_FIELDS),
        )

    if not PHONE_RE.match(phone):
        raise ValidationError("Invalid phone number format", field="phone")

    if email:
        if not EMAIL_RE.match(email):
            raise ValidationError("Invalid email format", field="email")
        email = email.lower()

    try:
        preferred_time = parse_instant(values["time"])
    except (TypeError, ValueError, OverflowError, OSError):
        preferred_time = None
    if preferred_time is None:
        raise ValidationError("Invalid appointment time", field="time")
    if preferred_time <= now:
        raise ValidationError("Appointment time must be in the future", field="time")

    return BookingRequest(
        name=name,
        phone=phone,
        email=email,
        firm_id=_parse_id(values["firm_id"], "firm_id"),
        service_id=_parse_id(values["service_id"], "service_id"),
        preferred_time=preferred_time,
        remark=_text(payload.get("remark")),
    )


def load_targets(firm_id, service_id):
    firm = db.session.get(Firm, firm_id)
    service = db.session.get(Service, service_id)

    if not firm:
        raise NotFound("Firm not found")
    if not service or not service.belongs_to(firm.id):
        raise NotFound("Service not found or does not belong to this firm")
    return firm, service


def _slot_exists(model, owner_column, owner_id, instant) -> bool:
    stmt = select(model.id).where(owner_column == owner_id, model.slot_at == instant)
    return db.session.scalar(stmt) is not None


def _retire_slot(model, owner_column, owner_id, instant) -> bool:
    """Delete one inventory instant; True only if this call removed it."""
    stmt = (
        delete(model)
        .where(owner_column == owner_id, model.slot_at == instant)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(stmt).rowcount > 0


def create_booking(request: BookingRequest, user=None, source="consultation") -> BookingResult:
    firm, service = load_targets(request.firm_id, request.service_id)
    instant = request.preferred_time

    # Which pool holds the instant is decided before the insert.
    if _slot_exists(ServiceSlot, ServiceSlot.service_id, service.id, instant):
        pool = (ServiceSlot, ServiceSlot.service_id, service.id)
    elif _slot_exists(FirmSlot, FirmSlot.firm_id, firm.id, instant):
        pool = (FirmSlot, FirmSlot.firm_id, firm.id)
    else:
        pool = None

    consultation = Consultation(
        user_id=user.id if user else None,
        name=request.name,
        phone=request.phone,
        email=request.email,
        firm_id=firm.id,
        firm_name=firm.name,
        service_id=service.id,
        service_name=service.title,
        message=request.remark,
        preferred_time=instant,
        status="pending",
        source=source,
    )
    db.session.add(consultation)
    db.session.flush()

    slot_retired = False
    if pool:
        slot_retired = _retire_slot(*pool, instant)
        if not slot_retired:
            db.session.rollback()
            logger.warning(
                "Slot %s for service %s was claimed concurrently", to_utc_z(instant), service.id
            )
            raise Conflict(
                "The requested time is no longer available", code="slot_unavailable"
            )

    db.session.commit()
    logger.info(
        "Booking %s created for firm %s / service %s (slot retired: %s)",
        consultation.id,
        firm.id,
        service.id,
        slot_retired,
    )
    return BookingResult(
        consultation=consultation,
        message="Booking submitted. The firm and our team have been notified.",
        slot_retired=slot_retired,
    )


def update_status(actor, consultation_id, status) -> Consultation:
    if status not in CONSULTATION_STATUSES:
        raise ValidationError(
            f"Status must be one of: {', '.join(CONSULTATION_STATUSES)}",
            field="status",
        )

    consultation = db.session.get(Consultation, consultation_id)
    if not consultation:
        raise NotFound("Appointment not found")

    is_owner = consultation.user_id is not None and consultation.user_id == actor.id
    if not is_owner and actor.role != "admin":
        raise AuthorizationDenied("You may only update your own appointments")

    consultation.status = status
    db.session.commit()
    return consultation


def list_consultations(page=1, size=20, status=None, firm_id=None, source=None) -> dict:
    try:
        page = max(1, int(page))
        size = min(MAX_PAGE_SIZE, max(1, int(size)))
    except (TypeError, ValueError):
        raise ValidationError("page and size must be integers", field="page")

    filters = []
    if status:
        filters.append(Consultation.status == status)
    if firm_id:
        filters.append(Consultation.firm_id == _parse_id(firm_id, "firm_id"))
    if source:
        filters.append(Consultation.source == source)

    total = db.session.scalar(
        select(func.count()).select_from(Consultation).where(*filters)
    )
    items = db.session.scalars(
        select(Consultation)
        .where(*filters)
        .order_by(Consultation.created_at.desc(), Consultation.id.desc())
        .offset((page - 1) * size)
        .limit(size)
    ).all()

    return {
        "items": [serialize_consultation(c) for c in items],
        "total": total,
        "page": page,
        "size": size,
        "pages": math.ceil(total / size) if total else 0,
    }


def bookings_for_user(user, limit=100):
    criteria = [Consultation.user_id == user.id]
    if user.email:
        criteria.append(Consultation.email == user.email)
    if user.phone:
        criteria.append(Consultation.phone == user.phone)

    rows = db.session.scalars(
        select(Consultation)
        .where(or_(*criteria))
        .order_by(Consultation.preferred_time.desc())
        .limit(limit)
    ).all()
    return [serialize_consultation(c) for c in rows]


def serialize_consultation(c: Consultation) -> dict:
    return {
        "id": str(c.id),
        "name": c.name,
        "phone": c.phone,
        "email": c.email,
        "firmId": str(c.firm_id) if c.firm_id else None,
        "firmName": c.firm_name,
        "serviceId": str(c.service_id) if c.service_id else None,
        "serviceName": c.service_name,
        "time": to_utc_z(c.preferred_time),
        "remark": c.message,
        "status": c.status,
        "source": c.source,
        "createdAt": to_utc_z(c.created_at),
    }


# --- Inventory management -------------------------------------------------


def _parse_instants(raw_times):
    if not isinstance(raw_times, list) or not raw_times:
        raise ValidationError("times must be a non-empty list", field="times")

    now = utcnow()
    instants = []
    for raw in raw_times:
        try:
            instant = parse_instant(raw)
        except (TypeError, ValueError, OverflowError, OSError):
            instant = None
        if instant is None:
            raise ValidationError(f"Invalid time: {raw!r}", field="times")
        if instant <= now:
            raise ValidationError(f"Time must be in the future: {raw}", field="times")
        instants.append(instant)
    # Duplicates collapse to one instant
    return sorted(set(instants))


def add_slots(owner, raw_times) -> list:
    """Add future instants to a firm or service inventory, skipping ones it has."""
    instants = _parse_instants(raw_times)
    existing = {slot.slot_at for slot in owner.slots}
    slot_model = FirmSlot if isinstance(owner, Firm) else ServiceSlot

    for instant in instants:
        if instant not in existing:
            owner.slots.append(slot_model(slot_at=instant))
    db.session.commit()
    return inventory(owner)


def remove_slot(owner, raw_time) -> bool:
    try:
        instant = parse_instant(raw_time)
    except (TypeError, ValueError, OverflowError, OSError):
        instant = None
    if instant is None:
        raise ValidationError("Invalid time", field="time")

    if isinstance(owner, Firm):
        removed = _retire_slot(FirmSlot, FirmSlot.firm_id, owner.id, instant)
    else:
        removed = _retire_slot(ServiceSlot, ServiceSlot.service_id, owner.id, instant)
    db.session.commit()
    return removed


def inventory(owner) -> list:
    return [to_utc_z(slot.slot_at) for slot in sorted(owner.slots, key=lambda s: s.slot_at)]


def prune_expired_slots(now=None) -> int:
    """Drop inventory instants that are no longer in the future."""
    now = now or utcnow()
    removed = 0
    for model in (FirmSlot, ServiceSlot):
        result = db.session.execute(
            delete(model)
            .where(model.slot_at <= now)
            .execution_options(synchronize_session=False)
        )
        removed += result.rowcount or 0
    db.session.commit()
    return removed
