"""
Firm and service catalogue maintenance.

Admin create/update/delete of firms and services, the firm <-> service links
kept in ``firm_services``, and the paginated public services listing. Legacy
single-firm services (``Service.firm_id``) are honoured everywhere a link is.
"""

import logging
import math
import re
from decimal import Decimal, InvalidOperation

from sqlalchemy import func, or_, select, update

from app.errors import Conflict, NotFound, ValidationError
from app.extensions import db
from app.models import Consultation, Firm, Service
from app.services.slot_allocator import MAX_PAGE_SIZE, inventory
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

SERVICE_STATUSES = ("active", "inactive")
SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

FIRM_TEXT_FIELDS = ("city", "address", "phone", "email", "contact_email", "website", "description")
FIRM_LIST_FIELDS = {
    "practice_areas": ("practice_areas", "practiceAreas"),
    "tags": ("tags",),
    "lawyers": ("lawyers",),
}
# DECIMAL(10, 2)
MAX_PRICE = Decimal("99999999.99")


def slugify(name):
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")
    return slug or "firm"


def _text(value):
    if value is None:
        return None
    return str(value).strip() or None


def _page_args(page, size):
    try:
        page = max(1, int(page))
        size = min(MAX_PAGE_SIZE, max(1, int(size)))
    except (TypeError, ValueError):
        raise ValidationError("page and size must be integers", field="page")
    return page, size


def _paginate(stmt, count_stmt, page, size, serialize):
    page, size = _page_args(page, size)
    total = db.session.scalar(count_stmt)
    rows = db.session.scalars(stmt.offset((page - 1) * size).limit(size)).all()
    return {
        "items": [serialize(row) for row in rows],
        "total": total,
        "page": page,
        "size": size,
        "pages": math.ceil(total / size) if total else 0,
    }


def serialize_service(service, with_slots=False):
    data = {
        "id": str(service.id),
        "title": service.title,
        "description": service.description,
        "category": service.category,
        "price": float(service.price) if service.price is not None else None,
        "status": service.status,
    }
    if with_slots:
        data["availableTimes"] = inventory(service)
    return data


def firm_services(firm):
    """Services linked through firm_services plus legacy single-firm services."""
    services = {s.id: s for s in firm.service}
    services.update({s.id: s for s in firm.linked_services})
    return [services[key] for key in sorted(services)]


def serialize_firm(firm, detail=False):
    data = {
        "id": str(firm.id),
        "name": firm.name,
        "slug": firm.slug,
        "city": firm.city,
        "address": firm.address,
        "phone": firm.phone,
        "email": firm.email,
        "website": firm.website,
        "practiceAreas": firm.practice_areas or [],
        "tags": firm.tags or [],
    }
    if detail:
        data["description"] = firm.description
        data["lawyers"] = firm.lawyers or []
        data["availableTimes"] = inventory(firm)
        data["services"] = [
            serialize_service(s, with_slots=True) for s in firm_services(firm)
        ]
    return data


def get_firm(firm_id):
    firm = db.session.get(Firm, firm_id)
    if not firm:
        raise NotFound("Firm not found")
    return firm


def get_service(service_id):
    service = db.session.get(Service, service_id)
    if not service:
        raise NotFound("Service not found")
    return service


# --- Firms ----------------------------------------------------------------


def _unique_slug(slug, exclude_id=None):
    stmt = select(Firm.id).where(Firm.slug == slug)
    if exclude_id:
        stmt = stmt.where(Firm.id != exclude_id)
    if db.session.scalar(stmt) is not None:
        raise Conflict(f"Slug already in use: {slug}", code="slug_taken", field="slug")
    return slug


def _apply_firm_fields(firm, data):
    if "name" in data:
        name = _text(data.get("name"))
        if not name:
            raise ValidationError("Firm name is required", field="name")
        firm.name = name

    if "slug" in data and data.get("slug") is not None:
        slug = _text(data.get("slug"))
        if not slug or not SLUG_RE.match(slug):
            raise ValidationError("Slug must be lowercase letters, digits and dashes", field="slug")
        firm.slug = _unique_slug(slug, exclude_id=firm.id)

    for field in FIRM_TEXT_FIELDS:
        if field in data:
            setattr(firm, field, _text(data.get(field)))

    for attr, keys in FIRM_LIST_FIELDS.items():
        for key in keys:
            if key in data:
                value = data.get(key)
                if value is not None and not isinstance(value, list):
                    raise ValidationError(f"{key} must be a list", field=key)
                setattr(firm, attr, value or [])
                break


def list_firms(page=1, size=20, q=None):
    filters = []
    if q:
        like = f"%{q}%"
        filters.append(or_(Firm.name.ilike(like), Firm.slug.ilike(like), Firm.city.ilike(like)))

    return _paginate(
        select(Firm).where(*filters).order_by(Firm.created_at.desc(), Firm.id.desc()),
        select(func.count()).select_from(Firm).where(*filters),
        page,
        size,
        serialize_firm,
    )


def create_firm(data) -> Firm:
    data = data if isinstance(data, dict) else {}
    name = _text(data.get("name"))
    if not name:
        raise ValidationError("Firm name is required", field="name")

    firm = Firm(name=name)
    if data.get("slug") is None:
        base = slugify(name)
        slug, n = base, 2
        while db.session.scalar(select(Firm.id).where(Firm.slug == slug)) is not None:
            slug, n = f"{base}-{n}", n + 1
        firm.slug = slug
    _apply_firm_fields(firm, data)

    db.session.add(firm)
    db.session.commit()
    logger.info(f"Created firm {firm.id} ({firm.slug})")
    return firm


def update_firm(firm, data) -> Firm:
    if not isinstance(data, dict) or not data:
        raise ValidationError("Nothing to update", field="body")
    _apply_firm_fields(firm, data)
    firm.updated_at = utcnow()
    db.session.commit()
    return firm


def delete_firm(firm):
    """
    Remove a firm, its inventory and its service links.

    Bookings keep their firm name snapshot but lose the reference, and legacy
    services owned by the firm become unassigned rather than blocking the
    delete.
    """
    db.session.execute(
        update(Consultation)
        .where(Consultation.firm_id == firm.id)
        .values(firm_id=None)
        .execution_options(synchronize_session=False)
    )
    for service in list(firm.service):
        service.firm_id = None
    firm_id = firm.id
    db.session.delete(firm)
    db.session.commit()
    logger.info(f"Deleted firm {firm_id}")


# --- Services -------------------------------------------------------------


def _parse_price(value):
    if value in (None, ""):
        return None
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("Price must be a number", field="price")
    if not price.is_finite() or price < 0 or price > MAX_PRICE:
        raise ValidationError(f"Price must be between 0 and {MAX_PRICE}", field="price")
    return price.quantize(Decimal("0.01"))


def _parse_firm_ids(raw):
    if not isinstance(raw, list):
        raise ValidationError("firm_ids must be a list", field="firm_ids")
    firms = []
    for value in raw:
        try:
            firm_id = int(str(value).strip())
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid firm id: {value!r}", field="firm_ids")
        firm = db.session.get(Firm, firm_id)
        if not firm:
            raise NotFound(f"Firm not found: {firm_id}")
        if firm not in firms:
            firms.append(firm)
    return firms


def _apply_service_fields(service, data):
    if "title" in data:
        title = _text(data.get("title"))
        if not title:
            raise ValidationError("Service title is required", field="title")
        service.title = title
    if "description" in data:
        service.description = _text(data.get("description"))
    if "category" in data:
        service.category = _text(data.get("category"))
    if "price" in data:
        service.price = _parse_price(data.get("price"))
    if "status" in data:
        status = _text(data.get("status"))
        if status not in SERVICE_STATUSES:
            raise ValidationError(
                f"Status must be one of: {', '.join(SERVICE_STATUSES)}", field="status"
            )
        service.status = status

    if "firm_id" in data or "firmId" in data:
        owner = data.get("firm_id", data.get("firmId"))
        service.firm_id = _parse_firm_ids([owner])[0].id if owner not in (None, "") else None

    raw_ids = data.get("firm_ids", data.get("firmIds"))
    if raw_ids is not None:
        service.firms = _parse_firm_ids(raw_ids)


def create_service(data) -> Service:
    data = data if isinstance(data, dict) else {}
    if not _text(data.get("title")):
        raise ValidationError("Service title is required", field="title")

    service = Service(status="active")
    _apply_service_fields(service, data)
    db.session.add(service)
    db.session.commit()
    logger.info(f"Created service {service.id} ({service.title})")
    return service


def update_service(service, data) -> Service:
    if not isinstance(data, dict) or not data:
        raise ValidationError("Nothing to update", field="body")
    _apply_service_fields(service, data)
    service.updated_at = utcnow()
    db.session.commit()
    return service


def delete_service(service):
    # Bookings keep the service name snapshot
    db.session.execute(
        update(Consultation)
        .where(Consultation.service_id == service.id)
        .values(service_id=None)
        .execution_options(synchronize_session=False)
    )
    service_id = service.id
    db.session.delete(service)
    db.session.commit()
    logger.info(f"Deleted service {service_id}")


def firm_ids_of(service) -> list:
    ids = {firm.id for firm in service.firms}
    if service.firm_id:
        ids.add(service.firm_id)
    return [str(i) for i in sorted(ids)]


def link_service(firm, service) -> Service:
    if firm not in service.firms:
        service.firms.append(firm)
        service.updated_at = utcnow()
    db.session.commit()
    return service


def unlink_service(firm, service) -> Service:
    """Detach a service from a firm, including a legacy single-firm owner."""
    if not service.belongs_to(firm.id):
        raise NotFound("Service is not offered by this firm")
    if firm in service.firms:
        service.firms.remove(firm)
    if service.firm_id == firm.id:
        service.firm_id = None
    service.updated_at = utcnow()
    db.session.commit()
    return service


def _listed_firm(service):
    if service.firm:
        return service.firm
    return service.firms[0] if service.firms else None


def serialize_listed_service(service) -> dict:
    firm = _listed_firm(service)
    return {
        "id": str(service.id),
        "title": service.title,
        "description": service.description,
        "category": service.category,
        "price": float(service.price) if service.price is not None else None,
        "status": service.status,
        "firmId": str(firm.id) if firm else None,
        "firmName": firm.name if firm else None,
        "firmAddress": firm.address if firm else None,
        "firmIds": firm_ids_of(service),
        "availableTimes": inventory(service),
    }


def list_services(page=1, size=10, q=None, firm_id=None, category=None, status=None):
    filters = []
    if q:
        like = f"%{q}%"
        filters.append(or_(Service.title.ilike(like), Service.description.ilike(like)))
    if firm_id:
        try:
            fid = int(str(firm_id).strip())
        except (TypeError, ValueError):
            raise ValidationError("Invalid firm_id", field="firm_id")
        filters.append(or_(Service.firm_id == fid, Service.firms.any(Firm.id == fid)))
    if category:
        filters.append(Service.category == category)
    if status:
        filters.append(Service.status == status)

    return _paginate(
        select(Service).where(*filters).order_by(Service.created_at.desc(), Service.id.desc()),
        select(func.count()).select_from(Service).where(*filters),
        page,
        size,
        serialize_listed_service,
    )
