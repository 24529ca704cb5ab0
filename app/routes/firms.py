from flask import Blueprint, jsonify, request
from sqlalchemy import or_, select

from app.errors import NotFound
from app.extensions import db
from app.models import Firm, Service
from app.services import catalogue
from app.services.catalogue import firm_ids_of, serialize_firm, serialize_service

firms_bp = Blueprint("firms", __name__, url_prefix="/api/v1")


@firms_bp.route("/firms", methods=["GET"])
def list_firms():
    """
    List law firms
    ---
    tags:
      - Firms
    parameters:
      - in: query
        name: city
        type: string
      - in: query
        name: q
        type: string
        description: Case-insensitive match on firm name or slug
    responses:
      200:
        description: Firms ordered by name
        schema:
          type: object
          properties:
            firms:
              type: array
              items:
                $ref: '#/definitions/Firm'
    """
    stmt = select(Firm)

    city = (request.args.get("city") or "").strip()
    if city:
        stmt = stmt.where(Firm.city == city)

    q = (request.args.get("q") or "").strip()
    if q:
        like = f"%{q}%"
        stmt = stmt.where(or_(Firm.name.ilike(like), Firm.slug.ilike(like)))

    firms = db.session.scalars(stmt.order_by(Firm.name)).all()
    return jsonify({"firms": [serialize_firm(f) for f in firms]}), 200


@firms_bp.route("/firms/<int:firm_id>", methods=["GET"])
def get_firm(firm_id):
    """
    Firm detail with services and open consultation times
    ---
    tags:
      - Firms
    parameters:
      - in: path
        name: firm_id
        type: integer
        required: true
    responses:
      200:
        description: Firm detail
      404:
        description: Firm not found
        schema:
          $ref: '#/definitions/Error'
    """
    firm = db.session.get(Firm, firm_id)
    if not firm:
        raise NotFound("Firm not found")
    return jsonify(serialize_firm(firm, detail=True)), 200


@firms_bp.route("/services/<int:service_id>", methods=["GET"])
def get_service(service_id):
    """
    Service detail with open consultation times
    ---
    tags:
      - Services
    parameters:
      - in: path
        name: service_id
        type: integer
        required: true
    responses:
      200:
        description: Service detail
      404:
        description: Service not found
        schema:
          $ref: '#/definitions/Error'
    """
    service = db.session.get(Service, service_id)
    if not service:
        raise NotFound("Service not found")

    data = serialize_service(service, with_slots=True)
    data["firmIds"] = firm_ids_of(service)
    return jsonify(data), 200


@firms_bp.route("/services", methods=["GET"])
def list_services():
    """
    List active services, newest first
    ---
    tags:
      - Services
    parameters:
      - in: query
        name: q
        type: string
        description: Case-insensitive match on title or description
      - in: query
        name: firm_id
        type: integer
        description: Services offered by this firm, linked or legacy
      - in: query
        name: category
        type: string
      - in: query
        name: page
        type: integer
        default: 1
      - in: query
        name: size
        type: integer
        default: 10
    responses:
      200:
        description: One page of services with their open times
        schema:
          type: object
          properties:
            items:
              type: array
              items:
                $ref: '#/definitions/ListedService'
            total:
              type: integer
            page:
              type: integer
            size:
              type: integer
            pages:
              type: integer
      400:
        description: Bad page, size or firm_id
        schema:
          $ref: '#/definitions/Error'
    """
    args = request.args
    page = catalogue.list_services(
        page=args.get("page", 1),
        size=args.get("size", 10),
        q=(args.get("q") or "").strip() or None,
        firm_id=args.get("firm_id") or args.get("firmId"),
        category=(args.get("category") or "").strip() or None,
        status="active",
    )
    return jsonify(page), 200
