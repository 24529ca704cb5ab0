# Admin maintenance of firm and service consultation inventories
from flask import Blueprint, current_app, g, jsonify, request

from app.errors import NotFound
from app.extensions import db
from app.models import Firm, Service
from app.services import slot_allocator
from app.utils.auth_utils import require_admin

admin_slots_bp = Blueprint("admin_slots", __name__, url_prefix="/api/admin")


def _body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _load(model, owner_id, label):
    owner = db.session.get(model, owner_id)
    if not owner:
        raise NotFound(f"{label} not found")
    return owner


@admin_slots_bp.route("/firms/<int:firm_id>/slots", methods=["POST"])
@require_admin
def add_firm_slots(firm_id):
    """
    Add open consultation times to a firm
    ---
    tags:
      - Admin
    parameters:
      - in: path
        name: firm_id
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          $ref: '#/definitions/SlotPayload'
    responses:
      200:
        description: The firm's full inventory after the change
      400:
        description: Empty list, unparseable or past time
      403:
        description: Caller is not an admin
      404:
        description: Firm not found
    """
    firm = _load(Firm, firm_id, "Firm")
    times = slot_allocator.add_slots(firm, _body().get("times"))
    current_app.logger.info(
        f"Admin {g.current_user.id} updated inventory of firm {firm.id}"
    )
    return jsonify({"firmId": str(firm.id), "availableTimes": times}), 200


@admin_slots_bp.route("/firms/<int:firm_id>/slots", methods=["DELETE"])
@require_admin
def remove_firm_slot(firm_id):
    """
    Remove one open time from a firm
    ---
    tags:
      - Admin
    parameters:
      - in: path
        name: firm_id
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - time
          properties:
            time:
              type: string
              format: date-time
    responses:
      200:
        description: Whether the time was removed, plus the remaining inventory
      404:
        description: Firm not found
    """
    firm = _load(Firm, firm_id, "Firm")
    removed = slot_allocator.remove_slot(firm, _body().get("time"))
    return (
        jsonify(
            {
                "firmId": str(firm.id),
                "removed": removed,
                "availableTimes": slot_allocator.inventory(firm),
            }
        ),
        200,
    )


@admin_slots_bp.route("/services/<int:service_id>/slots", methods=["POST"])
@require_admin
def add_service_slots(service_id):
    """
    Add open consultation times to a service
    ---
    tags:
      - Admin
    parameters:
      - in: path
        name: service_id
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          $ref: '#/definitions/SlotPayload'
    responses:
      200:
        description: The service's full inventory after the change
      400:
        description: Empty list, unparseable or past time
      403:
        description: Caller is not an admin
      404:
        description: Service not found
    """
    service = _load(Service, service_id, "Service")
    times = slot_allocator.add_slots(service, _body().get("times"))
    current_app.logger.info(
        f"Admin {g.current_user.id} updated inventory of service {service.id}"
    )
    return jsonify({"serviceId": str(service.id), "availableTimes": times}), 200


@admin_slots_bp.route("/services/<int:service_id>/slots", methods=["DELETE"])
@require_admin
def remove_service_slot(service_id):
    """
    Remove one open time from a service
    ---
    tags:
      - Admin
    parameters:
      - in: path
        name: service_id
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - time
          properties:
            time:
              type: string
              format: date-time
    responses:
      200:
        description: Whether the time was removed, plus the remaining inventory
      404:
        description: Service not found
    """
    service = _load(Service, service_id, "Service")
    removed = slot_allocator.remove_slot(service, _body().get("time"))
    return (
        jsonify(
            {
                "serviceId": str(service.id),
                "removed": removed,
                "availableTimes": slot_allocator.inventory(service),
            }
        ),
        200,
    )
