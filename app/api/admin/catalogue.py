# Admin maintenance of the firm and service catalogue
from flask import Blueprint, current_app, g, jsonify, request

from app.errors import ValidationError
from app.services import catalogue
from app.services.catalogue import firm_ids_of, serialize_firm, serialize_service
from app.utils.auth_utils import require_admin

admin_catalogue_bp = Blueprint("admin_catalogue", __name__, url_prefix="/api/admin")


def _body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _firm_detail(firm):
    data = serialize_firm(firm, detail=True)
    data["contactEmail"] = firm.contact_email
    return data


def _service_detail(service):
    data = serialize_service(service, with_slots=True)
    data["firmId"] = str(service.firm_id) if service.firm_id else None
    data["firmIds"] = firm_ids_of(service)
    return data


@admin_catalogue_bp.route("/firms", methods=["GET"])
@require_admin
def list_firms():
    """
    List firms, newest first
    ---
    tags:
      - Admin
    parameters:
      - in: query
        name: q
        type: string
        description: Case-insensitive match on name, slug or city
      - in: query
        name: page
        type: integer
        default: 1
      - in: query
        name: size
        type: integer
        default: 20
    responses:
      200:
        description: One page of firms
      403:
        description: Caller is not an admin
    """
    args = request.args
    page = catalogue.list_firms(
        page=args.get("page", 1),
        size=args.get("size", 20),
        q=(args.get("q") or "").strip() or None,
    )
    return jsonify(page), 200


@admin_catalogue_bp.route("/firms", methods=["POST"])
@require_admin
def create_firm():
    """
    Create a firm
    ---
    tags:
      - Admin
    parameters:
      - in: body
        name: body
        required: true
        schema:
          $ref: '#/definitions/FirmPayload'
    responses:
      201:
        description: Created firm; the slug is derived from the name when omitted
      400:
        description: Missing name or malformed field
        schema:
          $ref: '#/definitions/Error'
      409:
        description: Slug already in use
        schema:
          $ref: '#/definitions/Error'
    """
    firm = catalogue.create_firm(_body())
    current_app.logger.info(f"Admin {g.current_user.id} created firm {firm.id}")
    return jsonify(_firm_detail(firm)), 201


@admin_catalogue_bp.route("/firms/<int:firm_id>", methods=["GET"])
@require_admin
def get_firm(firm_id):
    """
    Firm detail including contact email and linked services
    ---
    tags:
      - Admin
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
    """
    return jsonify(_firm_detail(catalogue.get_firm(firm_id))), 200


@admin_catalogue_bp.route("/firms/<int:firm_id>", methods=["PUT", "PATCH"])
@require_admin
def update_firm(firm_id):
    """
    Update firm fields; omitted fields are left alone
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
          $ref: '#/definitions/FirmPayload'
    responses:
      200:
        description: Updated firm
      400:
        description: Empty body or malformed field
      404:
        description: Firm not found
      409:
        description: Slug already in use
    """
    firm = catalogue.update_firm(catalogue.get_firm(firm_id), _body())
    current_app.logger.info(f"Admin {g.current_user.id} updated firm {firm.id}")
    return jsonify(_firm_detail(firm)), 200


@admin_catalogue_bp.route("/firms/<int:firm_id>", methods=["DELETE"])
@require_admin
def delete_firm(firm_id):
    """
    Delete a firm with its open times and service links
    ---
    tags:
      - Admin
    parameters:
      - in: path
        name: firm_id
        type: integer
        required: true
    responses:
      200:
        description: Firm deleted; existing bookings keep the firm name
      404:
        description: Firm not found
    """
    catalogue.delete_firm(catalogue.get_firm(firm_id))
    current_app.logger.info(f"Admin {g.current_user.id} deleted firm {firm_id}")
    return jsonify({"success": True, "message": "Firm deleted successfully"}), 200


@admin_catalogue_bp.route("/firms/<int:firm_id>/services", methods=["GET"])
@require_admin
def get_firm_services(firm_id):
    """
    Services offered by a firm, linked or legacy
    ---
    tags:
      - Admin
    parameters:
      - in: path
        name: firm_id
        type: integer
        required: true
    responses:
      200:
        description: The firm's services
      404:
        description: Firm not found
    """
    firm = catalogue.get_firm(firm_id)
    services = [_service_detail(s) for s in catalogue.firm_services(firm)]
    return jsonify({"firmId": str(firm.id), "services": services}), 200


@admin_catalogue_bp.route("/firms/<int:firm_id>/services", methods=["POST"])
@require_admin
def link_service(firm_id):
    """
    Offer an existing service at a firm
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
            - serviceId
          properties:
            serviceId:
              type: string
    responses:
      200:
        description: The service with its updated firm list
      400:
        description: Missing or malformed serviceId
      404:
        description: Firm or service not found
    """
    body = _body()
    raw = body.get("serviceId", body.get("service_id"))
    try:
        service_id = int(str(raw).strip())
    except (TypeError, ValueError):
        raise ValidationError("serviceId is required", field="serviceId")

    firm = catalogue.get_firm(firm_id)
    service = catalogue.link_service(firm, catalogue.get_service(service_id))
    current_app.logger.info(
        f"Admin {g.current_user.id} linked service {service.id} to firm {firm.id}"
    )
    return jsonify(_service_detail(service)), 200


@admin_catalogue_bp.route("/firms/<int:firm_id>/services/<int:service_id>", methods=["DELETE"])
@require_admin
def unlink_service(firm_id, service_id):
    """
    Stop offering a service at a firm
    ---
    tags:
      - Admin
    parameters:
      - in: path
        name: firm_id
        type: integer
        required: true
      - in: path
        name: service_id
        type: integer
        required: true
    responses:
      200:
        description: The service with its updated firm list
      404:
        description: Firm or service not found, or the firm does not offer it
    """
    firm = catalogue.get_firm(firm_id)
    service = catalogue.unlink_service(firm, catalogue.get_service(service_id))
    current_app.logger.info(
        f"Admin {g.current_user.id} unlinked service {service.id} from firm {firm.id}"
    )
    return jsonify(_service_detail(service)), 200


@admin_catalogue_bp.route("/services", methods=["GET"])
@require_admin
def list_services():
    """
    List all services, active or not
    ---
    tags:
      - Admin
    parameters:
      - in: query
        name: q
        type: string
      - in: query
        name: firm_id
        type: integer
      - in: query
        name: category
        type: string
      - in: query
        name: status
        type: string
        enum: [active, inactive]
      - in: query
        name: page
        type: integer
        default: 1
      - in: query
        name: size
        type: integer
        default: 20
    responses:
      200:
        description: One page of services
      403:
        description: Caller is not an admin
    """
    args = request.args
    page = catalogue.list_services(
        page=args.get("page", 1),
        size=args.get("size", 20),
        q=(args.get("q") or "").strip() or None,
        firm_id=args.get("firm_id") or args.get("firmId"),
        category=(args.get("category") or "").strip() or None,
        status=(args.get("status") or "").strip() or None,
    )
    return jsonify(page), 200


@admin_catalogue_bp.route("/services", methods=["POST"])
@require_admin
def create_service():
    """
    Create a service, optionally linked to firms
    ---
    tags:
      - Admin
    parameters:
      - in: body
        name: body
        required: true
        schema:
          $ref: '#/definitions/ServicePayload'
    responses:
      201:
        description: Created service
      400:
        description: Missing title or malformed field
      404:
        description: A referenced firm does not exist
    """
    service = catalogue.create_service(_body())
    current_app.logger.info(f"Admin {g.current_user.id} created service {service.id}")
    return jsonify(_service_detail(service)), 201


@admin_catalogue_bp.route("/services/<int:service_id>", methods=["GET"])
@require_admin
def get_service(service_id):
    """
    Service detail
    ---
    tags:
      - Admin
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
    """
    return jsonify(_service_detail(catalogue.get_service(service_id))), 200


@admin_catalogue_bp.route("/services/<int:service_id>", methods=["PUT", "PATCH"])
@require_admin
def update_service(service_id):
    """
    Update service fields; firm_ids replaces the firm links
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
          $ref: '#/definitions/ServicePayload'
    responses:
      200:
        description: Updated service
      400:
        description: Empty body or malformed field
      404:
        description: Service or referenced firm not found
    """
    service = catalogue.update_service(catalogue.get_service(service_id), _body())
    current_app.logger.info(f"Admin {g.current_user.id} updated service {service.id}")
    return jsonify(_service_detail(service)), 200


@admin_catalogue_bp.route("/services/<int:service_id>", methods=["DELETE"])
@require_admin
def delete_service(service_id):
    """
    Delete a service with its open times and firm links
    ---
    tags:
      - Admin
    parameters:
      - in: path
        name: service_id
        type: integer
        required: true
    responses:
      200:
        description: Service deleted; existing bookings keep the service name
      404:
        description: Service not found
    """
    catalogue.delete_service(catalogue.get_service(service_id))
    current_app.logger.info(f"Admin {g.current_user.id} deleted service {service_id}")
    return jsonify({"success": True, "message": "Service deleted successfully"}), 200
