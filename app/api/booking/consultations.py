# Book consultations, list them for admins, and move them through statuses
from flask import Blueprint, current_app, g, jsonify, request

from app.errors import ValidationError
from app.services import slot_allocator
from app.services.notification_dispatcher import BookingEvent, get_dispatcher
from app.utils.auth_utils import require_admin, require_auth

consultations_bp = Blueprint(
    "consultations", __name__, url_prefix="/api/v1/consultations"
)


def booking_event(consultation, firm_email=None) -> BookingEvent:
    return BookingEvent(
        client_name=consultation.name,
        client_phone=consultation.phone,
        client_email=consultation.email,
        firm_name=consultation.firm_name,
        firm_email=firm_email,
        service_name=consultation.service_name,
        appointment_time=consultation.preferred_time,
        remark=consultation.message,
        booking_id=str(consultation.id),
    )


@consultations_bp.route("", methods=["POST"])
@require_auth
def create_consultation():
    """
    Book a consultation with a firm
    ---
    tags:
      - Consultations
    summary: Validate the request, reserve the slot and notify the firm
    description: The requested time must be in the future. If the service (or
        firm) lists the time as available it is removed from the inventory.
        Email delivery results are reported in emailSummary and never fail
        the booking.
    parameters:
      - in: body
        name: body
        required: true
        schema:
          $ref: '#/definitions/BookingRequest'
    responses:
      201:
        description: Booking created
        schema:
          $ref: '#/definitions/BookingCreated'
      400:
        description: Invalid input
      401:
        description: Missing or invalid token
      404:
        description: Firm or service not found
      409:
        description: The requested time was just taken
    """
    data = slot_allocator.normalize_booking_payload(request.get_json(silent=True))
    booking = slot_allocator.validate_booking(data)
    result = slot_allocator.create_booking(booking, user=g.current_user)

    consultation = result.consultation
    firm_email = consultation.firm.notification_email if consultation.firm else None
    email_summary = get_dispatcher(current_app).dispatch(
        booking_event(consultation, firm_email)
    )

    return (
        jsonify(
            {
                "status": "ok",
                "message": result.message,
                "consultationId": str(consultation.id),
                "emailSummary": email_summary,
            }
        ),
        201,
    )


@consultations_bp.route("", methods=["GET"])
@require_admin
def list_consultations():
    """
    List consultations (admin)
    ---
    tags:
      - Consultations
    parameters:
      - in: query
        name: page
        type: integer
      - in: query
        name: size
        type: integer
      - in: query
        name: status
        type: string
      - in: query
        name: firm_id
        type: integer
    responses:
      200:
        description: One page of consultations
      403:
        description: Caller is not an admin
    """
    page = slot_allocator.list_consultations(
        page=request.args.get("page", 1),
        size=request.args.get("size", 20),
        status=request.args.get("status"),
        firm_id=request.args.get("firm_id"),
    )
    return jsonify(page), 200


@consultations_bp.route("/<int:consultation_id>", methods=["PATCH"])
@require_auth
def update_consultation_status(consultation_id):
    """
    Change the status of a consultation
    ---
    tags:
      - Consultations
    summary: Owners may update their own booking, admins any booking
    parameters:
      - in: path
        name: consultation_id
        type: integer
        required: true
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - status
          properties:
            status:
              type: string
              enum: [pending, contacted, converted, cancelled]
    responses:
      200:
        description: Status updated
      400:
        description: Unknown status
      403:
        description: Not the owner and not an admin
      404:
        description: Appointment not found
    """
    data = request.get_json(silent=True) or {}
    status = data.get("status") if isinstance(data, dict) else None
    if not status:
        raise ValidationError("status is required", field="status")

    consultation = slot_allocator.update_status(
        g.current_user, consultation_id, str(status).strip().lower()
    )
    current_app.logger.info(
        f"Consultation {consultation.id} set to {consultation.status} by user {g.current_user.id}"
    )
    return (
        jsonify(
            {
                "success": True,
                "message": "Status updated",
                "appointment": {
                    "id": str(consultation.id),
                    "status": consultation.status,
                },
            }
        ),
        200,
    )
