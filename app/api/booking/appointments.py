# Legacy appointment intake used by the public website form
from flask import Blueprint, current_app, jsonify, request

from app.api.booking.consultations import booking_event
from app.services import slot_allocator
from app.services.credential_broker import authenticate
from app.services.notification_dispatcher import get_dispatcher
from app.utils.auth_utils import require_admin

appointments_bp = Blueprint("appointments", __name__, url_prefix="/api/appointments")


@appointments_bp.route("", methods=["POST"])
def create_appointment():
    """
    POST /api/appointments
    Purpose: Accepts a booking from the legacy web form. No login is required.
    Input: JSON body with name, phone, optional email, firm_id (or firmId),
    service_id (or serviceId), time (or appointment_time) and remark (or message).

    Behavior:
    - Same validation and slot handling as POST /api/v1/consultations.
    - If a valid token is sent, the booking is linked to that user.
    - Notifications are sent in the background; the response does not wait
      for them and does not report their outcome.
    ---
    tags:
      - Appointments
    parameters:
      - in: body
        name: body
        required: true
        schema:
          $ref: '#/definitions/BookingRequest'
    responses:
      201:
        description: Appointment recorded
        schema:
          type: object
          properties:
            status:
              type: string
              example: ok
            message:
              type: string
            appointment_id:
              type: string
      400:
        description: Invalid input
      404:
        description: Firm or service not found
      409:
        description: The requested time was just taken
    """
    data = slot_allocator.normalize_booking_payload(request.get_json(silent=True))
    booking = slot_allocator.validate_booking(data)
    user = authenticate(request, require_auth=False)
    result = slot_allocator.create_booking(booking, user=user, source="appointment")

    consultation = result.consultation
    firm_email = consultation.firm.notification_email if consultation.firm else None
    get_dispatcher(current_app).dispatch_in_background(
        booking_event(consultation, firm_email)
    )

    return (
        jsonify(
            {
                "status": "ok",
                "message": result.message,
                "appointment_id": str(consultation.id),
            }
        ),
        201,
    )


@appointments_bp.route("", methods=["GET"])
@require_admin
def list_appointments():
    """
    List legacy appointments (admin)
    ---
    tags:
      - Appointments
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
    responses:
      200:
        description: One page of appointments
      403:
        description: Caller is not an admin
    """
    page = slot_allocator.list_consultations(
        page=request.args.get("page", 1),
        size=request.args.get("size", 20),
        status=request.args.get("status"),
        source="appointment",
    )
    return jsonify(page), 200
