from flask import Blueprint, g, jsonify, request

from app.services import credential_broker, slot_allocator
from app.utils.auth_utils import require_auth

details_bp = Blueprint("user_details", __name__, url_prefix="/api/v1/users")


def _profile_response(user):
    return {
        "user": credential_broker.sanitize_user(user),
        "appointments": slot_allocator.bookings_for_user(user),
    }


@details_bp.route("/me", methods=["GET"])
@require_auth
def get_my_profile():
    """
    Get the signed-in user and their bookings
    ---
    tags:
      - Users
    responses:
      200:
        description: Sanitized user plus bookings matched by account, email or phone
        schema:
          type: object
          properties:
            user:
              $ref: '#/definitions/User'
            appointments:
              type: array
              items:
                $ref: '#/definitions/Consultation'
      401:
        description: Missing or invalid token
        schema:
          $ref: '#/definitions/Error'
    """
    return jsonify(_profile_response(g.current_user)), 200


@details_bp.route("/me", methods=["PUT"])
@require_auth
def update_my_profile():
    """
    Update the signed-in user's profile
    ---
    tags:
      - Users
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            displayName:
              type: string
            avatarUrl:
              type: string
            email:
              type: string
            phone:
              type: string
            metadata:
              type: object
    responses:
      200:
        description: Updated user plus bookings
      400:
        description: Invalid email
      409:
        description: Email already used by another account
    """
    data = request.get_json(silent=True)
    user = credential_broker.update_profile(
        g.current_user, data if isinstance(data, dict) else {}
    )
    return jsonify(_profile_response(user)), 200
