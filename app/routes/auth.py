from flask import Blueprint, jsonify, request

from app.services import credential_broker
from app.utils.auth_utils import client_ip

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


def _body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _requested_role(data):
    return credential_broker.gate_requested_role(
        data.get("role"), request.headers.get("X-Admin-Grant-Key")
    )


@auth_bp.route("/wechat", methods=["POST"])
def wechat_login():
    """
    Log in with a WeChat mini-program code
    ---
    tags:
      - Authentication
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - code
          properties:
            code:
              type: string
            userInfo:
              type: object
            ip:
              type: string
            role:
              type: string
    responses:
      200:
        description: Token and sanitized user
        schema:
          $ref: '#/definitions/Session'
      400:
        description: Missing login code
      502:
        description: WeChat rejected the code
    """
    data = _body()
    payload = credential_broker.wechat_login(
        data.get("code"),
        user_info=data.get("userInfo"),
        ip=data.get("ip") or client_ip(),
        requested_role=_requested_role(data),
    )
    return jsonify(payload), 200


@auth_bp.route("/anonymous", methods=["POST"])
@auth_bp.route("/basic", methods=["POST"])
def anonymous_login():
    """
    Log in as a guest identified by email or phone
    ---
    tags:
      - Authentication
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            email:
              type: string
            phone:
              type: string
            name:
              type: string
            avatarUrl:
              type: string
    responses:
      200:
        description: Token and sanitized user
        schema:
          $ref: '#/definitions/Session'
    """
    data = _body()
    payload = credential_broker.anonymous_login(
        email=data.get("email"),
        phone=data.get("phone"),
        name=data.get("name") or data.get("displayName") or data.get("nickName"),
        avatar_url=data.get("avatarUrl"),
        requested_role=_requested_role(data),
        ip=client_ip(),
        user_agent=request.headers.get("User-Agent"),
    )
    return jsonify(payload), 200


@auth_bp.route("/login", methods=["POST"])
def password_login():
    """
    Log in with username and password
    ---
    tags:
      - Authentication
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - username
            - password
          properties:
            username:
              type: string
            password:
              type: string
    responses:
      200:
        description: Token and sanitized user
        schema:
          $ref: '#/definitions/Session'
      400:
        description: Missing username or password
      401:
        description: Invalid credentials
    """
    data = _body()
    payload = credential_broker.password_login(
        data.get("username"), data.get("password"), ip=client_ip()
    )
    return jsonify(payload), 200


@auth_bp.route("/register", methods=["POST"])
def register():
    """
    Create a username/password account
    ---
    tags:
      - Authentication
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - username
            - password
            - email
          properties:
            username:
              type: string
            password:
              type: string
            email:
              type: string
            phone:
              type: string
            displayName:
              type: string
    responses:
      200:
        description: Account created, token issued
        schema:
          $ref: '#/definitions/Session'
      400:
        description: Invalid input
      409:
        description: Username or email already exists
    """
    data = _body()
    payload = credential_broker.register(
        data.get("username"),
        data.get("password"),
        data.get("email"),
        phone=data.get("phone"),
        display_name=data.get("displayName"),
        ip=client_ip(),
    )
    return jsonify(payload), 200
