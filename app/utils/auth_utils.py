from functools import wraps

from flask import g, request

from app.errors import AuthorizationDenied
from app.services.credential_broker import authenticate


def client_ip():
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr


def require_auth(f):
    """
    Require a valid bearer credential.

    Sets g.current_user to the freshly loaded User. Missing, invalid or
    expired tokens and deleted users all end in a 401.
    """

    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.current_user = authenticate(request, require_auth=True)
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Like require_auth, but the user must also hold the admin role."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = authenticate(request, require_auth=True)
        if user.role != "admin":
            raise AuthorizationDenied("Admin access required")
        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function
