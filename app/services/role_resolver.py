import logging
import os

from app.config import split_list

logger = logging.getLogger(__name__)

ADMIN = "admin"
USER = "user"


def admin_emails():
    return [item.lower() for item in split_list(os.environ.get("ADMIN_EMAILS"))]


def admin_wechat_openids():
    return split_list(os.environ.get("ADMIN_WECHAT_OPENIDS"))


def resolve_role(email=None, wechat_openid=None, requested_role=None) -> str:
    """
    Decide between ``admin`` and ``user``.

    Precedence: an explicit admin request, then the admin email allow-list
    (case-insensitive), then the WeChat open-id allow-list (exact match).
    Allow-lists are read from the environment on every call so a config
    change applies without a restart.
    """
    if requested_role == ADMIN:
        logger.info("Granting admin role: explicitly requested")
        return ADMIN

    if email and email.strip().lower() in admin_emails():
        logger.info("Granting admin role: email on allow-list")
        return ADMIN

    if wechat_openid and wechat_openid in admin_wechat_openids():
        logger.info("Granting admin role: WeChat open-id on allow-list")
        return ADMIN

    return USER
