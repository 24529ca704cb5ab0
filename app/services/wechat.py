import logging
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

WECHAT_API_URL = "https://api.weixin.qq.com/sns/jscode2session"


class WeChatAuthError(Exception):
    pass


@dataclass
class WeChatSession:
    open_id: str
    union_id: Optional[str] = None
    session_key: Optional[str] = None


def exchange_code_for_session(code, app_id, app_secret, timeout=10.0) -> WeChatSession:
    """Trade a one-time mini-program login code for the user's open-id."""
    if not code:
        raise WeChatAuthError("Missing WeChat login code")
    if not app_id or not app_secret:
        raise WeChatAuthError("WECHAT_APP_ID or WECHAT_APP_SECRET is not configured")

    params = {
        "appid": app_id,
        "secret": app_secret,
        "js_code": code,
        "grant_type": "authorization_code",
    }

    try:
        response = httpx.get(WECHAT_API_URL, params=params, timeout=timeout)
        response.raise_for_status()
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise WeChatAuthError(f"Invalid response from WeChat: {e}") from e

    if not isinstance(data, dict):
        raise WeChatAuthError("Invalid response from WeChat")

    if data.get("errcode"):
        message = data.get("errmsg") or "Unknown WeChat auth error"
        raise WeChatAuthError(f"WeChat auth failed: {data['errcode']} {message}")

    if not data.get("openid"):
        raise WeChatAuthError("WeChat response did not include an openid")

    logger.info("WeChat session exchanged (unionid present: %s)", bool(data.get("unionid")))
    return WeChatSession(
        open_id=data["openid"],
        union_id=data.get("unionid"),
        session_key=data.get("session_key"),
    )
