from __future__ import annotations

import logging

from aiohttp import web
from pydantic import ValidationError

from ..config import settings
from ..metrics import otp_relayed_total
from ..schemas.otp import OTPEvent
from ..security.hmac import canonical_domain, verify_domain_token
from ..utils.format import format_otp_message, mask_chat_id
from .keys import NOTIFIER
from .responses import error_response

logger = logging.getLogger(__name__)

DOMAIN_HEADER = "X-Auth0-Domain"
CHAT_ID_HEADER = "x-chat_id"


def _bearer_token(request: web.Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def otp_handler(request: web.Request) -> web.Response:
    """
    OTP relay for the deployed tenant actions.

    The bearer token must be the capability token of (domain, chat id) taken
    from the headers; the OTP then goes to exactly that chat.
    """
    token = _bearer_token(request)
    if token is None:
        logger.error("Missing or malformed Authorization header on OTP webhook")
        otp_relayed_total.labels(result="unauthorized").inc()
        return error_response("otp", 401, "Unauthorized")

    domain = canonical_domain(request.headers.get(DOMAIN_HEADER, ""))
    raw_chat_id = request.headers.get(CHAT_ID_HEADER, "").strip()
    if not verify_domain_token(domain, raw_chat_id, token, settings.HMAC_SECRET):
        logger.error("Invalid capability token on OTP webhook (domain=%s chat=%s)", domain, mask_chat_id(raw_chat_id))
        otp_relayed_total.labels(result="unauthorized").inc()
        return error_response("otp", 401, "Unauthorized")

    try:
        chat_id = int(raw_chat_id)
    except ValueError:
        return error_response("otp", 400, "Invalid chat ID format")

    try:
        event = OTPEvent.model_validate(await request.json())
    except (ValueError, ValidationError) as exc:
        logger.error("Failed to parse OTP event: %s", exc)
        otp_relayed_total.labels(result="invalid").inc()
        return error_response("otp", 400, "Invalid event format")

    if event.domain and canonical_domain(event.domain) != domain:
        logger.error("Domain mismatch on OTP webhook: header=%s event=%s", domain, event.domain)
        otp_relayed_total.labels(result="invalid").inc()
        return error_response("otp", 400, "Domain mismatch")

    message = await request.app[NOTIFIER].send(chat_id, format_otp_message(event))
    if message is None:
        otp_relayed_total.labels(result="undelivered").inc()
        return error_response("otp", 500, "Failed to send message")

    otp_relayed_total.labels(result="delivered").inc()
    logger.info("OTP message sent (tenant=%s chat=%s)", event.tenant_id, mask_chat_id(chat_id))
    return web.json_response({"status": "ok"})
