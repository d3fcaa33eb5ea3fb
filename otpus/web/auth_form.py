from __future__ import annotations

import hmac
import json
import logging
import secrets
from pathlib import Path
from string import Template

from aiohttp import web
from pydantic import ValidationError

from ..config import settings
from ..schemas.auth_form import AUTH_TYPES, AuthFormQuery, AuthFormSubmission, DeviceFlowStrategy
from ..security.hmac import verify
from ..services.errors import ProvisioningError, TenantError
from ..services.message_store import get_message
from ..services.onboarding import ChatDeliveryFailed
from ..utils.format import mask_chat_id
from .keys import NOTIFIER, ONBOARDING
from .responses import error_response

logger = logging.getLogger(__name__)

TEMPLATE_PATH = Path(__file__).resolve().parents[1] / "templates" / "auth_form.html"

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"
CSRF_MAX_AGE = 3600

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Content-Security-Policy": "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'",
    "Referrer-Policy": "no-referrer",
}

# сообщения об отсутствующих полях стратегии
_MISSING_FIELDS = {
    "auth_ephemeral": "Access token is required",
    "auth_client_credentials": "Client ID and secret are required",
}

_template: Template | None = None


def _render(config: dict[str, str]) -> str:
    global _template
    if _template is None:
        _template = Template(TEMPLATE_PATH.read_text(encoding="utf-8"))
    # конфиг уходит внутрь <script>, закрывающий тег экранируем
    payload = json.dumps(config).replace("</", "<\\/")
    return _template.substitute(config=payload)


async def show_auth_form(request: web.Request) -> web.Response:
    try:
        query = AuthFormQuery.model_validate(dict(request.query))
        chat_id = int(query.chat_id)
        message_id = int(query.message_id)
    except (ValidationError, ValueError):
        logger.error("Missing required parameters for auth form")
        return web.Response(status=400, text="Invalid request parameters")

    if not verify(query.chat_id, query.signature, settings.HMAC_SECRET):
        logger.error("Invalid signature for auth form (chat=%s)", mask_chat_id(chat_id))
        return web.Response(status=401, text="Invalid request signature")

    # результат не важен: форма работает и без правки сообщения
    await request.app[NOTIFIER].edit(chat_id, message_id, await get_message("auth.continuing"))

    csrf_token = secrets.token_urlsafe(32)
    body = _render(
        {
            "chat_id": query.chat_id,
            "message_id": query.message_id,
            "signature": query.signature,
            "auth_type": query.auth_type,
            "csrf_token": csrf_token,
        }
    )

    response = web.Response(text=body, content_type="text/html", headers=SECURITY_HEADERS)
    response.set_cookie(
        CSRF_COOKIE,
        csrf_token,
        max_age=CSRF_MAX_AGE,
        path="/bot/auth-form",
        secure=True,
        httponly=True,
        samesite="Strict",
    )
    return response


def _is_domain_error(exc: ValidationError) -> bool:
    return all(err["loc"][:1] == ("domain",) for err in exc.errors())


async def process_auth_form(request: web.Request) -> web.Response:
    cookie = request.cookies.get(CSRF_COOKIE, "")
    header = request.headers.get(CSRF_HEADER, "")
    if not cookie or not hmac.compare_digest(cookie.encode(), header.encode()):
        logger.error("CSRF token validation failed")
        return error_response("auth_form", 401, "Invalid CSRF token")

    try:
        submission = AuthFormSubmission.model_validate(await request.json())
    except ValidationError as exc:
        if _is_domain_error(exc):
            logger.error("Invalid domain format in auth form")
            return error_response("auth_form", 400, "Invalid domain format")
        logger.error("Failed to parse auth form request: %s", exc)
        return error_response("auth_form", 400, "Invalid request format")
    except ValueError as exc:
        logger.error("Failed to parse auth form request: %s", exc)
        return error_response("auth_form", 400, "Invalid request format")

    if not verify(submission.chat_id, submission.signature, settings.HMAC_SECRET):
        logger.error("Invalid signature for auth form submission (chat=%s)", mask_chat_id(submission.chat_id))
        return error_response("auth_form", 401, "Invalid request signature")

    try:
        chat_id = submission.chat_id_int
    except ValueError:
        logger.error("Invalid chat ID format in auth form")
        return error_response("auth_form", 400, "Invalid chat ID format")

    if submission.auth_type not in AUTH_TYPES:
        logger.error("Invalid auth type: %s", submission.auth_type)
        return error_response("auth_form", 400, "Invalid authentication type")

    try:
        strategy = submission.strategy()
    except ValidationError:
        logger.error("Missing credentials for %s", submission.auth_type)
        return error_response("auth_form", 400, _MISSING_FIELDS.get(submission.auth_type, "Invalid request format"))

    domain = submission.domain
    onboarding = request.app[ONBOARDING]

    if isinstance(strategy, DeviceFlowStrategy):
        try:
            await onboarding.start_device_flow(domain, chat_id)
        except TenantError as exc:
            logger.error("Failed to initiate device flow for %s: %s", domain, exc)
            return error_response("auth_form", 500, "Failed to initiate device flow")
        except ChatDeliveryFailed as exc:
            logger.error("Failed to send device code info: %s", exc)
            return error_response("auth_form", 500, "Failed to send authentication information")

        return web.json_response(
            {
                "status": "success",
                "message": "Authentication process initiated. Please check your Telegram chat for instructions.",
            }
        )

    try:
        credential = await onboarding.acquirer.acquire(strategy, domain)
    except ValueError:
        return error_response("auth_form", 400, _MISSING_FIELDS["auth_ephemeral"])
    except TenantError as exc:
        logger.error("Failed to get access token for %s: %s", domain, exc)
        return error_response("auth_form", 500, "Failed to get access token")

    try:
        await onboarding.onboard_with_credential(
            domain,
            credential,
            chat_id,
            submission.message_id_int,
            strategy=submission.auth_type,
        )
    except ProvisioningError as exc:
        logger.error("Failed to set up %s for chat %s: %s", domain, mask_chat_id(chat_id), exc)
        return error_response("auth_form", 500, "Failed to set up tenant actions")

    return web.json_response({"status": "success", "message": "Authentication and setup completed successfully"})
