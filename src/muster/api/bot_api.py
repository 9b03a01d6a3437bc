"""Internal bot API called by the web dashboard.

Every route requires the shared bearer secret. Failures always come back as
``{"error": "..."}`` with 401 (bad token), 400 (missing fields), 404 (unknown
channel, message or certification), 503 (bot offline) or 500 (anything else).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from muster.api.deps import BotDep, BotUnavailable, RepoDep
from muster.auth.deps import ApiAuth, Unauthorized
from muster.core.certifications import get_certification
from muster.core.errors import ValidationError
from muster.core.events import record_announcement
from muster.discord.helpers import ChannelNotFound, MessageNotFound
from muster.models.events import EventDetail

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["bot"])


class BotApiError(Exception):
    """An API failure with the status code it maps to."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


# --- Request bodies ---
# Fields are optional so a missing one becomes a 400 with a readable message
# instead of a schema dump.


class EventPayload(BaseModel):
    """An event as the dashboard sends it."""

    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore")

    id: str = ""
    title: str = ""
    description: str | None = ""
    time: int | None = None
    location: str | None = None
    image: str | None = None

    def to_detail(self) -> EventDetail:
        if not self.title or self.time is None:
            raise BotApiError(400, "Event needs a title and a time")
        return EventDetail(
            id=self.id,
            title=self.title,
            description=self.description or "",
            time=self.time,
            location=self.location,
            image=self.image,
        )


class PostEventBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    channel_id: str | None = Field(default=None, alias="channelId")
    event: EventPayload | None = None


class DeleteMessageBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    channel_id: str | None = Field(default=None, alias="channelId")
    message_id: str | None = Field(default=None, alias="messageId")


class CertPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    description: str | None = ""


class RequestCertBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    user_id: str | None = Field(default=None, alias="userId")
    cert: CertPayload | str | None = None
    request_id: str | None = Field(default=None, alias="requestId")


# --- Routes ---


@router.post("/post-event")
async def post_event(
    _auth: ApiAuth, bot: BotDep, repo: RepoDep, body: PostEventBody | None = None
) -> dict:
    """Announce an event in a channel. Returns the new message id."""
    if body is None or not body.channel_id or body.event is None:
        raise BotApiError(400, "Missing channelId or event")
    event = body.event.to_detail()
    try:
        message_id = await bot.post_event_announcement(body.channel_id, event)
    except ChannelNotFound as exc:
        raise BotApiError(404, "Channel not found or not text-based") from exc
    except Exception as exc:  # Last-resort handler — Discord and network errors become a 500
        logger.exception("bot_api_post_event_failed channel=%s", body.channel_id)
        raise BotApiError(500, "Failed to post event") from exc

    if event.id and not await record_announcement(repo, event.id, body.channel_id, message_id):
        logger.info("bot_api_event_not_tracked event=%s", event.id)
    return {"messageId": message_id}


@router.post("/delete-message")
async def delete_message(
    _auth: ApiAuth, bot: BotDep, body: DeleteMessageBody | None = None
) -> dict:
    """Delete a message the bot posted."""
    if body is None or not body.channel_id or not body.message_id:
        raise BotApiError(400, "Missing channelId or messageId")
    try:
        await bot.delete_announcement(body.channel_id, body.message_id)
    except ChannelNotFound as exc:
        raise BotApiError(404, "Channel not found or not text-based") from exc
    except MessageNotFound as exc:
        raise BotApiError(404, "Message not found") from exc
    except Exception as exc:  # Last-resort handler — Discord and network errors become a 500
        logger.exception("bot_api_delete_message_failed channel=%s", body.channel_id)
        raise BotApiError(500, "Failed to delete message") from exc
    return {"success": True}


@router.get("/channels")
async def list_channels(_auth: ApiAuth, bot: BotDep) -> dict:
    """Categories and text channels the dashboard can post to."""
    try:
        return await bot.list_channels()
    except Exception as exc:  # Last-resort handler — Discord and network errors become a 500
        logger.exception("bot_api_list_channels_failed")
        raise BotApiError(500, "Failed to fetch channels") from exc


@router.post("/request-cert")
async def request_cert(
    _auth: ApiAuth, bot: BotDep, repo: RepoDep, body: RequestCertBody | None = None
) -> dict:
    """Post a certification request with Approve/Deny buttons.

    ``cert`` is either ``{name, description}`` or a certification id.
    """
    if body is None or not body.user_id or not body.cert or not body.request_id:
        raise BotApiError(400, "Missing userId, cert or requestId")
    if not bot.settings.cert_request_channel_id:
        raise BotApiError(400, "No certification request channel is configured")

    if isinstance(body.cert, str):
        try:
            cert = await get_certification(repo, body.cert)
        except ValidationError as exc:
            raise BotApiError(404, "Certification not found") from exc
        name, description = cert.name, cert.description
    else:
        if not body.cert.name:
            raise BotApiError(400, "Missing userId, cert or requestId")
        name, description = body.cert.name, body.cert.description or ""

    try:
        await bot.post_certification_request(body.user_id, name, description, body.request_id)
    except ChannelNotFound as exc:
        raise BotApiError(404, "Channel not found") from exc
    except Exception as exc:  # Last-resort handler — Discord and network errors become a 500
        logger.exception("bot_api_request_cert_failed request=%s", body.request_id)
        raise BotApiError(500, "Failed to post to Discord") from exc
    return {"success": True}


# --- Error responses ---


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def register_error_handlers(app: FastAPI) -> None:
    """Render every bot API failure as ``{"error": ...}``."""

    @app.exception_handler(BotApiError)
    async def _bot_api_error(request: Request, exc: BotApiError) -> JSONResponse:
        return _error(exc.status_code, exc.message)

    @app.exception_handler(Unauthorized)
    async def _unauthorized(request: Request, exc: Unauthorized) -> JSONResponse:
        return _error(401, "Unauthorized")

    @app.exception_handler(BotUnavailable)
    async def _bot_unavailable(request: Request, exc: BotUnavailable) -> JSONResponse:
        return _error(503, "Discord bot is not connected")

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("bot_api_invalid_request path=%s", request.url.path)
        return _error(400, "Invalid request body")
