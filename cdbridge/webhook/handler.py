"""
Webhook request handler.
"""
import asyncio
from typing import TYPE_CHECKING, Awaitable, Optional, TypeVar
from fastapi import Request, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from ..cdevents.client import EventPublisher
from ..config import Settings
from ..errors import PayloadError, EventValidationError, PublisherConfigError, PublishError
from ..logger import get_logger
from .models import ConvertConfig, GitProvider
from .converters import WebhookConverterFactory

if TYPE_CHECKING:
    from ..setup.resolver import InstallationResolver


logger = get_logger("webhook")

MAX_PAYLOAD_BYTES = 1 << 20
DISCONNECT_POLL_SECONDS = 0.5
CLIENT_CLOSED_REQUEST = 499

T = TypeVar("T")


class ClientDisconnected(Exception):
    """The webhook sender went away while the request was in flight."""


def _payload_too_large() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        detail="Payload too large"
    )


async def read_limited_body(request: Request, limit: int = MAX_PAYLOAD_BYTES) -> bytes:
    """
    Read the request body, refusing anything over limit bytes.

    A declared Content-Length over the limit is rejected before reading;
    otherwise the stream is consumed chunk by chunk and abandoned as soon
    as it passes the limit.

    Raises:
        HTTPException: 413 if the body is too large
    """
    declared = request.headers.get("content-length", "").strip()
    if declared.isdigit() and int(declared) > limit:
        raise _payload_too_large()

    chunks = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise _payload_too_large()
        chunks.append(chunk)
    return b"".join(chunks)


async def cancel_on_disconnect(
    request: Request,
    operation: Awaitable[T],
    poll_interval: Optional[float] = None,
) -> T:
    """
    Await operation, cancelling it if the client disconnects first.

    Raises:
        ClientDisconnected: If the client went away before operation finished
    """
    interval = poll_interval if poll_interval is not None else DISCONNECT_POLL_SECONDS
    task = asyncio.ensure_future(operation)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=interval)
            if done:
                return task.result()
            if await request.is_disconnected():
                task.cancel()
                raise ClientDisconnected()
    finally:
        if not task.done():
            task.cancel()


class WebhookHandler:
    """Handles incoming webhook requests."""

    _signature_headers = {
        GitProvider.GITHUB: "X-Hub-Signature-256",
        GitProvider.GITLAB: "X-Gitlab-Token",
    }
    _event_headers = {
        GitProvider.GITHUB: "X-GitHub-Event",
        GitProvider.GITLAB: "X-Gitlab-Event",
    }
    _delivery_headers = {
        GitProvider.GITHUB: "X-GitHub-Delivery",
        GitProvider.GITLAB: "X-Gitlab-Event-UUID",
    }

    def __init__(self, resolver: "InstallationResolver", publisher: EventPublisher, settings: Settings):
        self.resolver = resolver
        self.publisher = publisher
        self.settings = settings

    def _secret(self, provider: GitProvider) -> str:
        if provider == GitProvider.GITHUB:
            return self.settings.github_webhook_secret
        return self.settings.gitlab_webhook_token

    def _source(self, provider: GitProvider) -> str:
        if provider == GitProvider.GITHUB:
            return self.settings.github_source
        return self.settings.gitlab_source

    async def handle_webhook(self, request: Request, provider: GitProvider) -> JSONResponse:
        """
        Handle incoming webhook request.

        Args:
            request: FastAPI request object
            provider: Git provider type

        Returns:
            202 response with the number of published events, or an "ignored" status

        Raises:
            HTTPException: If verification, parsing, validation or publishing fails
        """
        body = await read_limited_body(request)

        converter = WebhookConverterFactory.create(provider)

        signature = request.headers.get(self._signature_headers[provider], "")
        if not converter.verify_signature(body, signature, self._secret(provider)):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid webhook signature"
            )

        event_name = request.headers.get(self._event_headers[provider], "").strip()
        delivery_id = request.headers.get(self._delivery_headers[provider], "").strip()
        installation_id = converter.extract_installation_id(body)

        try:
            credentials = await self.resolver.resolve(provider, installation_id)
        except SQLAlchemyError as e:
            logger.error(
                f"Failed to load {provider.value} installation mapping {installation_id}: {e}",
                exc_info=True
            )
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Mapping resolution failed"
            )

        if not credentials.is_complete:
            logger.warning(
                f"Ignoring {provider.value} '{event_name}' webhook: no mapping or default "
                f"credentials (installation {installation_id})"
            )
            return self._ignored("no credentials available")

        try:
            events = converter.convert(
                event_name,
                delivery_id,
                body,
                ConvertConfig(
                    default_environment=credentials.default_environment,
                    source=self._source(provider),
                ),
            )
        except PayloadError as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid {provider.value} payload: {e}"
            )

        if not events:
            return self._ignored(f"event '{event_name}' not handled")

        published = 0
        for event in events:
            try:
                resolved_type = await cancel_on_disconnect(
                    request,
                    self.publisher.publish_event(
                        credentials.endpoint,
                        credentials.auth_token,
                        credentials.webhook_secret,
                        event,
                    ),
                )
            except EventValidationError as e:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
            except (PublisherConfigError, PublishError) as e:
                logger.error(
                    f"Failed to publish {provider.value} '{event_name}' event "
                    f"(installation {installation_id}): {e}"
                )
                raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Publish failed")
            except ClientDisconnected:
                logger.warning(
                    f"{provider.value} sender disconnected; publish of '{event_name}' cancelled "
                    f"after {published} event(s)"
                )
                raise HTTPException(status_code=CLIENT_CLOSED_REQUEST, detail="Client disconnected")

            logger.info(f"Published {resolved_type} for {event.service} (delivery {delivery_id or '-'})")
            published += 1

        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"status": "published", "published": published},
        )

    @staticmethod
    def _ignored(reason: Optional[str] = None) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"status": "ignored", "reason": reason},
        )
