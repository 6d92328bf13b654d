"""
Signed publishing client for the downstream CDEvents endpoint.
"""
import hashlib
import hmac
from typing import Optional

import httpx

from ..errors import PublisherConfigError, PublishError
from ..logger import get_logger
from .builder import build_event_body
from .models import CanonicalEvent


logger = get_logger("publisher")

PUBLISH_PATH = "/webhooks/cdevents"
MAX_ERROR_BODY = 512


def sign(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the body keyed with the secret."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class EventPublisher:
    """Posts signed event bodies to a downstream endpoint."""
    
    def __init__(self, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize publisher.
        
        Args:
            timeout: Request timeout in seconds
            client: Optional shared HTTP client; a short-lived one is used per call otherwise
        """
        self.timeout = timeout if timeout and timeout > 0 else 10.0
        self._client = client

    def use_client(self, client: Optional[httpx.AsyncClient]):
        """Share a long-lived HTTP client; None reverts to per-call clients."""
        self._client = client

    async def publish(self, endpoint: str, token: str, secret: str, body: bytes) -> None:
        """
        Send one signed POST with the event body.
        
        Raises:
            PublisherConfigError: If endpoint, token or secret is empty
            PublishError: If the request fails or the response status is >= 300
        """
        endpoint = (endpoint or "").strip()
        token = (token or "").strip()
        secret = (secret or "").strip()
        if not endpoint or not token or not secret:
            raise PublisherConfigError("endpoint/token/secret are required")
        
        url = endpoint.rstrip("/") + PUBLISH_PATH
        headers = {
            "Authorization": f"Bearer {token}",
            "X-Webhook-Signature": sign(body, secret),
            "Content-Type": "application/json",
        }
        
        try:
            if self._client is not None:
                response = await self._client.post(url, content=body, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, content=body, headers=headers)
        except httpx.HTTPError as e:
            raise PublishError(f"send request: {e}") from e
        
        if response.status_code >= 300:
            text = response.text.strip()[:MAX_ERROR_BODY]
            raise PublishError(
                f"webhook rejected: status={response.status_code} body={text}",
                status_code=response.status_code,
                body=text,
            )
        
        logger.debug(f"Published event to {url} (status {response.status_code})")
    
    async def publish_event(self, endpoint: str, token: str, secret: str, event: CanonicalEvent) -> str:
        """Build and publish a canonical event, returning its resolved type."""
        body, resolved_type = build_event_body(event)
        await self.publish(endpoint, token, secret, body)
        return resolved_type
