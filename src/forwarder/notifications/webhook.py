"""Outbound payment notifications.

Delivers one JSON notification per settled or slipped session to the
caller's callback URI. Delivery is best-effort: failures are logged and
never retried, and never raised into the payment monitor.
"""

import hashlib
import hmac
import json
import logging
from typing import Optional

import httpx

from forwarder.config import Settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"


def sign_payload(payload: bytes, secret: str, algorithm: str = "sha256") -> str:
    """Compute the signature header value for a payload.

    Receivers verify it by recomputing the HMAC over the raw body.

    Returns:
        Header value in the form ``sha256=<hex digest>``
    """
    mac = hmac.new(secret.encode(), payload, getattr(hashlib, algorithm))
    return f"{algorithm}={mac.hexdigest()}"


def verify_signature(payload: bytes, signature: str, secret: str, algorithm: str = "sha256") -> bool:
    """Verify a signature header produced by sign_payload.

    Receiver-side helper for merchants consuming callbacks; the forwarder
    itself only signs.
    """
    if "=" in signature:
        signature = signature.split("=", 1)[1]
    expected = hmac.new(secret.encode(), payload, getattr(hashlib, algorithm)).hexdigest()
    return hmac.compare_digest(expected, signature.lower())


class WebhookNotifier:
    """Service for sending payment notifications to callback URIs."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        secret: Optional[str] = None,
    ):
        """Initialize with optional HTTP client.

        If no client is provided, one is created per request.
        """
        self._client = client
        self.timeout = timeout
        self.secret = secret

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> "WebhookNotifier":
        return cls(client=client, timeout=settings.webhook_timeout, secret=settings.webhook_secret)

    def _encode(self, payload: dict) -> Optional[bytes]:
        try:
            return json.dumps(payload, separators=(",", ":")).encode()
        except (TypeError, ValueError) as e:
            logger.error(f"Error encoding webhook payload: {e}")
            return None

    async def _post(self, client: httpx.AsyncClient, uri: str, body: bytes) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers[SIGNATURE_HEADER] = sign_payload(body, self.secret)
        return await client.post(uri, content=body, headers=headers, timeout=self.timeout)

    async def send(self, uri: str, payload: dict) -> bool:
        """POST a JSON payload to a callback URI.

        Args:
            uri: Callback URI supplied with the payment request
            payload: JSON-serializable notification body

        Returns:
            True if the receiver answered with a 2xx status
        """
        body = self._encode(payload)
        if body is None:
            return False

        try:
            if self._client is not None:
                response = await self._post(self._client, uri, body)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, uri, body)
        except httpx.HTTPError as e:
            logger.warning(f"Error sending webhook to {uri}: {e}")
            return False

        if response.is_success:
            logger.info(f"Webhook delivered to {uri} ({response.status_code})")
            return True

        logger.warning(f"Webhook to {uri} answered {response.status_code}")
        return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
