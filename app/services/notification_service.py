"""
Notification Service - outbound WhatsApp gateway (AISensy campaign API).
"""
from dataclasses import dataclass
from typing import Sequence

import httpx

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

NOT_CONFIGURED = "WhatsApp gateway not configured"


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    raw_response: str


class WhatsAppGateway:
    """Sends campaign messages. Never raises: every failure is a DispatchResult."""

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = settings.WHATSAPP_API_URL if api_url is None else api_url
        self.api_key = settings.WHATSAPP_API_KEY if api_key is None else api_key
        self.timeout = settings.WHATSAPP_TIMEOUT_SECONDS if timeout is None else timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    def build_payload(self, phone: str, campaign_name: str, source_label: str, params: Sequence[str]) -> dict:
        return {
            "apiKey": self.api_key,
            "campaignName": campaign_name,
            "destination": phone,
            "userName": source_label,
            "templateParams": list(params),
            "source": source_label,
            "media": {},
            "buttons": [],
            "carouselCards": [],
            "location": {},
        }

    async def send(
        self,
        phone: str,
        campaign_name: str,
        source_label: str,
        params: Sequence[str],
    ) -> DispatchResult:
        """Send one templated message to ``phone``."""
        if not self.is_configured:
            logger.warning("whatsapp_gateway_not_configured")
            return DispatchResult(success=False, raw_response=NOT_CONFIGURED)

        payload = self.build_payload(phone, campaign_name, source_label, params)
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(self.api_url, json=payload)
        except httpx.TimeoutException as e:
            logger.error("whatsapp_send_timeout", phone=phone, timeout=self.timeout)
            return DispatchResult(success=False, raw_response=f"Timeout after {self.timeout}s: {e}")
        except httpx.HTTPError as e:
            logger.error("whatsapp_send_error", phone=phone, error=str(e))
            return DispatchResult(success=False, raw_response=str(e))

        text = response.text
        # The provider answers 200 "Success." when the campaign message is queued
        if response.is_success and "Success" in text:
            return DispatchResult(success=True, raw_response=text)

        logger.error("whatsapp_send_rejected", phone=phone, status_code=response.status_code, body=text)
        return DispatchResult(success=False, raw_response=text or f"HTTP {response.status_code}")
