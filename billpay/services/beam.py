"""Client for the Beam Checkout payment-link API."""
import base64
import binascii
import hashlib
import hmac
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional

import httpx
from fastapi import Request

from ..config import get_settings
from ..errors import GatewayError
from ..schemas import GatewayConfig

logger = logging.getLogger(__name__)

CURRENCY = "THB"
PROVIDER = "beam"


def to_minor_units(amount) -> int:
    """Convert a baht amount to satang, rounding half up."""
    value = Decimal(str(amount)) * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _decode_key(hmac_key: str) -> bytes:
    # Beam keys show up unpadded and in the url-safe alphabet
    key = hmac_key.strip().replace("-", "+").replace("_", "/")
    return base64.b64decode(key + "=" * (-len(key) % 4))


def verify_signature(body: bytes, signature: str, hmac_key: str) -> bool:
    """Check base64(HMAC-SHA256(base64-decoded key, body)) against the header."""
    try:
        key = _decode_key(hmac_key)
    except (binascii.Error, ValueError):
        return False
    computed = base64.b64encode(hmac.new(key, body, hashlib.sha256).digest())
    return hmac.compare_digest(computed, signature.encode("utf-8"))


class BeamClient:
    def __init__(self, http: httpx.AsyncClient,
                 sandbox_base: str,
                 production_base: str):
        self._http = http
        self._sandbox_base = sandbox_base.rstrip("/")
        self._production_base = production_base.rstrip("/")

    def base_url(self, config: GatewayConfig) -> str:
        return self._production_base if config.is_production else self._sandbox_base

    async def create_payment_link(self, config: GatewayConfig, *,
                                  net_amount: int,
                                  description: str,
                                  reference_id: str,
                                  link_settings: Dict[str, dict],
                                  redirect_url: str,
                                  ) -> dict:
        """
        Mint a hosted payment link and return Beam's JSON response.

        `net_amount` is in minor units. Any transport failure or non-2xx answer
        raises GatewayError; the upstream detail only goes to the log.
        """
        payload = {
            "order": {
                "currency": CURRENCY,
                "netAmount": net_amount,
                "description": description,
                "referenceId": reference_id,
            },
            "linkSettings": link_settings,
            "redirectUrl": redirect_url,
        }
        url = f"{self.base_url(config)}/api/v1/payment-links"

        try:
            resp = await self._http.post(
                url,
                json=payload,
                auth=(config.merchant_id, config.api_key),
            )
        except httpx.TimeoutException:
            logger.error("Beam API timeout for order %s", reference_id)
            raise GatewayError()
        except httpx.HTTPError as e:
            logger.error("Beam API request failed for order %s: %r", reference_id, e)
            raise GatewayError()

        if not resp.is_success:
            logger.error("Beam API error: %s %s", resp.status_code, resp.text[:800])
            raise GatewayError()

        try:
            data = resp.json()
        except ValueError:
            logger.error("Beam API returned non-JSON body: %s", resp.text[:800])
            raise GatewayError()

        if not isinstance(data, dict) or not data.get("paymentLinkId") or not data.get("url"):
            logger.error("Beam API response missing paymentLinkId/url: %s", str(data)[:800])
            raise GatewayError()
        return data


def get_beam_client(request: Request) -> BeamClient:
    settings = get_settings()
    # created and closed by the app lifespan
    http: Optional[httpx.AsyncClient] = getattr(request.app.state, "http_client", None)
    if http is None:
        raise RuntimeError("HTTP client not initialised; app lifespan did not run")
    return BeamClient(
        http,
        sandbox_base=settings.beam_sandbox_api_base,
        production_base=settings.beam_production_api_base,
    )
