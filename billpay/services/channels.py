import logging
from decimal import Decimal
from typing import Dict, Iterable, Mapping, Optional, Set

import pydantic
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..errors import ConfigurationError, EligibilityError
from ..models import ChannelType, Customer, PaymentChannel
from ..schemas import ChannelRule, GatewayConfig

logger = logging.getLogger(__name__)

BILL_ONLINE = "bill_online"
DEFAULT_CUSTOMER_TYPE = "retail"

# Beam linkSettings keys, in the order Beam documents them
LINK_SETTINGS_KEYS = ("card", "qrPromptPay", "eWallets", "mobileBanking", "cardInstallments")

# several internal channel codes share one Beam toggle
CHANNEL_LINK_SETTINGS = {
    "CARD": "card",
    "QR_PROMPT_PAY": "qrPromptPay",
    "LINE_PAY": "eWallets",
    "SHOPEE_PAY": "eWallets",
    "TRUE_MONEY": "eWallets",
    "WECHAT_PAY": "eWallets",
    "ALIPAY": "eWallets",
    "CARD_INSTALLMENTS": "cardInstallments",
    "BANGKOK_BANK_APP": "mobileBanking",
    "KPLUS": "mobileBanking",
    "SCB_EASY": "mobileBanking",
    "KRUNGSRI_APP": "mobileBanking",
}


async def find_gateway_config(session: AsyncSession) -> Optional[GatewayConfig]:
    """
    Load the active bill_online payment gateway config, or None if there is none.

    A config blob that does not decode raises ConfigurationError.
    """
    q = select(PaymentChannel).where(
        PaymentChannel.channel_group == BILL_ONLINE,
        PaymentChannel.type == ChannelType.PAYMENT_GATEWAY,
        PaymentChannel.is_active == True,  # noqa: E712
    )
    res = await session.exec(q)
    rows = res.all()
    if not rows:
        return None
    if len(rows) > 1:
        logger.error("Found %d active payment gateway channels, expected one", len(rows))
        raise ConfigurationError()

    try:
        return GatewayConfig.model_validate(rows[0].config or {})
    except pydantic.ValidationError as e:
        logger.error("Invalid payment gateway config on channel %s: %s", rows[0].id, e)
        raise ConfigurationError("Payment gateway configuration is invalid")


async def resolve_gateway_config(session: AsyncSession) -> GatewayConfig:
    config = await find_gateway_config(session)
    if config is None:
        raise ConfigurationError("Payment gateway not configured")
    if not config.merchant_id or not config.api_key:
        raise ConfigurationError("Payment gateway credentials not configured")
    return config


async def get_customer_type(session: AsyncSession, customer_id: Optional[str]) -> str:
    if not customer_id:
        return DEFAULT_CUSTOMER_TYPE
    customer = await session.get(Customer, customer_id)
    if customer is None or not customer.customer_type_new:
        return DEFAULT_CUSTOMER_TYPE
    return customer.customer_type_new


def enabled_gateway_keys(amount: Decimal,
                         customer_type: str,
                         channels: Mapping[str, ChannelRule]) -> Set[str]:
    """
    Return the Beam linkSettings keys to switch on for an order.

    Raises EligibilityError when nothing qualifies, so callers never reach
    the gateway with an empty selection.
    """
    keys: Set[str] = set()
    for code, rule in channels.items():
        if not rule.enabled:
            continue
        if rule.min_amount is not None and amount < rule.min_amount:
            continue
        if rule.customer_types and customer_type not in rule.customer_types:
            continue
        key = CHANNEL_LINK_SETTINGS.get(code)
        if key is None:
            logger.warning("Ignoring unknown payment channel code %s", code)
            continue
        keys.add(key)

    if not keys:
        raise EligibilityError()
    return keys


def build_link_settings(enabled: Iterable[str]) -> Dict[str, dict]:
    enabled = set(enabled)
    return {key: {"isEnabled": key in enabled} for key in LINK_SETTINGS_KEYS}
