from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class CreatePaymentLinkIn(BaseModel):
    order_id: Optional[str] = None


class CreatePaymentLinkOut(BaseModel):
    payment_url: str
    payment_link_id: str


class ChannelRule(BaseModel):
    enabled: bool = False
    min_amount: Optional[Decimal] = None
    customer_types: List[str] = Field(default_factory=list)


class GatewayConfig(BaseModel):
    """The `config` blob of the active payment_gateway channel."""
    merchant_id: str = ""
    api_key: str = ""
    environment: str = "sandbox"  # sandbox, production
    webhook_secret: Optional[str] = None
    channels: Dict[str, ChannelRule] = Field(default_factory=dict)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


class VerifyPaymentIn(BaseModel):
    payment_record_id: Optional[str] = None
    action: Optional[str] = None


class VerifyPaymentOut(BaseModel):
    success: bool = True
    status: Literal["verified", "rejected"]
