"""
backend/models/plan.py

Purchasable plans: a price and the number of Pix keys it grants.
"""

from enum import Enum
from typing import Tuple
from pydantic import BaseModel, ConfigDict


class PlanType(str, Enum):
    SINGLE = "single"
    FIVE_PACK = "five_pack"


class Plan(BaseModel):
    """
    A plan is a one-time bundle, not a subscription.

    `price` is in whole currency units (R$ 49); the gateway is charged
    `unit_amount` cents.
    """
    model_config = ConfigDict(frozen=True)

    plan_type: PlanType
    name: str
    description: str
    price: int
    key_count: int
    product_name: str
    product_description: str
    features: Tuple[str, ...] = ()

    @property
    def unit_amount(self) -> int:
        return self.price * 100

    @property
    def price_per_key(self) -> int:
        return round(self.price / self.key_count)
