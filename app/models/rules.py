from pydantic import BaseModel, Field
from typing import Optional

from app.models.payment import FailureCategory


class TrafficConditions(BaseModel):
    currencies: Optional[list[str]] = None
    amount_gte: Optional[int] = None
    amount_lte: Optional[int] = None
    card_brands: Optional[list[str]] = None

    def matches(self, amount: int, currency: str, card_brand: Optional[str]) -> bool:
        if self.currencies is not None and currency.upper() not in {c.upper() for c in self.currencies}:
            return False
        if self.amount_gte is not None and amount < self.amount_gte:
            return False
        if self.amount_lte is not None and amount > self.amount_lte:
            return False
        # Brand filter only applies when both sides specify a brand
        if self.card_brands and card_brand:
            if card_brand.lower() not in {b.lower() for b in self.card_brands}:
                return False
        return True


class TrafficRule(BaseModel):
    psp: str
    weight: float = Field(..., ge=0, le=100)
    conditions: Optional[TrafficConditions] = None
    is_active: bool = True


class RetryRule(BaseModel):
    source_psp: str
    target_psp: str
    failure_codes: Optional[list[str]] = None
    failure_categories: Optional[list[FailureCategory]] = None
    max_retries: int = Field(1, ge=0)
