"""
Deterministic order pricing.

All amounts are USD `Decimal`s. The intermediate values are kept exact for
display; only the final total is rounded to the cent.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Dict, Optional

from pydantic import BaseModel

from tweeshirt.settings import settings

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Blank garment cost per size. Sizes outside the table fall back to the default.
DEFAULT_BASE_PRICE = Decimal("2.75")
BASE_PRICES: Dict[str, Decimal] = {
    "S": Decimal("2.75"),
    "M": Decimal("2.75"),
    "L": Decimal("2.75"),
    "XL": Decimal("2.75"),
    "2XL": Decimal("2.95"),
    "3XL": Decimal("3.20"),
    "4XL": Decimal("3.45"),
    "5XL": Decimal("3.60"),
}

PRINTING_PRICE = Decimal("2.00")
COURIER_CHARGE = Decimal("0.60")
PROFIT_MARGIN = Decimal("1.50")  # 150% of subtotal
FLAT_PROFIT = Decimal("1.25")
GST_RATE = Decimal("0.05")


class PriceBreakdown(BaseModel):
    """Itemized order price. `total` is the amount charged."""
    base_price: Decimal
    printing_price: Decimal
    courier_charge: Decimal
    subtotal: Decimal
    profit: Decimal
    gst: Decimal
    total: Decimal

    def display(self) -> Dict[str, str]:
        """Every component formatted with two decimals, keyed the way the order backend expects."""
        return {
            "basePrice": _fmt(self.base_price),
            "printingPrice": _fmt(self.printing_price),
            "courierCharge": _fmt(self.courier_charge),
            "subtotal": _fmt(self.subtotal),
            "profit": _fmt(self.profit),
            "gst": _fmt(self.gst),
            "total": _fmt(self.total),
        }

    @property
    def total_cents(self) -> int:
        return int((self.total * 100).to_integral_value(rounding=ROUND_HALF_UP))


def _fmt(amount: Decimal) -> str:
    return str(amount.quantize(CENT, rounding=ROUND_HALF_UP))


def base_price_for(size: Optional[str]) -> Decimal:
    if not size:
        return DEFAULT_BASE_PRICE
    size = getattr(size, "value", size)
    return BASE_PRICES.get(size.upper(), DEFAULT_BASE_PRICE)


def courier_charge_for(pincode: Optional[str] = None) -> Decimal:
    # Flat rate for every pincode until a courier rate lookup exists.
    return COURIER_CHARGE


def margin_profit(subtotal: Decimal) -> Decimal:
    return subtotal * PROFIT_MARGIN


def flat_profit(subtotal: Decimal) -> Decimal:
    return FLAT_PROFIT


PROFIT_STRATEGIES: Dict[str, Callable[[Decimal], Decimal]] = {
    "margin": margin_profit,
    "flat": flat_profit,
}


class PricingEngine:
    """Computes a `PriceBreakdown` from the garment size and shipping pincode."""

    def __init__(self, strategy: Optional[str] = None):
        strategy = strategy or settings.PRICING_STRATEGY
        if strategy not in PROFIT_STRATEGIES:
            raise ValueError(
                f"Unknown pricing strategy '{strategy}'. Choose from: {', '.join(PROFIT_STRATEGIES)}"
            )
        self.strategy = strategy
        self._profit = PROFIT_STRATEGIES[strategy]

    def compute_price(self, size: Optional[str], pincode: Optional[str] = None) -> PriceBreakdown:
        base_price = base_price_for(size)
        courier_charge = courier_charge_for(pincode)
        subtotal = base_price + PRINTING_PRICE + courier_charge
        profit = self._profit(subtotal)
        gst = (subtotal + profit) * GST_RATE
        total = (subtotal + profit + gst).quantize(CENT, rounding=ROUND_HALF_UP)

        logger.info(f"Priced size={getattr(size, 'value', size) or '-'} pincode={pincode or '-'} ({self.strategy}): total={total}")
        return PriceBreakdown(
            base_price=base_price,
            printing_price=PRINTING_PRICE,
            courier_charge=courier_charge,
            subtotal=subtotal,
            profit=profit,
            gst=gst,
            total=total,
        )
