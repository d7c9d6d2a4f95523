"""
The order-in-progress record and the wizard's stage enum.

An `OrderDraft` is created empty when a wizard starts, is mutated only by the
stage controller on stage exit, and is discarded once the order is submitted
or the wizard is abandoned.
"""

from enum import Enum, IntEnum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from tweeshirt.placement import Placement
from tweeshirt.pricing import PriceBreakdown


class Stage(IntEnum):
    CONFIRM = 1
    POSITION = 2
    GARMENT = 3
    SHIPPING = 4
    PAYMENT = 5
    SUBMITTED = 6  # terminal


STAGE_LABELS = {
    Stage.CONFIRM: "Confirm",
    Stage.POSITION: "Position",
    Stage.GARMENT: "T-Shirt",
    Stage.SHIPPING: "Details",
    Stage.PAYMENT: "Payment",
    Stage.SUBMITTED: "Submitted",
}


class GarmentSize(str, Enum):
    S = "S"
    M = "M"
    L = "L"
    XL = "XL"
    XXL = "2XL"
    XXXL = "3XL"
    XXXXL = "4XL"
    XXXXXL = "5XL"


GARMENT_COLORS: List[str] = [
    "Black", "Butter Yellow", "Charcoal Grey", "Coffee Brown", "Golden Yellow",
    "Iris Lavender", "Light Pink", "Liril Green", "Maroon", "Melange Grey",
    "Mustard Yellow", "Navy Blue", "Olive Green", "Orange", "Red",
    "Royal Blue", "Sky Blue", "White",
]


class Customer(BaseModel):
    """Shipping and contact details. `address2`, `address3` are optional."""
    name: str = ""
    email: str = ""
    mobile: str = ""
    address1: str = ""
    address2: str = ""
    address3: str = ""
    city: str = ""
    pincode: str = ""
    state: str = ""
    country: str = ""

    REQUIRED_FIELDS: ClassVar[Tuple[str, ...]] = ("name", "email", "mobile", "address1", "pincode", "city", "state", "country")

    def missing_fields(self) -> List[str]:
        return [f for f in self.REQUIRED_FIELDS if not (getattr(self, f) or "").strip()]


class OrderDraft(BaseModel):
    artwork_ref: Optional[str] = None
    placement: Optional[Placement] = None
    garment_color: Optional[str] = None
    garment_size: Optional[GarmentSize] = None
    customer: Customer = Field(default_factory=Customer)
    price_breakdown: Optional[PriceBreakdown] = None
    partner_upload_result: Optional[Dict[str, Any]] = None

    @property
    def artwork_is_hosted(self) -> bool:
        return bool(self.artwork_ref) and self.artwork_ref.startswith(("http://", "https://"))

    def set_artwork(self, artwork_ref: str) -> None:
        # A different artwork invalidates whatever the partner holds for the old one.
        if artwork_ref != self.artwork_ref:
            self.partner_upload_result = None
        self.artwork_ref = artwork_ref

    def set_garment(self, color: str, size: GarmentSize) -> None:
        size = GarmentSize(size)
        if size != self.garment_size:
            self.price_breakdown = None
        self.garment_color = color
        self.garment_size = size

    def record_upload(self, result: Dict[str, Any]) -> None:
        if not self.artwork_ref:
            raise ValueError("Cannot record a partner upload for a draft without artwork.")
        self.partner_upload_result = result

    def missing_for_submission(self) -> List[str]:
        """Names of everything still required before the order can be submitted."""
        missing = []
        if not self.artwork_ref:
            missing.append("artwork")
        if self.placement is None:
            missing.append("placement")
        if not self.garment_color:
            missing.append("garment_color")
        if not self.garment_size:
            missing.append("garment_size")
        missing.extend(self.customer.missing_fields())
        if self.price_breakdown is None:
            missing.append("price")
        return missing
