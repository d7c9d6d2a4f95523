"""
The five-stage order wizard.

Forward transitions are gated by per-stage validation and expressed as pure
functions over `(OrderDraft, Stage, StageInput)`; `StageController` wraps them
with the mutable state a single wizard instance owns (active stage, working
placement, payment confirmation, the current stage error) and runs the final
submission.

    Confirm -> Position -> Garment -> Shipping -> Payment -> (Submitted)
"""

import logging
from typing import Any, Awaitable, Callable, Dict, NamedTuple, Optional

from pydantic import BaseModel

from tweeshirt.draft import GARMENT_COLORS, STAGE_LABELS, Customer, GarmentSize, OrderDraft, Stage
from tweeshirt.errors import OrderFlowError, PricingUnavailable, StaleSubmission, ValidationError
from tweeshirt.placement import Anchor, ContainerRect, Placement, PointerSession
from tweeshirt.pricing import PricingEngine
from tweeshirt.submitter import OrderConfirmation, OrderSubmitter, SubmissionState

logger = logging.getLogger(__name__)

# Entering one of these stages drops the price so it is recomputed on the way out.
REPRICED_STAGES = (Stage.GARMENT, Stage.SHIPPING)


class StageInput(BaseModel):
    """Values the user entered on the active stage. Unset fields keep the draft's value."""
    artwork_ref: Optional[str] = None
    garment_color: Optional[str] = None
    garment_size: Optional[str] = None
    customer: Optional[Customer] = None


class StageError(BaseModel):
    """A user-dismissable message scoped to the stage that produced it."""
    stage: Stage
    kind: str
    message: str

    @classmethod
    def from_exc(cls, exc: OrderFlowError, stage: Stage) -> "StageError":
        return cls(stage=stage, kind=exc.kind, message=exc.message)


class TransitionResult(NamedTuple):
    draft: OrderDraft
    stage: Stage
    error: Optional[StageError] = None


# ===================================================================
# Pure transitions
# ===================================================================

def _exit_confirm(draft: OrderDraft, step: StageInput, placement, pricing) -> None:
    artwork_ref = step.artwork_ref or draft.artwork_ref
    if not artwork_ref:
        raise ValidationError("Please confirm your image selection")
    draft.set_artwork(artwork_ref)


def _exit_position(draft: OrderDraft, step: StageInput, placement, pricing) -> None:
    if not draft.artwork_ref:
        raise ValidationError("Please confirm your image selection")
    draft.placement = (placement or draft.placement or Placement()).snapshot()


def _exit_garment(draft: OrderDraft, step: StageInput, placement, pricing) -> None:
    color = step.garment_color or draft.garment_color
    size = step.garment_size or draft.garment_size
    if not color or not size:
        raise ValidationError("Please select t-shirt color and size")
    if color not in GARMENT_COLORS:
        raise ValidationError(f"'{color}' is not an available t-shirt color")
    try:
        size = GarmentSize(size)
    except ValueError:
        raise ValidationError(f"'{size}' is not an available t-shirt size")
    draft.set_garment(color, size)
    draft.price_breakdown = pricing.compute_price(draft.garment_size, draft.customer.pincode or None)


def _exit_shipping(draft: OrderDraft, step: StageInput, placement, pricing) -> None:
    customer = step.customer or draft.customer
    missing = customer.missing_fields()
    if missing:
        raise ValidationError(f"Please fill in all required shipping details: {', '.join(missing)}")
    draft.customer = customer.model_copy()
    if not draft.garment_size:
        raise PricingUnavailable()
    draft.price_breakdown = pricing.compute_price(draft.garment_size, customer.pincode)
    if draft.price_breakdown is None:
        raise PricingUnavailable()


def _exit_payment(draft: OrderDraft, step: StageInput, placement, pricing) -> None:
    raise ValidationError("Confirm the payment and submit the order to finish")


def _exit_submitted(draft: OrderDraft, step: StageInput, placement, pricing) -> None:
    raise ValidationError("This order has already been submitted")


STAGE_EXITS = {
    Stage.CONFIRM: _exit_confirm,
    Stage.POSITION: _exit_position,
    Stage.GARMENT: _exit_garment,
    Stage.SHIPPING: _exit_shipping,
    Stage.PAYMENT: _exit_payment,
    Stage.SUBMITTED: _exit_submitted,
}


def advance(
    draft: OrderDraft,
    stage: Stage,
    step: Optional[StageInput] = None,
    placement: Optional[Placement] = None,
    pricing: Optional[PricingEngine] = None,
) -> TransitionResult:
    """
    Validates the active stage and moves one stage forward.

    The given draft is never mutated. On a failed guard the result carries the
    unchanged draft, the same stage and a `StageError`.
    """
    stage = Stage(stage)
    updated = draft.model_copy(deep=True)
    try:
        STAGE_EXITS[stage](updated, step or StageInput(), placement, pricing or PricingEngine())
    except ValidationError as e:
        return TransitionResult(draft, stage, StageError.from_exc(e, stage))
    return TransitionResult(updated, Stage(stage + 1))


def retreat(draft: OrderDraft, stage: Stage) -> TransitionResult:
    """Moves one stage back. Unguarded; a no-op on the first and terminal stages."""
    stage = Stage(stage)
    if stage in (Stage.CONFIRM, Stage.SUBMITTED):
        return TransitionResult(draft, stage)
    previous = Stage(stage - 1)
    if previous in REPRICED_STAGES and draft.price_breakdown is not None:
        draft = draft.model_copy(update={"price_breakdown": None}, deep=True)
    return TransitionResult(draft, previous)


# ===================================================================
# Controller
# ===================================================================

class StageController:
    """Single owner of one wizard's draft and stage."""

    def __init__(
        self,
        draft: Optional[OrderDraft] = None,
        stage: Stage = Stage.CONFIRM,
        placement: Optional[Placement] = None,
        pricing: Optional[PricingEngine] = None,
        submitter: Optional[OrderSubmitter] = None,
        payment_confirmed: bool = False,
        error: Optional[StageError] = None,
        confirmation: Optional[OrderConfirmation] = None,
        eligibility: Optional[Callable[[], Awaitable[bool]]] = None,
    ):
        self.stage = Stage(stage)
        self.draft = draft if draft is not None or self.stage is Stage.SUBMITTED else OrderDraft()
        self.placement = placement or self._initial_placement()
        self.pricing = pricing or PricingEngine()
        self.submitter = submitter or OrderSubmitter()
        self.payment_confirmed = payment_confirmed
        self.error = error
        self.confirmation = confirmation
        self.submitted_draft: Optional[OrderDraft] = None
        self.late_confirmation: Optional[OrderConfirmation] = None
        self._eligibility = eligibility
        self._pointer: Optional[PointerSession] = None

    def _initial_placement(self) -> Placement:
        if self.draft is not None and self.draft.placement is not None:
            return self.draft.placement.snapshot()
        return Placement()

    @property
    def submission_state(self) -> SubmissionState:
        return self.submitter.state

    @property
    def is_submitted(self) -> bool:
        return self.stage is Stage.SUBMITTED

    def _fail(self, exc: OrderFlowError) -> bool:
        self.error = StageError.from_exc(exc, self.stage)
        logger.warning(f"[{STAGE_LABELS[self.stage]}] {exc.kind}: {exc.message}")
        return False

    def _enter(self, stage: Stage) -> None:
        if self.stage is Stage.POSITION:
            self.end_drag()
        if self.stage is Stage.PAYMENT:
            self.payment_confirmed = False
        if stage is Stage.POSITION:
            self.placement = self._initial_placement()
        logger.info(f"Wizard stage {STAGE_LABELS[self.stage]} -> {STAGE_LABELS[stage]}")
        self.stage = stage
        self.error = None

    # --- Navigation ---

    def next(self, step: Optional[StageInput] = None) -> bool:
        """Advances when the active stage validates; otherwise records a stage error."""
        if self.is_submitted:
            return self._fail(ValidationError("This order has already been submitted"))
        result = advance(self.draft, self.stage, step, self.placement, self.pricing)
        if result.error is not None:
            self.error = result.error
            logger.warning(f"[{STAGE_LABELS[self.stage]}] blocked: {result.error.message}")
            return False
        self.draft = result.draft
        self._enter(result.stage)
        return True

    def back(self) -> bool:
        if self.stage in (Stage.CONFIRM, Stage.SUBMITTED):
            return False
        result = retreat(self.draft, self.stage)
        self.draft = result.draft
        self._enter(result.stage)
        return True

    def dismiss_error(self) -> None:
        self.error = None

    # --- Position stage ---

    def _require(self, stage: Stage, action: str) -> None:
        if self.stage is not stage:
            raise ValidationError(f"{action} is only available on the {STAGE_LABELS[stage]} stage", self.stage)

    def select_anchor(self, anchor: Anchor) -> Placement:
        self._require(Stage.POSITION, "Positioning")
        self.placement.select_anchor(anchor)
        return self.placement

    def set_scale(self, value: float) -> Placement:
        self._require(Stage.POSITION, "Resizing")
        self.placement.set_scale(value)
        return self.placement

    def begin_drag(self, rect: ContainerRect) -> PointerSession:
        self._require(Stage.POSITION, "Dragging")
        self.end_drag()
        self._pointer = PointerSession(self.placement, rect)
        return self._pointer

    def end_drag(self) -> None:
        if self._pointer is not None:
            self._pointer.end()
            self._pointer = None

    # --- Payment stage ---

    def confirm_payment(self, confirmed: bool = True) -> None:
        self._require(Stage.PAYMENT, "Payment confirmation")
        self.payment_confirmed = bool(confirmed)

    async def _still_eligible(self) -> bool:
        if self._eligibility is not None:
            return await self._eligibility()
        return self.stage is Stage.PAYMENT

    async def submit(self) -> Optional[OrderConfirmation]:
        """
        Uploads the artwork and submits the order.

        Returns the confirmation on success. Every failure is recorded as a
        stage error and `None` is returned; the draft is kept for a retry.
        A result that arrives after the user left the payment stage is dropped.
        """
        if self.stage is not Stage.PAYMENT:
            self._fail(ValidationError("Orders can only be submitted from the Payment stage"))
            return None
        if self.submitter.in_flight:
            logger.warning("Submit pressed while a submission is in flight; ignoring.")
            return None
        if not self.payment_confirmed:
            self._fail(ValidationError("Please confirm the payment to place your order"))
            return None
        if self.draft.price_breakdown is None:
            self._fail(PricingUnavailable())
            return None

        self.error = None
        attempt = self.draft.model_copy(deep=True)
        try:
            confirmation = await self.submitter.submit(attempt, still_eligible=self._still_eligible)
        except StaleSubmission:
            logger.warning("Submission result discarded: wizard left the Payment stage.")
            return None
        except OrderFlowError as e:
            if await self._still_eligible():
                # Keep a successful upload so the retry does not upload again.
                self.draft.partner_upload_result = attempt.partner_upload_result
                self._fail(e)
            return None

        if confirmation is None:
            return None
        if not await self._still_eligible():
            # The backend has already accepted this order.
            self.late_confirmation = confirmation
            logger.warning(
                f"Confirmation for order {confirmation.order_id or 'n/a'} arrived after the wizard "
                f"left the Payment stage; discarded."
            )
            return None

        self.confirmation = confirmation
        self.submitted_draft = attempt
        self.draft = None
        self.payment_confirmed = False
        self.stage = Stage.SUBMITTED
        logger.info("Wizard reached Submitted; draft discarded.")
        return confirmation

    # --- Persistence ---

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "stage": int(self.stage),
            "draft": self.draft.model_dump(mode="json") if self.draft is not None else None,
            "placement": self.placement.model_dump(mode="json"),
            "payment_confirmed": self.payment_confirmed,
            "error": self.error.model_dump(mode="json") if self.error else None,
            "confirmation": self.confirmation.model_dump(mode="json") if self.confirmation else None,
        }

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any], **kwargs) -> "StageController":
        draft = data.get("draft")
        error = data.get("error")
        confirmation = data.get("confirmation")
        return cls(
            draft=OrderDraft.model_validate(draft) if draft is not None else None,
            stage=Stage(data.get("stage", Stage.CONFIRM)),
            placement=Placement.model_validate(data["placement"]) if data.get("placement") else None,
            payment_confirmed=bool(data.get("payment_confirmed")),
            error=StageError.model_validate(error) if error else None,
            confirmation=OrderConfirmation.model_validate(confirmation) if confirmation else None,
            **kwargs,
        )
