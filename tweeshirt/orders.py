# orders.py
"""
HTTP surface of the order wizard.

Each open wizard is a `WizardSession` row holding a serialized
`StageController`; every request rebuilds the controller, applies one user
action and stores the result. Successful submissions land in `OrderRecord`
and the wizard row is discarded.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from tweeshirt.auth import CurrentUser, get_current_user
from tweeshirt.db import async_session_maker, get_db
from tweeshirt.draft import STAGE_LABELS, Stage
from tweeshirt.errors import ValidationError
from tweeshirt.models import OrderRecord, WizardSession
from tweeshirt.payments import PaymentIntentOut, create_payment_intent
from tweeshirt.placement import Anchor, ContainerRect
from tweeshirt.pricing import PricingEngine
from tweeshirt.settings import settings
from tweeshirt.submitter import OrderConfirmation, OrderSubmitter, SubmissionState
from tweeshirt.wizard import StageController, StageError, StageInput

# --- Configuration & Setup ---
logger = logging.getLogger(__name__)
router = APIRouter(prefix="/orders", tags=["Orders"])


# --- Pydantic Schemas for Data Validation ---

class StartWizardIn(BaseModel):
    descriptor: Optional[str] = Field(None, max_length=255, description="Filename hint for the artwork, e.g. the generation prompt.")

class AnchorIn(BaseModel):
    anchor: Anchor

class ScaleIn(BaseModel):
    scale: float

class PointerPoint(BaseModel):
    x: float
    y: float

class DragIn(BaseModel):
    """One drag gesture: the first point starts it, the rest are pointer moves."""
    container: ContainerRect
    points: List[PointerPoint] = Field(..., min_length=1)

class PaymentConfirmIn(BaseModel):
    confirmed: bool = True

class WizardOut(BaseModel):
    id: str
    stage: int
    stage_label: str
    draft: Optional[Dict[str, Any]] = None
    placement: Dict[str, Any]
    price: Optional[Dict[str, str]] = None
    payment_confirmed: bool = False
    submission_state: SubmissionState = SubmissionState.IDLE
    error: Optional[StageError] = None
    confirmation: Optional[OrderConfirmation] = None

class OrderOut(BaseModel):
    id: str
    backend_order_id: Optional[str]
    garment_color: str
    garment_size: str
    total_cents: int
    currency: str
    placement_json: Dict[str, Any]
    created_at: datetime

    class Config:
        from_attributes = True


# --- Dependencies ---

def get_http_transport() -> Optional[httpx.AsyncBaseTransport]:
    """Transport for outbound partner/backend calls; `None` means the real network."""
    return None


def get_pricing_engine() -> PricingEngine:
    return PricingEngine(settings.PRICING_STRATEGY)


# --- Helpers ---

async def _load_wizard(wizard_id: str, user: CurrentUser, db: AsyncSession) -> WizardSession:
    wizard = await db.get(WizardSession, wizard_id)
    if not wizard or wizard.user_email != user.email:
        raise HTTPException(status_code=404, detail="Order wizard not found.")
    return wizard


def _controller(
    wizard: WizardSession,
    transport: Optional[httpx.AsyncBaseTransport],
    pricing: PricingEngine,
    eligibility=None,
) -> StageController:
    submitter = OrderSubmitter(transport=transport, descriptor=wizard.descriptor or "design")
    # An in-flight marker set by a concurrent submit request survives this request.
    submitter.state = SubmissionState(wizard.submission_state or SubmissionState.IDLE.value)
    return StageController.from_snapshot(
        wizard.state or {}, pricing=pricing, submitter=submitter, eligibility=eligibility
    )


def _store(wizard: WizardSession, controller: StageController) -> None:
    wizard.state = controller.to_snapshot()
    wizard.stage = int(controller.stage)
    wizard.submission_state = controller.submission_state.value


def _view(wizard_id: str, controller: StageController) -> WizardOut:
    draft = controller.draft
    price = draft.price_breakdown.display() if draft is not None and draft.price_breakdown else None
    return WizardOut(
        id=wizard_id,
        stage=int(controller.stage),
        stage_label=STAGE_LABELS[controller.stage],
        draft=draft.model_dump(mode="json") if draft is not None else None,
        placement=controller.placement.model_dump(mode="json"),
        price=price,
        payment_confirmed=controller.payment_confirmed,
        submission_state=controller.submission_state,
        error=controller.error,
        confirmation=controller.confirmation,
    )


async def _apply(wizard: WizardSession, controller: StageController, db: AsyncSession) -> WizardOut:
    _store(wizard, controller)
    await db.commit()
    return _view(wizard.id, controller)


# --- Wizard Endpoints ---

@router.post("/wizard", response_model=WizardOut, status_code=status.HTTP_201_CREATED)
async def start_wizard(
    payload: StartWizardIn,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    pricing: PricingEngine = Depends(get_pricing_engine),
):
    """Opens a new order wizard on the Confirm stage with an empty draft."""
    controller = StageController(pricing=pricing)
    wizard = WizardSession(
        id=str(uuid.uuid4()), user_email=current_user.email, descriptor=payload.descriptor
    )
    _store(wizard, controller)
    db.add(wizard)
    await db.commit()
    logger.info(f"User {current_user.email} opened order wizard {wizard.id}")
    return _view(wizard.id, controller)


@router.get("/wizard/{wizard_id}", response_model=WizardOut)
async def get_wizard(
    wizard_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    pricing: PricingEngine = Depends(get_pricing_engine),
):
    wizard = await _load_wizard(wizard_id, current_user, db)
    controller = _controller(wizard, None, pricing)
    return _view(wizard.id, controller)


@router.delete("/wizard/{wizard_id}", status_code=status.HTTP_204_NO_CONTENT)
async def discard_wizard(
    wizard_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Abandons the wizard; the draft is discarded."""
    wizard = await _load_wizard(wizard_id, current_user, db)
    await db.delete(wizard)
    await db.commit()
    logger.info(f"Order wizard {wizard_id} discarded by {current_user.email}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/wizard/{wizard_id}/next", response_model=WizardOut)
async def next_stage(
    wizard_id: str,
    step: StageInput,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    pricing: PricingEngine = Depends(get_pricing_engine),
):
    """
    Validates the active stage with the submitted values and advances.
    A failed guard keeps the stage and reports the problem in `error`.
    """
    wizard = await _load_wizard(wizard_id, current_user, db)
    controller = _controller(wizard, None, pricing)
    controller.next(step)
    return await _apply(wizard, controller, db)


@router.post("/wizard/{wizard_id}/back", response_model=WizardOut)
async def previous_stage(
    wizard_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    pricing: PricingEngine = Depends(get_pricing_engine),
):
    wizard = await _load_wizard(wizard_id, current_user, db)
    controller = _controller(wizard, None, pricing)
    controller.back()
    return await _apply(wizard, controller, db)


@router.post("/wizard/{wizard_id}/dismiss-error", response_model=WizardOut)
async def dismiss_error(
    wizard_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    pricing: PricingEngine = Depends(get_pricing_engine),
):
    wizard = await _load_wizard(wizard_id, current_user, db)
    controller = _controller(wizard, None, pricing)
    controller.dismiss_error()
    return await _apply(wizard, controller, db)


# --- Position Stage ---

@router.post("/wizard/{wizard_id}/placement/anchor", response_model=WizardOut)
async def select_anchor(
    wizard_id: str,
    payload: AnchorIn,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    pricing: PricingEngine = Depends(get_pricing_engine),
):
    wizard = await _load_wizard(wizard_id, current_user, db)
    controller = _controller(wizard, None, pricing)
    try:
        controller.select_anchor(payload.anchor)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return await _apply(wizard, controller, db)


@router.post("/wizard/{wizard_id}/placement/scale", response_model=WizardOut)
async def set_scale(
    wizard_id: str,
    payload: ScaleIn,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    pricing: PricingEngine = Depends(get_pricing_engine),
):
    wizard = await _load_wizard(wizard_id, current_user, db)
    controller = _controller(wizard, None, pricing)
    try:
        controller.set_scale(payload.scale)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return await _apply(wizard, controller, db)


@router.post("/wizard/{wizard_id}/placement/drag", response_model=WizardOut)
async def drag_artwork(
    wizard_id: str,
    payload: DragIn,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    pricing: PricingEngine = Depends(get_pricing_engine),
):
    """Replays one drag gesture over the print container."""
    wizard = await _load_wizard(wizard_id, current_user, db)
    controller = _controller(wizard, None, pricing)
    try:
        pointer = controller.begin_drag(payload.container)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    first, rest = payload.points[0], payload.points[1:]
    pointer.start(first.x, first.y)
    for point in rest:
        pointer.move(point.x, point.y)
    controller.end_drag()
    return await _apply(wizard, controller, db)


# --- Payment Stage ---

@router.post("/wizard/{wizard_id}/payment/confirm", response_model=WizardOut)
async def confirm_payment(
    wizard_id: str,
    payload: PaymentConfirmIn,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    pricing: PricingEngine = Depends(get_pricing_engine),
):
    wizard = await _load_wizard(wizard_id, current_user, db)
    controller = _controller(wizard, None, pricing)
    try:
        controller.confirm_payment(payload.confirmed)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return await _apply(wizard, controller, db)


@router.post("/wizard/{wizard_id}/payment-intent", response_model=PaymentIntentOut)
async def start_payment(
    wizard_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    pricing: PricingEngine = Depends(get_pricing_engine),
):
    """Creates a Stripe PaymentIntent for the priced order."""
    wizard = await _load_wizard(wizard_id, current_user, db)
    controller = _controller(wizard, None, pricing)
    if controller.stage is not Stage.PAYMENT or controller.draft.price_breakdown is None:
        raise HTTPException(status_code=400, detail="The order has not been priced yet.")
    return create_payment_intent(
        controller.draft.price_breakdown,
        metadata={"wizard_id": wizard.id, "user_email": current_user.email},
    )


@router.post("/wizard/{wizard_id}/submit", response_model=WizardOut)
async def submit_order(
    wizard_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    pricing: PricingEngine = Depends(get_pricing_engine),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_http_transport),
):
    """
    Uploads the artwork to Printrove and places the order.
    1. Marks the wizard in flight (a second submit gets 409).
    2. Runs the upload and the backend call in sequence.
    3. On success records the order and discards the wizard; otherwise stores
       the stage error so the user can retry.
    """
    wizard = await _load_wizard(wizard_id, current_user, db)
    if wizard.submission_state == SubmissionState.IN_FLIGHT.value:
        raise HTTPException(status_code=409, detail="This order is already being submitted.")

    async def still_on_payment() -> bool:
        async with async_session_maker() as check_db:
            fresh = await check_db.get(WizardSession, wizard_id)
            return fresh is not None and fresh.stage == Stage.PAYMENT

    controller = _controller(wizard, transport, pricing, eligibility=still_on_payment)
    wizard.submission_state = SubmissionState.IN_FLIGHT.value
    await db.commit()

    try:
        confirmation = await controller.submit()
    except Exception:
        logger.exception(f"Unexpected failure while submitting wizard {wizard_id}")
        wizard.submission_state = SubmissionState.ERROR.value
        await db.commit()
        raise

    if not await still_on_payment():
        # The user navigated away (or discarded the wizard) meanwhile; their state wins.
        late = controller.late_confirmation
        if late is not None:
            logger.warning(
                f"Backend accepted order {late.order_id or 'n/a'} for wizard {wizard_id} after the "
                f"user left the Payment stage; no local order record was written."
            )
        fresh = await db.get(WizardSession, wizard_id, populate_existing=True)
        if fresh is None:
            raise HTTPException(status_code=404, detail="Order wizard was discarded.")
        fresh.submission_state = SubmissionState.IDLE.value
        await db.commit()
        current = _controller(fresh, None, pricing)
        return _view(fresh.id, current)

    if confirmation is None:
        return await _apply(wizard, controller, db)

    submitted = controller.submitted_draft
    record = OrderRecord(
        id=str(uuid.uuid4()),
        user_email=current_user.email,
        backend_order_id=confirmation.order_id,
        garment_color=submitted.garment_color,
        garment_size=submitted.garment_size.value,
        total_cents=submitted.price_breakdown.total_cents,
        currency=settings.CURRENCY,
        placement_json=submitted.placement.model_dump(mode="json"),
        partner_response_json=submitted.partner_upload_result,
        message=confirmation.message,
    )
    db.add(record)
    await db.delete(wizard)
    await db.commit()
    logger.info(f"Order {record.id} placed for {current_user.email}; wizard {wizard_id} closed.")
    return _view(wizard_id, controller)


# --- Order History Endpoint ---

@router.get("/my-orders", response_model=List[OrderOut])
async def get_my_orders(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Retrieves all orders placed by the currently logged-in user, newest first."""
    query = (
        select(OrderRecord)
        .where(OrderRecord.user_email == current_user.email)
        .order_by(OrderRecord.created_at.desc())
    )
    result = await db.execute(query)
    return result.scalars().all()
