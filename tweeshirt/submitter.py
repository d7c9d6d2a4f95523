"""
Final order submission: partner upload followed by the order backend POST.

The two network calls run strictly in sequence. No order is ever posted
without a partner upload result, and a failure at either step leaves the
draft intact so the user can retry.
"""

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from pydantic import BaseModel

from tweeshirt.draft import OrderDraft
from tweeshirt.errors import StaleSubmission, SubmissionError, ValidationError
from tweeshirt.settings import settings
from tweeshirt.uploader import DesignUploader

logger = logging.getLogger(__name__)


class SubmissionState(str, Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    SUCCESS = "success"
    ERROR = "error"


class OrderConfirmation(BaseModel):
    success: bool = True
    message: Optional[str] = None
    order_id: Optional[str] = None
    response: Dict[str, Any] = {}


def build_order_payload(draft: OrderDraft) -> Dict[str, Any]:
    """Merges customer, garment, placement, price and partner result into the backend payload."""
    customer = draft.customer
    placement = draft.placement
    price = draft.price_breakdown
    return {
        "name": customer.name,
        "email": customer.email,
        "mobileNumber": customer.mobile,
        "address1": customer.address1,
        "address2": customer.address2,
        "address3": customer.address3,
        "city": customer.city,
        "pincode": customer.pincode,
        "state": customer.state,
        "country": customer.country,
        "garmentColor": draft.garment_color,
        "garmentSize": draft.garment_size.value if draft.garment_size else None,
        "placement": {
            "anchor": placement.anchor.value,
            "coords": {"x": placement.coords.x, "y": placement.coords.y},
            "scale": placement.scale,
        },
        # Raw artwork travels alongside the partner result for backend-side reprocessing.
        "file": draft.artwork_ref,
        "fileResponse": draft.partner_upload_result,
        "priceBreakdown": price.display(),
        "total": float(price.total),
    }


def _backend_message(resp: httpx.Response) -> Optional[str]:
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("message") or body.get("error")
    return None


class OrderSubmitter:
    """
    Owns the submission lifecycle: idle -> in_flight -> success | error.

    A call made while another is in flight returns `None` without touching
    the network.
    """

    def __init__(
        self,
        uploader: Optional[DesignUploader] = None,
        backend_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        descriptor: str = "design",
    ):
        self.uploader = uploader or DesignUploader(transport=transport)
        self.backend_url = (backend_url or settings.ORDER_BACKEND_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT
        self.transport = transport
        self.descriptor = descriptor
        self.state = SubmissionState.IDLE
        self.backend_calls = 0

    @property
    def in_flight(self) -> bool:
        return self.state is SubmissionState.IN_FLIGHT

    async def _post_order(self, payload: Dict[str, Any]) -> OrderConfirmation:
        url = f"{self.backend_url}/submit_form"
        self.backend_calls += 1
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(url, json=payload)
        except httpx.RequestError as e:
            logger.error(f"Network error submitting order to {url}: {e}")
            raise SubmissionError("Could not reach the order service. Please try again.")

        message = _backend_message(resp)
        if resp.is_error:
            logger.error(f"Order backend rejected order: {resp.status_code} - {resp.text[:200]}")
            raise SubmissionError(message or f"Order service error ({resp.status_code}).", resp.status_code)

        try:
            body = resp.json()
        except ValueError:
            raise SubmissionError("Order service returned an unreadable response.", resp.status_code)
        if not isinstance(body, dict) or body.get("success") is not True:
            raise SubmissionError(message or "Failed to place order", resp.status_code)

        order_id = body.get("orderId") or body.get("order_id")
        return OrderConfirmation(
            success=True,
            message=message,
            order_id=str(order_id) if order_id is not None else None,
            response=body,
        )

    async def submit(
        self,
        draft: OrderDraft,
        still_eligible: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> Optional[OrderConfirmation]:
        """
        Uploads the artwork (unless an earlier attempt already did) and posts
        the order exactly once.

        `still_eligible` is awaited between the upload and the backend call;
        when it reports False the user has left the payment stage and
        `StaleSubmission` is raised before any order is posted.
        """
        if self.in_flight:
            logger.warning("Submission already in flight; ignoring repeated submit.")
            return None

        missing = draft.missing_for_submission()
        if missing:
            raise ValidationError(f"Order is incomplete: missing {', '.join(missing)}.")

        self.state = SubmissionState.IN_FLIGHT
        try:
            if draft.partner_upload_result is None:
                result = await self.uploader.upload(draft.artwork_ref, self.descriptor)
                draft.record_upload(result)
            else:
                logger.info("Reusing partner upload from a previous attempt.")

            if still_eligible is not None and not await still_eligible():
                raise StaleSubmission("The order was changed while it was being submitted.")

            confirmation = await self._post_order(build_order_payload(draft))
        except Exception:
            self.state = SubmissionState.ERROR
            raise

        self.state = SubmissionState.SUCCESS
        logger.info(f"Order submitted successfully (backend order id: {confirmation.order_id or 'n/a'}).")
        return confirmation
