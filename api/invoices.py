"""Billing HTTP surface: invoice reads, MRR ledger reads, component binding."""

from datetime import date
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from api.base import success_response
from core.errors import InvalidArgumentError, SerdeError
from core.models import (
    ComponentParameters,
    InvoiceStatus,
    OrderBy,
    PaginationRequest,
    PriceComponent,
    parse_fee,
)
from utils.tenant_context import get_current_tenant_id


class BindComponentRequest(BaseModel):
    """Body of POST /subscriptions/{id}/components."""

    price_component_id: UUID
    plan_version_id: UUID
    name: str = Field(..., min_length=1, max_length=255)
    fee: dict[str, Any]
    product_item_id: UUID | None = None
    position: int = 0
    parameters: ComponentParameters = Field(default_factory=ComponentParameters)

    def to_price_component(self) -> PriceComponent:
        """
        Build the plan price component.

        Raises:
            InvalidArgumentError: If the fee document is not a valid fee
        """
        try:
            fee = parse_fee(self.fee)
        except SerdeError as e:
            raise InvalidArgumentError(f"Invalid fee definition: {e}") from e
        return PriceComponent(
            id=self.price_component_id,
            plan_version_id=self.plan_version_id,
            name=self.name,
            fee=fee,
            product_item_id=self.product_item_id,
            position=self.position,
        )


class SlotChangeRequest(BaseModel):
    """Body of POST /subscriptions/{id}/components/{component_id}/slots."""

    slots: int = Field(..., ge=0)
    effective_at: date


def _ok(request: Request, data: Any) -> dict:
    return success_response(data, getattr(request.state, "request_id", None)).model_dump(mode="json")


def create_billing_router(services: dict) -> APIRouter:
    router = APIRouter()

    invoice_svc = services["invoice"]
    mrr_svc = services["mrr"]
    subscription_svc = services["subscription"]

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    @router.get("/invoices")
    def list_invoices(
        request: Request,
        page: int = Query(0, ge=0),
        per_page: int = Query(50, ge=1, le=500),
        order_by: OrderBy = Query(OrderBy.DATE_DESC),
        status: InvoiceStatus | None = Query(None),
        subscription_id: UUID | None = Query(None),
        customer_id: UUID | None = Query(None),
    ):
        result = invoice_svc.list(
            get_current_tenant_id(),
            PaginationRequest(page=page, per_page=per_page),
            order_by=order_by,
            status=status,
            subscription_id=subscription_id,
            customer_id=customer_id,
        )
        return _ok(request, result.model_dump(mode="json"))

    @router.get("/invoices/{invoice_id}")
    def get_invoice(request: Request, invoice_id: UUID):
        invoice = invoice_svc.find_by_id(get_current_tenant_id(), invoice_id)
        return _ok(request, invoice.model_dump(mode="json"))

    @router.post("/invoices/{invoice_id}/void")
    def void_invoice(request: Request, invoice_id: UUID):
        voided = invoice_svc.void(get_current_tenant_id(), invoice_id)
        if not voided:
            raise InvalidArgumentError(f"Invoice {invoice_id} can no longer be voided")
        return _ok(request, {"id": str(invoice_id), "status": InvoiceStatus.VOID.value})

    # -------------------------------------------------------------------------
    # MRR ledger
    # -------------------------------------------------------------------------

    @router.get("/mrr/logs")
    def list_mrr_logs(
        request: Request,
        page: int = Query(0, ge=0),
        per_page: int = Query(50, ge=1, le=500),
        subscription_id: UUID | None = Query(None),
        applies_from: date | None = Query(None),
        applies_to: date | None = Query(None),
    ):
        result = mrr_svc.list_logs(
            get_current_tenant_id(),
            PaginationRequest(page=page, per_page=per_page),
            subscription_id=subscription_id,
            applies_from=applies_from,
            applies_to=applies_to,
        )
        return _ok(request, result.model_dump(mode="json"))

    # -------------------------------------------------------------------------
    # Subscription components
    # -------------------------------------------------------------------------

    @router.get("/subscriptions/{subscription_id}/components")
    def list_components(request: Request, subscription_id: UUID):
        subscription_svc.get_by_id(get_current_tenant_id(), subscription_id)
        components = subscription_svc.list_components(subscription_id)
        return _ok(request, [c.model_dump(mode="json") for c in components])

    @router.post("/subscriptions/{subscription_id}/components")
    def bind_component(request: Request, subscription_id: UUID, body: BindComponentRequest):
        component = subscription_svc.bind_component(
            get_current_tenant_id(),
            subscription_id,
            body.to_price_component(),
            body.parameters,
        )
        return _ok(request, component.model_dump(mode="json"))

    @router.post("/subscriptions/{subscription_id}/components/{component_id}/slots")
    def change_slots(
        request: Request,
        subscription_id: UUID,
        component_id: UUID,
        body: SlotChangeRequest,
    ):
        subscription_svc.get_by_id(get_current_tenant_id(), subscription_id)
        component = next(
            (c for c in subscription_svc.list_components(subscription_id) if c.id == component_id),
            None,
        )
        if component is None:
            raise InvalidArgumentError(
                f"Component {component_id} is not bound to subscription {subscription_id}"
            )
        transaction = subscription_svc.add_slot_transaction(
            get_current_tenant_id(), component, body.slots, body.effective_at
        )
        return _ok(request, transaction.model_dump(mode="json"))

    return router
