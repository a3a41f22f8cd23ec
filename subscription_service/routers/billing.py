import uuid
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import PlainTextResponse

from subscription_service.dependencies import get_billing_service
from subscription_service.models.user import User
from subscription_service.schemas.payment import InvoiceResponse
from subscription_service.services.billing_service import BillingService
from subscription_service.utils.auth import get_current_user

router = APIRouter()


@router.get("/invoices", response_model=List[InvoiceResponse])
async def list_invoices(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    """
    Get invoices of the current user, newest first
    """
    return await billing_service.get_invoices(current_user.id, limit=limit, offset=offset)


@router.get("/invoices/{invoice_id}/download", response_class=PlainTextResponse)
async def download_invoice(
    invoice_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    billing_service: BillingService = Depends(get_billing_service),
):
    invoice = await billing_service.get_invoice(invoice_id, current_user.id)
    if not invoice:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invoice not found",
        )

    return PlainTextResponse(
        billing_service.render_invoice(invoice, current_user),
        headers={"Content-Disposition": f'attachment; filename="{invoice.invoice_number}.txt"'},
    )
