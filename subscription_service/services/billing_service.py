import uuid
from typing import List, Optional

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from subscription_service.models.billing import Invoice
from subscription_service.models.user import User


class BillingService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_invoices(self, user_id: uuid.UUID, limit: int = 50, offset: int = 0) -> List[Invoice]:
        """
        Get invoices for a user, newest first
        """
        query = (
            select(Invoice)
            .where(Invoice.user_id == user_id)
            .order_by(desc(Invoice.issued_at))
            .offset(offset)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return result.scalars().all()

    async def get_invoice(self, invoice_id: uuid.UUID, user_id: uuid.UUID) -> Optional[Invoice]:
        query = select(Invoice).where(Invoice.id == invoice_id, Invoice.user_id == user_id)
        result = await self.db.execute(query)
        return result.scalars().first()

    @staticmethod
    def render_invoice(invoice: Invoice, user: User) -> str:
        lines = [
            f"Invoice #: {invoice.invoice_number}",
            f"Issued: {invoice.issued_at:%Y-%m-%d %H:%M:%S} UTC",
            f"Customer: {user.name}",
            f"Email: {user.email}",
            f"Plan: {invoice.plan_name or invoice.plan_id or '-'}",
            f"Amount: {invoice.amount:.2f} {invoice.currency}",
            f"Payment ID: {invoice.payment_id}",
        ]
        if invoice.order_id:
            lines.append(f"Order ID: {invoice.order_id}")
        return "\n".join(lines) + "\n"
