import uuid
from sqlalchemy import Column, String, DateTime, Numeric, Integer, Boolean, ForeignKey, Uuid, Index
from subscription_service.database import Base
from subscription_service.utils.clock import utcnow

class Plan(Base):
    __tablename__ = "plans"
    
    id = Column(String(50), primary_key=True, default=lambda: uuid.uuid4().hex)
    name = Column(String(100), nullable=False)
    description = Column(String(256), nullable=True)
    price = Column(Numeric(18, 2), nullable=False, default=0)
    currency = Column(String(10), default="INR")
    billing_interval = Column(String(20), default="monthly")
    is_active = Column(Boolean, default=True)
    display_order = Column(Integer, default=0)
    created_at = Column(DateTime, default=utcnow)
    archived_at = Column(DateTime, nullable=True)
    
    def __repr__(self):
        return f"<Plan {self.id} {self.name}>"

class UserPlanHistory(Base):
    __tablename__ = "user_plan_history"
    
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    plan_id = Column(String(50), ForeignKey("plans.id"), nullable=False)
    status = Column(String(20), nullable=False, default="active")  # active/ended
    amount = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(10), default="INR")
    subscribed_at = Column(DateTime, default=utcnow)
    cancelled_at = Column(DateTime, nullable=True)
    notes = Column(String(256), nullable=True)
    
    __table_args__ = (
        Index("idx_plan_history_user_status", "user_id", "status"),
    )
    
    def __repr__(self):
        return f"<UserPlanHistory {self.id} {self.status}>"

class Invoice(Base):
    __tablename__ = "invoices"
    
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_number = Column(String(50), unique=True, nullable=False)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = Column(String(50), nullable=True)
    plan_name = Column(String(100), nullable=True)
    amount = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(10), default="INR")
    payment_id = Column(String(100), unique=True, nullable=False)
    order_id = Column(String(100), nullable=True)
    issued_at = Column(DateTime, default=utcnow)
    
    def __repr__(self):
        return f"<Invoice {self.invoice_number}>"
