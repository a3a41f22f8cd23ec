import uuid
from sqlalchemy import Column, String, DateTime, Boolean, Numeric, ForeignKey, Uuid, UniqueConstraint
from subscription_service.database import Base
from subscription_service.utils.clock import utcnow

class User(Base):
    __tablename__ = "users"
    
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    email = Column(String(256), unique=True, nullable=False, index=True)
    phone_number = Column(String(20), unique=True, nullable=False, index=True)
    password_hash = Column(String(256), nullable=False)
    
    # KYC capture
    government_id_type = Column(String(50), nullable=True)
    government_id_number = Column(String(100), nullable=True)
    government_document_url = Column(String(256), nullable=True)
    kyc_verified = Column(Boolean, default=False)
    terms_accepted_at = Column(DateTime, nullable=True)
    risk_policy_accepted_at = Column(DateTime, nullable=True)
    
    is_admin = Column(Boolean, default=False)
    is_registration_complete = Column(Boolean, default=False)
    is_subscribed = Column(Boolean, default=False)
    subscription_id = Column(String(100), nullable=True)
    payment_verified_at = Column(DateTime, nullable=True)
    
    # Matches UserSession.session_id of the one live session, NULL when logged out
    current_session_id = Column(String(100), nullable=True)
    
    pending_order_id = Column(String(100), nullable=True)
    pending_order_receipt = Column(String(100), nullable=True)
    pending_order_created_at = Column(DateTime, nullable=True)
    
    # Plan snapshots are a read cache of plans/user_plan_history, rewritten in the
    # same transaction that rotates the history rows
    active_plan_id = Column(String(50), nullable=True)
    active_plan_name = Column(String(100), nullable=True)
    active_plan_amount = Column(Numeric(18, 2), nullable=True)
    active_plan_currency = Column(String(10), nullable=True)
    pending_plan_id = Column(String(50), nullable=True)
    pending_plan_name = Column(String(100), nullable=True)
    pending_plan_amount = Column(Numeric(18, 2), nullable=True)
    pending_plan_currency = Column(String(10), nullable=True)
    
    created_at = Column(DateTime, default=utcnow)
    
    def __repr__(self):
        return f"<User {self.email}>"

class Role(Base):
    __tablename__ = "roles"
    
    id = Column(String(50), primary_key=True, default=lambda: uuid.uuid4().hex)
    name = Column(String(50), unique=True, nullable=False)
    description = Column(String(150), nullable=True)
    
    def __repr__(self):
        return f"<Role {self.name}>"

class UserRole(Base):
    __tablename__ = "user_roles"
    
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(String(50), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    granted_at = Column(DateTime, default=utcnow)
    granted_by = Column(String(256), nullable=True)
    
    __table_args__ = (
        UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),
    )
    
    def __repr__(self):
        return f"<UserRole {self.user_id} {self.role_id}>"
