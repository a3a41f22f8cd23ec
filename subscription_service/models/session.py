import uuid
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Uuid, Index
from subscription_service.database import Base
from subscription_service.utils.clock import utcnow

class UserSession(Base):
    __tablename__ = "user_sessions"
    
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    session_id = Column(String(100), nullable=False, unique=True)
    login_type = Column(String(50), default="otp")  # otp/password
    ip_address = Column(String(100), nullable=True)
    last_seen_ip_address = Column(String(100), nullable=True)
    user_agent = Column(String(512), nullable=True)
    device_signature = Column(String(64), nullable=True)  # sha256 of "ip|user-agent"
    device_name = Column(String(128), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    last_seen_at = Column(DateTime, default=utcnow)
    ended_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    terminated_by = Column(String(64), nullable=True)  # replaced/logout/revoked/password_reset
    
    __table_args__ = (
        Index("idx_session_user_active", "user_id", "is_active"),
    )
    
    def __repr__(self):
        return f"<UserSession {self.id} active={self.is_active}>"
