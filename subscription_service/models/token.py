import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, Uuid
from subscription_service.database import Base
from subscription_service.utils.clock import utcnow

class PasswordResetToken(Base):
    __tablename__ = "password_reset_tokens"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(256), nullable=False)  # Store token hash, not actual token
    token_salt = Column(String(44), nullable=False)
    created_at = Column(DateTime, default=utcnow)
    created_by = Column(String(100), nullable=False, default="system")
    expires_at = Column(DateTime, nullable=False)
    consumed_at = Column(DateTime, nullable=True)
    reason = Column(String(256), nullable=True)

    def __repr__(self):
        return f"<PasswordResetToken {self.id}>"
