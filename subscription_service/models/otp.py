import uuid
from sqlalchemy import Column, String, DateTime, Boolean, Integer, ForeignKey, Uuid, Index
from subscription_service.database import Base
from subscription_service.utils.clock import utcnow

class UserOtp(Base):
    __tablename__ = "user_otps"
    
    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    purpose = Column(String(20), nullable=False, default="login")  # login/kyc/payment
    code_hash = Column(String(256), nullable=False)  # PBKDF2 digest, base64
    salt = Column(String(44), nullable=False)
    created_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
    consumed = Column(Boolean, default=False, nullable=False)
    attempt_count = Column(Integer, default=0, nullable=False)
    verified_at = Column(DateTime, nullable=True)
    
    __table_args__ = (
        Index("idx_otp_user_purpose_consumed", "user_id", "purpose", "consumed"),
    )
    
    def __repr__(self):
        return f"<UserOtp {self.id} {self.purpose}>"
