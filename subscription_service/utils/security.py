from passlib.context import CryptContext

# Account passwords; short-lived secrets go through services.credential_hasher instead
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def dummy_verify() -> None:
    """Spend the same time as a real verification when the account does not exist"""
    pwd_context.dummy_verify()
