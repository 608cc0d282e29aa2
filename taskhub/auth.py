import logging
from fastapi import Request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from taskhub.config import SECRET_KEY, TOKEN_COOKIE, TOKEN_MAX_AGE
from taskhub.errors import NotFoundError, UnauthorizedError, ValidationError
from taskhub.models import User

logger = logging.getLogger(__name__)

# -------------------------
# PASSWORD HASHING
# -------------------------
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(plain_password: str) -> str:
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


# -------------------------
# SESSION TOKENS
# -------------------------
serializer = URLSafeTimedSerializer(SECRET_KEY, salt="taskhub-session")


def create_token(user_id: str) -> str:
    return serializer.dumps({"userId": user_id})


def verify_token(token: str, max_age=TOKEN_MAX_AGE) -> dict:
    """
    Returns {"userId": ...} for a token signed by create_token that is younger
    than max_age. Anything else is an UnauthorizedError.
    """
    try:
        payload = serializer.loads(token, max_age=int(max_age.total_seconds()))
    except SignatureExpired:
        raise UnauthorizedError("Token expired")
    except BadSignature:
        raise UnauthorizedError("Invalid token")

    if not isinstance(payload, dict) or not payload.get("userId"):
        raise UnauthorizedError("Invalid token")
    return {"userId": payload["userId"]}


# -------------------------
# USERS
# -------------------------
def public_profile(user: User) -> dict:
    return {"id": user.id, "name": user.name, "email": user.email}


def register(db: Session, name: str, email: str, password: str) -> dict:
    exists = db.query(User).filter(User.email == email).first()
    if exists:
        raise ValidationError("Email already registered")

    user = User(name=name, email=email, password_hash=hash_password(password))
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # lost a race with a concurrent registration for the same email
        db.rollback()
        raise ValidationError("Email already registered")
    db.refresh(user)

    logger.info("Registered user %s", user.id)
    return public_profile(user)


def login(db: Session, email: str, password: str) -> tuple[str, dict]:
    user = db.query(User).filter(User.email == email).first()

    if not user or not verify_password(password, user.password_hash):
        logger.info("Failed login for %s", email)
        raise UnauthorizedError("Invalid credentials")

    return create_token(user.id), public_profile(user)


def get_user(db: Session, user_id: str) -> dict:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return public_profile(user)


# -------------------------
# SESSION GATE
# -------------------------
def require_user(request: Request) -> str:
    token = request.cookies.get(TOKEN_COOKIE)
    if not token:
        raise UnauthorizedError("Unauthorized")

    try:
        return verify_token(token)["userId"]
    except UnauthorizedError:
        raise UnauthorizedError("Invalid token")
