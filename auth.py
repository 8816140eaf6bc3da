import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.responses import Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import SECRET_KEY, TOKEN_MAX_AGE_SECONDS
from errors import Conflict, Forbidden, Unauthorized
from models import User

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"

serializer = URLSafeTimedSerializer(SECRET_KEY, salt="flight-booking-auth")
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    """The authenticated caller, as handed to the booking engine."""

    user_id: int
    is_admin: bool = False


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def issue_token(user: User) -> str:
    return serializer.dumps({"user_id": user.id, "is_admin": bool(user.is_admin)})


def read_token(token: str, max_age: int = TOKEN_MAX_AGE_SECONDS) -> Identity:
    try:
        claims = serializer.loads(token, max_age=max_age)
    except SignatureExpired:
        raise Unauthorized("Token expired")
    except BadSignature:
        raise Unauthorized("Invalid token")

    user_id = claims.get("user_id") if isinstance(claims, dict) else None
    if not isinstance(user_id, int):
        raise Unauthorized("Invalid token")
    return Identity(user_id=user_id, is_admin=bool(claims.get("is_admin", False)))


def register_user(db: Session, email: str, password: str, name: str, is_admin: bool = False) -> User:
    email = email.strip().lower()
    if db.query(User).filter(User.email == email).first():
        raise Conflict("Email already exists")

    user = User(
        email=email,
        password_hash=hash_password(password),
        name=name.strip(),
        is_admin=is_admin,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Email already exists")
    db.refresh(user)
    logger.info("Registered user %s (admin=%s)", user.id, user.is_admin)
    return user


def authenticate(db: Session, email: str, password: str) -> User:
    user = (
        db.query(User)
        .filter(User.email == email.strip().lower(), User.deleted_at.is_(None))
        .first()
    )
    if not user or not verify_password(password, user.password_hash):
        logger.warning("Login attempt failed for email %s", email)
        raise Unauthorized("Invalid credentials")
    return user


def login_user(response: Response, user: User) -> str:
    """Issues a bearer token and mirrors it into an http-only session cookie."""
    token = issue_token(user)
    response.set_cookie(
        key=SESSION_COOKIE, value=token, httponly=True, max_age=TOKEN_MAX_AGE_SECONDS
    )
    return token


def logout_user(response: Response):
    response.delete_cookie(key=SESSION_COOKIE)


def get_current_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Identity:
    """Dependency resolving the caller from the bearer header or the session cookie."""
    token = credentials.credentials if credentials else request.cookies.get(SESSION_COOKIE)
    if not token:
        raise Unauthorized("Authorization header required")
    return read_token(token)


def require_admin(identity: Identity = Depends(get_current_identity)) -> Identity:
    if not identity.is_admin:
        raise Forbidden("Admin access required")
    return identity


def create_initial_admin(db: Session, email: Optional[str], password: Optional[str]):
    """Creates the first administrator when the user table is empty."""
    if not email or not password:
        return None
    if db.query(User).count() > 0:
        return None
    logger.info("Creating initial administrator %s", email)
    return register_user(db, email, password, "Administrator", is_admin=True)
