# backend/studyplanner/auth.py
"""
Authentication helpers for the study planner API.

Provides:
 - get_password_hash(password) -> str
 - verify_password(plain_password, hashed_password) -> bool
 - create_access_token(user_id) / create_refresh_token(user_id) -> str
 - verify_token(token, kind) -> claims dict, raises JWTError
 - authenticate_user(db, email, password) -> user model or None
 - issue_token_pair / rotate_refresh_token / revoke_refresh_token

Passwords get a SHA-256 hex pre-hash to avoid the bcrypt 72-byte limit, then passlib
CryptContext (bcrypt_sha256 preferred) stores and verifies the hash.
"""

import hashlib
import logging
import uuid
from datetime import timedelta
from typing import Optional, Tuple

from jose import jwt, JWTError
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from . import config, models
from .utils import utcnow

logger = logging.getLogger(__name__)

ACCESS = "access"
REFRESH = "refresh"

pwd_context = CryptContext(
    schemes=["bcrypt_sha256", "bcrypt"],
    deprecated="auto",
    default="bcrypt_sha256",
    bcrypt_sha256__rounds=config.PASSWORD_HASH_ROUNDS,
)


def _sha256_hex(s: str) -> str:
    """Return SHA-256 hex digest of the given string (deterministic, 64 hex chars)."""
    if isinstance(s, bytes):
        b = s
    else:
        b = s.encode("utf-8", errors="surrogatepass")
    return hashlib.sha256(b).hexdigest()


def get_password_hash(password: str) -> str:
    digest = _sha256_hex(password)
    return pwd_context.hash(digest)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if plain_password is None:
        return False
    digest = _sha256_hex(plain_password)
    try:
        return pwd_context.verify(digest, hashed_password)
    except ValueError:
        # unrecognised or corrupt hash
        return False


def _secret_for(kind: str) -> str:
    if kind == ACCESS:
        return config.ACCESS_TOKEN_SECRET
    if kind == REFRESH:
        return config.REFRESH_TOKEN_SECRET
    raise ValueError(f"unknown token kind: {kind}")


def _create_token(user_id, kind: str, expires_delta: timedelta) -> str:
    # jti keeps two tokens minted in the same second distinct
    to_encode = {
        "sub": str(user_id),
        "type": kind,
        "jti": uuid.uuid4().hex,
        "exp": utcnow() + expires_delta,
    }
    return jwt.encode(to_encode, _secret_for(kind), algorithm=config.JWT_ALGORITHM)


def create_access_token(user_id, expires_delta: Optional[timedelta] = None) -> str:
    return _create_token(user_id, ACCESS, expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))


def create_refresh_token(user_id, expires_delta: Optional[timedelta] = None) -> str:
    return _create_token(user_id, REFRESH, expires_delta or timedelta(days=config.REFRESH_TOKEN_EXPIRE_DAYS))


def verify_token(token: str, kind: str) -> dict:
    """
    Returns the token claims if the token is valid for ``kind``, otherwise raises JWTError.
    Expired, malformed, badly signed and wrong-kind tokens all fail the same way.
    """
    if not token:
        raise JWTError("Missing token")
    payload = jwt.decode(token, _secret_for(kind), algorithms=[config.JWT_ALGORITHM])
    if payload.get("type") != kind:
        raise JWTError("Invalid token type")
    if not payload.get("sub"):
        raise JWTError("Token has no subject")
    return payload


def user_id_from_claims(claims: dict) -> Optional[int]:
    try:
        return int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        return None


def get_user_by_email(db: Session, email: str):
    return db.query(models.User).filter(models.User.email == email).first()


def authenticate_user(db: Session, email: str, password: str):
    """
    Returns the user on success, None on failure. Unknown email and wrong password
    are indistinguishable to the caller.
    """
    if not email or password is None:
        return None
    user = get_user_by_email(db, email)
    if not user:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


def issue_token_pair(db: Session, user_id: int) -> Tuple[str, str]:
    """Mint an access/refresh pair and persist the refresh token."""
    access_token = create_access_token(user_id)
    refresh_token = create_refresh_token(user_id)
    db.add(models.RefreshToken(user_id=user_id, token=refresh_token))
    db.commit()
    return access_token, refresh_token


class TokenRejected(Exception):
    """Refresh token is unknown, already used, or fails verification."""


def rotate_refresh_token(db: Session, refresh_token: str) -> Tuple[str, str]:
    """
    Redeem ``refresh_token`` once: delete its row and store a freshly minted one in the
    same transaction. Raises TokenRejected if the token cannot be redeemed.
    """
    stored = db.query(models.RefreshToken).filter(models.RefreshToken.token == refresh_token).first()
    if not stored:
        raise TokenRejected("Refresh token not recognised")
    try:
        claims = verify_token(refresh_token, REFRESH)
    except JWTError as e:
        logger.info("Refresh token failed verification: %s", e)
        raise TokenRejected("Refresh token invalid") from e
    user_id = user_id_from_claims(claims)
    if user_id is None or user_id != stored.user_id:
        raise TokenRejected("Refresh token subject mismatch")

    # conditional delete: only one of two concurrent redemptions removes the row
    deleted = (
        db.query(models.RefreshToken)
        .filter(models.RefreshToken.token == refresh_token)
        .delete(synchronize_session=False)
    )
    if deleted != 1:
        db.rollback()
        raise TokenRejected("Refresh token already redeemed")

    access_token = create_access_token(user_id)
    new_refresh_token = create_refresh_token(user_id)
    db.add(models.RefreshToken(user_id=user_id, token=new_refresh_token))
    db.commit()
    return access_token, new_refresh_token


def revoke_refresh_token(db: Session, refresh_token: Optional[str]) -> None:
    """Delete the token row if present. Missing tokens are not an error."""
    if not refresh_token:
        return
    db.query(models.RefreshToken).filter(models.RefreshToken.token == refresh_token).delete(
        synchronize_session=False
    )
    db.commit()
