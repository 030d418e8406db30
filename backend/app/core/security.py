from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
import hashlib
import hmac
import secrets

from jose import ExpiredSignatureError, JWTError, jwt
import bcrypt
from starlette.concurrency import run_in_threadpool

from app.core.exceptions import InvalidTokenError, TokenExpiredError
from app.core.types import Result

# Claims every access token must carry as strings
REQUIRED_TOKEN_CLAIMS = ("sub", "email", "role")

SESSION_ID_BYTES = 32  # 256 bits


# ==========================================
# Password hashing
# ==========================================

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against a bcrypt hash"""
    # Bcrypt has a 72 byte limit - truncate password if necessary
    password_bytes = plain_password.encode('utf-8')[:72]
    try:
        return bcrypt.checkpw(password_bytes, hashed_password.encode('utf-8'))
    except ValueError:
        # Malformed hash in storage never authenticates
        return False


def get_password_hash(password: str, rounds: int = 12) -> str:
    """Hash password with configurable rounds (BCRYPT_ROUNDS in .env)"""
    password_bytes = password.encode('utf-8')[:72]
    hashed = bcrypt.hashpw(password_bytes, bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')


def dummy_password_hash(rounds: int) -> str:
    """Hash of a random secret, checked when the account does not exist so both paths cost the same.

    Built once per application, at startup; never on a request.
    """
    return get_password_hash(secrets.token_urlsafe(16), rounds)


async def verify_password_async(plain_password: str, hashed_password: str) -> bool:
    """bcrypt is CPU bound, keep it off the event loop"""
    return await run_in_threadpool(verify_password, plain_password, hashed_password)


async def get_password_hash_async(password: str, rounds: int = 12) -> str:
    return await run_in_threadpool(get_password_hash, password, rounds)


# ==========================================
# Access tokens
# ==========================================

def create_access_token(
    data: Dict[str, Any],
    secret_key: str,
    algorithm: str = "HS256",
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create JWT access token"""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta if expires_delta is not None else timedelta(minutes=1440))

    to_encode.update({"exp": expire, "iat": now, "type": "access"})
    return jwt.encode(to_encode, secret_key, algorithm=algorithm)


def decode_access_token(token: str, secret_key: str, algorithm: str = "HS256") -> Result[Dict[str, Any]]:
    """
    Verify signature, expiry and claim shape of an access token.

    Expired and malformed tokens fail with different messages, both 401.
    """
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
    except ExpiredSignatureError:
        return Result.fail(TokenExpiredError())
    except JWTError:
        return Result.fail(InvalidTokenError())

    if payload.get("type") != "access":
        return Result.fail(InvalidTokenError())
    for claim in REQUIRED_TOKEN_CLAIMS:
        value = payload.get(claim)
        if not isinstance(value, str) or not value:
            return Result.fail(InvalidTokenError())
    sid = payload.get("sid")
    if sid is not None and not isinstance(sid, str):
        return Result.fail(InvalidTokenError())

    return Result.ok(payload)


# ==========================================
# Session identifiers
# ==========================================

def generate_session_id() -> str:
    """256-bit session id from the OS CSPRNG, hex encoded"""
    return secrets.token_hex(SESSION_ID_BYTES)


def _session_signature(session_id: str, secret_key: str) -> str:
    return hmac.new(secret_key.encode('utf-8'), session_id.encode('utf-8'), hashlib.sha256).hexdigest()


def sign_session_id(session_id: str, secret_key: str) -> str:
    """Cookie value: '<session_id>.<hmac>'"""
    return f"{session_id}.{_session_signature(session_id, secret_key)}"


def unsign_session_id(cookie_value: str, secret_key: str) -> Optional[str]:
    """Return the session id, or None when the cookie was tampered with"""
    session_id, sep, signature = cookie_value.rpartition(".")
    if not sep or not session_id or not signature:
        return None
    expected = _session_signature(session_id, secret_key)
    if not hmac.compare_digest(signature.encode('utf-8'), expected.encode('utf-8')):
        return None
    return session_id


# ==========================================
# CSRF tokens
# ==========================================

def csrf_token_for(session_id: str, secret_key: str) -> str:
    """Token a cookie-authenticated client echoes in X-CSRF-Token, bound to its session"""
    return _session_signature(f"csrf:{session_id}", secret_key)


def verify_csrf_token(token: Optional[str], session_id: str, secret_key: str) -> bool:
    if not token:
        return False
    return hmac.compare_digest(token.encode('utf-8'), csrf_token_for(session_id, secret_key).encode('utf-8'))
