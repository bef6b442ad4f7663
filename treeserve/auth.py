"""
Authentication for treeserve

A single optional username/password pair guards the whole tree. A
successful login yields a bearer token that is accepted either from the
``auth_token`` cookie or from an ``Authorization: Bearer`` header.
"""

import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional
from fastapi import Request
from passlib.context import CryptContext

from .models import AuthConfig, AUTH_COOKIE
from .tokens import TokenStore

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

LOGIN_PATH = "/login"

# Reachable without a token, otherwise nobody could ever log in
PUBLIC_PATHS = frozenset({LOGIN_PATH, "/api/login", "/logout", "/healthz"})


def hash_password(password: str) -> str:
    """Hash a password using bcrypt"""
    return pwd_context.hash(password)


def verify_password(plain_password: str, stored_password: str, is_bcrypt: bool = False) -> bool:
    """Verify a password against its stored form"""
    if is_bcrypt:
        try:
            return pwd_context.verify(plain_password, stored_password)
        except ValueError as e:
            logger.error(f"Configured password is not a usable bcrypt hash: {e}")
            return False
    return secrets.compare_digest(plain_password.encode('utf-8'), stored_password.encode('utf-8'))


def authenticate(auth: AuthConfig, username: str, password: str) -> bool:
    """Check a login attempt against the configured credential pair"""
    if not auth.enabled:
        logger.warning("Login attempted but no credentials are configured")
        return False

    user_ok = secrets.compare_digest(username.encode('utf-8'), auth.username.encode('utf-8'))
    pass_ok = verify_password(password, auth.password, auth.password_bcrypt)
    if not (user_ok and pass_ok):
        logger.warning(f"Authentication failed for user: {username}")
        return False

    logger.info(f"User authenticated successfully: {username}")
    return True


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token of an ``Authorization: Bearer`` header"""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


def presented_tokens(request: Request) -> Iterator[str]:
    """Tokens carried by the request: cookie first, then header"""
    cookie_token = request.cookies.get(AUTH_COOKIE)
    if cookie_token:
        yield cookie_token

    header_token = parse_bearer_token(request.headers.get("Authorization"))
    if header_token:
        yield header_token


class Admission(Enum):
    """Outcome of the per-request auth check"""
    AUTH_DISABLED = "auth_disabled"
    TOKEN = "token"
    PUBLIC = "public"
    REDIRECT = "redirect"


@dataclass
class AuthDecision:
    admission: Admission

    @property
    def admitted(self) -> bool:
        return self.admission is not Admission.REDIRECT


class AuthGate:
    """Decides, per request, whether it may reach a handler"""

    def __init__(self, auth: AuthConfig, token_store: TokenStore):
        self.auth = auth
        self.token_store = token_store

    def evaluate(self, request: Request) -> AuthDecision:
        if not self.auth.enabled:
            return AuthDecision(Admission.AUTH_DISABLED)

        for token in presented_tokens(request):
            if self.token_store.validate(token):
                return AuthDecision(Admission.TOKEN)

        if request.url.path in PUBLIC_PATHS:
            return AuthDecision(Admission.PUBLIC)

        return AuthDecision(Admission.REDIRECT)


def get_auth_context(request: Request) -> dict:
    """Get authentication context for logging"""
    admission = getattr(request.state, "admission", None)
    return {
        "authenticated": admission is Admission.TOKEN,
        "admission": admission.value if admission is not None else "-",
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("User-Agent"),
    }
