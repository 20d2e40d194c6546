"""
Authentication and authorization for the ratings API.

Every request goes through :func:`get_current_account` (the credential
verifier) and then the role gate built by :func:`require`. Who may call what
is decided by ``ACCESS_RULES`` and nowhere else.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, FrozenSet, Iterable, Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from app_logging import get_logger
from database import ACCOUNTS
from errors import Forbidden, Unauthenticated
from schemas import ADMIN, STORE_OWNER, USER, Account
from settings import Settings

log = get_logger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

ANY_ROLE: FrozenSet[str] = frozenset()

ACCESS_RULES: Dict[str, FrozenSet[str]] = {
    "auth.me": ANY_ROLE,
    "auth.password": ANY_ROLE,
    "admin.dashboard": frozenset({ADMIN}),
    "admin.users.list": frozenset({ADMIN}),
    "admin.users.create": frozenset({ADMIN}),
    "admin.users.detail": frozenset({ADMIN}),
    "admin.stores.list": frozenset({ADMIN}),
    "admin.stores.create": frozenset({ADMIN}),
    "stores.list": frozenset({USER}),
    "ratings.submit": frozenset({USER}),
    "owner.dashboard": frozenset({STORE_OWNER}),
}


class PasswordHasher:
    """One-way bcrypt hash/verify capability."""

    def __init__(self, rounds: int = 12):
        self._context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, hashed: str) -> bool:
        if not password or not hashed:
            return False
        try:
            return self._context.verify(password, hashed)
        except ValueError:
            return False


def create_access_token(account_id: int, settings: Settings, now: Optional[datetime] = None) -> str:
    """Issue a token carrying only the account id and an absolute expiry."""
    issued = now or datetime.now(timezone.utc)
    claims = {
        "sub": str(account_id),
        "iat": issued,
        "exp": issued + timedelta(minutes=settings.access_token_expire_minutes),
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_account_id(token: str, settings: Settings) -> int:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as exc:
        log.info("authentication_failed", reason=type(exc).__name__)
        raise Unauthenticated() from exc
    sub = payload.get("sub")
    try:
        return int(sub)
    except (TypeError, ValueError) as exc:
        log.info("authentication_failed", reason="bad_subject")
        raise Unauthenticated() from exc


def verify_credential(db: Database, token: Optional[str], settings: Settings) -> Account:
    """Resolve a bearer token to its account or fail with Unauthenticated."""
    if not token:
        log.info("authentication_failed", reason="missing_token")
        raise Unauthenticated("Not authenticated")
    account_id = decode_account_id(token, settings)
    doc = db[ACCOUNTS].find_one({"_id": account_id})
    if not doc:
        log.info("authentication_failed", reason="unknown_account", account_id=account_id)
        raise Unauthenticated()
    return Account.from_document(doc)


def check_role(account: Account, permitted: Iterable[str]) -> None:
    permitted = frozenset(permitted)
    if permitted and account.role not in permitted:
        log.info("access_denied", account_id=account.id, role=account.role, permitted=sorted(permitted))
        raise Forbidden()


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_config(request: Request) -> Settings:
    return request.app.state.settings


def get_hasher(request: Request) -> PasswordHasher:
    return request.app.state.hasher


def get_transactional(request: Request) -> bool:
    return getattr(request.app.state, "transactions", request.app.state.settings.database_transactions)


def get_current_account(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_config),
) -> Account:
    return verify_credential(db, token, settings)


def require(operation: str):
    """Build the role-gate dependency for ``operation``."""
    permitted = ACCESS_RULES[operation]

    def role_gate(current_account: Account = Depends(get_current_account)) -> Account:
        check_role(current_account, permitted)
        return current_account

    return role_gate
