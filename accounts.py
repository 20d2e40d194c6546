"""
Account lifecycle: registration, login, admin-created accounts and password
changes.
"""

from typing import Any, Dict, Optional, Tuple

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from aggregation import store_mean
from app_logging import get_logger
from auth import PasswordHasher, create_access_token
from database import ACCOUNTS, next_id
from errors import Conflict, NotFound, Unauthenticated, Violation
from schemas import ADMIN, STORE_OWNER, USER, Account, public_account
from settings import Settings
from validation import account_violations, check_password, raise_for_violations

log = get_logger(__name__)

CREATABLE_ROLES = (USER, ADMIN)


def email_conflict(field: str = "email", message: str = "Email already exists") -> Conflict:
    return Conflict(message, violations=[Violation(field=field, rule="unique", message=message)])


def create_account(
    db: Database,
    hasher: PasswordHasher,
    name: Any,
    email: Any,
    password: Any,
    address: Optional[Any] = None,
    role: Any = USER,
) -> Account:
    violations = account_violations(name, email, password, address)
    if role not in CREATABLE_ROLES:
        violations.append(Violation(field="role", rule="choice", message="Role must be one of: user, admin"))
    raise_for_violations(violations)

    account = Account(
        id=next_id(db, ACCOUNTS),
        name=name,
        email=email,
        password_hash=hasher.hash(password),
        address=address or None,
        role=role,
    )
    try:
        db[ACCOUNTS].insert_one(account.to_document())
    except DuplicateKeyError as exc:
        raise email_conflict() from exc
    log.info("account_created", account_id=account.id, role=account.role)
    return account


def register(db: Database, hasher: PasswordHasher, settings: Settings, **fields) -> Tuple[Account, str]:
    account = create_account(db, hasher, role=USER, **fields)
    return account, create_access_token(account.id, settings)


def login(db: Database, hasher: PasswordHasher, settings: Settings, email: Any, password: Any) -> Tuple[Account, str]:
    doc = db[ACCOUNTS].find_one({"email": email}) if isinstance(email, str) else None
    if not doc or not hasher.verify(password, doc.get("password_hash", "")):
        log.info("login_failed")
        raise Unauthenticated("Invalid email or password")
    account = Account.from_document(doc)
    log.info("login_succeeded", account_id=account.id)
    return account, create_access_token(account.id, settings)


def change_password(
    db: Database, hasher: PasswordHasher, account: Account, current_password: Any, new_password: Any
) -> None:
    violations = check_password(new_password, field="new_password")
    if not hasher.verify(current_password, account.password_hash):
        violations.append(
            Violation(field="current_password", rule="mismatch", message="Current password is incorrect")
        )
    raise_for_violations(violations)
    db[ACCOUNTS].update_one({"_id": account.id}, {"$set": {"password_hash": hasher.hash(new_password)}})
    log.info("password_changed", account_id=account.id)


def account_detail(db: Database, account_id: int) -> Dict[str, Any]:
    doc = db[ACCOUNTS].find_one({"_id": account_id}, {"password_hash": 0})
    if not doc:
        raise NotFound("User not found")
    row = public_account(doc)
    row["rating"] = store_mean(db, doc["store_id"]) if doc.get("role") == STORE_OWNER and doc.get("store_id") else 0.0
    return row


def bootstrap_admin(db: Database, hasher: PasswordHasher, settings: Settings) -> Optional[Account]:
    """Create the configured administrator unless an account already uses its email."""
    if db[ACCOUNTS].find_one({"email": settings.admin_email}, {"_id": 1}):
        return None
    account = Account(
        id=next_id(db, ACCOUNTS),
        name=settings.admin_name,
        email=settings.admin_email,
        password_hash=hasher.hash(settings.admin_password),
        address=settings.admin_address,
        role=ADMIN,
    )
    try:
        db[ACCOUNTS].insert_one(account.to_document())
    except DuplicateKeyError:
        log.info("admin_bootstrap_skipped", email=settings.admin_email)
        return None
    log.info("admin_bootstrapped", account_id=account.id)
    return account
