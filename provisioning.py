"""
Store provisioning: a store and its owning account are created together or
not at all.
"""

from typing import Any, Dict

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from accounts import email_conflict
from app_logging import get_logger
from auth import PasswordHasher
from database import ACCOUNTS, STORES, next_id, unit_of_work
from schemas import STORE_OWNER, Account, Store
from validation import account_violations, raise_for_violations, store_violations

log = get_logger(__name__)


def provision_store(
    db: Database,
    hasher: PasswordHasher,
    store: Dict[str, Any],
    owner: Dict[str, Any],
    transactional: bool = True,
) -> Dict[str, Any]:
    """Create a store and its store_owner account.

    Both field sets are validated up front and every violation is reported.
    The three writes (store, owner, store.owner_id) run in one unit of work,
    so a duplicate email on either side leaves nothing behind.
    """
    violations = store_violations(
        store.get("name"), store.get("email"), store.get("address"), prefix="store"
    ) + account_violations(
        owner.get("name"), owner.get("email"), owner.get("password"), owner.get("address"), prefix="owner"
    )
    raise_for_violations(violations)

    # Counter increments stay outside the unit of work; a rolled back
    # provisioning only leaves a gap in the id sequence.
    store_id = next_id(db, STORES)
    owner_id = next_id(db, ACCOUNTS)
    new_store = Store(id=store_id, name=store["name"], email=store["email"], address=store.get("address") or None)
    new_owner = Account(
        id=owner_id,
        name=owner["name"],
        email=owner["email"],
        password_hash=hasher.hash(owner["password"]),
        address=owner.get("address") or None,
        role=STORE_OWNER,
        store_id=store_id,
    )

    with unit_of_work(db, transactional=transactional) as uow:
        _insert(uow, STORES, new_store.to_document(), "store.email", "Store email already exists")
        _insert(uow, ACCOUNTS, new_owner.to_document(), "owner.email", "Owner email already exists")
        uow.update(STORES, {"_id": store_id}, {"$set": {"owner_id": owner_id}})

    new_store.owner_id = owner_id
    log.info("store_provisioned", store_id=store_id, owner_id=owner_id)
    return {"store": new_store.model_dump(), "owner": new_owner.public()}


def _insert(uow, collection: str, document: Dict[str, Any], field: str, message: str) -> Any:
    try:
        return uow.insert(collection, document)
    except DuplicateKeyError as exc:
        log.info("store_provisioning_conflict", field=field)
        raise email_conflict(field, message) from exc
