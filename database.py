"""
MongoDB storage handle for the ratings API.

The database handle is created once per application and passed explicitly to
every component; nothing here keeps a process-wide connection.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from app_logging import get_logger
from settings import Settings

log = get_logger(__name__)

ACCOUNTS = "accounts"
STORES = "stores"
RATINGS = "ratings"
COUNTERS = "counters"


def connect(settings: Settings) -> Database:
    client = MongoClient(
        settings.database_url,
        serverSelectionTimeoutMS=settings.database_timeout_ms,
        connectTimeoutMS=settings.database_timeout_ms,
        socketTimeoutMS=settings.database_timeout_ms,
        tz_aware=True,
    )
    return client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    """Create the uniqueness constraints the service relies on. Idempotent."""
    db[ACCOUNTS].create_index([("email", ASCENDING)], unique=True, name="uniq_account_email")
    db[ACCOUNTS].create_index([("role", ASCENDING)], name="idx_account_role")
    db[STORES].create_index([("email", ASCENDING)], unique=True, name="uniq_store_email")
    db[RATINGS].create_index(
        [("user_id", ASCENDING), ("store_id", ASCENDING)], unique=True, name="uniq_rating_user_store"
    )
    db[RATINGS].create_index([("store_id", ASCENDING)], name="idx_rating_store")
    db[RATINGS].create_index([("user_id", ASCENDING)], name="idx_rating_user")


def _session_kwargs(session) -> Dict[str, Any]:
    return {"session": session} if session is not None else {}


def next_id(db: Database, name: str, session=None) -> int:
    """Allocate the next numeric id for ``name`` from its counter document."""
    counter = db[COUNTERS].find_one_and_update(
        {"_id": name},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
        **_session_kwargs(session),
    )
    return int(counter["seq"])


class UnitOfWork:
    """Groups writes that must apply together or not at all.

    With a session the writes run inside a MongoDB transaction. Without one
    every insert is recorded so :meth:`compensate` can remove it again.
    """

    def __init__(self, db: Database, session=None):
        self.db = db
        self.session = session
        self._inserted: List[Tuple[str, Any]] = []

    @property
    def transactional(self) -> bool:
        return self.session is not None

    def insert(self, collection: str, document: Dict[str, Any]) -> Any:
        self.db[collection].insert_one(document, **_session_kwargs(self.session))
        self._inserted.append((collection, document["_id"]))
        return document["_id"]

    def update(self, collection: str, filter: Dict[str, Any], update: Dict[str, Any]) -> int:
        result = self.db[collection].update_one(filter, update, **_session_kwargs(self.session))
        return result.matched_count

    def compensate(self) -> None:
        while self._inserted:
            collection, doc_id = self._inserted.pop()
            try:
                self.db[collection].delete_one({"_id": doc_id})
            except PyMongoError:
                log.exception("compensation_failed", collection=collection, doc_id=doc_id)
                raise


@contextmanager
def unit_of_work(db: Database, transactional: bool = True) -> Iterator[UnitOfWork]:
    if transactional:
        with db.client.start_session() as session:
            with session.start_transaction():
                yield UnitOfWork(db, session)
        return

    uow = UnitOfWork(db)
    try:
        yield uow
    except Exception:
        uow.compensate()
        raise


def supports_transactions(db: Database) -> bool:
    """True when the server is a replica set member or a mongos router."""
    hello = db.client.admin.command("hello")
    return "setName" in hello or hello.get("msg") == "isdbgrid"


def ping(db: Database) -> Optional[str]:
    """Return None when the database answers, otherwise the error class name."""
    try:
        db.command("ping")
    except PyMongoError as exc:
        log.warning("database_ping_failed", error=type(exc).__name__)
        return type(exc).__name__
    return None
