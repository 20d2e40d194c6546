"""
Rating ledger: at most one rating per (user, store), written with a single
atomic upsert against the unique (user_id, store_id) index.
"""

from datetime import datetime
from typing import Any, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from app_logging import get_logger
from database import RATINGS, STORES
from errors import Forbidden, InvalidRating, NotFound
from schemas import USER, Account, Rating, utcnow

log = get_logger(__name__)

MIN_RATING = 1
MAX_RATING = 5


def coerce_rating(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRating()
    if not MIN_RATING <= value <= MAX_RATING:
        raise InvalidRating()
    return value


def _upsert(db: Database, user_id: int, store_id: int, value: int, now: datetime):
    return db[RATINGS].find_one_and_update(
        {"user_id": user_id, "store_id": store_id},
        {
            "$set": {"rating": value, "updated_at": now},
            "$setOnInsert": {"created_at": now},
        },
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def submit_rating(
    db: Database, account: Account, store_id: int, value: Any, now: Optional[datetime] = None
) -> Rating:
    """Insert or overwrite ``account``'s rating of ``store_id``.

    The caller gets the stored rating back and cannot tell whether it was
    created or updated.
    """
    if account.role != USER:
        raise Forbidden("Only users can submit ratings")
    rating = coerce_rating(value)
    if db[STORES].find_one({"_id": store_id}, {"_id": 1}) is None:
        raise NotFound("Store not found")

    now = now or utcnow()
    try:
        doc = _upsert(db, account.id, store_id, rating, now)
    except DuplicateKeyError:
        # A concurrent first submission inserted the row; the retry matches it and updates.
        log.info("rating_upsert_retry", user_id=account.id, store_id=store_id)
        doc = _upsert(db, account.id, store_id, rating, now)

    log.info("rating_submitted", user_id=account.id, store_id=store_id, rating=rating)
    return Rating(**{k: v for k, v in doc.items() if k != "_id"})


def find_rating(db: Database, user_id: int, store_id: int) -> Optional[Rating]:
    doc = db[RATINGS].find_one({"user_id": user_id, "store_id": store_id}, {"_id": 0})
    return Rating(**doc) if doc else None
