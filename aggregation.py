"""
Live rating aggregates.

Nothing here is cached or maintained incrementally: every call recomputes
from the ratings collection so reads always agree with the ledger.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, NamedTuple

from pymongo import DESCENDING
from pymongo.database import Database

from database import ACCOUNTS, RATINGS, STORES
from errors import NotFound
from query import ACCOUNT_QUERY, STORE_QUERY, SearchQuery, search
from ratings import MAX_RATING, MIN_RATING
from schemas import STORE_OWNER, Account, public_account, sanitize

TWO_PLACES = Decimal("0.01")


class StoreAggregate(NamedTuple):
    mean: float
    count: int


EMPTY = StoreAggregate(0.0, 0)


def round_mean(total: int, count: int) -> float:
    """Mean rounded half-up to two places; 0 when there is nothing to average."""
    if not count:
        return 0.0
    return float((Decimal(total) / Decimal(count)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


def store_aggregates(db: Database, store_ids: Iterable[int]) -> Dict[int, StoreAggregate]:
    ids = [i for i in store_ids if i is not None]
    if not ids:
        return {}
    pipeline = [
        {"$match": {"store_id": {"$in": ids}}},
        {"$group": {"_id": "$store_id", "total": {"$sum": "$rating"}, "count": {"$sum": 1}}},
    ]
    return {
        row["_id"]: StoreAggregate(round_mean(row["total"], row["count"]), row["count"])
        for row in db[RATINGS].aggregate(pipeline)
    }


def store_aggregate(db: Database, store_id: int) -> StoreAggregate:
    return store_aggregates(db, [store_id]).get(store_id, EMPTY)


def store_mean(db: Database, store_id: int) -> float:
    return store_aggregate(db, store_id).mean


def rating_histogram(db: Database, store_id: int) -> Dict[int, int]:
    histogram = {value: 0 for value in range(MIN_RATING, MAX_RATING + 1)}
    pipeline = [
        {"$match": {"store_id": store_id}},
        {"$group": {"_id": "$rating", "count": {"$sum": 1}}},
    ]
    for row in db[RATINGS].aggregate(pipeline):
        histogram[row["_id"]] = row["count"]
    return histogram


def caller_ratings(db: Database, user_id: int, store_ids: Iterable[int]) -> Dict[int, int]:
    cursor = db[RATINGS].find(
        {"user_id": user_id, "store_id": {"$in": list(store_ids)}},
        {"_id": 0, "store_id": 1, "rating": 1},
    )
    return {doc["store_id"]: doc["rating"] for doc in cursor}


def _store_row(doc: Dict[str, Any], aggregate: StoreAggregate) -> Dict[str, Any]:
    row = sanitize(doc)
    row["rating"] = aggregate.mean
    row["rating_count"] = aggregate.count
    return row


def stores_for_admin(db: Database, query: SearchQuery) -> List[Dict[str, Any]]:
    stores = search(db, STORE_QUERY, query)
    aggregates = store_aggregates(db, [s["_id"] for s in stores])
    return [_store_row(s, aggregates.get(s["_id"], EMPTY)) for s in stores]


def stores_for_user(db: Database, account: Account, query: SearchQuery) -> List[Dict[str, Any]]:
    """Store list with the store-wide mean and the caller's own rating."""
    stores = search(db, STORE_QUERY, query)
    ids = [s["_id"] for s in stores]
    aggregates = store_aggregates(db, ids)
    own = caller_ratings(db, account.id, ids)
    rows = []
    for s in stores:
        row = _store_row(s, aggregates.get(s["_id"], EMPTY))
        row["overall_rating"] = row.pop("rating")
        row["user_rating"] = own.get(s["_id"])
        rows.append(row)
    return rows


def accounts_for_admin(db: Database, query: SearchQuery) -> List[Dict[str, Any]]:
    accounts = search(db, ACCOUNT_QUERY, query, {"password_hash": 0})
    aggregates = store_aggregates(db, [a.get("store_id") for a in accounts if a.get("role") == STORE_OWNER])
    rows = []
    for a in accounts:
        row = public_account(a)
        row["rating"] = aggregates.get(a.get("store_id"), EMPTY).mean if a.get("role") == STORE_OWNER else 0.0
        rows.append(row)
    return rows


def owner_dashboard(db: Database, account: Account) -> Dict[str, Any]:
    """Mean, counts and rater list for the store owned by ``account``."""
    if account.store_id is None:
        raise NotFound("No store assigned")
    store = db[STORES].find_one({"_id": account.store_id})
    if store is None:
        raise NotFound("Store not found")

    ratings = list(
        db[RATINGS]
        .find({"store_id": account.store_id})
        .sort([("updated_at", DESCENDING), ("_id", DESCENDING)])
    )
    raters = {
        doc["_id"]: doc
        for doc in db[ACCOUNTS].find(
            {"_id": {"$in": [r["user_id"] for r in ratings]}}, {"name": 1, "email": 1}
        )
    }
    aggregate = store_aggregate(db, account.store_id)
    return {
        "store": sanitize(store),
        "average_rating": aggregate.mean,
        "rating_count": aggregate.count,
        "histogram": rating_histogram(db, account.store_id),
        "ratings": [
            {
                "user_id": r["user_id"],
                "name": raters.get(r["user_id"], {}).get("name"),
                "email": raters.get(r["user_id"], {}).get("email"),
                "rating": r["rating"],
                "updated_at": r["updated_at"],
            }
            for r in ratings
        ],
    }


def dashboard_counts(db: Database) -> Dict[str, int]:
    return {
        "total_users": db[ACCOUNTS].count_documents({}),
        "total_stores": db[STORES].count_documents({}),
        "total_ratings": db[RATINGS].count_documents({}),
    }
