"""
Search queries built from untrusted list parameters.

Field names are taken only from per-entity allow-lists and filter values are
matched as literal text, so nothing the client sends becomes query structure.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from database import ACCOUNTS, STORES

CONTAINS = "contains"
EXACT = "exact"


@dataclass(frozen=True)
class EntityQuery:
    collection: str
    filters: Mapping[str, str]
    sort_fields: Tuple[str, ...]
    default_sort: str = "name"


ACCOUNT_QUERY = EntityQuery(
    collection=ACCOUNTS,
    filters={"name": CONTAINS, "email": CONTAINS, "address": CONTAINS, "role": EXACT},
    sort_fields=("name", "email", "address", "role"),
)

STORE_QUERY = EntityQuery(
    collection=STORES,
    filters={"name": CONTAINS, "email": CONTAINS, "address": CONTAINS},
    sort_fields=("name", "email", "address"),
)


@dataclass
class SearchQuery:
    filter: Dict[str, Any] = field(default_factory=dict)
    sort: List[Tuple[str, int]] = field(default_factory=list)


def sort_direction(order: Optional[str]) -> int:
    return DESCENDING if (order or "").strip().lower() == "desc" else ASCENDING


def build_query(
    entity: EntityQuery,
    filters: Mapping[str, Optional[str]],
    sort_by: Optional[str] = None,
    order: Optional[str] = None,
) -> SearchQuery:
    q: Dict[str, Any] = {}
    for name, mode in entity.filters.items():
        value = filters.get(name)
        if value is None or value == "":
            continue
        if mode == EXACT:
            q[name] = value
        else:
            q[name] = {"$regex": re.escape(value), "$options": "i"}

    sort_field = sort_by if sort_by in entity.sort_fields else entity.default_sort
    # _id breaks ties so equal sort keys always come back in the same order
    sort = [(sort_field, sort_direction(order)), ("_id", ASCENDING)]
    return SearchQuery(filter=q, sort=sort)


def search(db: Database, entity: EntityQuery, query: SearchQuery, projection: Optional[Dict[str, Any]] = None):
    return list(db[entity.collection].find(query.filter, projection).sort(query.sort))
