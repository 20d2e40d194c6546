from datetime import datetime, timedelta, timezone

import pytest
from pymongo.errors import DuplicateKeyError

import ratings
from aggregation import store_mean
from database import RATINGS
from errors import Forbidden, InvalidRating, NotFound
from ratings import coerce_rating, find_rating, submit_rating
from schemas import ADMIN, USER

T1 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
T2 = T1 + timedelta(hours=1)


@pytest.mark.parametrize("value", [0, 6, -1, 2.5, "3", None, True])
def test_coerce_rating_rejects(value):
    with pytest.raises(InvalidRating):
        coerce_rating(value)


@pytest.mark.parametrize("value", [1, 3, 5])
def test_coerce_rating_accepts(value):
    assert coerce_rating(value) == value


def test_first_submission_creates_rating(db, make_account, make_store):
    store_id, _ = make_store()
    user = make_account(role=USER)
    rating = submit_rating(db, user, store_id, 4, now=T1)
    assert (rating.user_id, rating.store_id, rating.rating) == (user.id, store_id, 4)
    assert db[RATINGS].count_documents({}) == 1


def test_resubmission_updates_single_row(db, make_account, make_store):
    store_id, _ = make_store()
    user = make_account(role=USER)

    first = submit_rating(db, user, store_id, 3, now=T1)
    second = submit_rating(db, user, store_id, 5, now=T2)

    assert db[RATINGS].count_documents({"user_id": user.id, "store_id": store_id}) == 1
    stored = find_rating(db, user.id, store_id)
    assert stored.rating == 5
    assert second.rating == 5
    assert second.created_at == first.created_at
    assert second.updated_at > first.updated_at
    assert store_mean(db, store_id) == 5.0


def test_repeated_submissions_never_duplicate(db, make_account, make_store):
    store_id, _ = make_store()
    user = make_account(role=USER)
    for value in (1, 2, 3, 4, 5, 2):
        submit_rating(db, user, store_id, value)
    assert db[RATINGS].count_documents({}) == 1
    assert find_rating(db, user.id, store_id).rating == 2


def test_ratings_are_per_store(db, make_account, make_store):
    first_store, _ = make_store()
    second_store, _ = make_store()
    user = make_account(role=USER)
    submit_rating(db, user, first_store, 2)
    submit_rating(db, user, second_store, 4)
    assert db[RATINGS].count_documents({"user_id": user.id}) == 2


def test_invalid_value_writes_nothing(db, make_account, make_store):
    store_id, _ = make_store()
    user = make_account(role=USER)
    with pytest.raises(InvalidRating):
        submit_rating(db, user, store_id, 7)
    assert db[RATINGS].count_documents({}) == 0


def test_unknown_store(db, make_account):
    user = make_account(role=USER)
    with pytest.raises(NotFound):
        submit_rating(db, user, 999, 3)
    assert db[RATINGS].count_documents({}) == 0


def test_only_users_may_rate(db, make_account, make_store):
    store_id, owner = make_store()
    admin = make_account(role=ADMIN)
    for account in (owner, admin):
        with pytest.raises(Forbidden):
            submit_rating(db, account, store_id, 3)


def test_unique_index_backs_the_ledger(db):
    db[RATINGS].insert_one({"user_id": 42, "store_id": 7, "rating": 3, "created_at": T1, "updated_at": T1})
    with pytest.raises(DuplicateKeyError):
        db[RATINGS].insert_one({"user_id": 42, "store_id": 7, "rating": 5, "created_at": T2, "updated_at": T2})


def test_concurrent_first_submission_retries(db, make_account, make_store, monkeypatch):
    store_id, _ = make_store()
    user = make_account(role=USER)
    real_upsert = ratings._upsert
    calls = []

    def racing_upsert(db, user_id, store_id, value, now):
        calls.append(value)
        if len(calls) == 1:
            # another request for the same pair commits first
            db[RATINGS].insert_one(
                {"user_id": user_id, "store_id": store_id, "rating": 2, "created_at": T1, "updated_at": T1}
            )
            raise DuplicateKeyError("E11000 duplicate key error")
        return real_upsert(db, user_id, store_id, value, now)

    monkeypatch.setattr(ratings, "_upsert", racing_upsert)
    rating = submit_rating(db, user, store_id, 5, now=T2)

    assert calls == [5, 5]
    assert rating.rating == 5
    assert db[RATINGS].count_documents({"user_id": user.id, "store_id": store_id}) == 1
    assert find_rating(db, user.id, store_id).rating == 5
