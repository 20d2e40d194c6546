import uuid

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import PasswordHasher, create_access_token
from database import ACCOUNTS, ensure_indexes, next_id
from main import create_app
from provisioning import provision_store
from schemas import USER, Account
from settings import Settings

PASSWORD = "Secret@123"


@pytest.fixture
def settings():
    return Settings(
        secret_key="test-secret",
        password_hash_rounds=4,
        database_transactions=False,
        log_level="warning",
        log_json=False,
    )


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    name = f"ratings_{uuid.uuid4().hex}"
    database = client[name]
    ensure_indexes(database)
    yield database
    client.drop_database(name)


@pytest.fixture
def hasher():
    return PasswordHasher(rounds=4)


@pytest.fixture
def app(settings, db):
    return create_app(settings=settings, db=db)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_account(db, hasher):
    password_hash = hasher.hash(PASSWORD)

    def _make(role=USER, name=None, email=None, address="1 Test Street, Testville", store_id=None):
        account_id = next_id(db, ACCOUNTS)
        account = Account(
            id=account_id,
            name=name or f"Test Account Person {account_id:04d}",
            email=email or f"{role}-{account_id}@example.com",
            password_hash=password_hash,
            address=address,
            role=role,
            store_id=store_id,
        )
        db[ACCOUNTS].insert_one(account.to_document())
        return account

    return _make


@pytest.fixture
def make_store(db, hasher):
    """Provision a store and return (store_id, owner account)."""
    counter = {"n": 0}

    def _make(name=None, email=None, address="42 Market Street, Testville"):
        counter["n"] += 1
        n = counter["n"]
        result = provision_store(
            db,
            hasher,
            {"name": name or f"Test Store Number {n:04d}", "email": email or f"store{n}@example.com", "address": address},
            {
                "name": f"Store Owner Person {n:04d}",
                "email": f"owner{n}@example.com",
                "password": PASSWORD,
                "address": "7 Owner Lane, Testville",
            },
            transactional=False,
        )
        owner = Account.from_document(db[ACCOUNTS].find_one({"_id": result["owner"]["id"]}))
        return result["store"]["id"], owner

    return _make


@pytest.fixture
def auth_header(settings):
    def _header(account):
        return {"Authorization": f"Bearer {create_access_token(account.id, settings)}"}

    return _header
