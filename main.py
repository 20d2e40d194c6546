from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import PyMongoError

import accounts
import aggregation
from app_logging import RequestContextMiddleware, configure_logging, get_logger
from auth import PasswordHasher, get_config, get_db, get_hasher, get_transactional, require
from database import connect, ensure_indexes, ping, supports_transactions
from errors import Internal, ServiceError, ValidationFailed, Violation
from provisioning import provision_store
from query import ACCOUNT_QUERY, STORE_QUERY, build_query
from ratings import submit_rating
from schemas import USER, Account
from settings import Settings, get_settings

log = get_logger(__name__)

router = APIRouter()


# Request/Response Models
class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    address: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


class CreateUserRequest(RegisterRequest):
    role: str = USER


class OwnerFields(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    address: Optional[str] = None


class CreateStoreRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    owner: OwnerFields = OwnerFields()


class UpdatePasswordRequest(BaseModel):
    current_password: Optional[str] = None
    new_password: Optional[str] = None


class RateStoreRequest(BaseModel):
    store_id: int
    rating: Any = None


# Auth Routes
@router.post("/auth/register", response_model=TokenResponse, status_code=201)
def register(
    payload: RegisterRequest,
    db: Database = Depends(get_db),
    hasher: PasswordHasher = Depends(get_hasher),
    settings: Settings = Depends(get_config),
):
    account, token = accounts.register(db, hasher, settings, **payload.model_dump())
    return TokenResponse(access_token=token, user=account.public())


@router.post("/auth/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    db: Database = Depends(get_db),
    hasher: PasswordHasher = Depends(get_hasher),
    settings: Settings = Depends(get_config),
):
    account, token = accounts.login(db, hasher, settings, payload.email, payload.password)
    return TokenResponse(access_token=token, user=account.public())


@router.get("/auth/me")
def me(current: Account = Depends(require("auth.me"))):
    return current.public()


@router.put("/auth/password")
def update_password(
    payload: UpdatePasswordRequest,
    current: Account = Depends(require("auth.password")),
    db: Database = Depends(get_db),
    hasher: PasswordHasher = Depends(get_hasher),
):
    accounts.change_password(db, hasher, current, payload.current_password, payload.new_password)
    return {"message": "Password updated"}


# Admin Routes
@router.get("/admin/dashboard")
def admin_dashboard(admin: Account = Depends(require("admin.dashboard")), db: Database = Depends(get_db)):
    return aggregation.dashboard_counts(db)


@router.get("/admin/users")
def admin_list_users(
    name: Optional[str] = None,
    email: Optional[str] = None,
    address: Optional[str] = None,
    role: Optional[str] = None,
    sort_by: Optional[str] = Query("name"),
    order: Optional[str] = Query("asc"),
    admin: Account = Depends(require("admin.users.list")),
    db: Database = Depends(get_db),
):
    q = build_query(ACCOUNT_QUERY, {"name": name, "email": email, "address": address, "role": role}, sort_by, order)
    return aggregation.accounts_for_admin(db, q)


@router.post("/admin/users", status_code=201)
def admin_create_user(
    payload: CreateUserRequest,
    admin: Account = Depends(require("admin.users.create")),
    db: Database = Depends(get_db),
    hasher: PasswordHasher = Depends(get_hasher),
):
    account = accounts.create_account(db, hasher, **payload.model_dump())
    return account.public()


@router.get("/admin/users/{user_id}")
def admin_user_detail(
    user_id: int, admin: Account = Depends(require("admin.users.detail")), db: Database = Depends(get_db)
):
    return accounts.account_detail(db, user_id)


@router.get("/admin/stores")
def admin_list_stores(
    name: Optional[str] = None,
    email: Optional[str] = None,
    address: Optional[str] = None,
    sort_by: Optional[str] = Query("name"),
    order: Optional[str] = Query("asc"),
    admin: Account = Depends(require("admin.stores.list")),
    db: Database = Depends(get_db),
):
    q = build_query(STORE_QUERY, {"name": name, "email": email, "address": address}, sort_by, order)
    return aggregation.stores_for_admin(db, q)


@router.post("/admin/stores", status_code=201)
def admin_create_store(
    payload: CreateStoreRequest,
    admin: Account = Depends(require("admin.stores.create")),
    db: Database = Depends(get_db),
    hasher: PasswordHasher = Depends(get_hasher),
    transactional: bool = Depends(get_transactional),
):
    return provision_store(
        db,
        hasher,
        payload.model_dump(exclude={"owner"}),
        payload.owner.model_dump(),
        transactional=transactional,
    )


# Stores and Ratings for Users
@router.get("/stores")
def list_stores(
    name: Optional[str] = None,
    email: Optional[str] = None,
    address: Optional[str] = None,
    sort_by: Optional[str] = Query("name"),
    order: Optional[str] = Query("asc"),
    current: Account = Depends(require("stores.list")),
    db: Database = Depends(get_db),
):
    q = build_query(STORE_QUERY, {"name": name, "email": email, "address": address}, sort_by, order)
    return aggregation.stores_for_user(db, current, q)


@router.post("/ratings")
def rate_store(
    payload: RateStoreRequest, current: Account = Depends(require("ratings.submit")), db: Database = Depends(get_db)
):
    return submit_rating(db, current, payload.store_id, payload.rating)


# Owner routes
@router.get("/owner/dashboard")
def owner_dashboard(current: Account = Depends(require("owner.dashboard")), db: Database = Depends(get_db)):
    return aggregation.owner_dashboard(db, current)


# Utility endpoints
@router.get("/")
def root():
    return {"message": "Store Rating API running"}


@router.get("/health")
def health(db: Database = Depends(get_db)):
    error = ping(db)
    return {"backend": "ok", "database": "ok" if error is None else f"error: {error}"}


# Error handlers
def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_response().model_dump(), headers=headers)


def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    violations: List[Violation] = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        violations.append(Violation(field=".".join(loc) or "body", rule=err.get("type", "invalid"), message=err.get("msg", "")))
    return service_error_handler(request, ValidationFailed(violations=violations))


def storage_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    log.error("internal_error", error=type(exc).__name__, detail=str(exc))
    return service_error_handler(request, Internal())


def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.error("internal_error", error=type(exc).__name__, exc_info=exc)
    return service_error_handler(request, Internal())


def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_client = app.state.db is None
        if owns_client:
            app.state.db = connect(settings)
        ensure_indexes(app.state.db)
        app.state.transactions = settings.database_transactions
        if settings.database_transactions and not supports_transactions(app.state.db):
            log.warning(
                "transactions_unavailable",
                detail="server is not a replica set member; provisioning falls back to compensating writes",
            )
            app.state.transactions = False
        accounts.bootstrap_admin(app.state.db, app.state.hasher, settings)
        log.info("startup_complete", database=app.state.db.name)
        yield
        if owns_client:
            app.state.db.client.close()

    app = FastAPI(title="Store Rating API", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db
    app.state.hasher = PasswordHasher(rounds=settings.password_hash_rounds)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestContextMiddleware)
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(PyMongoError, storage_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
    app.include_router(router)
    return app


app = create_app()
