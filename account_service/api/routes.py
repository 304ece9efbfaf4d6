"""HTTP route definitions for the account service."""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from prometheus_client import Counter
from pydantic import BaseModel, EmailStr, Field

from ..domain.contracts import (
    AccountView,
    CreateAccountInput,
    PagedView,
    PhoneInput,
    UpdateAccountInput,
)
from ..domain.errors import (
    AccountError,
    AccountNotFoundError,
    ConcurrentModificationError,
    EmailAlreadyExistsError,
    InvalidCredentialsError,
    InvalidEmailError,
    InvalidPasswordError,
)
from ..domain.service import AccountService
from ..security.rate_limiter import RateLimiter
from ..security.tokens import SessionTokenIssuer, TokenClaims, TokenError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")

ACCOUNT_OPERATIONS = Counter(
    "account_operations_total",
    "Account lifecycle operations handled by the HTTP layer",
    ["operation", "outcome"],
)

ERROR_MESSAGES: dict[type[AccountError], str] = {
    InvalidEmailError: "The email '{value}' is not a valid address",
    InvalidPasswordError: "The password does not meet the strength requirements",
    EmailAlreadyExistsError: "The email '{value}' is already registered",
    InvalidCredentialsError: "Invalid email or password",
    AccountNotFoundError: "Account '{value}' not found",
    ConcurrentModificationError: "Account '{value}' was changed by another request, retry",
}

ERROR_STATUS: dict[type[AccountError], int] = {
    InvalidEmailError: status.HTTP_400_BAD_REQUEST,
    InvalidPasswordError: status.HTTP_400_BAD_REQUEST,
    EmailAlreadyExistsError: status.HTTP_409_CONFLICT,
    InvalidCredentialsError: status.HTTP_401_UNAUTHORIZED,
    AccountNotFoundError: status.HTTP_404_NOT_FOUND,
    ConcurrentModificationError: status.HTTP_409_CONFLICT,
}


class PhonePayload(BaseModel):
    """Phone entry accepted in create and update requests and echoed in responses."""

    number: str = Field(..., pattern=r"^\d{1,10}$")
    city_code: str = Field(..., min_length=1)
    country_code: str = Field(..., min_length=1)

    def to_input(self) -> PhoneInput:
        return PhoneInput(number=self.number, city_code=self.city_code, country_code=self.country_code)


class AccountResponse(BaseModel):
    """Serialised representation of an `AccountView`."""

    id: str
    name: str
    email: str
    created: datetime
    modified: datetime
    last_login: datetime
    token: str | None
    active: bool
    phones: list[PhonePayload]

    @classmethod
    def from_view(cls, view: AccountView) -> "AccountResponse":
        """Build a response model from the domain projection."""
        return cls(
            id=view.account_id,
            name=view.name,
            email=view.email,
            created=view.created_at,
            modified=view.updated_at,
            last_login=view.last_login,
            token=view.token,
            active=view.active,
            phones=[
                PhonePayload(number=p.number, city_code=p.city_code, country_code=p.country_code)
                for p in view.phones
            ],
        )


class PagedAccountResponse(BaseModel):
    """Envelope for one page of accounts."""

    content: list[AccountResponse]
    page: int
    size: int
    total_elements: int
    total_pages: int

    @classmethod
    def from_view(cls, view: PagedView[AccountView]) -> "PagedAccountResponse":
        return cls(
            content=[AccountResponse.from_view(item) for item in view.content],
            page=view.page,
            size=view.size,
            total_elements=view.total_elements,
            total_pages=view.total_pages,
        )


class CreateAccountRequest(BaseModel):
    """Payload accepted when registering an account."""

    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    phones: list[PhonePayload] = Field(default_factory=list)


class LoginRequest(BaseModel):
    """Credentials exchanged for a fresh session token."""

    email: EmailStr
    password: str = Field(..., min_length=1)


class UpdateAccountRequest(BaseModel):
    """Partial update; only fields present in the JSON body are applied."""

    name: str | None = None
    email: str | None = None
    password: str | None = None
    active: bool | None = None
    phones: list[PhonePayload] | None = None

    def to_input(self) -> UpdateAccountInput:
        """Map provided, non-null fields onto the update contract; the rest stay UNSET."""
        changes = UpdateAccountInput()
        for field_name in self.model_fields_set:
            value = getattr(self, field_name)
            if value is None:
                continue
            if field_name == "phones":
                value = [phone.to_input() for phone in value]
            setattr(changes, field_name, value)
        return changes


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_token_issuer(request: Request) -> SessionTokenIssuer:
    issuer: SessionTokenIssuer = request.app.state.token_issuer
    return issuer


def get_registration_limiter(request: Request) -> RateLimiter:
    limiter: RateLimiter = request.app.state.registration_limiter
    return limiter


def get_login_limiter(request: Request) -> RateLimiter:
    limiter: RateLimiter = request.app.state.login_limiter
    return limiter


def require_session(
    authorization: str | None = Header(default=None),
    issuer: SessionTokenIssuer = Depends(get_token_issuer),
) -> TokenClaims:
    """Authorise the request with a bearer session token."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return issuer.claims_of(token)
    except TokenError as exc:
        logger.info("rejected session token: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


@router.post("/accounts", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def create_account(
    request: Request,
    payload: CreateAccountRequest,
    service: AccountService = Depends(get_service),
    limiter: RateLimiter = Depends(get_registration_limiter),
) -> AccountResponse:
    """Register an account and return it together with its first session token."""
    client = request.client.host if request.client else "unknown"
    if not limiter.allow(f"create:{client}"):
        ACCOUNT_OPERATIONS.labels(operation="create", outcome="rate_limited").inc()
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="rate limited")
    try:
        view = service.create_account(
            CreateAccountInput(
                name=payload.name,
                email=payload.email,
                password=payload.password,
                phones=[phone.to_input() for phone in payload.phones],
            )
        )
    except AccountError as exc:
        raise _http_error_from_account_error("create", exc) from exc
    ACCOUNT_OPERATIONS.labels(operation="create", outcome="ok").inc()
    return AccountResponse.from_view(view)


@router.post("/accounts/login", response_model=AccountResponse)
def login(
    payload: LoginRequest,
    service: AccountService = Depends(get_service),
    limiter: RateLimiter = Depends(get_login_limiter),
) -> AccountResponse:
    """Exchange credentials for a fresh session token.

    Failed attempts count against a per-email window; a successful login clears it.
    """
    email_digest = hashlib.sha256(payload.email.lower().encode("utf-8")).hexdigest()[:16]
    rate_key = f"login:{email_digest}"
    if not limiter.allow(rate_key):
        ACCOUNT_OPERATIONS.labels(operation="login", outcome="rate_limited").inc()
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="rate limited")
    try:
        view = service.authenticate(payload.email, payload.password)
    except AccountError as exc:
        raise _http_error_from_account_error("login", exc) from exc
    limiter.reset(rate_key)
    ACCOUNT_OPERATIONS.labels(operation="login", outcome="ok").inc()
    return AccountResponse.from_view(view)


@router.get("/accounts", response_model=PagedAccountResponse)
def list_accounts(
    page: int = Query(default=0),
    size: int = Query(default=10),
    service: AccountService = Depends(get_service),
    _session: TokenClaims = Depends(require_session),
) -> PagedAccountResponse:
    """Return one page of accounts in registration order."""
    return PagedAccountResponse.from_view(service.list_paged(page, size))


@router.get("/accounts/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: str,
    service: AccountService = Depends(get_service),
    _session: TokenClaims = Depends(require_session),
) -> AccountResponse:
    try:
        view = service.get_by_id(account_id)
    except AccountError as exc:
        raise _http_error_from_account_error("get", exc) from exc
    return AccountResponse.from_view(view)


@router.patch("/accounts/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: str,
    payload: UpdateAccountRequest,
    service: AccountService = Depends(get_service),
    _session: TokenClaims = Depends(require_session),
) -> AccountResponse:
    """Apply a partial update to an account."""
    try:
        view = service.update(account_id, payload.to_input())
    except AccountError as exc:
        raise _http_error_from_account_error("update", exc) from exc
    ACCOUNT_OPERATIONS.labels(operation="update", outcome="ok").inc()
    return AccountResponse.from_view(view)


@router.delete("/accounts/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_account(
    account_id: str,
    service: AccountService = Depends(get_service),
    _session: TokenClaims = Depends(require_session),
) -> Response:
    try:
        service.delete_by_id(account_id)
    except AccountError as exc:
        raise _http_error_from_account_error("delete", exc) from exc
    ACCOUNT_OPERATIONS.labels(operation="delete", outcome="ok").inc()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _http_error_from_account_error(operation: str, exc: AccountError) -> HTTPException:
    ACCOUNT_OPERATIONS.labels(operation=operation, outcome=exc.code).inc()
    kind = type(exc)
    message = ERROR_MESSAGES.get(kind, "Request rejected").format(value=exc.value)
    status_code = ERROR_STATUS.get(kind, status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=status_code, detail={"code": exc.code, "message": message})
