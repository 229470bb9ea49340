"""
Legal Aid API
=============

FastAPI application: identity endpoints plus the workflow routers.

Auth:
- POST /api/auth/login                 - Username/email + password, sets the session cookie
- POST /api/auth/logout                - Revoke the current session
- GET  /api/auth/me                    - Current principal
- POST /api/auth/register-beneficiary  - Self-registration (rate limited)

Users:
- POST /api/users                      - Admin creates staff accounts
- GET  /api/users                      - Admin lists accounts (role filter)

Workflow routers: see api_cases, api_services, api_tasks, api_portal.

Run with:
    uvicorn legalaid.api:app --host 0.0.0.0 --port 8000
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import __version__
from .api_cases import router as cases_router
from .api_portal import router as portal_router
from .api_services import router as services_router
from .api_tasks import router as tasks_router
from .audit import record_audit
from .auth import (
    MAX_PASSWORD_BYTES, AuthService, Principal, create_session_token, get_auth_service,
    get_password_hash, is_password_too_long,
)
from .authz import USER_GUARD, Action
from .config import get_settings
from .db.models import Beneficiary, Role, ServiceRequest, ServiceRequestStatus, User, UserType
from .db.session import init_db
from .deps import get_db_dependency, require_principal, session_token_from_request
from .errors import Conflict, Unauthenticated, ValidationFailed, install_error_handlers
from .middleware.rate_limit import RateLimitMiddleware
from .middleware.security import SecurityHeadersMiddleware
from .schemas import (
    CreateUserRequest, HealthResponse, LoginRequest, MeResponse, RegisterBeneficiaryRequest,
    RegisterBeneficiaryResponse, SessionResponse, UserResponse,
)

settings = get_settings()

# Configure logging
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="Legal Aid Case Management",
    description="Cases, judicial services, tasks and service requests for staff and beneficiaries",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

logger.info(f"CORS allow origins: {settings.cors_origins()}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RateLimitMiddleware)

install_error_handlers(app)


# =============================================================================
# AUTH
# =============================================================================

auth_router = APIRouter(prefix="/auth", tags=["auth"])


def _check_password_length(password: str) -> None:
    if is_password_too_long(password):
        raise ValidationFailed(f"Password too long (max {MAX_PASSWORD_BYTES} bytes)")


def _ensure_unique_account(db: Session, username: str, email: str) -> None:
    existing = db.query(User).filter(or_(User.username == username, User.email == email)).first()
    if existing:
        field = "username" if existing.username == username else "email"
        raise Conflict(f"An account with this {field} already exists", details={"field": field})


def _me(principal: Principal) -> MeResponse:
    return MeResponse(
        id=principal.user_id,
        username=principal.username,
        full_name=principal.full_name,
        email=principal.email,
        user_type=principal.kind,
        role=principal.role,
        beneficiary_id=principal.beneficiary_id,
        profile_complete=principal.profile_complete,
    )


@auth_router.post("/login", response_model=SessionResponse)
async def login(body: LoginRequest, response: Response, db: Session = Depends(get_db_dependency)):
    """
    Login with username (or email) and password.
    Sets the session cookie and also returns the token for Bearer use.
    """
    _check_password_length(body.password)

    auth_service = get_auth_service(db)
    user = auth_service.authenticate_user(body.login, body.password)
    if not user:
        raise Unauthenticated("Invalid username or password")

    ttl = timedelta(minutes=settings.session_ttl_minutes)
    token = create_session_token(user, ttl)
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=int(ttl.total_seconds()),
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    principal = auth_service.principal_for_user(user)
    logger.info(f"User {user.id} logged in ({user.user_type.value})")
    return SessionResponse(access_token=token, user=_me(principal))


@auth_router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    authorization: Optional[str] = Header(None, alias="Authorization"),
    db: Session = Depends(get_db_dependency),
):
    """Revoke the current session; an already-invalid session is fine"""
    token = session_token_from_request(request, authorization)
    if token:
        revoked, user_id = AuthService(db).revoke_session(token)
        if revoked:
            logger.info(f"User {user_id} logged out")
    response.delete_cookie(settings.session_cookie_name)
    return {"message": "Logged out"}


@auth_router.get("/me", response_model=MeResponse)
async def auth_me(principal: Principal = Depends(require_principal)):
    """Get the current principal"""
    return _me(principal)


@auth_router.post("/register-beneficiary", status_code=201, response_model=RegisterBeneficiaryResponse)
async def register_beneficiary(
    body: RegisterBeneficiaryRequest,
    request: Request,
    db: Session = Depends(get_db_dependency),
):
    """
    Self-registration: a beneficiary account, its linked profile and, when
    an issue summary is given, a first service request.
    """
    _check_password_length(body.password)
    _ensure_unique_account(db, body.username, body.email)
    if body.id_number and db.query(Beneficiary).filter(Beneficiary.id_number == body.id_number).first():
        raise Conflict("A beneficiary with this id number already exists", details={"field": "id_number"})

    try:
        user = User(
            username=body.username,
            email=body.email,
            full_name=body.full_name,
            user_type=UserType.BENEFICIARY,
            role=Role.BENEFICIARY,
            password_hash=get_password_hash(body.password),
        )
        db.add(user)
        db.flush()

        beneficiary = Beneficiary(
            user_id=user.id,
            full_name=body.full_name,
            id_number=body.id_number,
            phone=body.phone,
            email=body.email,
            city=body.city,
        )
        db.add(beneficiary)
        db.flush()

        service_request = None
        if body.issue_summary:
            service_request = ServiceRequest(
                beneficiary_id=beneficiary.id,
                service_type=body.service_type or "consultation",
                issue_summary=body.issue_summary,
                issue_details=body.issue_details,
                urgent=body.urgent,
                status=ServiceRequestStatus.NEW,
            )
            db.add(service_request)
            db.flush()

        record_audit(
            db, user.id, "register", "beneficiary", beneficiary.id,
            ip_address=request.client.host if request.client else None,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Beneficiary {beneficiary.id} registered (user {user.id})")
    return RegisterBeneficiaryResponse(
        user_id=user.id,
        beneficiary_id=beneficiary.id,
        service_request_id=service_request.id if service_request else None,
    )


# =============================================================================
# USERS
# =============================================================================

users_router = APIRouter(prefix="/users", tags=["users"])


@users_router.post("", status_code=201, response_model=UserResponse)
async def create_user(
    body: CreateUserRequest,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    """Admin creates a staff account (lawyer, admin, viewer, expert)"""
    USER_GUARD.ensure(principal, Action.CREATE)
    _check_password_length(body.password)
    _ensure_unique_account(db, body.username, body.email)

    user = User(
        username=body.username,
        email=body.email,
        full_name=body.full_name,
        user_type=UserType.STAFF,
        role=body.role,
        password_hash=get_password_hash(body.password),
    )
    db.add(user)
    db.flush()
    record_audit(db, principal.user_id, "create", "user", user.id, f"role={body.role.value}")
    db.commit()

    logger.info(f"Staff user {user.id} ({body.role.value}) created by {principal.user_id}")
    return user


@users_router.get("", response_model=List[UserResponse])
async def list_users(
    role: Optional[Role] = None,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db_dependency),
):
    USER_GUARD.ensure(principal, Action.READ)
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    return query.order_by(User.created_at).all()


# =============================================================================
# HEALTH + ROUTERS
# =============================================================================

api_router = APIRouter(prefix="/api")


@app.get("/health", response_model=HealthResponse, tags=["health"])
@api_router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check():
    """Health check endpoint"""
    return HealthResponse(status="healthy", version=settings.service_version, timestamp=datetime.utcnow())


api_router.include_router(auth_router)
api_router.include_router(users_router)
api_router.include_router(cases_router)
api_router.include_router(services_router)
api_router.include_router(tasks_router)
api_router.include_router(portal_router)
app.include_router(api_router)


@app.on_event("startup")
async def startup_event():
    """Initialize on startup"""
    logger.info(f"Starting {settings.service_name} v{settings.service_version}")
    for warning in settings.validate_security_config():
        logger.warning(f"Security config: {warning}")
    init_db()
