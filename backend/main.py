from fastapi import FastAPI, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select
import logging

from config import settings
from database import get_db, init_db, async_session_maker, supports_atomic_writes
from models import Branch, User, UserRole
from schemas import RegisterRequest, LoginRequest, Token, UserResponse
from errors import NexileError, ValidationFailed
from auth import (
    get_password_hash, create_access_token, get_current_user, normalize_email,
    check_registration, check_login, get_or_create_branch, build_user_response
)
from inventory import router as inventory_router
from branches import router as branches_router
from transactions import router as transactions_router
from dashboard import router as dashboard_router
from reports import router as reports_router
from seed_demo_data import seed_demo_data_on_startup

app = FastAPI(title=f"{settings.APP_NAME} API", version="1.0.0")

# Setup logging
logger = logging.getLogger(__name__)

# Strip whitespace from each origin to prevent configuration errors
CORS_ORIGINS = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],  # CSV download filename
    max_age=3600,  # Cache preflight responses for 1 hour
)

# ==================== CUSTOM EXCEPTION HANDLERS ====================


def _add_cors_headers(request: Request, response):
    """Error responses bypass the CORS middleware in some paths; add the headers explicitly."""
    origin = request.headers.get('origin')
    if origin and origin in CORS_ORIGINS:
        response.headers['Access-Control-Allow-Origin'] = origin
        response.headers['Access-Control-Allow-Credentials'] = 'true'
    return response


@app.exception_handler(NexileError)
async def nexile_error_handler(request: Request, exc: NexileError):
    """Domain errors carry their own status code and a user-facing message."""
    response = JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
    return _add_cors_headers(request, response)


@app.exception_handler(StarletteHTTPException)
async def custom_http_exception_handler(request: Request, exc: StarletteHTTPException):
    """
    Custom exception handler that ensures CORS headers are included in error responses.

    HTTPException raised in dependencies (like the role checks) would otherwise
    return without CORS headers, and the browser would hide the message.
    """
    response = await http_exception_handler(request, exc)
    return _add_cors_headers(request, response)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """
    Catch-all exception handler for unexpected errors.
    Ensures CORS headers are present even on 500 errors.
    """
    logger.error(f"Unexpected error: {exc}", exc_info=True)

    response = JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )
    return _add_cors_headers(request, response)

# ==================== END EXCEPTION HANDLERS ====================

app.include_router(inventory_router)
app.include_router(branches_router)
app.include_router(transactions_router)
app.include_router(dashboard_router)
app.include_router(reports_router)


@app.on_event("startup")
async def startup_event():
    """Initialize database on startup"""
    logger.info("=" * 60)
    logger.info(f"Starting {settings.APP_NAME} API initialization...")
    logger.info("=" * 60)

    try:
        await init_db()
        logger.info("Database initialization successful!")
    except ConnectionRefusedError as e:
        logger.error("=" * 60)
        logger.error("CRITICAL: Database connection refused!")
        logger.error(f"Error: {e}")
        logger.error("Possible causes:")
        logger.error("1. Incorrect DATABASE_URL format")
        logger.error("2. Database server not accessible")
        logger.error("=" * 60)
        raise
    except Exception as e:
        logger.error("=" * 60)
        logger.error(f"CRITICAL: Application startup failed: {e}")
        logger.error("=" * 60)
        raise

    if not supports_atomic_writes():
        logger.warning("Sales will be recorded with sequential writes (no atomic session)")

    async with async_session_maker() as db:
        await seed_demo_data_on_startup(db)


# ==================== AUTH ====================

@app.post("/auth/register", response_model=Token)
async def register(
    register_data: RegisterRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Create an account and sign it in.

    Pharmacists join (or create) the branch named in the request; managers
    must present the manager access code; owners may open a first branch.
    """
    email = normalize_email(register_data.email)
    logger.info(f"[REGISTER] Attempt: {email} as {register_data.role.value}")

    result = await db.execute(select(User.id).where(User.email == email))
    email_taken = result.scalar_one_or_none() is not None

    try:
        branch_name = check_registration(
            register_data.role, register_data.branch_name, register_data.access_code, email_taken
        )
    except NexileError as e:
        logger.warning(f"[REGISTER] Failed for {email}: {e.message}")
        raise

    assigned_branch_id = None
    if register_data.role == UserRole.PHARMACIST:
        branch = await get_or_create_branch(db, branch_name, "New Location")
        assigned_branch_id = branch.id
    elif register_data.role == UserRole.OWNER and branch_name:
        await get_or_create_branch(db, branch_name, "HQ")

    user = User(
        name=register_data.name.strip(),
        email=email,
        hashed_password=get_password_hash(register_data.password),
        role=register_data.role,
        assigned_branch_id=assigned_branch_id,
        managed_branch_ids=[],
    )
    db.add(user)

    try:
        await db.commit()
    except IntegrityError:
        # Lost a race with a concurrent signup for the same email
        await db.rollback()
        raise ValidationFailed("Email already registered. Please log in.")

    await db.refresh(user)
    logger.info(f"[REGISTER] Success: User {email} created")

    return Token(
        token=create_access_token(user.id, user.role),
        user=build_user_response(user),
    )


@app.post("/auth/login", response_model=Token)
async def login(
    login_data: LoginRequest,
    db: AsyncSession = Depends(get_db)
):
    """Sign in with email, password and the role tab the user picked."""
    email = normalize_email(login_data.email)
    logger.info(f"[LOGIN] Attempt: {email} as {login_data.role.value}")

    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    assigned_branch_exists = False
    if user is not None and user.assigned_branch_id:
        result = await db.execute(select(Branch.id).where(Branch.id == user.assigned_branch_id))
        assigned_branch_exists = result.scalar_one_or_none() is not None

    try:
        check_login(user, login_data.role, login_data.password, login_data.access_code, assigned_branch_exists)
    except NexileError as e:
        logger.warning(f"[LOGIN] Failed for {email}: {e.message}")
        raise

    logger.info(f"[LOGIN] Success: {email} logged in")
    return Token(
        token=create_access_token(user.id, user.role),
        user=build_user_response(user),
    )


@app.get("/auth/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    """Get current user info"""
    return build_user_response(current_user)


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Health check endpoint for Render/Cloud platforms"""
    return {"status": "healthy", "service": "api"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
