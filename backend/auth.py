from datetime import datetime, timedelta
from typing import Optional
import hmac
import logging
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from config import settings
from database import get_db
from errors import AuthenticationFailed, PermissionDenied, NotFound, Conflict, ValidationFailed
from models import User, UserRole, Branch
from schemas import UserResponse

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash"""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password"""
    return pwd_context.hash(password)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def access_code_matches(access_code: Optional[str]) -> bool:
    if access_code is None:
        return False
    return hmac.compare_digest(access_code.strip(), settings.MANAGER_ACCESS_CODE)


def create_access_token(user_id: str, role: UserRole, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token embedding the user id and role"""
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {
        "sub": user_id,
        "role": role.value if isinstance(role, UserRole) else role,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def is_trial_expired(created_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if created_at is None:
        return False
    now = now or datetime.utcnow()
    return now - created_at > timedelta(days=settings.TRIAL_PERIOD_DAYS)


def build_user_response(user) -> UserResponse:
    """User view without the password hash, with trial status filled in"""
    response = UserResponse.model_validate(user)
    return response.model_copy(update={
        "managed_branch_ids": list(user.managed_branch_ids or []),
        "trial_expired": is_trial_expired(user.created_at),
    })


# =============================================================================
# REGISTRATION / LOGIN RULES
# =============================================================================
# Shared by the HTTP routes and the local (mock mode) store so both apply the
# same checks in the same order.

def check_registration(role: UserRole, branch_name: Optional[str], access_code: Optional[str], email_taken: bool) -> Optional[str]:
    """
    Validate a signup request. Returns the cleaned branch name (or None).

    Raises:
        ValidationFailed: duplicate email, or pharmacist without a branch name
        PermissionDenied: manager with a wrong access code
    """
    if email_taken:
        raise ValidationFailed("Email already registered. Please log in.")

    cleaned_branch_name = (branch_name or "").strip() or None

    if role == UserRole.MANAGER:
        if not access_code_matches(access_code):
            raise PermissionDenied("Invalid Manager Access Code")
        return None

    if role == UserRole.PHARMACIST and not cleaned_branch_name:
        raise ValidationFailed("Branch name required for pharmacists")

    return cleaned_branch_name


def check_login(user, role: UserRole, password: str, access_code: Optional[str], assigned_branch_exists: bool) -> None:
    """
    Validate a login attempt against the stored account.

    The manager access code is checked before the password, so a wrong code
    is always reported as 403 whatever the password.

    Raises:
        NotFound: unknown email
        PermissionDenied: role mismatch or wrong manager access code
        AuthenticationFailed: wrong password
        Conflict: pharmacist whose assigned branch is missing
    """
    if user is None:
        raise NotFound("User not found. Please register first.")

    stored_role = user.role.value if isinstance(user.role, UserRole) else user.role
    if stored_role != role.value:
        raise PermissionDenied(
            f"Role mismatch. This email is registered as {stored_role}. "
            f"Please switch to the {stored_role} tab."
        )

    if role == UserRole.MANAGER and not access_code_matches(access_code):
        raise PermissionDenied("Invalid Access Code")

    if not verify_password(password, user.hashed_password):
        raise AuthenticationFailed("Invalid password")

    if role == UserRole.PHARMACIST:
        if not user.assigned_branch_id:
            raise Conflict("Account error: No branch assigned. Contact support.")
        if not assigned_branch_exists:
            raise Conflict("Assigned branch no longer exists. Contact the owner.")


async def find_branch_by_name(db: AsyncSession, name: str) -> Optional[Branch]:
    """Case-insensitive branch lookup"""
    result = await db.execute(
        select(Branch).where(func.lower(Branch.name) == name.strip().lower()).limit(1)
    )
    return result.scalar_one_or_none()


async def get_or_create_branch(db: AsyncSession, name: str, location: str) -> Branch:
    """Reuse a branch with the same name (ignoring case) or create it"""
    branch = await find_branch_by_name(db, name)
    if branch:
        return branch

    branch = Branch(name=name.strip(), location=location)
    db.add(branch)
    await db.flush()
    logger.info(f"Created new branch: {branch.name}")
    return branch


# =============================================================================
# REQUEST DEPENDENCIES
# =============================================================================

async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Get the current authenticated user"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise credentials_exception
    return user


def require_role(*roles: UserRole):
    """
    Dependency factory for role checks.

    Usage:
        @router.post("/branches", dependencies=[Depends(require_role(UserRole.OWNER))])
        async def create_branch(...):
            ...
    """
    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(role.value for role in roles)}"
            )
        return current_user
    return checker
