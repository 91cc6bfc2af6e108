"""
Authentication endpoints and RBAC logic for the Foundation API.

- Sign Up (new accounts get the member role)
- Sign In (JWT issuance)
- JWT Auth, optional auth for public endpoints, role-based dependency
- RBAC for admin, member and guest

All endpoints documented for OpenAPI/Swagger.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import ValidationError
from sqlalchemy.orm import Session, joinedload

from foundation_api.config import settings
from foundation_api.db import get_db
from foundation_api.models import Role, RoleEnum, User
from foundation_api.openapi_schemas import ErrorResponse, Token, TokenPayload, UserCreate, UserOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)

# =============================
# Utility Functions
# =============================

def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return pwd_context.hash(password)

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify that a plaintext password matches its hash."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token with optional expiry."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": int(expire.timestamp())})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

def get_roles_for_user(user: User) -> List[str]:
    return user.role_names

def ensure_default_roles(db: Session) -> None:
    """Create the admin/member/guest roles if the table is empty."""
    existing = {name for (name,) in db.query(Role.name).all()}
    missing = [r for r in RoleEnum if r.value not in existing]
    for role in missing:
        db.add(Role(name=role.value, description=f"{role.value} role"))
    if missing:
        db.commit()

def get_role(db: Session, name: str) -> Role:
    ensure_default_roles(db)
    return db.query(Role).filter(Role.name == name).one()

# =============================
# Authentication Logic
# =============================

# PUBLIC_INTERFACE
def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
    """Check user's credentials. Return user or None."""
    user = db.query(User).options(joinedload(User.roles)).filter(User.email == email.lower()).first()
    if not user or not user.is_active or not verify_password(password, user.hashed_password):
        return None
    return user

def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.query(User).options(joinedload(User.roles)).filter(User.id == user_id).first()

def _user_from_token(token: Optional[str], db: Session) -> Optional[User]:
    if token is None:
        return None
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        token_data = TokenPayload(**payload)
    except (JWTError, ValidationError):
        return None
    user = get_user(db, int(token_data.sub))
    if user is None or not user.is_active:
        return None
    return user

# =============================
# JWT Auth Dependency
# =============================

# PUBLIC_INTERFACE
async def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    """Get the current user from the JWT, raise 401 if invalid."""
    user = _user_from_token(token, db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user

# PUBLIC_INTERFACE
async def get_optional_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> Optional[User]:
    """Like get_current_user, but anonymous callers get None instead of a 401."""
    return _user_from_token(token, db)

# PUBLIC_INTERFACE
def rbac_required(*allowed_roles: str):
    """
    Returns a dependency that restricts endpoint to users with any of the allowed roles.
    Example: Depends(rbac_required("admin")) or ("admin", "member")
    """
    def dependency(current_user: User = Depends(get_current_user)):
        if not any(role in allowed_roles for role in get_roles_for_user(current_user)):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role permissions")
        return current_user
    return dependency

admin_required = rbac_required(RoleEnum.admin.value)

# =============================
# ENDPOINTS: Authentication
# =============================

@router.post("/signup", response_model=UserOut, status_code=status.HTTP_201_CREATED, responses={400: {"model": ErrorResponse}}, summary="User signup")
async def signup(user_in: UserCreate, db: Session = Depends(get_db)):
    """
    Registers a new user with the member role.
    """
    email = user_in.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=400, detail="Email already registered")
    db_user = User(
        email=email,
        hashed_password=hash_password(user_in.password),
        first_name=user_in.first_name,
        last_name=user_in.last_name,
        phone=user_in.phone,
        is_active=True,
    )
    db_user.roles.append(get_role(db, RoleEnum.member.value))
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    logger.info("user signed up", extra={"user_id": db_user.id})
    return db_user


@router.post("/login", response_model=Token, responses={401: {"model": ErrorResponse}}, summary="User login", description="Authenticate user and return a JWT access token")
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    """
    Login endpoint accepting x-www-form-urlencoded username (email) and password.
    """
    user = authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=401, detail="Incorrect email or password")
    access_token = create_access_token(data={"sub": str(user.id), "roles": get_roles_for_user(user)})
    return Token(access_token=access_token, token_type="bearer")

@router.get("/me", response_model=UserOut, summary="Get current user info", description="Returns info for currently authenticated user")
async def me(current_user: User = Depends(get_current_user)):
    return current_user
