"""
User administration endpoints: listing with filters, search, statistics, role
changes, activation toggling and deletion. Admin only, except that a user may
read their own profile.
"""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import extract, func, or_
from sqlalchemy.orm import Session

from foundation_api.auth import admin_required, get_current_user, get_role
from foundation_api.db import get_db
from foundation_api.models import Role, RoleEnum, User, user_roles
from foundation_api.openapi_schemas import APIResponse, ErrorResponse, UserOut
from foundation_api.pagination import paginate
from foundation_api.schemas import (
    BulkRoleUpdate,
    BulkRoleUpdateOut,
    UserListOut,
    UserStatsOut,
    UserStatusOut,
    UserUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])

SORTABLE_FIELDS = {
    "created_at": User.created_at,
    "email": User.email,
    "first_name": User.first_name,
    "last_name": User.last_name,
}


def _search_filter(term: str):
    pattern = f"%{term}%"
    return or_(User.first_name.ilike(pattern), User.last_name.ilike(pattern), User.email.ilike(pattern))


def _get_user_or_404(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


# PUBLIC_INTERFACE
@router.get("/", response_model=UserListOut, summary="List/filter users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[RoleEnum] = Query(None, description="Only users holding this role"),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, description="Matches first name, last name or email"),
    sort_by: str = Query("created_at", description="created_at, email, first_name or last_name"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    qset = db.query(User)
    if role:
        qset = qset.filter(User.roles.any(Role.name == role.value))
    if is_active is not None:
        qset = qset.filter(User.is_active == is_active)
    if search:
        qset = qset.filter(_search_filter(search))
    column = SORTABLE_FIELDS.get(sort_by, User.created_at)
    qset = qset.order_by(column.desc() if sort_order == "desc" else column.asc(), User.id)
    users, pagination = paginate(qset, page, limit)
    return UserListOut(users=[UserOut.model_validate(u) for u in users], pagination=pagination)


# PUBLIC_INTERFACE
@router.get("/search", response_model=List[UserOut], responses={400: {"model": ErrorResponse}}, summary="Search users")
def search_users(
    q: str = Query(..., description="At least 2 characters"),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    if len(q.strip()) < 2:
        raise HTTPException(status_code=400, detail="Search query must be at least 2 characters")
    return db.query(User).filter(_search_filter(q.strip())).order_by(User.id).limit(limit).all()


# PUBLIC_INTERFACE
@router.get("/stats/overview", response_model=UserStatsOut, summary="User statistics")
def user_stats(db: Session = Depends(get_db), current_user: User = Depends(admin_required)):
    total_users = db.query(func.count(User.id)).scalar()
    active_users = db.query(func.count(User.id)).filter(User.is_active.is_(True)).scalar()
    by_role = (
        db.query(Role.name, func.count(user_roles.c.user_id))
        .outerjoin(user_roles, Role.id == user_roles.c.role_id)
        .group_by(Role.name)
        .all()
    )
    year = datetime.now().year
    month = extract("month", User.created_at)
    by_month = (
        db.query(month.label("month"), func.count(User.id))
        .filter(extract("year", User.created_at) == year)
        .group_by(month)
        .order_by(month)
        .all()
    )
    recent = db.query(User).order_by(User.created_at.desc(), User.id.desc()).limit(10).all()
    return UserStatsOut(
        total_users=total_users,
        active_users=active_users,
        inactive_users=total_users - active_users,
        users_by_role={name: count for name, count in by_role},
        users_by_month={int(m): count for m, count in by_month},
        recent_users=[UserOut.model_validate(u) for u in recent],
    )


# PUBLIC_INTERFACE
@router.put("/bulk-update-roles", response_model=BulkRoleUpdateOut, responses={400: {"model": ErrorResponse}}, summary="Bulk update user roles")
def bulk_update_roles(
    body: BulkRoleUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    """
    Replace the roles of every listed user with the single given role.
    """
    if current_user.id in body.user_ids:
        raise HTTPException(status_code=400, detail="Cannot change your own role")
    role = get_role(db, body.role.value)
    users = db.query(User).filter(User.id.in_(body.user_ids)).all()
    modified = 0
    for user in users:
        if user.role_names != [role.name]:
            user.roles = [role]
            modified += 1
    db.commit()
    logger.info("bulk role update", extra={"role": role.name, "modified_count": modified})
    return BulkRoleUpdateOut(message=f"Updated {modified} users to {role.name} role", modified_count=modified)


# PUBLIC_INTERFACE
@router.get("/{user_id}", response_model=UserOut, summary="Get user")
def get_user(user_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    if not current_user.is_admin and current_user.id != user_id:
        raise HTTPException(status_code=403, detail="Not authorized to view this profile")
    return _get_user_or_404(db, user_id)


# PUBLIC_INTERFACE
@router.put("/{user_id}", response_model=UserOut, responses={400: {"model": ErrorResponse}}, summary="Update user")
def update_user(
    user_id: int,
    user_in: UserUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(admin_required),
):
    user = _get_user_or_404(db, user_id)
    data = user_in.model_dump(exclude_unset=True)
    email = data.pop("email", None)
    if email and email.lower() != user.email:
        if db.query(User).filter(User.email == email.lower()).first():
            raise HTTPException(status_code=400, detail="Email already exists")
        user.email = email.lower()
    role = data.pop("role", None)
    if role:
        user.roles = [get_role(db, RoleEnum(role).value)]
    for k, v in data.items():
        if v is not None:
            setattr(user, k, v)
    db.commit()
    db.refresh(user)
    return user


# PUBLIC_INTERFACE
@router.delete("/{user_id}", response_model=APIResponse, responses={400: {"model": ErrorResponse}}, summary="Delete user")
def delete_user(user_id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_required)):
    user = _get_user_or_404(db, user_id)
    if user.id == current_user.id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")
    db.delete(user)
    db.commit()
    logger.info("user deleted", extra={"user_id": user_id})
    return APIResponse(success=True, message="User deleted successfully")


# PUBLIC_INTERFACE
@router.put("/{user_id}/toggle-status", response_model=UserStatusOut, responses={400: {"model": ErrorResponse}}, summary="Toggle user active status")
def toggle_user_status(user_id: int, db: Session = Depends(get_db), current_user: User = Depends(admin_required)):
    user = _get_user_or_404(db, user_id)
    if user.id == current_user.id:
        raise HTTPException(status_code=400, detail="Cannot deactivate your own account")
    user.is_active = not user.is_active
    db.commit()
    db.refresh(user)
    state = "activated" if user.is_active else "deactivated"
    return UserStatusOut(message=f"User {state} successfully", user=UserOut.model_validate(user))
