"""
Event management endpoints: CRUD, attendee registration, and event listing.

- Public listing and detail (detail increments the view counter)
- Create for admins and members; update/delete for admins or the event creator
- Registration and unregistration for signed-in users
- Includes RBAC and OpenAPI docs.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session, joinedload

from foundation_api.auth import admin_required, get_current_user, get_optional_user, rbac_required
from foundation_api.db import get_db
from foundation_api.lifecycle import utcnow
from foundation_api.models import Event, EventCategoryEnum, EventStatusEnum, EventTypeEnum, RoleEnum, User
from foundation_api.openapi_schemas import APIResponse, ErrorResponse
from foundation_api.pagination import paginate
from foundation_api.schemas import (
    EventCreate,
    EventDetailOut,
    EventListOut,
    EventOut,
    EventStatsOut,
    EventUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["Events"])


def _get_event_or_404(db: Session, event_id: int) -> Event:
    event = db.query(Event).options(joinedload(Event.attendees)).filter(Event.id == event_id).first()
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


def _require_owner_or_admin(event: Event, user: User, action: str) -> None:
    if not user.is_admin and event.created_by_id != user.id:
        raise HTTPException(status_code=403, detail=f"Not authorized to {action} this event")


# PUBLIC_INTERFACE
@router.get("/", response_model=EventListOut, summary="List events")
def list_events(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    event_status: str = Query(
        "published", alias="status", pattern="^(all|draft|published|cancelled|completed)$",
        description="Event status, or 'all'",
    ),
    event_type: Optional[EventTypeEnum] = Query(None),
    category: Optional[EventCategoryEnum] = Query(None),
    search: Optional[str] = Query(None, description="Matches title, description or location"),
    featured: Optional[bool] = Query(None),
    upcoming: Optional[bool] = Query(None),
    past: Optional[bool] = Query(None),
    db: Session = Depends(get_db),
):
    """
    List events, newest date last, featured events first within a date.
    """
    qset = db.query(Event).options(joinedload(Event.created_by))
    if event_status != "all":
        qset = qset.filter(Event.status == event_status)
    if event_type:
        qset = qset.filter(Event.event_type == event_type)
    if category:
        qset = qset.filter(Event.category == category)
    if featured:
        qset = qset.filter(Event.is_featured.is_(True))
    now = utcnow()
    if upcoming:
        qset = qset.filter(Event.date > now)
    elif past:
        qset = qset.filter(Event.date < now)
    if search:
        pattern = f"%{search}%"
        qset = qset.filter(
            or_(Event.title.ilike(pattern), Event.description.ilike(pattern), Event.location.ilike(pattern))
        )
    qset = qset.order_by(Event.date.asc(), Event.is_featured.desc(), Event.id)
    events, pagination = paginate(qset, page, limit)
    return EventListOut(events=[EventOut.model_validate(e) for e in events], pagination=pagination)


# PUBLIC_INTERFACE
@router.get("/user/registered", response_model=List[EventOut], summary="Events the current user registered for")
def registered_events(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return (
        db.query(Event)
        .filter(Event.attendees.any(User.id == current_user.id))
        .order_by(Event.date.asc())
        .all()
    )


# PUBLIC_INTERFACE
@router.get("/user/created", response_model=List[EventOut], summary="Events created by the current user")
def created_events(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return (
        db.query(Event)
        .filter(Event.created_by_id == current_user.id)
        .order_by(Event.created_at.desc(), Event.id.desc())
        .all()
    )


# PUBLIC_INTERFACE
@router.get("/stats/overview", response_model=EventStatsOut, summary="Event statistics")
def event_stats(db: Session = Depends(get_db), current_user: User = Depends(admin_required)):
    now = utcnow()
    count = func.count(Event.id)
    return EventStatsOut(
        total_events=db.query(count).scalar(),
        published_events=db.query(count).filter(Event.status == EventStatusEnum.published).scalar(),
        upcoming_events=db.query(count)
        .filter(Event.date > now, Event.status == EventStatusEnum.published)
        .scalar(),
        past_events=db.query(count).filter(Event.date < now).scalar(),
        events_by_type={
            t.value: c for t, c in db.query(Event.event_type, count).group_by(Event.event_type).all()
        },
        events_by_category={
            k.value: c for k, c in db.query(Event.category, count).group_by(Event.category).all()
        },
    )


# PUBLIC_INTERFACE
@router.get("/{event_id}", response_model=EventDetailOut, summary="Get event details")
def get_event(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: Optional[User] = Depends(get_optional_user),
):
    """
    Event details with attendees. Each read counts as a view.
    """
    event = _get_event_or_404(db, event_id)
    db.execute(
        update(Event)
        .where(Event.id == event_id)
        .values(views=Event.views + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(event)
    detail = EventDetailOut.model_validate(event)
    detail.is_user_registered = bool(current_user and event.has_attendee(current_user.id))
    return detail


# PUBLIC_INTERFACE
@router.post("/", response_model=EventOut, status_code=status.HTTP_201_CREATED, summary="Create event")
def create_event(
    event_in: EventCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(rbac_required(RoleEnum.admin.value, RoleEnum.member.value)),
):
    event = Event(**event_in.model_dump(), created_by_id=current_user.id, views=0)
    db.add(event)
    db.commit()
    db.refresh(event)
    logger.info("event created", extra={"event_id": event.id, "created_by": current_user.id})
    return event


# PUBLIC_INTERFACE
@router.put("/{event_id}", response_model=EventOut, summary="Update event")
def update_event(
    event_id: int,
    event_in: EventUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    event = _get_event_or_404(db, event_id)
    _require_owner_or_admin(event, current_user, "edit")
    for attr, value in event_in.model_dump(exclude_unset=True).items():
        setattr(event, attr, value)
    db.commit()
    db.refresh(event)
    return event


# PUBLIC_INTERFACE
@router.delete("/{event_id}", response_model=APIResponse, summary="Delete event")
def delete_event(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    event = _get_event_or_404(db, event_id)
    _require_owner_or_admin(event, current_user, "delete")
    db.delete(event)
    db.commit()
    logger.info("event deleted", extra={"event_id": event_id})
    return APIResponse(success=True, message="Event deleted successfully")


# PUBLIC_INTERFACE
@router.post("/{event_id}/register", response_model=APIResponse, responses={400: {"model": ErrorResponse}}, summary="Register for event")
def register_for_event(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    event = _get_event_or_404(db, event_id)
    now = utcnow()
    if event.status != EventStatusEnum.published:
        raise HTTPException(status_code=400, detail="Event is not available for registration")
    if event.date < now:
        raise HTTPException(status_code=400, detail="Event has already passed")
    if event.registration_required and event.registration_deadline and now > event.registration_deadline:
        raise HTTPException(status_code=400, detail="Registration deadline has passed")
    if event.capacity and event.registration_count >= event.capacity:
        raise HTTPException(status_code=400, detail="Event is at full capacity")
    if event.has_attendee(current_user.id):
        raise HTTPException(status_code=400, detail="Already registered for this event")
    event.attendees.append(current_user)
    db.commit()
    return APIResponse(success=True, message="Successfully registered for event")


# PUBLIC_INTERFACE
@router.delete("/{event_id}/register", response_model=APIResponse, responses={400: {"model": ErrorResponse}}, summary="Unregister from event")
def unregister_from_event(
    event_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    event = _get_event_or_404(db, event_id)
    if not event.has_attendee(current_user.id):
        raise HTTPException(status_code=400, detail="Not registered for this event")
    event.attendees = [u for u in event.attendees if u.id != current_user.id]
    db.commit()
    return APIResponse(success=True, message="Successfully unregistered from event")
