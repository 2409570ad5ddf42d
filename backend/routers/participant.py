from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from database import get_db
from models import OrganizerFollow, Registration, User, UserRole
from schemas import (
    FollowEnvelope,
    MyRegistrationListEnvelope,
    MyRegistrationResponse,
    OnboardingRequest,
    ParticipantProfileEnvelope,
    ParticipantProfileUpdate,
    build_account_response,
)
from security import require_participant

router = APIRouter()


def _followed_ids(db: Session, participant: User):
    rows = (
        db.query(OrganizerFollow.organizer_id)
        .filter(OrganizerFollow.participant_id == participant.id)
        .order_by(OrganizerFollow.id.asc())
        .all()
    )
    return [row.organizer_id for row in rows]


def _get_organizer_or_404(db: Session, organizer_id: int) -> User:
    organizer = db.query(User).filter(User.id == organizer_id, User.role == UserRole.ORGANIZER).first()
    if not organizer:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organizer not found")
    return organizer


@router.get("/participant/my-events", response_model=MyRegistrationListEnvelope)
def my_registrations(
    participant: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    rows = (
        db.query(Registration)
        .filter(Registration.participant_id == participant.id)
        .order_by(Registration.created_at.desc(), Registration.id.desc())
        .all()
    )
    return MyRegistrationListEnvelope(
        count=len(rows),
        registrations=[MyRegistrationResponse.model_validate(row) for row in rows],
    )


@router.post("/participant/follow/{organizer_id}", response_model=FollowEnvelope)
def follow_organizer(
    organizer_id: int,
    participant: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    organizer = _get_organizer_or_404(db, organizer_id)
    existing = (
        db.query(OrganizerFollow)
        .filter(OrganizerFollow.participant_id == participant.id, OrganizerFollow.organizer_id == organizer.id)
        .first()
    )
    if not existing:
        db.add(OrganizerFollow(participant_id=participant.id, organizer_id=organizer.id))
        db.commit()
    return FollowEnvelope(
        message=f"Following {organizer.organizer_name or 'organizer'}",
        followed_organizer_ids=_followed_ids(db, participant),
    )


@router.delete("/participant/follow/{organizer_id}", response_model=FollowEnvelope)
def unfollow_organizer(
    organizer_id: int,
    participant: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    organizer = _get_organizer_or_404(db, organizer_id)
    db.query(OrganizerFollow).filter(
        OrganizerFollow.participant_id == participant.id,
        OrganizerFollow.organizer_id == organizer.id,
    ).delete(synchronize_session=False)
    db.commit()
    return FollowEnvelope(
        message=f"Unfollowed {organizer.organizer_name or 'organizer'}",
        followed_organizer_ids=_followed_ids(db, participant),
    )


def _profile_envelope(db: Session, participant: User, message=None) -> ParticipantProfileEnvelope:
    return ParticipantProfileEnvelope(
        message=message,
        user=build_account_response(participant),
        followed_organizer_ids=_followed_ids(db, participant),
    )


@router.get("/participant/profile", response_model=ParticipantProfileEnvelope)
def get_participant_profile(
    participant: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    return _profile_envelope(db, participant)


@router.patch("/participant/profile", response_model=ParticipantProfileEnvelope)
def update_participant_profile(
    profile: ParticipantProfileUpdate,
    participant: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    if profile.first_name is not None:
        participant.first_name = profile.first_name.strip()
    if profile.last_name is not None:
        participant.last_name = profile.last_name.strip()
    if profile.contact_number is not None:
        participant.contact_number = profile.contact_number
    if profile.college is not None:
        participant.college = profile.college
    if profile.areas_of_interest is not None:
        participant.areas_of_interest = profile.areas_of_interest

    db.commit()
    db.refresh(participant)
    return _profile_envelope(db, participant, "Profile updated")


@router.post("/participant/onboarding", response_model=ParticipantProfileEnvelope)
def save_onboarding(
    preferences: OnboardingRequest,
    participant: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    organizer_ids = list(dict.fromkeys(preferences.followed_organizer_ids))
    for organizer_id in organizer_ids:
        _get_organizer_or_404(db, organizer_id)

    participant.areas_of_interest = preferences.areas_of_interest
    db.query(OrganizerFollow).filter(OrganizerFollow.participant_id == participant.id).delete(
        synchronize_session=False
    )
    for organizer_id in organizer_ids:
        db.add(OrganizerFollow(participant_id=participant.id, organizer_id=organizer_id))

    db.commit()
    db.refresh(participant)
    return _profile_envelope(db, participant, "Preferences saved")
