import io

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from database import get_db
from models import RegistrationStatus, User
from registration_service import (
    TICKETED_STATUSES,
    attach_payment_proof,
    get_owned_event_or_404,
    get_participant_registration_or_404,
    list_registrations,
    manual_attendance,
    mark_attendance,
    purchase_merchandise,
    register_for_event,
    resolve_payment,
    scan_ticket,
)
from schemas import (
    AttendanceMarkRequest,
    ExportFormatEnum,
    ExportScopeEnum,
    ManualAttendanceRequest,
    PaymentDecisionRequest,
    PaymentProofUpdate,
    PresignRequest,
    PresignResponse,
    PurchaseRequest,
    RegisterRequest,
    RegistrantListEnvelope,
    RegistrantResponse,
    RegistrationEnvelope,
    RegistrationResponse,
)
from security import require_active_organizer, require_participant
from utils import (
    PAYMENT_PROOF_TYPES,
    XLSX_MEDIA_TYPE,
    _export_to_csv,
    _export_to_xlsx,
    _generate_presigned_put_url,
    build_registration_export,
)

router = APIRouter()


def _envelope(registration, message: str) -> RegistrationEnvelope:
    return RegistrationEnvelope(message=message, registration=RegistrationResponse.model_validate(registration))


# Participant
@router.post("/events/{event_id}/register", status_code=status.HTTP_201_CREATED, response_model=RegistrationEnvelope)
def register(
    event_id: int,
    payload: RegisterRequest,
    background_tasks: BackgroundTasks,
    participant: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    registration = register_for_event(db, event_id, participant, payload.form_responses, background_tasks)
    if registration.status == RegistrationStatus.PENDING:
        message = "Registered! Please upload payment proof to confirm."
    else:
        message = "Registered successfully"
    return _envelope(registration, message)


@router.post("/events/{event_id}/purchase", status_code=status.HTTP_201_CREATED, response_model=RegistrationEnvelope)
def purchase(
    event_id: int,
    payload: PurchaseRequest,
    participant: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    registration = purchase_merchandise(db, event_id, participant, payload.variant_id, payload.quantity)
    return _envelope(registration, "Purchase created. Please upload payment proof.")


@router.post(
    "/events/{event_id}/registrations/{registration_id}/payment-proof/presign",
    response_model=PresignResponse,
)
def presign_payment_proof(
    event_id: int,
    registration_id: int,
    payload: PresignRequest,
    participant: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    registration = get_participant_registration_or_404(db, event_id, registration_id, participant)
    if registration.status != RegistrationStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Payment proof can only be attached while the registration is Pending",
        )
    data = _generate_presigned_put_url(
        f"payment-proofs/{event_id}/{registration.id}",
        payload.filename,
        payload.content_type,
        allowed_types=PAYMENT_PROOF_TYPES,
    )
    return PresignResponse(**data)


@router.patch(
    "/events/{event_id}/registrations/{registration_id}/upload-payment",
    response_model=RegistrationEnvelope,
)
def upload_payment(
    event_id: int,
    registration_id: int,
    payload: PaymentProofUpdate,
    participant: User = Depends(require_participant),
    db: Session = Depends(get_db),
):
    registration = attach_payment_proof(db, event_id, registration_id, participant, payload.payment_proof_url)
    return _envelope(registration, "Payment proof uploaded")


# Organizer
@router.get("/events/{event_id}/registrations", response_model=RegistrantListEnvelope)
def registrations(
    event_id: int,
    organizer: User = Depends(require_active_organizer),
    db: Session = Depends(get_db),
):
    event = get_owned_event_or_404(db, event_id, organizer)
    rows = list_registrations(db, event)
    return RegistrantListEnvelope(
        count=len(rows),
        registrations=[RegistrantResponse.model_validate(row) for row in rows],
    )


@router.get("/events/{event_id}/registrations/export")
def export_registrations(
    event_id: int,
    format: ExportFormatEnum = Query(ExportFormatEnum.CSV),
    scope: ExportScopeEnum = Query(ExportScopeEnum.ALL),
    organizer: User = Depends(require_active_organizer),
    db: Session = Depends(get_db),
):
    event = get_owned_event_or_404(db, event_id, organizer)
    rows = list_registrations(db, event)
    if scope == ExportScopeEnum.ATTENDANCE:
        rows = [row for row in rows if row.status in TICKETED_STATUSES]
    headers, table = build_registration_export(rows, event.form_fields, include_form=scope == ExportScopeEnum.ALL)

    if format == ExportFormatEnum.XLSX:
        content = _export_to_xlsx(headers, table)
        media_type = XLSX_MEDIA_TYPE
        filename = f"event_{event.id}_{scope.value}.xlsx"
    else:
        content = _export_to_csv(headers, table)
        media_type = "text/csv"
        filename = f"event_{event.id}_{scope.value}.csv"
    return StreamingResponse(io.BytesIO(content), media_type=media_type, headers={"Content-Disposition": f"attachment; filename={filename}"})


@router.patch(
    "/events/{event_id}/registrations/{registration_id}/attendance",
    response_model=RegistrationEnvelope,
)
def attendance(
    event_id: int,
    registration_id: int,
    payload: AttendanceMarkRequest,
    organizer: User = Depends(require_active_organizer),
    db: Session = Depends(get_db),
):
    event = get_owned_event_or_404(db, event_id, organizer)
    registration = mark_attendance(db, event, registration_id, payload.note)
    return _envelope(registration, "Attendance marked")


@router.patch(
    "/events/{event_id}/registrations/{registration_id}/approve-payment",
    response_model=RegistrationEnvelope,
)
def approve_payment(
    event_id: int,
    registration_id: int,
    payload: PaymentDecisionRequest,
    background_tasks: BackgroundTasks,
    organizer: User = Depends(require_active_organizer),
    db: Session = Depends(get_db),
):
    event = get_owned_event_or_404(db, event_id, organizer)
    registration = resolve_payment(db, event, registration_id, payload.action.value, payload.note, background_tasks)
    message = "Payment approved" if registration.status == RegistrationStatus.APPROVED else "Payment rejected"
    return _envelope(registration, message)


@router.get("/events/{event_id}/registrations/scan/{ticket_id}", response_model=RegistrationEnvelope)
def scan(
    event_id: int,
    ticket_id: str,
    organizer: User = Depends(require_active_organizer),
    db: Session = Depends(get_db),
):
    event = get_owned_event_or_404(db, event_id, organizer)
    registration, already_scanned = scan_ticket(db, event, ticket_id)
    if already_scanned:
        scanned = jsonable_encoder(RegistrationResponse.model_validate(registration))
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "message": "Ticket already scanned",
                "already_scanned": True,
                "attended_at": scanned["attended_at"],
                "registration": scanned,
            },
        )
    return _envelope(registration, "Attendance marked via QR scan")


@router.patch(
    "/events/{event_id}/registrations/{registration_id}/manual-attend",
    response_model=RegistrationEnvelope,
)
def manual_attend(
    event_id: int,
    registration_id: int,
    payload: ManualAttendanceRequest,
    organizer: User = Depends(require_active_organizer),
    db: Session = Depends(get_db),
):
    event = get_owned_event_or_404(db, event_id, organizer)
    registration = manual_attendance(db, event, registration_id, organizer, payload.action.value, payload.note)
    verb = "marked" if registration.attended else "unmarked"
    return _envelope(registration, f"Attendance {verb} (manual override)")
