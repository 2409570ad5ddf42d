import csv
import io
import json
import os
import uuid
from pathlib import Path
from typing import Dict, List, Optional

import boto3
from botocore.config import Config
from fastapi import HTTPException, status
from openpyxl import Workbook

AWS_REGION = os.environ.get("AWS_REGION")
S3_BUCKET_NAME = os.environ.get("S3_BUCKET_NAME")
S3_ACCESS_KEY = os.environ.get("S3_ACCESS_KEY") or os.environ.get("AWS_ACCESS_KEY_ID")
S3_SECRET_KEY = os.environ.get("S3_SECRET_KEY") or os.environ.get("AWS_SECRET_ACCESS_KEY")

PAYMENT_PROOF_TYPES = ["image/png", "image/jpeg", "image/webp", "application/pdf"]
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

S3_CLIENT = None
if AWS_REGION and S3_BUCKET_NAME and S3_ACCESS_KEY and S3_SECRET_KEY:
    s3_config = Config(signature_version="s3v4", s3={"addressing_style": "virtual"})
    S3_CLIENT = boto3.client(
        "s3",
        region_name=AWS_REGION,
        aws_access_key_id=S3_ACCESS_KEY,
        aws_secret_access_key=S3_SECRET_KEY,
        endpoint_url=f"https://s3.{AWS_REGION}.amazonaws.com",
        config=s3_config,
    )


def _build_s3_url(key: str) -> str:
    if not S3_BUCKET_NAME or not AWS_REGION:
        raise RuntimeError("S3 configuration missing")
    return f"https://{S3_BUCKET_NAME}.s3.{AWS_REGION}.amazonaws.com/{key}"


def _generate_presigned_put_url(
    key_prefix: str,
    filename: str,
    content_type: str,
    allowed_types: Optional[List[str]] = None,
    expires_in: int = 600
) -> Dict[str, str]:
    if not S3_CLIENT or not S3_BUCKET_NAME or not AWS_REGION:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="S3 not configured")
    if not filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing filename")
    if not content_type:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing content type")
    if allowed_types and content_type not in allowed_types:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid file type")

    extension = Path(filename).suffix.lower()
    key = f"{key_prefix.rstrip('/')}/{uuid.uuid4().hex}{extension}"

    try:
        upload_url = S3_CLIENT.generate_presigned_url(
            "put_object",
            Params={
                "Bucket": S3_BUCKET_NAME,
                "Key": key,
                "ContentType": content_type
            },
            ExpiresIn=expires_in
        )
    except Exception as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create presigned URL") from exc

    return {
        "upload_url": upload_url,
        "public_url": _build_s3_url(key),
        "key": key,
        "content_type": content_type
    }


def _export_to_csv(headers: List[str], rows: List[List[object]]) -> bytes:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(headers)
    writer.writerows(rows)
    return output.getvalue().encode("utf-8")


def _export_to_xlsx(headers: List[str], rows: List[List[object]]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.append(headers)
    for row in rows:
        ws.append(row)
    out = io.BytesIO()
    wb.save(out)
    out.seek(0)
    return out.read()


def _cell_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else ""


def _cell_answer(answer):
    if answer is None:
        return ""
    if isinstance(answer, list):
        return ", ".join(json.dumps(item, sort_keys=True) if isinstance(item, (dict, list)) else str(item) for item in answer)
    if isinstance(answer, (str, int, float, bool)):
        return answer
    # spreadsheet cells only hold plain values
    return json.dumps(answer, sort_keys=True)


def build_registration_export(registrations, form_fields: Optional[list], include_form: bool = True):
    """Header row plus one row per registration; form answers become extra columns."""
    form_columns = [(str(field["id"]), field["label"]) for field in (form_fields or [])] if include_form else []
    headers = [
        "Ticket ID",
        "Name",
        "Email",
        "Participant Type",
        "College",
        "Status",
        "Variant",
        "Quantity",
        "Amount Paid",
        "Attended",
        "Attended At",
        "Registered At",
    ] + [label for _, label in form_columns]

    rows = []
    for registration in registrations:
        participant = registration.participant
        name = " ".join(part for part in [participant.first_name, participant.last_name] if part) if participant else ""
        answers = {str(item.get("field_id")): item.get("response") for item in (registration.form_responses or [])}
        row = [
            registration.ticket_id or "",
            name,
            participant.email if participant else "",
            participant.participant_type.value if participant and participant.participant_type else "",
            (participant.college or "") if participant else "",
            registration.status.value,
            registration.variant.name if registration.variant else "",
            registration.quantity,
            float(registration.amount_paid or 0),
            "Yes" if registration.attended else "No",
            _cell_time(registration.attended_at),
            _cell_time(registration.created_at),
        ]
        for field_id, _ in form_columns:
            row.append(_cell_answer(answers.get(field_id)))
        rows.append(row)
    return headers, rows
