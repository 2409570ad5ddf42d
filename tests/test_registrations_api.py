import csv
import io
from datetime import timedelta

from conftest import auth_headers, create_event, create_merch_event, iso, organizer_event
from models import AttendanceLog, ParticipantType, Registration, UserRole


def _register(client, event_id, user, form_responses=None):
    body = {"form_responses": form_responses or []}
    return client.post(f"/api/events/{event_id}/register", json=body, headers=auth_headers(user))


def _resolve(client, organizer, event_id, registration_id, action, note=None):
    return client.patch(
        f"/api/events/{event_id}/registrations/{registration_id}/approve-payment",
        json={"action": action, "note": note},
        headers=auth_headers(organizer),
    )


def _variant_stock(client, organizer, event_id):
    return organizer_event(client, organizer, event_id)["variants"][0]["stock"]


def test_free_registration_round_trip(client, organizer, participant):
    event = create_event(client, organizer, registration_fee=0)
    response = _register(client, event["id"], participant)
    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Registered successfully"
    registration = body["registration"]
    assert registration["status"] == "Confirmed"
    assert registration["ticket_id"].startswith("TKT-")
    assert registration["qr_code_url"].startswith("data:image/png;base64,")

    stored = organizer_event(client, organizer, event["id"])
    assert stored["registration_count"] == 1
    assert stored["revenue"] == 0


def test_paid_registration_round_trip(client, organizer, participant):
    event = create_event(client, organizer, registration_fee=500)
    response = _register(client, event["id"], participant)
    assert response.status_code == 201
    registration = response.json()["registration"]
    assert registration["status"] == "Pending"
    assert registration["ticket_id"] is None
    assert registration["amount_paid"] == 0
    assert organizer_event(client, organizer, event["id"])["registration_count"] == 1

    proof = client.patch(
        f"/api/events/{event['id']}/registrations/{registration['id']}/upload-payment",
        json={"payment_proof_url": "https://files.example.com/proof.png"},
        headers=auth_headers(participant),
    )
    assert proof.status_code == 200
    assert proof.json()["registration"]["payment_proof_url"] == "https://files.example.com/proof.png"

    approved = _resolve(client, organizer, event["id"], registration["id"], "approve", "Looks good")
    assert approved.status_code == 200
    result = approved.json()["registration"]
    assert result["status"] == "Approved"
    assert result["ticket_id"].startswith("TKT-")
    assert result["amount_paid"] == 500
    assert result["payment_note"] == "Looks good"

    stored = organizer_event(client, organizer, event["id"])
    assert stored["revenue"] == 500
    assert stored["registration_count"] == 1


def test_resolving_twice_fails(client, organizer, participant):
    event = create_event(client, organizer, registration_fee=100)
    registration = _register(client, event["id"], participant).json()["registration"]
    assert _resolve(client, organizer, event["id"], registration["id"], "approve").status_code == 200

    again = _resolve(client, organizer, event["id"], registration["id"], "reject")
    assert again.status_code == 400
    assert again.json()["message"] == "Registration is not in Pending state"
    assert organizer_event(client, organizer, event["id"])["revenue"] == 100


def test_duplicate_registration_blocked(client, organizer, participant):
    event = create_event(client, organizer)
    assert _register(client, event["id"], participant).status_code == 201
    again = _register(client, event["id"], participant)
    assert again.status_code == 400
    assert again.json()["message"] == "Already registered for this event"


def test_rejected_registration_can_retry_with_consistent_count(client, organizer, participant):
    event = create_event(client, organizer, registration_fee=200)
    first = _register(client, event["id"], participant).json()["registration"]
    assert _resolve(client, organizer, event["id"], first["id"], "reject", "Blurry proof").status_code == 200
    assert organizer_event(client, organizer, event["id"])["registration_count"] == 1

    retry = _register(client, event["id"], participant)
    assert retry.status_code == 201
    assert organizer_event(client, organizer, event["id"])["registration_count"] == 1


def test_rejected_retry_at_full_event_reuses_seat(client, organizer, participant, make_user):
    event = create_event(client, organizer, registration_fee=200, registration_limit=1)
    first = _register(client, event["id"], participant).json()["registration"]
    assert _resolve(client, organizer, event["id"], first["id"], "reject").status_code == 200

    retry = _register(client, event["id"], participant)
    assert retry.status_code == 201
    assert retry.json()["registration"]["status"] == "Pending"
    assert organizer_event(client, organizer, event["id"])["registration_count"] == 1

    other = _register(client, event["id"], make_user(UserRole.PARTICIPANT))
    assert other.status_code == 400
    assert other.json()["message"] == "Registration limit reached"


def test_registration_limit_reached(client, organizer, make_user):
    event = create_event(client, organizer, registration_limit=1)
    assert _register(client, event["id"], make_user(UserRole.PARTICIPANT)).status_code == 201

    second = _register(client, event["id"], make_user(UserRole.PARTICIPANT))
    assert second.status_code == 400
    assert second.json()["message"] == "Registration limit reached"
    assert organizer_event(client, organizer, event["id"])["registration_count"] == 1


def test_eligibility_is_enforced(client, organizer, make_user):
    event = create_event(client, organizer, eligibility="IIIT Only")
    outsider = make_user(UserRole.PARTICIPANT, participant_type=ParticipantType.NON_IIIT)
    response = _register(client, event["id"], outsider)
    assert response.status_code == 403
    assert response.json()["message"] == "This event is for IIIT participants only"


def test_deadline_and_status_gate_registration(client, organizer, participant):
    closed = create_event(client, organizer, registration_deadline=iso(timedelta(days=-1)))
    response = _register(client, closed["id"], participant)
    assert response.status_code == 400
    assert response.json()["message"] == "Registration deadline has passed"

    draft = create_event(client, organizer, publish=False)
    response = _register(client, draft["id"], participant)
    assert response.status_code == 400
    assert response.json()["message"] == "Event is not open for registration"


def test_wrong_endpoint_for_event_type(client, organizer, participant):
    merch = create_merch_event(client, organizer)
    response = _register(client, merch["id"], participant)
    assert response.status_code == 400
    assert response.json()["message"] == "Use /purchase for Merchandise events"


def test_required_form_fields(client, organizer, participant):
    fields = [
        {"id": "team", "label": "Team name", "type": "text", "required": True},
        {"id": "track", "label": "Track", "type": "dropdown", "options": ["AI", "Web"], "required": False},
    ]
    event = create_event(client, organizer, form_fields=fields)

    missing = _register(client, event["id"], participant)
    assert missing.status_code == 400
    assert missing.json()["message"] == "Missing response for required field: Team name"

    bad_option = _register(
        client,
        event["id"],
        participant,
        [{"field_id": "team", "response": "Nulls"}, {"field_id": "track", "response": "Mobile"}],
    )
    assert bad_option.status_code == 400

    ok = _register(client, event["id"], participant, [{"field_id": "team", "response": "Nulls"}])
    assert ok.status_code == 201
    assert ok.json()["registration"]["form_responses"] == [
        {"field_id": "team", "label": "Team name", "response": "Nulls"}
    ]


def test_form_answers_must_be_plain_values(client, organizer, participant):
    fields = [
        {"id": "team", "label": "Team name", "type": "text", "required": True},
        {"id": "diet", "label": "Diet", "type": "checkbox", "options": ["Veg", "Vegan"], "required": False},
    ]
    event = create_event(client, organizer, form_fields=fields)

    nested = _register(client, event["id"], participant, [{"field_id": "team", "response": {"name": "Nulls"}}])
    assert nested.status_code == 400
    assert nested.json()["message"] == "Invalid response for field: Team name"

    listed = _register(client, event["id"], participant, [{"field_id": "team", "response": ["Nulls"]}])
    assert listed.status_code == 400
    assert listed.json()["message"] == "Invalid response for field: Team name"

    nested_choice = _register(
        client,
        event["id"],
        participant,
        [{"field_id": "team", "response": "Nulls"}, {"field_id": "diet", "response": [{"pick": "Veg"}]}],
    )
    assert nested_choice.status_code == 400
    assert nested_choice.json()["message"] == "Invalid response for field: Diet"

    ok = _register(
        client,
        event["id"],
        participant,
        [{"field_id": "team", "response": "Nulls"}, {"field_id": "diet", "response": ["Veg"]}],
    )
    assert ok.status_code == 201
    assert organizer_event(client, organizer, event["id"])["registration_count"] == 1


def test_merchandise_reject_restores_stock(client, organizer, participant):
    event = create_merch_event(client, organizer)
    variant_id = event["variants"][0]["id"]

    purchase = client.post(
        f"/api/events/{event['id']}/purchase",
        json={"variant_id": variant_id, "quantity": 1},
        headers=auth_headers(participant),
    )
    assert purchase.status_code == 201
    order = purchase.json()["registration"]
    assert order["status"] == "Pending"
    assert order["ticket_id"].startswith("TKT-")
    assert order["amount_paid"] == 350
    assert _variant_stock(client, organizer, event["id"]) == 1
    assert organizer_event(client, organizer, event["id"])["registration_count"] == 0

    rejected = _resolve(client, organizer, event["id"], order["id"], "reject", "Payment not received")
    assert rejected.status_code == 200
    assert rejected.json()["registration"]["status"] == "Rejected"
    assert _variant_stock(client, organizer, event["id"]) == 2
    assert organizer_event(client, organizer, event["id"])["registration_count"] == 0


def test_merchandise_approve_counts_once(client, organizer, participant):
    event = create_merch_event(client, organizer)
    variant_id = event["variants"][0]["id"]
    order = client.post(
        f"/api/events/{event['id']}/purchase",
        json={"variant_id": variant_id},
        headers=auth_headers(participant),
    ).json()["registration"]
    ticket_before = order["ticket_id"]

    approved = _resolve(client, organizer, event["id"], order["id"], "approve")
    assert approved.status_code == 200
    assert approved.json()["registration"]["ticket_id"] == ticket_before
    assert approved.json()["registration"]["qr_code_url"].startswith("data:image/png;base64,")

    stored = organizer_event(client, organizer, event["id"])
    assert stored["registration_count"] == 1
    assert stored["revenue"] == 350


def test_merchandise_stock_and_limits(client, organizer, make_user):
    event = create_merch_event(
        client,
        organizer,
        variants=[{"name": "L / White", "stock": 1, "price": 200}],
        purchase_limit_per_participant=2,
    )
    variant_id = event["variants"][0]["id"]
    buyer = make_user(UserRole.PARTICIPANT)

    too_many = client.post(
        f"/api/events/{event['id']}/purchase",
        json={"variant_id": variant_id, "quantity": 2},
        headers=auth_headers(buyer),
    )
    assert too_many.status_code == 400
    assert too_many.json()["message"] == "Insufficient stock"

    over_limit = client.post(
        f"/api/events/{event['id']}/purchase",
        json={"variant_id": variant_id, "quantity": 3},
        headers=auth_headers(buyer),
    )
    assert over_limit.status_code == 400

    wrong_variant = client.post(
        f"/api/events/{event['id']}/purchase",
        json={"variant_id": variant_id + 999},
        headers=auth_headers(buyer),
    )
    assert wrong_variant.json()["message"] == "Invalid variant selected"
    assert _variant_stock(client, organizer, event["id"]) == 1


def test_merchandise_per_participant_limit(client, organizer, participant):
    event = create_merch_event(client, organizer, variants=[{"name": "S", "stock": 10, "price": 100}])
    variant_id = event["variants"][0]["id"]
    body = {"variant_id": variant_id, "quantity": 1}
    assert client.post(f"/api/events/{event['id']}/purchase", json=body, headers=auth_headers(participant)).status_code == 201

    second = client.post(f"/api/events/{event['id']}/purchase", json=body, headers=auth_headers(participant))
    assert second.status_code == 400
    assert second.json()["message"] == "Purchase limit reached for this event"


def test_scan_twice_reports_already_scanned(client, organizer, participant):
    event = create_event(client, organizer)
    ticket_id = _register(client, event["id"], participant).json()["registration"]["ticket_id"]

    first = client.get(f"/api/events/{event['id']}/registrations/scan/{ticket_id}", headers=auth_headers(organizer))
    assert first.status_code == 200
    assert first.json()["registration"]["attended"] is True
    attended_at = first.json()["registration"]["attended_at"]

    second = client.get(f"/api/events/{event['id']}/registrations/scan/{ticket_id}", headers=auth_headers(organizer))
    assert second.status_code == 400
    body = second.json()
    assert body["message"] == "Ticket already scanned"
    assert body["already_scanned"] is True
    assert body["attended_at"] == attended_at

    unknown = client.get(f"/api/events/{event['id']}/registrations/scan/TKT-0000000000", headers=auth_headers(organizer))
    assert unknown.status_code == 404


def test_pending_ticket_cannot_be_scanned(client, organizer, participant):
    event = create_merch_event(client, organizer)
    order = client.post(
        f"/api/events/{event['id']}/purchase",
        json={"variant_id": event["variants"][0]["id"]},
        headers=auth_headers(participant),
    ).json()["registration"]
    response = client.get(
        f"/api/events/{event['id']}/registrations/scan/{order['ticket_id']}",
        headers=auth_headers(organizer),
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Ticket is not confirmed"


def test_direct_mark_once(client, organizer, participant):
    event = create_event(client, organizer)
    registration = _register(client, event["id"], participant).json()["registration"]
    url = f"/api/events/{event['id']}/registrations/{registration['id']}/attendance"

    first = client.patch(url, json={"note": "Front desk"}, headers=auth_headers(organizer))
    assert first.status_code == 200
    assert first.json()["registration"]["attendance_note"] == "Front desk"

    second = client.patch(url, json={}, headers=auth_headers(organizer))
    assert second.status_code == 400
    assert second.json()["message"] == "Already marked as attended"


def test_manual_override_requires_note_and_logs(client, organizer, participant, db):
    event = create_event(client, organizer)
    registration = _register(client, event["id"], participant).json()["registration"]
    url = f"/api/events/{event['id']}/registrations/{registration['id']}/manual-attend"

    blank = client.patch(url, json={"action": "mark", "note": "   "}, headers=auth_headers(organizer))
    assert blank.status_code == 400
    assert blank.json()["message"] == "A reason note is required for manual override"
    assert db.query(AttendanceLog).count() == 0

    marked = client.patch(url, json={"action": "mark", "note": "Scanner offline"}, headers=auth_headers(organizer))
    assert marked.status_code == 200
    assert marked.json()["registration"]["attended"] is True

    unmarked = client.patch(url, json={"action": "unmark", "note": " Marked by mistake "}, headers=auth_headers(organizer))
    assert unmarked.status_code == 200
    result = unmarked.json()["registration"]
    assert result["attended"] is False
    assert result["attended_at"] is None
    assert [entry["action"] for entry in result["attendance_log"]] == ["mark", "unmark"]
    assert result["attendance_log"][1]["note"] == "Marked by mistake"
    assert result["attendance_log"][1]["actor_id"] == organizer.id


def test_registrations_list_and_export(client, organizer, participant):
    event = create_event(client, organizer)
    _register(client, event["id"], participant)

    listing = client.get(f"/api/events/{event['id']}/registrations", headers=auth_headers(organizer))
    assert listing.status_code == 200
    rows = listing.json()["registrations"]
    assert len(rows) == 1
    assert rows[0]["participant"]["email"] == participant.email

    export = client.get(
        f"/api/events/{event['id']}/registrations/export",
        params={"format": "csv", "scope": "attendance"},
        headers=auth_headers(organizer),
    )
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    lines = export.text.strip().splitlines()
    assert lines[0].startswith("Ticket ID,Name,Email")
    assert participant.email in lines[1]

    xlsx = client.get(
        f"/api/events/{event['id']}/registrations/export",
        params={"format": "xlsx"},
        headers=auth_headers(organizer),
    )
    assert xlsx.status_code == 200
    assert xlsx.content[:2] == b"PK"


def test_participant_cannot_list_registrations(client, organizer, participant):
    event = create_event(client, organizer)
    response = client.get(f"/api/events/{event['id']}/registrations", headers=auth_headers(participant))
    assert response.status_code == 403


def test_payment_proof_only_for_owner_while_pending(client, organizer, participant, make_user):
    event = create_event(client, organizer, registration_fee=100)
    registration = _register(client, event["id"], participant).json()["registration"]
    url = f"/api/events/{event['id']}/registrations/{registration['id']}/upload-payment"
    body = {"payment_proof_url": "https://files.example.com/p.png"}

    stranger = make_user(UserRole.PARTICIPANT)
    assert client.patch(url, json=body, headers=auth_headers(stranger)).status_code == 404
    assert client.patch(url, json={"payment_proof_url": "not-a-url"}, headers=auth_headers(participant)).status_code == 400

    _resolve(client, organizer, event["id"], registration["id"], "approve")
    late = client.patch(url, json=body, headers=auth_headers(participant))
    assert late.status_code == 400


def test_presign_without_s3_config(client, organizer, participant):
    event = create_event(client, organizer, registration_fee=100)
    registration = _register(client, event["id"], participant).json()["registration"]
    response = client.post(
        f"/api/events/{event['id']}/registrations/{registration['id']}/payment-proof/presign",
        json={"filename": "proof.png", "content_type": "image/png"},
        headers=auth_headers(participant),
    )
    assert response.status_code == 500
    assert response.json()["message"] == "S3 not configured"


def test_my_events_lists_registrations(client, organizer, participant):
    event = create_event(client, organizer, name="Poetry Slam")
    _register(client, event["id"], participant)
    response = client.get("/api/participant/my-events", headers=auth_headers(participant))
    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    assert body["registrations"][0]["event"]["name"] == "Poetry Slam"


def test_reset_trending_script(client, organizer, participant, db):
    from scripts.reset_trending import reset_recent_registrations

    event = create_event(client, organizer)
    _register(client, event["id"], participant)
    assert organizer_event(client, organizer, event["id"])["recent_registrations"] == 1

    assert reset_recent_registrations(db, event["id"]) == 1
    assert organizer_event(client, organizer, event["id"])["recent_registrations"] == 0


def test_export_flattens_structured_answers(client, organizer, participant, db):
    fields = [{"id": "team", "label": "Team name", "type": "text", "required": False}]
    event = create_event(client, organizer, form_fields=fields)
    assert _register(client, event["id"], participant, [{"field_id": "team", "response": "Nulls"}]).status_code == 201

    # rows written before answers were checked can still hold nested values
    stored = db.query(Registration).filter(Registration.event_id == event["id"]).one()
    stored.form_responses = [{"field_id": "team", "label": "Team name", "response": {"name": "Nulls", "size": 3}}]
    db.commit()

    export = client.get(
        f"/api/events/{event['id']}/registrations/export",
        params={"format": "csv"},
        headers=auth_headers(organizer),
    )
    assert export.status_code == 200
    header, row = list(csv.reader(io.StringIO(export.text)))
    assert header[-1] == "Team name"
    assert row[-1] == '{"name": "Nulls", "size": 3}'

    xlsx = client.get(
        f"/api/events/{event['id']}/registrations/export",
        params={"format": "xlsx"},
        headers=auth_headers(organizer),
    )
    assert xlsx.status_code == 200
    assert xlsx.content[:2] == b"PK"
