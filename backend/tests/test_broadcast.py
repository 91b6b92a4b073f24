import pytest
import sqlalchemy as sa

from wa_dashboard.domain.broadcasts import schemas
from wa_dashboard.domain.broadcasts import service as broadcast_service
from wa_dashboard.domain.broadcasts.db_models import BroadcastJob, BroadcastStatus
from wa_dashboard.domain.contacts.db_models import Contact
from wa_dashboard.domain.errors import DomainError
from wa_dashboard.domain.messages.db_models import Message

from tests.fakes import FakeWhatsAppGateway


def _create_contacts(client, *phone_numbers):
    ids = []
    for phone_number in phone_numbers:
        response = client.post("/api/contacts", json={"phone_number": phone_number})
        assert response.status_code == 201
        ids.append(response.json()["id"])
    return ids


def test_bulk_send_to_segment_runs_in_background(client, gateway):
    ids = _create_contacts(client, "15557001", "15557002", "15557003")
    segment = client.post("/api/segments", json={"name": "VIP"}).json()
    client.post(f"/api/segments/{segment['id']}/contacts", json={"contact_ids": ids})
    gateway.fail_for.add("15557002")

    response = client.post(
        "/api/bulk/send",
        json={"template_name": "spring_sale", "segment_id": segment["id"], "language_code": "en"},
    )

    assert response.status_code == 202
    body = response.json()
    assert body["total_contacts"] == 3
    assert body["status"] == "pending"

    job = client.get(f"/api/bulk/status/{body['job_id']}").json()
    assert job["status"] == "completed"
    assert job["total_sent"] == 2
    assert job["total_failed"] == 1
    assert job["segment_name"] == "VIP"
    assert job["completed_at"] is not None
    assert {call["to"] for call in gateway.template_calls} == {"15557001", "15557002", "15557003"}
    assert all(call["language_code"] == "en" for call in gateway.template_calls)

    history = client.get("/api/bulk/history").json()
    assert [item["id"] for item in history] == [body["job_id"]]


def test_bulk_send_to_explicit_contacts_ignores_unknown_ids(client, gateway):
    ids = _create_contacts(client, "15557101")

    response = client.post(
        "/api/bulk/send",
        json={"template_name": "promo", "contact_ids": [ids[0], ids[0], 99999]},
    )

    assert response.status_code == 202
    assert response.json()["total_contacts"] == 1
    assert len(gateway.template_calls) == 1


@pytest.mark.parametrize(
    "payload",
    [
        {"segment_id": 1},
        {"template_name": "  ", "contact_ids": [1]},
        {"template_name": "promo"},
        {"template_name": "promo", "contact_ids": [424242]},
        {"template_name": "promo", "segment_id": 424242},
    ],
)
def test_bulk_send_rejects_invalid_requests(client, gateway, payload):
    response = client.post("/api/bulk/send", json=payload)

    assert response.status_code == 400
    assert response.headers["content-type"].startswith("application/problem+json")
    assert gateway.calls == []


def test_bulk_send_to_empty_segment_is_rejected(client):
    segment = client.post("/api/segments", json={"name": "Empty"}).json()

    response = client.post("/api/bulk/send", json={"template_name": "promo", "segment_id": segment["id"]})

    assert response.status_code == 400
    assert "No contacts" in response.json()["detail"]


def test_bulk_status_unknown_job_is_404(client):
    assert client.get("/api/bulk/status/999").status_code == 404


@pytest.mark.anyio
async def test_run_broadcast_counts_errors_and_leaves_contacts_untouched(async_session_maker):
    gateway = FakeWhatsAppGateway()
    gateway.raise_for.add("15557202")
    async with async_session_maker() as session:
        contacts = [Contact(phone_number=f"1555720{index}") for index in range(1, 4)]
        session.add_all(contacts)
        await session.flush()
        job = await broadcast_service.create_job(
            session,
            schemas.BulkSendRequest(template_name="promo", contact_ids=[contact.id for contact in contacts]),
        )
        await session.commit()
        job_id = job.id

    result = await broadcast_service.run_broadcast(async_session_maker, gateway, job_id)

    assert result == {"sent": 2, "failed": 1}
    async with async_session_maker() as session:
        job = await session.get(BroadcastJob, job_id)
        messages = (await session.execute(sa.select(Message))).scalars().all()
        stored = (await session.execute(sa.select(Contact))).scalars().all()
    assert job.status == BroadcastStatus.completed
    assert (job.total_sent, job.total_failed) == (2, 1)
    assert {message.profile_name for message in messages} == {"Broadcast"}
    assert {message.message_text for message in messages} == {"[Template: promo]"}
    assert all(contact.last_message_at is None for contact in stored)


@pytest.mark.anyio
async def test_run_broadcast_missing_job_is_noop(async_session_maker):
    result = await broadcast_service.run_broadcast(async_session_maker, FakeWhatsAppGateway(), 12345)

    assert result == {"sent": 0, "failed": 0}


@pytest.mark.anyio
async def test_create_job_requires_target(async_session_maker):
    async with async_session_maker() as session:
        with pytest.raises(DomainError):
            await broadcast_service.create_job(session, schemas.BulkSendRequest(template_name="promo"))


def test_broadcast_uses_pacer_between_sends(client, gateway):
    waits = []

    class CountingPacer:
        async def wait(self):
            waits.append(1)
            return 0.0

    client.app.state.pacer = CountingPacer()
    ids = _create_contacts(client, "15557301", "15557302")

    response = client.post("/api/bulk/send", json={"template_name": "promo", "contact_ids": ids})

    assert response.status_code == 202
    assert len(waits) == 2
