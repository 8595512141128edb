"""Tests for n8n webhook delivery: retries, backoff, transport and outcome recording."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from admissions.config import Settings
from admissions.services.lead_store import LeadStore
from admissions.services.validation import LeadInput
from admissions.services.webhook_notifier import (
    USER_AGENT,
    DeliveryState,
    HttpxWebhookTransport,
    LeadSnapshot,
    WebhookNotifier,
    build_webhook_payload,
    deliver_lead_webhook,
)

from conftest import WEBHOOK_URL, FakeTransport


def _snapshot(**overrides) -> LeadSnapshot:
    fields = dict(
        id=1,
        name="Aarav Sharma",
        phone_number="9876543210",
        email="aarav@example.com",
        stream="Science",
        submitted_at=datetime(2024, 6, 1, 10, 30, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return LeadSnapshot(**fields)


def _notifier(transport, sleep, **kwargs) -> WebhookNotifier:
    return WebhookNotifier(url=WEBHOOK_URL, transport=transport, sleep=sleep, **kwargs)


# ---------------------------------------------------------------------------
# Payload
# ---------------------------------------------------------------------------


def test_payload_uses_workflow_field_names():
    payload = build_webhook_payload(_snapshot())
    assert payload == {
        "Name": "Aarav Sharma",
        "Phone Number": "9876543210",
        "Email": "aarav@example.com",
        "Stream": "Science",
        "submittedAt": "2024-06-01T10:30:00+00:00",
    }


def test_payload_treats_naive_timestamps_as_utc():
    payload = build_webhook_payload(_snapshot(submitted_at=datetime(2024, 6, 1, 10, 30)))
    assert payload["submittedAt"] == "2024-06-01T10:30:00+00:00"


# ---------------------------------------------------------------------------
# DeliveryState
# ---------------------------------------------------------------------------


def test_delivery_state_backoff_doubles():
    state = DeliveryState(max_attempts=4, initial_delay=1.0)
    delays = []
    for _ in range(3):
        state.record_response(503)
        delays.append(state.next_delay())
    assert delays == [1.0, 2.0, 4.0]
    assert not state.done

    state.record_response(503)
    assert state.done
    assert not state.result().success


def test_delivery_state_client_error_is_terminal():
    state = DeliveryState()
    state.record_response(404)
    assert state.done
    assert state.result().error == "Webhook responded with HTTP 404"


def test_delivery_state_redirect_counts_as_delivered():
    state = DeliveryState()
    state.record_response(302)
    assert state.delivered
    assert state.result().error is None


# ---------------------------------------------------------------------------
# WebhookNotifier
# ---------------------------------------------------------------------------


async def test_success_on_first_attempt(fake_sleep):
    transport = FakeTransport([200])
    result = await _notifier(transport, fake_sleep).notify(_snapshot())

    assert result.success is True
    assert result.attempts == 1
    assert result.status == 200
    assert result.skipped is False
    assert fake_sleep.delays == []
    assert transport.calls[0]["url"] == WEBHOOK_URL
    assert transport.calls[0]["payload"]["Phone Number"] == "9876543210"


async def test_server_errors_retry_with_backoff(fake_sleep):
    transport = FakeTransport([500])
    result = await _notifier(transport, fake_sleep).notify(_snapshot())

    assert result.success is False
    assert result.attempts == 3
    assert result.status == 500
    assert result.error == "Webhook responded with HTTP 500"
    assert len(transport.calls) == 3
    assert fake_sleep.delays == [1.0, 2.0]


async def test_recovers_after_transient_failures(fake_sleep):
    transport = FakeTransport([502, httpx.ConnectError("connection refused"), 200])
    result = await _notifier(transport, fake_sleep).notify(_snapshot())

    assert result.success is True
    assert result.attempts == 3
    assert result.error is None
    assert fake_sleep.delays == [1.0, 2.0]


async def test_client_error_is_not_retried(fake_sleep):
    transport = FakeTransport([400])
    result = await _notifier(transport, fake_sleep).notify(_snapshot())

    assert result.success is False
    assert result.attempts == 1
    assert result.status == 400
    assert fake_sleep.delays == []


async def test_timeouts_are_retried(fake_sleep):
    transport = FakeTransport([httpx.ReadTimeout("timed out")])
    result = await _notifier(transport, fake_sleep, max_attempts=2, initial_delay=0.5).notify(_snapshot())

    assert result.success is False
    assert result.attempts == 2
    assert result.status is None
    assert result.error == "timed out"
    assert fake_sleep.delays == [0.5]


async def test_unexpected_transport_errors_do_not_escape(fake_sleep):
    transport = FakeTransport([RuntimeError("boom")])
    result = await _notifier(transport, fake_sleep).notify(_snapshot())

    assert result.success is False
    assert result.attempts == 3
    assert result.error == "boom"


async def test_missing_url_skips_delivery(fake_sleep):
    transport = FakeTransport([200])
    notifier = WebhookNotifier(url="  ", transport=transport, sleep=fake_sleep)
    result = await notifier.notify(_snapshot())

    assert notifier.enabled is False
    assert result.success is True
    assert result.skipped is True
    assert result.attempts == 0
    assert transport.calls == []


def test_from_settings():
    settings = Settings(
        N8N_WEBHOOK_URL=WEBHOOK_URL,
        WEBHOOK_MAX_ATTEMPTS=5,
        WEBHOOK_INITIAL_RETRY_DELAY=0.25,
        WEBHOOK_TIMEOUT_SECONDS=3,
    )
    notifier = WebhookNotifier.from_settings(settings)

    assert notifier.url == WEBHOOK_URL
    assert notifier.max_attempts == 5
    assert notifier.initial_delay == 0.25
    assert notifier.timeout == 3


# ---------------------------------------------------------------------------
# HttpxWebhookTransport
# ---------------------------------------------------------------------------


async def test_httpx_transport_posts_json_with_headers(fake_sleep):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        notifier = _notifier(HttpxWebhookTransport(client=http_client), fake_sleep)
        result = await notifier.notify(_snapshot())

    assert result.success is True
    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == WEBHOOK_URL
    assert request.headers["user-agent"] == USER_AGENT
    assert request.headers["content-type"] == "application/json"
    assert json.loads(request.content)["Name"] == "Aarav Sharma"


async def test_httpx_transport_timeout_then_success(fake_sleep):
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(201)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        notifier = _notifier(HttpxWebhookTransport(client=http_client), fake_sleep)
        result = await notifier.notify(_snapshot())

    assert result.success is True
    assert result.attempts == 2
    assert result.status == 201
    assert fake_sleep.delays == [1.0]


# ---------------------------------------------------------------------------
# deliver_lead_webhook
# ---------------------------------------------------------------------------


@pytest.fixture
async def stored_lead(database):
    async with database.session() as session:
        lead = await LeadStore(session).create(
            LeadInput(name="Aarav Sharma", phone_number="9876543210", email="aarav@example.com", stream="Science")
        )
    return LeadSnapshot.from_lead(lead)


async def test_deliver_records_failure_then_success(database, stored_lead, fake_sleep):
    failing = _notifier(FakeTransport([500]), fake_sleep)
    result = await deliver_lead_webhook(database, failing, stored_lead)
    assert result.success is False

    async with database.session() as session:
        lead = await LeadStore(session).get(stored_lead.id)
        assert lead.webhook_status == "failed"
        assert lead.webhook_attempts == 3
        assert lead.webhook_error == "Webhook responded with HTTP 500"
        assert len(lead.webhook_logs) == 1

    working = _notifier(FakeTransport([200]), fake_sleep)
    await deliver_lead_webhook(database, working, stored_lead)

    async with database.session() as session:
        lead = await LeadStore(session).get(stored_lead.id)
        assert lead.webhook_status == "sent"
        assert lead.webhook_attempts == 4
        assert lead.webhook_error is None
        assert len(lead.webhook_logs) == 2


async def test_deliver_skipped_leaves_lead_untouched(database, stored_lead, fake_sleep):
    notifier = WebhookNotifier(url=None, transport=FakeTransport([200]), sleep=fake_sleep)
    result = await deliver_lead_webhook(database, notifier, stored_lead)
    assert result.skipped is True

    async with database.session() as session:
        lead = await LeadStore(session).get(stored_lead.id)
        assert lead.webhook_status == "pending"
        assert lead.webhook_attempts == 0
        assert lead.webhook_logs == []


async def test_deliver_swallows_recording_errors(database, fake_sleep):
    # Lead 404 was never stored; recording fails but delivery result is returned
    snapshot = _snapshot(id=404)
    result = await deliver_lead_webhook(database, _notifier(FakeTransport([200]), fake_sleep), snapshot)
    assert result.success is True
