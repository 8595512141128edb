"""n8n webhook delivery with bounded retries and exponential backoff.

The notifier never raises: every failure ends up in a ``WebhookResult``.
Network I/O sits behind ``WebhookTransport`` and the retry bookkeeping lives
in ``DeliveryState`` so both can be exercised without a network.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import httpx
from prometheus_client import Counter

from admissions.config import Settings, get_settings
from admissions.services.lead_store import LeadStore

logger = logging.getLogger(__name__)

USER_AGENT = "UniversityLeads-Server/1.0"

WEBHOOK_DELIVERIES_TOTAL = Counter(
    "webhook_deliveries_total",
    "n8n webhook deliveries by final outcome",
    ["outcome"],  # sent | failed | skipped
)


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class WebhookTransport(Protocol):
    async def post(self, url: str, payload: Dict[str, Any], timeout: float) -> int:
        """POST *payload* as JSON and return the HTTP status code.

        Raises ``httpx.TransportError`` (timeouts included) when no response
        was received.
        """
        ...


# Module-level shared httpx client with connection pooling.
_shared_client: Optional[httpx.AsyncClient] = None


def _get_shared_client() -> httpx.AsyncClient:
    global _shared_client
    if _shared_client is None or _shared_client.is_closed:
        _shared_client = httpx.AsyncClient(
            limits=httpx.Limits(
                max_connections=20,
                max_keepalive_connections=10,
                keepalive_expiry=120,
            ),
            headers={"User-Agent": USER_AGENT},
        )
    return _shared_client


async def close_shared_client() -> None:
    """Close the shared httpx client (call on app shutdown)."""
    global _shared_client
    if _shared_client is not None and not _shared_client.is_closed:
        await _shared_client.aclose()
        _shared_client = None


class HttpxWebhookTransport:
    """Default transport backed by ``httpx.AsyncClient``."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client

    async def post(self, url: str, payload: Dict[str, Any], timeout: float) -> int:
        client = self._client or _get_shared_client()
        response = await client.post(
            url,
            json=payload,
            headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
            timeout=timeout,
        )
        return response.status_code


# ---------------------------------------------------------------------------
# Retry state machine
# ---------------------------------------------------------------------------


@dataclass
class WebhookResult:
    success: bool
    attempts: int = 0
    status: Optional[int] = None
    error: Optional[str] = None
    skipped: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "attempts": self.attempts,
            "status": self.status,
            "error": self.error,
            "skipped": self.skipped,
        }


@dataclass
class DeliveryState:
    """
    Attempt bookkeeping for one delivery.

    States: in progress -> delivered | failed. A 4xx response or running out
    of attempts makes the state terminal; network errors and 5xx keep it open.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    attempts: int = 0
    last_status: Optional[int] = None
    last_error: Optional[str] = None
    delivered: bool = False
    terminal: bool = False
    delays: list = field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.delivered or self.terminal or self.attempts >= self.max_attempts

    def next_delay(self) -> float:
        """Backoff to sleep after the failed attempt just recorded."""
        return self.initial_delay * (2 ** (self.attempts - 1))

    def record_response(self, status: int) -> None:
        self.attempts += 1
        self.last_status = status
        if 200 <= status < 400:
            self.delivered = True
            self.last_error = None
            return
        self.last_error = f"Webhook responded with HTTP {status}"
        if 400 <= status < 500:
            # Client errors will not fix themselves
            self.terminal = True

    def record_exception(self, exc: BaseException) -> None:
        self.attempts += 1
        self.last_status = None
        self.last_error = str(exc) or exc.__class__.__name__

    def result(self) -> WebhookResult:
        return WebhookResult(
            success=self.delivered,
            attempts=self.attempts,
            status=self.last_status,
            error=None if self.delivered else self.last_error,
        )


# ---------------------------------------------------------------------------
# Notifier
# ---------------------------------------------------------------------------


def build_webhook_payload(lead: Any) -> Dict[str, Any]:
    """Shape a lead (ORM object or snapshot) the way the n8n workflow expects."""
    submitted_at = getattr(lead, "submitted_at", None) or datetime.now(timezone.utc)
    if isinstance(submitted_at, datetime):
        if submitted_at.tzinfo is None:
            submitted_at = submitted_at.replace(tzinfo=timezone.utc)
        submitted_at = submitted_at.isoformat()
    return {
        "Name": lead.name,
        "Phone Number": str(lead.phone_number),
        "Email": lead.email,
        "Stream": lead.stream,
        "submittedAt": submitted_at,
    }


@dataclass(frozen=True)
class LeadSnapshot:
    """Immutable copy of the fields the webhook needs, detached from any session."""

    id: int
    name: str
    phone_number: str
    email: str
    stream: str
    submitted_at: datetime

    @classmethod
    def from_lead(cls, lead: Any) -> "LeadSnapshot":
        return cls(
            id=lead.id,
            name=lead.name,
            phone_number=lead.phone_number,
            email=lead.email,
            stream=lead.stream,
            submitted_at=lead.submitted_at,
        )


class WebhookNotifier:
    """
    Sends lead payloads to the configured n8n webhook.

    Usage:
        notifier = WebhookNotifier(url="https://n8n.example.com/webhook/leads")
        result = await notifier.notify(LeadSnapshot.from_lead(lead))
    """

    def __init__(
        self,
        url: Optional[str],
        transport: Optional[WebhookTransport] = None,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        timeout: float = 10.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.url = (url or "").strip() or None
        self.transport = transport or HttpxWebhookTransport()
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.timeout = timeout
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "WebhookNotifier":
        return cls(
            url=settings.N8N_WEBHOOK_URL,
            max_attempts=settings.WEBHOOK_MAX_ATTEMPTS,
            initial_delay=settings.WEBHOOK_INITIAL_RETRY_DELAY,
            timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
            **kwargs,
        )

    @property
    def enabled(self) -> bool:
        return self.url is not None

    async def notify(self, lead: Any) -> WebhookResult:
        if not self.enabled:
            logger.warning("N8N_WEBHOOK_URL not configured. Skipping webhook trigger.")
            WEBHOOK_DELIVERIES_TOTAL.labels(outcome="skipped").inc()
            return WebhookResult(success=True, skipped=True)

        payload = build_webhook_payload(lead)
        state = DeliveryState(max_attempts=self.max_attempts, initial_delay=self.initial_delay)

        while not state.done:
            attempt_no = state.attempts + 1
            logger.debug("Webhook attempt %s/%s for lead=%s", attempt_no, self.max_attempts, getattr(lead, "id", None))
            try:
                status = await self.transport.post(self.url, payload, self.timeout)
                state.record_response(status)
            except httpx.TransportError as e:
                # Connection errors and timeouts are worth another try
                state.record_exception(e)
            except Exception as e:
                logger.error("Unexpected webhook transport failure: %s", e, exc_info=True)
                state.record_exception(e)

            if state.delivered:
                logger.info("n8n webhook delivered: status=%s attempt=%s", state.last_status, state.attempts)
                break

            logger.warning(
                "Webhook attempt %s/%s failed: %s",
                state.attempts, self.max_attempts, state.last_error,
            )
            if state.done:
                break

            delay = state.next_delay()
            state.delays.append(delay)
            logger.info("Waiting %.1fs before webhook retry", delay)
            await self._sleep(delay)

        result = state.result()
        if not result.success:
            logger.error(
                "All webhook attempts failed: attempts=%s last_error=%s",
                result.attempts, result.error,
            )
        WEBHOOK_DELIVERIES_TOTAL.labels(outcome="sent" if result.success else "failed").inc()
        return result


def get_webhook_notifier() -> WebhookNotifier:
    """FastAPI dependency: notifier configured from settings."""
    return WebhookNotifier.from_settings(get_settings())


async def deliver_lead_webhook(database: Any, notifier: WebhookNotifier, snapshot: LeadSnapshot) -> WebhookResult:
    """
    Run the notifier for one lead and record the outcome on the lead row.

    Runs detached from the HTTP request. Recording uses its own session and is
    best-effort: a failure is logged and not propagated.
    """
    result = await notifier.notify(snapshot)
    if result.skipped:
        return result

    try:
        async with database.session() as session:
            await LeadStore(session).record_webhook_outcome(
                snapshot.id,
                success=result.success,
                attempts=result.attempts,
                error=result.error,
                status=result.status,
            )
        logger.info("Webhook attempt logged for lead: %s", snapshot.id)
    except Exception as e:
        logger.error("Failed to log webhook attempt for lead %s: %s", snapshot.id, e)
    return result
