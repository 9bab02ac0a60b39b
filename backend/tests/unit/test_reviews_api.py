"""Tests for the public review endpoints.

POST /api/v1/reviews/submit and POST /api/v1/reviews/verify.
"""

from httpx import AsyncClient

from review_verification.services.audit_logger import InMemoryAuditSink
from tests.conftest import FakeClock, RecordingTokenDelivery, make_submission

SUBMIT_URL = "/api/v1/reviews/submit"
VERIFY_URL = "/api/v1/reviews/verify"


async def _submit(client: AsyncClient, clock: FakeClock, **overrides):
    return await client.post(SUBMIT_URL, json=make_submission(clock, **overrides))


class TestSubmitEndpoint:
    """Tests for POST /reviews/submit."""

    async def test_accepted(
        self,
        client: AsyncClient,
        clock: FakeClock,
        delivery: RecordingTokenDelivery,
    ):
        response = await _submit(client, clock)

        assert response.status_code == 202
        body = response.json()
        assert body["data"]["status"] == "pending_verification"
        assert len(delivery.sent) == 1
        assert delivery.last_token not in response.text

    async def test_honeypot_response_is_identical(
        self,
        client: AsyncClient,
        clock: FakeClock,
        delivery: RecordingTokenDelivery,
    ):
        accepted = await _submit(client, clock)
        spam = await _submit(client, clock, honeypot="http://bot.example")

        assert spam.status_code == accepted.status_code
        assert spam.json() == accepted.json()
        assert len(delivery.sent) == 1

    async def test_validation_error(self, client: AsyncClient, clock: FakeClock):
        response = await _submit(client, clock, rating=0)

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert any(d["field"] == "rating" for d in error["details"])

    async def test_stale_timestamp(self, client: AsyncClient, clock: FakeClock):
        response = await _submit(
            client, clock, clientTimestamp=clock.epoch_ms() - 600_000
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_suspicious_content(self, client: AsyncClient, clock: FakeClock):
        response = await _submit(client, clock, highlights=["visit my site"])

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "CONTENT_SUSPICIOUS"

    async def test_untrusted_domain(self, client: AsyncClient, clock: FakeClock):
        response = await _submit(
            client, clock, relationship="professor", email="prof@gmail.com"
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "UNTRUSTED_DOMAIN"

    async def test_non_object_body(self, client: AsyncClient):
        response = await client.post(SUBMIT_URL, json=["not", "an", "object"])

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_rate_limited_with_retry_after(
        self, client: AsyncClient, clock: FakeClock
    ):
        for i in range(3):
            response = await _submit(client, clock, email=f"user{i}@example.com")
            assert response.status_code == 202

        response = await _submit(client, clock, email="user9@example.com")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert response.json()["error"]["code"] == "RATE_LIMITED"


class TestVerifyEndpoint:
    """Tests for POST /reviews/verify."""

    async def test_verify_then_already_used(
        self,
        client: AsyncClient,
        clock: FakeClock,
        delivery: RecordingTokenDelivery,
    ):
        await _submit(client, clock)
        token = delivery.last_token

        first = await client.post(VERIFY_URL, json={"token": token})
        second = await client.post(VERIFY_URL, json={"token": token})

        assert first.status_code == 200
        assert first.json()["data"] == {
            "verified": True,
            "reviewId": delivery.sent[-1]["review_id"],
        }
        assert second.status_code == 400
        assert second.json()["error"]["code"] == "ALREADY_USED"

    async def test_unknown_token(self, client: AsyncClient):
        response = await client.post(VERIFY_URL, json={"token": "a" * 64})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "NOT_FOUND"

    async def test_malformed_token(self, client: AsyncClient):
        response = await client.post(VERIFY_URL, json={"token": "../../etc/passwd"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "NOT_FOUND"

    async def test_expired(
        self,
        client: AsyncClient,
        clock: FakeClock,
        delivery: RecordingTokenDelivery,
    ):
        await _submit(client, clock)
        clock.advance(hours=25)

        response = await client.post(VERIFY_URL, json={"token": delivery.last_token})

        assert response.json()["error"]["code"] == "EXPIRED"

    async def test_email_mismatch_then_exhausted(
        self,
        client: AsyncClient,
        clock: FakeClock,
        delivery: RecordingTokenDelivery,
    ):
        await _submit(client, clock)
        token = delivery.last_token

        for _ in range(5):
            response = await client.post(
                VERIFY_URL, json={"token": token, "email": "other@example.com"}
            )
            assert response.json()["error"]["code"] == "NOT_FOUND"

        response = await client.post(
            VERIFY_URL, json={"token": token, "email": "ada@example.com"}
        )
        assert response.json()["error"]["code"] == "TOO_MANY_ATTEMPTS"

    async def test_missing_token_field(self, client: AsyncClient):
        response = await client.post(VERIFY_URL, json={})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_audit_never_holds_full_token(
        self,
        app,
        client: AsyncClient,
        clock: FakeClock,
        delivery: RecordingTokenDelivery,
        audit_sink: InMemoryAuditSink,
    ):
        await _submit(client, clock)
        await client.post(VERIFY_URL, json={"token": delivery.last_token})
        await app.state.audit.drain()

        assert len(audit_sink.entries) == 2
        assert all(delivery.last_token not in str(e) for e in audit_sink.entries)


class TestHealthAndHeaders:
    """Tests for /health and security headers."""

    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    async def test_api_responses_are_not_cached(self, client: AsyncClient):
        response = await client.post(VERIFY_URL, json={"token": "a" * 64})

        assert response.headers["Cache-Control"] == "no-store, max-age=0"
        assert response.headers["Referrer-Policy"] == "no-referrer"
        assert response.headers["X-Frame-Options"] == "DENY"
