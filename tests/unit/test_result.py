"""Unit tests for Decision headers and rejection payloads."""

from datetime import datetime, timedelta, timezone

from tierlimit.result import Decision, epoch_seconds, from_epoch_ms, to_epoch_ms

NOW = datetime(2026, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


def _decision(allowed=True, remaining=5, reset_in=30.0):
    return Decision(
        allowed=allowed,
        limit=10,
        remaining=remaining,
        reset_at=NOW + timedelta(seconds=reset_in),
    )


class TestEpochHelpers:
    """Test timestamp conversions used by the stores."""

    def test_epoch_ms_round_trip(self):
        moment = datetime(2026, 1, 15, 10, 0, 0, 250000, tzinfo=timezone.utc)
        assert from_epoch_ms(to_epoch_ms(moment)) == moment

    def test_epoch_seconds_rounds_up(self):
        moment = NOW + timedelta(milliseconds=1)
        assert epoch_seconds(moment) == int(NOW.timestamp()) + 1


class TestDecisionHeaders:
    """Test X-RateLimit-* header generation."""

    def test_allowed_headers(self):
        headers = _decision().to_headers(NOW)
        assert headers == {
            "X-RateLimit-Limit": "10",
            "X-RateLimit-Remaining": "5",
            "X-RateLimit-Reset": str(int(NOW.timestamp()) + 30),
        }

    def test_blocked_headers_include_retry_after(self):
        headers = _decision(allowed=False, remaining=0).to_headers(NOW)
        assert headers["Retry-After"] == "30"
        assert headers["X-RateLimit-Remaining"] == "0"

    def test_retry_after_rounds_up(self):
        decision = _decision(allowed=False, remaining=0, reset_in=29.2)
        assert decision.retry_after_seconds(NOW) == 30

    def test_retry_after_never_negative(self):
        decision = _decision(allowed=False, remaining=0, reset_in=-5)
        assert decision.retry_after_seconds(NOW) == 0


class TestDecisionRejection:
    """Test the 429 body."""

    def test_rejection_payload(self):
        body = _decision(allowed=False, remaining=0, reset_in=3590).to_rejection(NOW)
        assert body == {
            "error": "rate_limit_exceeded",
            "limit": 10,
            "remaining": 0,
            "resetAt": int(NOW.timestamp()) + 3590,
            "retryAfterSeconds": 3590,
        }
