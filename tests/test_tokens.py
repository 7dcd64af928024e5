"""Unit tests for token records and slots (submissions_mcp/tokens.py)."""

import datetime
import threading

import pydantic
import pytest

from submissions_mcp.tokens import TokenRecord, TokenResponse, TokenSlot

NOW = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.timezone.utc)


def record(access_token="token", seconds_left=3600) -> TokenRecord:
    return TokenRecord(access_token=access_token, expires_at=NOW + datetime.timedelta(seconds=seconds_left))


class TestTokenRecord:
    @pytest.mark.parametrize(
        "seconds_left, fresh",
        [(3600, True), (301, True), (300, False), (10, False), (-10, False)],
    )
    def test_freshness_uses_five_minute_margin(self, seconds_left, fresh):
        assert record(seconds_left=seconds_left).is_fresh(NOW) is fresh

    def test_custom_margin(self):
        assert record(seconds_left=90).is_fresh(NOW, datetime.timedelta(seconds=60)) is True

    def test_empty_token_is_never_fresh(self):
        assert record(access_token="").is_fresh(NOW) is False

    def test_repr_hides_token(self):
        assert "super-secret" not in repr(record(access_token="super-secret"))


class TestTokenResponse:
    def test_to_record(self):
        response = TokenResponse.model_validate_json(
            '{"access_token": "abc", "expires_in": 3600, "refresh_token": "r", "scope": "submission-api"}'
        )

        converted = response.to_record(NOW)

        assert converted.access_token == "abc"
        assert converted.expires_at == NOW + datetime.timedelta(hours=1)
        assert converted.refresh_token == "r"
        assert converted.token_type == "Bearer"
        assert converted.scope == "submission-api"

    def test_missing_expires_in_is_invalid(self):
        with pytest.raises(pydantic.ValidationError):
            TokenResponse.model_validate_json('{"access_token": "abc"}')


class TestTokenSlot:
    def test_empty_slot(self):
        assert TokenSlot().get() is None

    def test_replace_and_clear(self):
        slot = TokenSlot()
        first, second = record("first"), record("second")

        slot.replace(first)
        assert slot.get() is first

        slot.replace(second)
        assert slot.get() is second

        slot.clear()
        assert slot.get() is None

    def test_readers_see_whole_records(self):
        slot = TokenSlot()
        records = [record(f"token-{i}") for i in range(50)]
        seen = []

        def writer():
            for r in records:
                slot.replace(r)

        def reader():
            for _ in range(200):
                current = slot.get()
                if current is not None:
                    seen.append(current)

        threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert all(r in records for r in seen)
