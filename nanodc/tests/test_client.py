import json

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from nanodc.telemetry.errors import AuthError, AuthErrorKind, FetchError, FetchErrorKind
from nanodc.telemetry.registry import FACILITY_SERVICE_IDS


@pytest.mark.asyncio
class TestAuthenticate:

    async def test_returns_token(self, telemetry_client, fake_api):
        token = await telemetry_client.authenticate("device-1", "s3cret")

        assert token.access_token == "test-token"
        assert token.authorization_header == {"Authorization": "Bearer test-token"}
        login = fake_api.calls("POST", "/auth/login")[0]
        assert json.loads(login.content) == {"id": "device-1", "secret": "s3cret"}

    @pytest.mark.parametrize("status", [401, 403])
    async def test_rejected_credentials_are_terminal(self, telemetry_client, fake_api, status):
        fake_api.login_status = status

        with pytest.raises(AuthError) as excinfo:
            await telemetry_client.authenticate("device-1", "wrong")

        assert excinfo.value.kind is AuthErrorKind.INVALID_CREDENTIALS
        assert not excinfo.value.retryable

    async def test_server_error_is_unreachable(self, telemetry_client, fake_api):
        fake_api.login_status = 503

        with pytest.raises(AuthError) as excinfo:
            await telemetry_client.authenticate("device-1", "s3cret")

        assert excinfo.value.kind is AuthErrorKind.UNREACHABLE
        assert excinfo.value.retryable

    async def test_connection_error_is_unreachable(self, telemetry_client, fake_api):
        fake_api.login_error = httpx.ConnectError("connection refused")

        with pytest.raises(AuthError) as excinfo:
            await telemetry_client.authenticate("device-1", "s3cret")

        assert excinfo.value.kind is AuthErrorKind.UNREACHABLE

    async def test_timeout(self, telemetry_client, fake_api):
        fake_api.login_error = httpx.ReadTimeout("too slow")

        with pytest.raises(AuthError) as excinfo:
            await telemetry_client.authenticate("device-1", "s3cret")

        assert excinfo.value.kind is AuthErrorKind.TIMEOUT

    async def test_undecodable_login_body_is_unreachable(self, telemetry_client, fake_api):
        fake_api.login_body = b"\x80\x81 not utf8"

        with pytest.raises(AuthError) as excinfo:
            await telemetry_client.authenticate("device-1", "s3cret")

        assert excinfo.value.kind is AuthErrorKind.UNREACHABLE


@pytest.mark.asyncio
class TestFetchSnapshot:

    async def test_successful_get_sends_no_post(self, telemetry_client, fake_api, token):
        snapshot = await telemetry_client.fetch_snapshot(token, "BC02")

        assert len(fake_api.calls("GET", "/data")) == 1
        assert fake_api.calls("POST", "/data") == []
        assert [n.node_name for n in snapshot.nodes][0] == "BC02 Post Worker"
        assert snapshot.facility_id == "BC02"
        assert snapshot.response_bytes > 0

    async def test_get_carries_token_and_service_id(self, telemetry_client, fake_api, token):
        await telemetry_client.fetch_snapshot(token, "BC02")

        request = fake_api.calls("GET", "/data")[0]
        assert request.headers["Authorization"] == "Bearer test-token"
        assert request.url.params["nanodc_id"] == FACILITY_SERVICE_IDS["BC02"]

    async def test_get_500_falls_back_to_exactly_one_post(self, telemetry_client, fake_api, token):
        fake_api.get_status = 500

        snapshot = await telemetry_client.fetch_snapshot(token, "BC02")

        posts = fake_api.calls("POST", "/data")
        assert len(posts) == 1
        assert json.loads(posts[0].content) == {"nanodc_id": FACILITY_SERVICE_IDS["BC02"]}
        assert len(snapshot.nodes) == 5

    async def test_transport_exception_on_get_falls_back(self, telemetry_client, fake_api, token):
        fake_api.get_error = httpx.ConnectError("reset")

        snapshot = await telemetry_client.fetch_snapshot(token)

        assert len(fake_api.calls("POST", "/data")) == 1
        assert len(snapshot.nodes) == 5

    async def test_both_attempts_failing_reports_server_error(self, telemetry_client, fake_api, token):
        fake_api.get_status = 500
        fake_api.post_status = 502

        with pytest.raises(FetchError) as excinfo:
            await telemetry_client.fetch_snapshot(token)

        assert excinfo.value.kind is FetchErrorKind.SERVER_ERROR
        assert excinfo.value.status_code == 502
        assert len(fake_api.calls("POST", "/data")) == 1

    async def test_post_timeout(self, telemetry_client, fake_api, token):
        fake_api.get_status = 500
        fake_api.post_error = httpx.ReadTimeout("too slow")

        with pytest.raises(FetchError) as excinfo:
            await telemetry_client.fetch_snapshot(token)

        assert excinfo.value.kind is FetchErrorKind.TIMEOUT

    async def test_post_unreachable(self, telemetry_client, fake_api, token):
        fake_api.get_error = httpx.ConnectError("down")
        fake_api.post_error = httpx.ConnectError("down")

        with pytest.raises(FetchError) as excinfo:
            await telemetry_client.fetch_snapshot(token)

        assert excinfo.value.kind is FetchErrorKind.UNREACHABLE

    async def test_expired_token_is_flagged(self, telemetry_client, fake_api, token):
        fake_api.get_status = 401
        fake_api.post_status = 401

        with pytest.raises(FetchError) as excinfo:
            await telemetry_client.fetch_snapshot(token)

        assert excinfo.value.is_auth_rejection

    @pytest.mark.parametrize("body", [b"", b"   ", b"{}", b"null"])
    async def test_empty_body(self, telemetry_client, fake_api, token, body):
        fake_api.body = body

        with pytest.raises(FetchError) as excinfo:
            await telemetry_client.fetch_snapshot(token)

        assert excinfo.value.kind is FetchErrorKind.EMPTY_BODY

    @pytest.mark.parametrize("body", [b"<html>", b"\x80\x81 not utf8", b"[1, 2]", b'{"nodes": [{"node_name": "no id"}]}'])
    async def test_malformed_body(self, telemetry_client, fake_api, token, body):
        fake_api.body = body

        with pytest.raises(FetchError) as excinfo:
            await telemetry_client.fetch_snapshot(token)

        assert excinfo.value.kind is FetchErrorKind.MALFORMED_BODY

    async def test_null_arrays_are_treated_as_empty(self, telemetry_client, fake_api, token):
        fake_api.body = json.dumps({"nodes": [{"node_id": "a", "node_name": "A"}], "scores": None}).encode()

        snapshot = await telemetry_client.fetch_snapshot(token)

        assert snapshot.scores == ()
        assert snapshot.summary_score().total_score == "480.00"

    async def test_usage_counters_are_recorded(self, telemetry_client, fake_api, token, settings_store):
        await telemetry_client.fetch_snapshot(token)
        fake_api.get_status = 500
        fake_api.post_status = 500
        with pytest.raises(FetchError):
            await telemetry_client.fetch_snapshot(token)

        stats = settings_store.usage_statistics()
        assert stats.total_calls == 2
        assert stats.success_count == 1
        assert stats.fail_count == 1
        assert stats.success_rate == 50.0
        assert stats.total_bytes > 0
        assert stats.last_sync_time is not None

    async def test_bookkeeping_failure_does_not_fail_fetch(self, telemetry_client, token, settings_store, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("UPDATE device_settings", {}, Exception("database is locked"))

        monkeypatch.setattr(settings_store, "record_api_call", broken)

        snapshot = await telemetry_client.fetch_snapshot(token)

        assert len(snapshot.nodes) == 5

    async def test_undecodable_body_is_counted_as_failure(self, telemetry_client, fake_api, token, settings_store):
        fake_api.body = b"\x80\x81 not utf8"

        with pytest.raises(FetchError):
            await telemetry_client.fetch_snapshot(token)

        assert settings_store.usage_statistics().fail_count == 1

    async def test_corrupt_counter_does_not_fail_fetch(self, telemetry_client, token, settings_store):
        settings_store.set("totalCalls", "oops")

        snapshot = await telemetry_client.fetch_snapshot(token)

        assert len(snapshot.nodes) == 5
        assert settings_store.usage_statistics().total_calls == 1


@pytest.mark.asyncio
class TestGetScore:

    async def test_known_node(self, telemetry_client, token):
        score = await telemetry_client.get_score(token, "n-post")

        assert score.cpu_score == "90.10"
        assert score.as_floats()["gpu_score"] == 0.0

    async def test_unknown_node(self, telemetry_client, token):
        assert await telemetry_client.get_score(token, "missing") is None
