"""Redis-backed refresh-token revocation list."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError, TimeoutError as RedisTimeoutError

from conftest import NATIVE
from main import create_app
from security.refresh_token import RefreshTokenRevocationList
from utils.exceptions import StorageError, StorageUnavailable

EMAIL = "alice@example.com"
PASSWORD = "correct-horse-1"


@pytest.fixture
def redis():
    return MagicMock()


@pytest.fixture
def revocations(redis):
    return RefreshTokenRevocationList(redis)


class TestClaim:
    def test_first_claim_spends_token(self, revocations, redis):
        redis.set.return_value = True

        assert revocations.claim("jti-1", 300) is True
        redis.set.assert_called_once_with("used_refresh_token:jti-1", "used", ex=300, nx=True)

    def test_second_claim_is_rejected(self, revocations, redis):
        redis.set.return_value = None
        assert revocations.claim("jti-1", 300) is False

    def test_ttl_never_below_one_second(self, revocations, redis):
        revocations.claim("jti-1", 0)
        assert redis.set.call_args.kwargs["ex"] == 1

    @pytest.mark.parametrize("error", [RedisConnectionError("refused"), RedisTimeoutError("slow")])
    def test_unreachable_redis_is_unavailable(self, revocations, redis, error):
        redis.set.side_effect = error
        with pytest.raises(StorageUnavailable):
            revocations.claim("jti-1", 300)

    def test_other_redis_errors_are_storage_errors(self, revocations, redis):
        redis.set.side_effect = ResponseError("WRONGTYPE")
        with pytest.raises(StorageError) as excinfo:
            revocations.claim("jti-1", 300)
        assert type(excinfo.value) is StorageError

    def test_ping_failure_is_unavailable(self, revocations, redis):
        redis.ping.side_effect = RedisConnectionError("refused")
        with pytest.raises(StorageUnavailable):
            revocations.ping()


class TestRefreshEndpoint:
    @pytest.fixture
    def client(self, settings, store, token_clock, revocations):
        app = create_app(settings, store=store, revocations=revocations, token_clock=token_clock)
        with TestClient(app, headers=NATIVE) as client:
            client.post("/auth/register", json={"email": EMAIL, "name": "Alice", "password": PASSWORD})
            yield client

    def test_redis_outage_is_service_unavailable(self, client, redis):
        tokens = client.post("/auth/login", json={"email": EMAIL, "password": PASSWORD}).json()
        redis.set.side_effect = RedisConnectionError("refused")

        response = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

        assert response.status_code == 503
        assert response.json() == {"detail": "Service temporarily unavailable", "code": "storage_unavailable"}

    def test_redis_failure_is_internal_error(self, client, redis):
        tokens = client.post("/auth/login", json={"email": EMAIL, "password": PASSWORD}).json()
        redis.set.side_effect = ResponseError("WRONGTYPE")

        response = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

        assert response.status_code == 500
        assert response.json()["code"] == "storage_error"
