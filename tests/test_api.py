import pytest
import asyncio
import httpx
from fastapi.testclient import TestClient
from unittest.mock import patch

from main import create_app
from config import TestingSettings


@pytest.fixture
def app():
    """Fresh application, and therefore a fresh registry, for each test."""
    return create_app(TestingSettings())


@pytest.fixture
def client(app):
    return TestClient(app)


def open_account(client: TestClient) -> int:
    response = client.post("/accounts")
    assert response.status_code == 201
    return response.json()["id"]


class TestAccountEndpoints:
    """Test the basic account lifecycle over HTTP."""

    def test_create_account(self, client):
        response = client.post("/accounts")

        assert response.status_code == 201
        assert response.json() == {"id": 1, "balance": 0.0}

    @patch('accounts.logger')
    def test_create_account_records_no_operation(self, mock_logger, client):
        """Opening an account is not a balance read."""
        open_account(client)

        mock_logger.info.assert_not_called()
        mock_logger.warning.assert_not_called()

    def test_created_ids_are_sequential(self, client):
        ids = [open_account(client) for _ in range(3)]
        assert ids == [1, 2, 3]

    def test_deposit_withdraw_flow(self, client):
        account_id = open_account(client)

        response = client.post(f"/accounts/{account_id}/deposit", json={"amount": 100})
        assert response.status_code == 200
        assert response.json() == {"id": account_id, "balance": 100.0}

        response = client.post(f"/accounts/{account_id}/withdraw", json={"amount": 150})
        assert response.status_code == 400
        assert response.json()["error_code"] == "INSUFFICIENT_FUNDS"
        assert response.json()["detail"] == "Insufficient funds"

        response = client.get(f"/accounts/{account_id}/getbalance")
        assert response.json()["balance"] == 100.0

        response = client.post(f"/accounts/{account_id}/withdraw", json={"amount": 100})
        assert response.status_code == 200
        assert response.json()["balance"] == 0.0

        response = client.post(f"/accounts/{account_id}/deposit", json={"amount": -5})
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_AMOUNT"

        response = client.get(f"/accounts/{account_id}/getbalance")
        assert response.status_code == 200
        assert response.json() == {"id": account_id, "balance": 0.0}

    def test_accounts_are_isolated(self, client):
        first = open_account(client)
        second = open_account(client)

        client.post(f"/accounts/{first}/deposit", json={"amount": 10})
        client.post(f"/accounts/{second}/deposit", json={"amount": 5})

        assert client.get(f"/accounts/{first}/getbalance").json()["balance"] == 10.0
        assert client.get(f"/accounts/{second}/getbalance").json()["balance"] == 5.0

    def test_apps_do_not_share_registries(self, client):
        open_account(client)
        other = TestClient(create_app(TestingSettings()))

        assert other.get("/accounts/1/getbalance").status_code == 404


class TestErrorHandling:
    """Test error mapping and request validation."""

    @pytest.mark.parametrize("path,method", [
        ("/accounts/42/getbalance", "get"),
        ("/accounts/42/deposit", "post"),
        ("/accounts/42/withdraw", "post"),
    ])
    def test_unknown_account_404(self, client, path, method):
        kwargs = {"json": {"amount": 1}} if method == "post" else {}
        response = getattr(client, method)(path, **kwargs)

        assert response.status_code == 404
        data = response.json()
        assert data["error_code"] == "ACCOUNT_NOT_FOUND"
        assert data["detail"] == "Account not found"
        assert "timestamp" in data

    def test_zero_amount_is_invalid(self, client):
        account_id = open_account(client)
        response = client.post(f"/accounts/{account_id}/withdraw", json={"amount": 0})

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_AMOUNT"

    def test_non_integer_account_id(self, client):
        response = client.get("/accounts/abc/getbalance")
        assert response.status_code == 422

    @pytest.mark.parametrize("payload", [
        {},
        {"amount": "abc"},
        {"value": 10},
        {"amount": True},   # bools are not amounts
        {"amount": "10"},   # numeric strings are not coerced
        {"amount": None},
    ])
    def test_invalid_payloads(self, client, payload):
        account_id = open_account(client)
        response = client.post(f"/accounts/{account_id}/deposit", json=payload)
        assert response.status_code == 422

        # Nothing was deposited
        assert client.get(f"/accounts/{account_id}/getbalance").json()["balance"] == 0.0

    def test_integer_and_float_amounts_accepted(self, client):
        account_id = open_account(client)

        assert client.post(f"/accounts/{account_id}/deposit", json={"amount": 3}).status_code == 200
        response = client.post(f"/accounts/{account_id}/deposit", json={"amount": 1.5})
        assert response.json()["balance"] == 4.5

    def test_oversized_integer_amount_is_invalid(self, client):
        account_id = open_account(client)
        response = client.post(f"/accounts/{account_id}/deposit", json={"amount": 10 ** 400})

        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_AMOUNT"

    def test_malformed_json(self, client):
        account_id = open_account(client)
        response = client.post(
            f"/accounts/{account_id}/deposit",
            content="{'invalid': 'json'",
            headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 422

    def test_wrong_method(self, client):
        account_id = open_account(client)
        response = client.get(f"/accounts/{account_id}/deposit")

        assert response.status_code == 405
        assert response.json()["error_code"] == "HTTP_405"
        assert response.headers["allow"] == "POST"

    def test_unknown_path(self, client):
        response = client.get("/no/such/path")

        assert response.status_code == 404
        assert response.json()["error_code"] == "HTTP_404"

    @patch('services.logger')
    def test_logging_on_error(self, mock_logger, client):
        response = client.post("/accounts/999/deposit", json={"amount": 10})

        assert response.status_code == 404
        mock_logger.warning.assert_called()
        assert mock_logger.warning.call_args.kwargs["error_code"] == "ACCOUNT_NOT_FOUND"


class TestConcurrency:
    """Test concurrent requests against the same account."""

    @pytest.mark.asyncio
    async def test_concurrent_deposits_same_account(self, app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            account_id = (await ac.post("/accounts")).json()["id"]

            results = await asyncio.gather(*[
                ac.post(f"/accounts/{account_id}/deposit", json={"amount": 2.5})
                for _ in range(40)
            ])

            assert all(r.status_code == 200 for r in results)

            final = await ac.get(f"/accounts/{account_id}/getbalance")
            assert final.json()["balance"] == 100.0

    @pytest.mark.asyncio
    async def test_concurrent_withdrawals_insufficient_funds(self, app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            account_id = (await ac.post("/accounts")).json()["id"]
            await ac.post(f"/accounts/{account_id}/deposit", json={"amount": 500})

            # Only 2 of 5 withdrawals of 200 fit into 500
            results = await asyncio.gather(*[
                ac.post(f"/accounts/{account_id}/withdraw", json={"amount": 200})
                for _ in range(5)
            ])

            successful = [r for r in results if r.status_code == 200]
            failed = [r for r in results if r.status_code == 400]
            assert len(successful) == 2
            assert len(failed) == 3
            assert all(r.json()["error_code"] == "INSUFFICIENT_FUNDS" for r in failed)

            final = await ac.get(f"/accounts/{account_id}/getbalance")
            assert final.json()["balance"] == 100.0

    @pytest.mark.asyncio
    async def test_concurrent_account_creation(self, app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            results = await asyncio.gather(*[ac.post("/accounts") for _ in range(25)])

            ids = sorted(r.json()["id"] for r in results)
            assert ids == list(range(1, 26))


class TestHealthAndUtility:
    """Test health check, root endpoint and rate limiting."""

    def test_health_check(self, client):
        open_account(client)
        open_account(client)
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["accounts_count"] == 2
        assert "timestamp" in data

    def test_root_endpoint(self, client):
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert "message" in data
        assert "docs" in data

    def test_rate_limit_exceeded(self):
        client = TestClient(create_app(TestingSettings(rate_limit_per_minute=2)))

        assert client.get("/health").status_code == 200
        assert client.get("/health").status_code == 200

        response = client.get("/health")
        assert response.status_code == 429
        data = response.json()
        assert data["error_code"] == "HTTP_429"
        assert data["detail"].startswith("Rate limit exceeded")
        assert "timestamp" in data

    def test_rate_limit_applies_to_account_routes(self):
        client = TestClient(create_app(TestingSettings(rate_limit_per_minute=3)))

        codes = [client.post("/accounts").status_code for _ in range(4)]
        assert codes == [201, 201, 201, 429]

    def test_rate_limit_disabled(self):
        settings = TestingSettings(rate_limit_per_minute=1, rate_limit_enabled=False)
        client = TestClient(create_app(settings))

        for _ in range(3):
            assert client.get("/health").status_code == 200
