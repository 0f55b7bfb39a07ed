# tests/test_x402_server.py
"""
Tests for the mock x402 server: challenge, proof parsing, verification and
settlement receipts.
"""
import base64
import time

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from tests.fakes import PAYER, RECIPIENT, USDC_MINT, make_address
from x402test.api.endpoints.paid import NOT_CONFIGURED_ERROR, get_client_ip
from x402test.api.models.routes import DynamicBody, RouteConfig, ServerConfig
from x402test.api.models.x402 import PaymentPayload, SolanaPaymentPayload
from x402test.core.context import X402Context
from x402test.core.errors import ConfigurationError, TransportError
from x402test.main import create_app
from x402test.x402.parser import encode_payment_header, parse_settlement_receipt

PREMIUM_PRICE_UNITS = 100000


def make_server_config(**routes):
    default_routes = {
        "/api/premium": RouteConfig(
            price="0.10",
            response={"data": "premium content"},
            description="Premium content",
        ),
    }
    default_routes.update(routes)
    return ServerConfig(
        routes=default_routes,
        recipient=RECIPIENT,
        asset=USDC_MINT,
        network="solana-devnet",
    )


def payment_header(signature: str, amount: str = str(PREMIUM_PRICE_UNITS)) -> str:
    """X-PAYMENT header pointing at a transfer on the ledger."""
    return encode_payment_header(
        PaymentPayload(
            x402_version=1,
            scheme="exact",
            network="solana-devnet",
            payload=SolanaPaymentPayload(
                signature=signature,
                from_address=PAYER,
                amount=amount,
                mint=USDC_MINT,
                timestamp=int(time.time() * 1000),
            ),
        )
    )


@pytest.fixture
def server_context(ledger, replay_ledger):
    return X402Context(ledger=ledger, replay_ledger=replay_ledger)


@pytest.fixture
def client(server_context):
    app = create_app(make_server_config(), server_context)
    with TestClient(app) as test_client:
        yield test_client


class TestChallenge:
    """Test the 402 response to unpaid requests."""

    def test_402_without_payment(self, client):
        response = client.get("/api/premium")

        assert response.status_code == 402
        body = response.json()
        assert body["x402Version"] == 1
        assert body["error"] is None
        assert len(body["accepts"]) == 1

        accepts = body["accepts"][0]
        assert accepts["scheme"] == "exact"
        assert accepts["network"] == "solana-devnet"
        assert accepts["maxAmountRequired"] == str(PREMIUM_PRICE_UNITS)
        assert accepts["resource"] == "http://testserver/api/premium"
        assert accepts["description"] == "Premium content"
        assert accepts["mimeType"] == "application/json"
        assert accepts["payTo"] == RECIPIENT
        assert accepts["asset"] == USDC_MINT
        assert accepts["maxTimeoutSeconds"] == 60

    def test_402_for_every_configured_method(self, client):
        assert client.post("/api/premium", json={"a": 1}).status_code == 402
        assert client.put("/api/premium").status_code == 402
        assert client.delete("/api/premium").status_code == 402

    def test_unconfigured_route(self, client):
        response = client.get("/api/unknown")
        assert response.status_code == 404
        assert response.json() == {"error": NOT_CONFIGURED_ERROR}


class TestPaymentHeaderParsing:
    """Test rejection of malformed proofs."""

    def test_garbage_header(self, client):
        response = client.get("/api/premium", headers={"X-PAYMENT": "garbage"})
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Invalid X-PAYMENT header format"
        assert body["detail"]

    def test_wrong_structure(self, client):
        header = base64.b64encode(b'{"x402Version": 1, "scheme": "exact"}').decode()
        response = client.get("/api/premium", headers={"X-PAYMENT": header})
        assert response.status_code == 400
        assert "payload" in response.json()["detail"]

    def test_no_ledger_lookup_for_malformed_header(self, client, ledger):
        client.get("/api/premium", headers={"X-PAYMENT": "garbage"})
        assert ledger.transaction_lookups == 0


class TestPaidRequests:
    """Test verification and settlement."""

    def test_valid_payment(self, client, ledger):
        signature = ledger.add_transfer(PAYER, RECIPIENT, PREMIUM_PRICE_UNITS)

        response = client.get("/api/premium", headers={"X-PAYMENT": payment_header(signature)})

        assert response.status_code == 200
        assert response.json() == {"data": "premium content"}
        receipt = parse_settlement_receipt(response.headers["X-PAYMENT-RESPONSE"])
        assert receipt.success is True
        assert receipt.tx_hash == signature
        assert receipt.network_id == "solana-devnet"
        assert receipt.error is None

    def test_replay_rejected(self, client, ledger, replay_ledger):
        """The same transaction cannot pay twice."""
        signature = ledger.add_transfer(PAYER, RECIPIENT, PREMIUM_PRICE_UNITS)
        headers = {"X-PAYMENT": payment_header(signature)}

        assert client.get("/api/premium", headers=headers).status_code == 200
        assert replay_ledger.get(signature).endpoint == "/api/premium"

        replay = client.get("/api/premium", headers=headers)
        assert replay.status_code == 402
        assert "already processed" in replay.json()["error"]
        assert replay.json()["accepts"][0]["payTo"] == RECIPIENT

    def test_underpayment(self, client, ledger):
        signature = ledger.add_transfer(PAYER, RECIPIENT, PREMIUM_PRICE_UNITS - 1)
        response = client.get("/api/premium", headers={"X-PAYMENT": payment_header(signature)})
        assert response.status_code == 402
        assert response.json()["error"].startswith("Insufficient amount")

    def test_claimed_amount_not_trusted(self, client, ledger):
        """The amount in the proof is ignored; the transfer decides."""
        signature = ledger.add_transfer(PAYER, RECIPIENT, 1)
        header = payment_header(signature, amount=str(PREMIUM_PRICE_UNITS))
        response = client.get("/api/premium", headers={"X-PAYMENT": header})
        assert response.status_code == 402

    def test_wrong_recipient(self, client, ledger):
        signature = ledger.add_transfer(PAYER, make_address("someone-else"), PREMIUM_PRICE_UNITS)
        response = client.get("/api/premium", headers={"X-PAYMENT": payment_header(signature)})
        assert response.status_code == 402
        assert response.json()["error"].startswith("Wrong recipient")

    def test_unknown_transaction(self, client, ledger):
        response = client.get("/api/premium", headers={"X-PAYMENT": payment_header(ledger.next_signature())})
        assert response.status_code == 402
        assert response.json()["error"] == "Transaction not found"

    def test_ledger_unavailable(self, client, ledger):
        ledger.error = TransportError("Solana RPC getTransaction timed out")
        response = client.get("/api/premium", headers={"X-PAYMENT": payment_header(ledger.next_signature())})
        assert response.status_code == 502
        assert response.json()["error"] == "Payment verification unavailable"


class TestRouteResponses:
    """Test static and dynamic route bodies."""

    def test_dynamic_body(self, ledger, replay_ledger):
        routes = {
            "/api/echo": RouteConfig(
                price="0.01",
                response=lambda ctx: {"method": ctx.method, "path": ctx.path, "q": ctx.query.get("q"), "body": ctx.body},
            ),
        }
        app = create_app(make_server_config(**routes), X402Context(ledger=ledger, replay_ledger=replay_ledger))
        signature = ledger.add_transfer(PAYER, RECIPIENT, 10000)

        with TestClient(app) as test_client:
            response = test_client.post(
                "/api/echo?q=solana",
                json={"n": 1},
                headers={"X-PAYMENT": payment_header(signature, "10000")},
            )

        assert response.status_code == 200
        assert response.json() == {"method": "POST", "path": "/api/echo", "q": "solana", "body": {"n": 1}}

    def test_async_dynamic_body(self, ledger, replay_ledger):
        async def produce(ctx):
            return {"header": ctx.headers.get("x-client")}

        routes = {"/api/async": RouteConfig(price="0.01", response=DynamicBody(produce))}
        app = create_app(make_server_config(**routes), X402Context(ledger=ledger, replay_ledger=replay_ledger))
        signature = ledger.add_transfer(PAYER, RECIPIENT, 10000)

        with TestClient(app) as test_client:
            response = test_client.get(
                "/api/async",
                headers={"X-PAYMENT": payment_header(signature, "10000"), "X-Client": "tests"},
            )
        assert response.json() == {"header": "tests"}

    def test_custom_status(self, ledger, replay_ledger):
        routes = {"/api/create": RouteConfig(price="0.01", response={"created": True}, status=201)}
        app = create_app(make_server_config(**routes), X402Context(ledger=ledger, replay_ledger=replay_ledger))
        signature = ledger.add_transfer(PAYER, RECIPIENT, 10000)

        with TestClient(app) as test_client:
            response = test_client.post("/api/create", headers={"X-PAYMENT": payment_header(signature, "10000")})
        assert response.status_code == 201
        assert "X-PAYMENT-RESPONSE" in response.headers


class TestServerConfiguration:
    """Test startup validation."""

    def test_missing_recipient(self):
        config = ServerConfig(routes={}, recipient="", asset=USDC_MINT)
        with pytest.raises(ConfigurationError, match="No recipient configured"):
            create_app(config)

    def test_missing_asset(self):
        config = ServerConfig(routes={}, recipient=RECIPIENT, asset="")
        with pytest.raises(ConfigurationError, match="No asset mint configured"):
            create_app(config)

    def test_invalid_recipient(self):
        config = ServerConfig(routes={}, recipient="0xdeadbeef", asset=USDC_MINT)
        with pytest.raises(ConfigurationError, match="Invalid recipient address"):
            create_app(config)

    def test_invalid_price(self):
        with pytest.raises(ConfigurationError, match="Invalid route price"):
            RouteConfig(price="0.0000001", response={})

    def test_price_finer_than_server_decimals(self):
        """Route prices are rechecked against the server's own token decimals."""
        config = ServerConfig(
            routes={"/p": RouteConfig(price="0.001", response={})},
            recipient=RECIPIENT,
            asset=USDC_MINT,
            decimals=2,
        )
        with pytest.raises(ConfigurationError, match="Invalid price '0.001' for route /p"):
            create_app(config)

    def test_route_price_in_units(self):
        assert RouteConfig(price="0.01", response={}).amount_atomic(6) == 10000

    def test_context_closed_after_shutdown(self, server_context):
        app = create_app(make_server_config(), server_context)
        with TestClient(app):
            assert server_context.is_open
        assert not server_context.is_open


class TestClientIp:
    """Test client address extraction."""

    @staticmethod
    def make_request(headers, client=("10.0.0.9", 1234)):
        scope = {
            "type": "http",
            "method": "GET",
            "path": "/",
            "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
            "client": client,
        }
        return Request(scope)

    def test_forwarded_for(self):
        request = self.make_request({"X-Forwarded-For": "1.2.3.4, 10.0.0.1"})
        assert get_client_ip(request) == "1.2.3.4"

    def test_real_ip(self):
        assert get_client_ip(self.make_request({"X-Real-IP": " 5.6.7.8 "})) == "5.6.7.8"

    def test_direct_client(self):
        assert get_client_ip(self.make_request({})) == "10.0.0.9"

    def test_unknown(self):
        assert get_client_ip(self.make_request({}, client=None)) == "unknown"
