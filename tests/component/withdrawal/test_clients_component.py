"""
Collaborator Client and Factory Component Tests

httpx clients run against httpx.MockTransport; nothing leaves the process.
"""

import json

import httpx
import pytest

from core.config_manager import ConfigManager
from microservices.withdrawal_service.clients import AccountClient, NotificationClient
from microservices.withdrawal_service.factory import create_withdrawal_service
from microservices.withdrawal_service.withdrawal_repository import WithdrawalRepository

pytestmark = [pytest.mark.component, pytest.mark.asyncio]


def _mock_http(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), headers={"X-Internal-Call": "true"})


class TestAccountClient:

    async def test_display_name(self):
        seen = []

        def handler(request: httpx.Request):
            seen.append(request)
            return httpx.Response(200, json={"user_id": "user_1", "name": "Jane Nakato", "email": "jane@example.com"})

        client = AccountClient(base_url="http://account:8202/")
        client.client = _mock_http(handler)

        assert await client.get_user_display_name("user_1") == "Jane Nakato"
        assert seen[0].url.path == "/api/v1/accounts/profile/user_1"
        assert seen[0].headers["X-Internal-Call"] == "true"
        await client.close()

    async def test_falls_back_to_email(self):
        client = AccountClient(base_url="http://account:8202")
        client.client = _mock_http(lambda request: httpx.Response(200, json={"email": "jane@example.com"}))

        assert await client.get_user_display_name("user_1") == "jane@example.com"
        await client.close()

    async def test_unknown_user(self):
        client = AccountClient(base_url="http://account:8202")
        client.client = _mock_http(lambda request: httpx.Response(404, json={"detail": "not found"}))

        assert await client.get_user_display_name("user_1") is None
        await client.close()

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = AccountClient(base_url="http://account:8202")
        client.client = _mock_http(handler)

        assert await client.get_user_display_name("user_1") is None
        await client.close()


class TestNotificationClient:

    async def test_send(self):
        bodies = []

        def handler(request: httpx.Request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True})

        client = NotificationClient(base_url="http://notification:8206")
        client.client = _mock_http(handler)

        sent = await client.send_notification(
            user_id="user_1",
            notification_type="withdrawal_completed",
            title="Cash Collected Successfully",
            message="Your withdrawal of UGX 30,000 has been completed successfully.",
            data={"amount": 30_000},
        )

        assert sent is True
        assert bodies[0]["user_ids"] == ["user_1"]
        assert bodies[0]["notification_type"] == "withdrawal_completed"
        assert bodies[0]["data"] == {"amount": 30_000}
        await client.close()

    async def test_rejected(self):
        client = NotificationClient(base_url="http://notification:8206")
        client.client = _mock_http(lambda request: httpx.Response(500))

        assert await client.send_notification("user_1", "withdrawal_completed", "t", "m") is False
        await client.close()


class TestFactory:

    async def test_builds_shared_dependencies(self, mock_event_bus):
        config = ConfigManager("withdrawal_service")

        service = create_withdrawal_service(config=config, event_bus=mock_event_bus)

        assert isinstance(service.repository, WithdrawalRepository)
        assert service.token_service.repository is service.repository
        assert service.token_service.event_bus is mock_event_bus
        assert isinstance(service.token_service.notification_client, NotificationClient)
        assert isinstance(service.token_service.account_client, AccountClient)
        assert service.token_service.account_client.base_url == config.peers.account_service_url.rstrip("/")

        await service.token_service.notification_client.close()
        await service.token_service.account_client.close()

    async def test_injected_clients_are_used(self, mock_notification_client, mock_account_client):
        service = create_withdrawal_service(
            notification_client=mock_notification_client,
            account_client=mock_account_client,
        )

        assert service.token_service.notification_client is mock_notification_client
        assert service.token_service.account_client is mock_account_client
