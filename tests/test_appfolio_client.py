import asyncio
import json
from unittest.mock import AsyncMock

import aiohttp
import pytest
from cryptography.fernet import Fernet

from pmpulse.core.error_handler import ConnectionNotConfiguredError, ErrorCategory, PermanentApiError, categorize_error
from pmpulse.core.retry import RetryConfig
from pmpulse.core.security import CredentialDecryptionError, EncryptionKeyError, decrypt_secret, encrypt_secret
from pmpulse.models.appfolio_connection import AppfolioConnection
from pmpulse.services.appfolio_client import AppfolioClient


def ok(payload, headers=None):
    return 200, headers or {}, json.dumps(payload)


@pytest.fixture
def client(connection, test_settings, fake_sleep):
    api = AppfolioClient(
        connection,
        settings=test_settings,
        retry_config=RetryConfig(max_retries=5, base_delay=1.0, jitter=False),
        sleep=fake_sleep,
    )
    api._post = AsyncMock()
    return api


def test_endpoint_url_uses_connection_database(client):
    assert client.endpoint_url("properties") == "https://acme.appfolio.com/api/v2/reports/property_directory.json"
    assert client.endpoint_url("expenses").endswith("/expense_register.json")
    with pytest.raises(ValueError):
        client.endpoint_url("tenants")


def test_first_page_posts_report_parameters(client):
    client._post.return_value = ok({"results": [{"property_id": 1001}], "next_page_url": None})

    page = asyncio.run(client.fetch_page("properties", {"modified_since": "2026-01-01T00:00:00+00:00"}))

    url, payload = client._post.call_args.args
    assert url == "https://acme.appfolio.com/api/v2/reports/property_directory.json"
    assert payload == {
        "paginate_results": True,
        "per_page": 100,
        "modified_since": "2026-01-01T00:00:00+00:00",
    }
    assert page.records == [{"property_id": 1001}]
    assert not page.has_more


def test_next_page_url_is_followed_with_empty_body(client):
    client._post.return_value = ok({"results": [], "next_page_url": None})

    asyncio.run(client.fetch_page("units", page_url="/api/v2/reports/unit_directory.json?page=2"))

    url, payload = client._post.call_args.args
    assert url == "https://acme.appfolio.com/api/v2/reports/unit_directory.json?page=2"
    assert payload == {}


def test_list_response_is_a_single_page(client):
    client._post.return_value = ok([{"vendor_id": 1}, {"vendor_id": 2}])

    page = asyncio.run(client.fetch_page("vendors"))

    assert len(page.records) == 2
    assert page.next_page_url is None


def test_server_errors_are_retried_with_backoff(client, fake_sleep):
    unavailable = (503, {}, "Service Unavailable")
    client._post.side_effect = [unavailable, unavailable, unavailable, ok({"results": [{"unit_id": 1}]})]

    page = asyncio.run(client.fetch_page("units"))

    assert page.records == [{"unit_id": 1}]
    assert client._post.call_count == 4
    assert fake_sleep.delays == [1.0, 2.0, 4.0]


def test_rate_limited_response_honours_retry_after(client, fake_sleep):
    client._post.side_effect = [(429, {"Retry-After": "7"}, ""), ok({"results": []})]

    asyncio.run(client.fetch_page("properties"))

    assert fake_sleep.delays == [7.0]


def test_client_errors_are_not_retried(client, fake_sleep):
    client._post.return_value = (401, {}, "Unauthorized")

    with pytest.raises(PermanentApiError) as exc_info:
        asyncio.run(client.fetch_page("properties"))

    assert exc_info.value.status_code == 401
    assert client._post.call_count == 1
    assert fake_sleep.delays == []


def test_network_errors_are_transient(client, fake_sleep):
    client._post.side_effect = [aiohttp.ClientConnectionError("reset"), asyncio.TimeoutError(), ok({"results": []})]

    page = asyncio.run(client.fetch_page("properties"))

    assert page.records == []
    assert fake_sleep.delays == [1.0, 2.0]


def test_malformed_json_is_permanent(client):
    client._post.return_value = (200, {}, "<html>oops</html>")

    with pytest.raises(PermanentApiError):
        asyncio.run(client.fetch_page("properties"))
    assert client._post.call_count == 1


def test_unconfigured_connection_never_calls_the_api(test_settings):
    api = AppfolioClient(AppfolioConnection(name="Empty"), settings=test_settings)
    api._post = AsyncMock()

    with pytest.raises(ConnectionNotConfiguredError):
        asyncio.run(api.fetch_page("properties"))
    api._post.assert_not_called()


def test_connection_check_reports_failure(client):
    client._post.return_value = (403, {}, "Forbidden")

    success, message = asyncio.run(client.test_connection())

    assert success is False
    assert "403" in message


def test_absolute_next_page_url_to_another_host_is_refused(client):
    with pytest.raises(PermanentApiError):
        asyncio.run(client.fetch_page("units", page_url="https://collector.example.net/api/v2/reports/unit_directory.json?page=2"))
    client._post.assert_not_called()


def test_absolute_next_page_url_on_own_host_is_followed(client):
    client._post.return_value = ok({"results": [], "next_page_url": None})

    asyncio.run(client.fetch_page("units", page_url="https://acme.appfolio.com/api/v2/reports/unit_directory.json?page=3"))

    assert client._post.call_args.args[0] == "https://acme.appfolio.com/api/v2/reports/unit_directory.json?page=3"


def test_undecryptable_credentials_are_an_authentication_failure(connection, test_settings, fake_sleep):
    connection.client_secret_encrypted = encrypt_secret("s3cret", key=Fernet.generate_key().decode())
    api = AppfolioClient(connection, settings=test_settings, sleep=fake_sleep)

    with pytest.raises(ConnectionNotConfiguredError) as exc_info:
        asyncio.run(api.fetch_page("properties"))

    assert categorize_error(exc_info.value) == ErrorCategory.AUTHENTICATION
    assert fake_sleep.delays == []


def test_secrets_round_trip_and_reject_wrong_key():
    key_one = Fernet.generate_key().decode()
    token = encrypt_secret("s3cret", key=key_one)

    assert token != "s3cret"
    assert decrypt_secret(token, key=key_one) == "s3cret"
    assert decrypt_secret(None) is None
    with pytest.raises(CredentialDecryptionError):
        decrypt_secret(token, key=Fernet.generate_key().decode())


@pytest.mark.parametrize("key", ["", "change-me-to-a-fernet-key", "not-a-fernet-key"])
def test_secrets_are_never_stored_under_a_weak_key(key):
    with pytest.raises(EncryptionKeyError):
        encrypt_secret("s3cret", key=key)


def test_default_settings_have_no_usable_key(monkeypatch):
    from pmpulse.core import security
    from pmpulse.core.config import Settings

    monkeypatch.delenv("ENCRYPTION_KEY", raising=False)
    monkeypatch.setattr(security, "settings", Settings(_env_file=None))

    with pytest.raises(EncryptionKeyError):
        encrypt_secret("s3cret")
