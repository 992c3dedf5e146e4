"""
Tests for the deployment record client: retries, classification, auth headers.
"""
import json
import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from deployment_tracker.core.config import ConfigError
from deployment_tracker.monitoring.metrics import sample_value
from deployment_tracker.schemas.deployment_record import new_deployment_record
from deployment_tracker.services.deployment_record_client import (
    ClientError,
    DeliveryCancelledError,
    DeliveryError,
    DeliveryExhaustedError,
    DeploymentRecordClient,
)
from deployment_tracker.services.github_app_auth import TokenError
from deployment_tracker.services.rate_limiter import TokenBucket

CLIENT_MODULE = "deployment_tracker.services.deployment_record_client"


def _record(status="deployed"):
    return new_deployment_record(
        name="ghcr.io/acme/web",
        digest="sha256:abc",
        version="1.2.3",
        logical_environment="prod",
        physical_environment="aws",
        cluster="east-1",
        status=status,
        deployment_name="prod/web/app",
    )


def _response(status_code):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = ""
    return resp


def _client(statuses, **kwargs):
    session = MagicMock()
    session.post.side_effect = [
        s if isinstance(s, Exception) else _response(s) for s in statuses
    ]
    kwargs.setdefault("api_token", "static-token")
    client = DeploymentRecordClient("api.github.com", "acme", session=session, **kwargs)
    return client, session


@pytest.fixture
def sleeps():
    """Record backoff delays instead of sleeping."""
    delays = []

    def fake_sleep(delay, cancel=None):
        delays.append(delay)
        return True

    with patch(f"{CLIENT_MODULE}.sleep_with_cancel", side_effect=fake_sleep):
        yield delays


def test_url_and_payload(sleeps):
    client, session = _client([201])
    client.post_one(_record())

    assert client.url == "https://api.github.com/orgs/acme/artifacts/metadata/deployment-record"
    args, kwargs = session.post.call_args
    assert args[0] == client.url
    assert kwargs["allow_redirects"] is False
    assert kwargs["timeout"] == 5.0
    assert kwargs["headers"]["Content-Type"] == "application/json"
    assert kwargs["headers"]["Authorization"] == "Bearer static-token"
    assert json.loads(kwargs["data"]) == {
        "name": "ghcr.io/acme/web",
        "digest": "sha256:abc",
        "version": "1.2.3",
        "logical_environment": "prod",
        "physical_environment": "aws",
        "cluster": "east-1",
        "status": "deployed",
        "deployment_name": "prod/web/app",
    }
    assert sleeps == []


def test_server_errors_retried_until_success(sleeps):
    ok_before = sample_value("deptracker_post_record_ok_total")
    soft_before = sample_value("deptracker_post_record_soft_fail_total")

    client, session = _client([500, 500, 500, 200], retries=3)
    client.post_one(_record())

    assert session.post.call_count == 4
    assert len(sleeps) == 3
    assert sleeps[0] < sleeps[1] < sleeps[2]
    assert all(delay <= 5.0 for delay in sleeps)
    assert sample_value("deptracker_post_record_ok_total") == ok_before + 1
    assert sample_value("deptracker_post_record_soft_fail_total") == soft_before + 3


def test_client_error_not_retried(sleeps):
    client_error_before = sample_value("deptracker_post_record_client_error_total")

    client, session = _client([404, 200])
    with pytest.raises(ClientError) as exc_info:
        client.post_one(_record())

    assert session.post.call_count == 1
    assert exc_info.value.status_code == 404
    assert "unexpected status code: 404" in str(exc_info.value)
    assert sleeps == []
    assert sample_value("deptracker_post_record_client_error_total") == client_error_before + 1


def test_too_many_requests_is_retried(sleeps):
    client, session = _client([429, 201])
    client.post_one(_record())
    assert session.post.call_count == 2


def test_network_errors_retried(sleeps):
    client, session = _client([requests.exceptions.ConnectionError("reset"), 200])
    client.post_one(_record())
    assert session.post.call_count == 2


def test_exhausted_retries(sleeps):
    hard_before = sample_value("deptracker_post_record_hard_fail_total")

    client, session = _client([503, 503, 503], retries=2)
    with pytest.raises(DeliveryExhaustedError) as exc_info:
        client.post_one(_record())

    assert session.post.call_count == 3
    assert "all retries exhausted" in str(exc_info.value)
    assert sample_value("deptracker_post_record_hard_fail_total") == hard_before + 1


def test_exhausted_chains_last_network_error(sleeps):
    error = requests.exceptions.Timeout("slow")
    client, _ = _client([error, error], retries=1)
    with pytest.raises(DeliveryExhaustedError) as exc_info:
        client.post_one(_record())
    assert exc_info.value.__cause__ is error


def test_zero_retries_means_single_attempt(sleeps):
    client, session = _client([500], retries=0)
    with pytest.raises(DeliveryExhaustedError):
        client.post_one(_record())
    assert session.post.call_count == 1
    assert sleeps == []


def test_none_record_rejected():
    client, session = _client([])
    with pytest.raises(ValueError):
        client.post_one(None)
    session.post.assert_not_called()


def test_cancelled_while_rate_limited():
    limiter = MagicMock(spec=TokenBucket)
    limiter.wait.return_value = False
    client, session = _client([200], rate_limiter=limiter)

    with pytest.raises(DeliveryCancelledError):
        client.post_one(_record(), cancel=threading.Event())
    session.post.assert_not_called()


def test_cancelled_during_backoff():
    cancel = threading.Event()
    cancel.set()
    client, session = _client([500, 200])
    # A cancelled event also stops the rate limiter wait
    client.rate_limiter = MagicMock(spec=TokenBucket)
    client.rate_limiter.wait.return_value = True

    with pytest.raises(DeliveryCancelledError):
        client.post_one(_record(), cancel=cancel)
    assert session.post.call_count == 1


def test_installation_token_takes_precedence(sleeps):
    provider = MagicMock()
    provider.token.return_value = "installation-token"
    client, session = _client([200], token_provider=provider)

    client.post_one(_record())

    headers = session.post.call_args.kwargs["headers"]
    assert headers["Authorization"] == "Bearer installation-token"


def test_no_token_no_authorization_header(sleeps):
    client, session = _client([200], api_token="")
    client.post_one(_record())
    assert "Authorization" not in session.post.call_args.kwargs["headers"]


def test_token_failure_aborts(sleeps):
    provider = MagicMock()
    provider.token.side_effect = TokenError("exchange failed")
    client, session = _client([200], token_provider=provider)

    with pytest.raises(DeliveryError) as exc_info:
        client.post_one(_record())
    assert "failed to get access token" in str(exc_info.value)
    session.post.assert_not_called()


def test_construction_validates_target():
    with pytest.raises(ConfigError):
        DeploymentRecordClient("http://api.github.com", "acme")
    with pytest.raises(ConfigError):
        DeploymentRecordClient("api.github.com", "acme/../x")
