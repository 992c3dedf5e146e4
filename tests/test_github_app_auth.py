"""
Tests for GitHub App installation token minting and caching.
"""
import time
from unittest.mock import MagicMock

import jwt
import pytest
import requests
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from deployment_tracker.core.config import ConfigError
from deployment_tracker.services.github_app_auth import InstallationTokenProvider, TokenError


@pytest.fixture(scope="module")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def key_path(tmp_path, rsa_key):
    pem = rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    path = tmp_path / "app.pem"
    path.write_bytes(pem)
    return str(path)


def _token_response(token="ghs_abc", expires_at="2099-01-01T00:00:00Z", status_code=201):
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = {"token": token, "expires_at": expires_at}
    resp.text = ""
    return resp


def test_token_exchange(key_path, rsa_key):
    session = MagicMock()
    session.post.return_value = _token_response()
    provider = InstallationTokenProvider("123", "456", key_path, session=session)

    assert provider.token() == "ghs_abc"

    args, kwargs = session.post.call_args
    assert args[0] == "https://api.github.com/app/installations/456/access_tokens"
    app_jwt = kwargs["headers"]["Authorization"].split(" ", 1)[1]
    claims = jwt.decode(app_jwt, rsa_key.public_key(), algorithms=["RS256"])
    assert claims["iss"] == "123"
    assert claims["exp"] - claims["iat"] == 600


def test_token_cached_until_near_expiry(key_path):
    session = MagicMock()
    session.post.return_value = _token_response()
    provider = InstallationTokenProvider("1", "2", key_path, session=session)

    provider.token()
    provider.token()
    assert session.post.call_count == 1


def test_token_refreshed_inside_margin(key_path):
    soon = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time() + 30))
    session = MagicMock()
    session.post.side_effect = [_token_response("first", soon), _token_response("second")]
    provider = InstallationTokenProvider("1", "2", key_path, session=session)

    assert provider.token() == "first"
    assert provider.token() == "second"


def test_exchange_failure_raises_token_error(key_path):
    session = MagicMock()
    session.post.return_value = _token_response(status_code=401)
    provider = InstallationTokenProvider("1", "2", key_path, session=session)

    with pytest.raises(TokenError):
        provider.token()


def test_network_failure_raises_token_error(key_path):
    session = MagicMock()
    session.post.side_effect = requests.exceptions.ConnectionError("down")
    provider = InstallationTokenProvider("1", "2", key_path, session=session)

    with pytest.raises(TokenError):
        provider.token()


@pytest.mark.parametrize("app_id,install_id", [("abc", "2"), ("1", "x2"), ("", "2")])
def test_non_numeric_ids_rejected(key_path, app_id, install_id):
    with pytest.raises(ConfigError):
        InstallationTokenProvider(app_id, install_id, key_path)


def test_missing_key_file_rejected(tmp_path):
    with pytest.raises(ConfigError):
        InstallationTokenProvider("1", "2", str(tmp_path / "missing.pem"))


def test_invalid_key_rejected(tmp_path):
    path = tmp_path / "bad.pem"
    path.write_text("not a key")
    with pytest.raises(ConfigError):
        InstallationTokenProvider("1", "2", str(path))
