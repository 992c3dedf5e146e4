"""
Regression tests for egress guard enforcement.

These tests ensure that:
1. Plain HTTP is only accepted for local and in-cluster hosts
2. A missing scheme defaults to HTTPS
3. Organization names cannot inject path segments
"""
import pytest

from deployment_tracker.core.config import ConfigError
from deployment_tracker.utils.egress_guard import (
    EgressGuardError,
    is_local_url,
    validate_base_url,
    validate_organization,
)


class TestBaseUrl:
    """Test base URL validation"""

    def test_scheme_added_when_missing(self):
        assert validate_base_url("api.github.com") == "https://api.github.com"

    def test_https_kept(self):
        assert validate_base_url("https://ghe.example.com/api/v3") == "https://ghe.example.com/api/v3"

    @pytest.mark.parametrize(
        "url",
        [
            "http://localhost:8080",
            "http://127.0.0.1:9000",
            "http://artifact-api.tools.svc.cluster.local",
        ],
    )
    def test_local_http_allowed(self, url):
        assert validate_base_url(url) == url

    def test_remote_http_blocked(self):
        """Test that plain HTTP to a remote host is rejected"""
        with pytest.raises(EgressGuardError) as exc_info:
            validate_base_url("http://api.github.com")
        assert "insecure URL not allowed" in str(exc_info.value)

    def test_guard_error_is_config_error(self):
        with pytest.raises(ConfigError):
            validate_base_url("http://evil.example.com")

    def test_is_local_url(self):
        assert is_local_url("http://localhost")
        assert not is_local_url("http://example.com")


class TestOrganization:
    """Test organization name validation"""

    @pytest.mark.parametrize("org", ["acme", "Acme-Corp", "acme_corp", "a1"])
    def test_valid(self, org):
        assert validate_organization(org) == org

    @pytest.mark.parametrize("org", ["", "acme/../admin", "acme corp", "acme?x=1", "acme\n"])
    def test_invalid(self, org):
        with pytest.raises(EgressGuardError) as exc_info:
            validate_organization(org)
        assert "invalid organization name" in str(exc_info.value)
