"""Tests for URL resolution and the URL safety policy."""

import pytest

from mocha_client.exceptions import InvalidURLError
from mocha_client.urls import is_local_host, resolve_url, validate_url


class TestValidateUrl:
    """Test URL validation."""

    def test_accepts_public_https(self):
        assert validate_url("https://api.example.com/v1").host == "api.example.com"

    @pytest.mark.parametrize(
        "url,match",
        [
            ("", "empty"),
            ("   ", "empty"),
            ("ftp://example.com/file", "HTTP and HTTPS"),
            ("/relative/path", "scheme"),
        ],
    )
    def test_rejects_invalid_urls(self, url, match):
        with pytest.raises(InvalidURLError, match=match):
            validate_url(url)

    @pytest.mark.parametrize(
        "url",
        [
            "http://localhost:8000",
            "http://127.0.0.1",
            "http://10.0.0.5/api",
            "http://192.168.1.1",
            "http://[::1]:8080",
            "http://app.localhost",
        ],
    )
    def test_local_hosts_need_opt_in(self, url):
        with pytest.raises(InvalidURLError, match="allow_localhost"):
            validate_url(url)
        assert validate_url(url, allow_localhost=True).host


class TestIsLocalHost:
    @pytest.mark.parametrize(
        "host,expected",
        [
            ("localhost", True),
            ("LOCALHOST", True),
            ("169.254.0.1", True),
            ("0.0.0.0", True),
            ("8.8.8.8", False),
            ("example.com", False),
        ],
    )
    def test_classification(self, host, expected):
        assert is_local_host(host) is expected


class TestResolveUrl:
    """Test base URL resolution."""

    def test_relative_path_is_appended_to_base_path(self):
        assert resolve_url("/users", "https://api.example.com/v1") == "https://api.example.com/v1/users"
        assert resolve_url("users", "https://api.example.com/v1/") == "https://api.example.com/v1/users"

    def test_absolute_url_ignores_base(self):
        assert resolve_url("https://other.example.com/x", "https://api.example.com") == (
            "https://other.example.com/x"
        )

    def test_relative_without_base_is_rejected(self):
        with pytest.raises(InvalidURLError):
            resolve_url("/users")

    def test_base_url_policy_applies(self):
        with pytest.raises(InvalidURLError):
            resolve_url("/users", "http://localhost:8000")
        assert resolve_url("/users", "http://localhost:8000", allow_localhost=True) == (
            "http://localhost:8000/users"
        )
