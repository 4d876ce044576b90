"""Tests for utility functions."""

import pytest

from kube_tunnel.common.utils import (
    format_address,
    is_dns_label,
    is_dns_subdomain,
    is_loopback_address,
)


class TestDnsNames:
    """Test RFC 1123 name checks."""

    @pytest.mark.parametrize("name", ["default", "kube-system", "a", "team1", "x" * 63])
    def test_valid_labels(self, name):
        assert is_dns_label(name)

    @pytest.mark.parametrize(
        "name", ["", "Default", "-leading", "trailing-", "under_score", "dot.ted", "x" * 64]
    )
    def test_invalid_labels(self, name):
        assert not is_dns_label(name)

    @pytest.mark.parametrize("name", ["postgres-0", "web.v2.app", "a.b"])
    def test_valid_subdomains(self, name):
        assert is_dns_subdomain(name)

    @pytest.mark.parametrize("name", ["", "a..b", ".a", "a.", "Web-0", "a" * 254])
    def test_invalid_subdomains(self, name):
        assert not is_dns_subdomain(name)


class TestAddresses:
    """Test address helpers."""

    @pytest.mark.parametrize("host", ["127.0.0.1", "127.0.0.53", "::1"])
    def test_loopback(self, host):
        assert is_loopback_address(host)

    @pytest.mark.parametrize("host", ["0.0.0.0", "::", "192.168.1.10", "localhost", ""])
    def test_not_loopback(self, host):
        """Wildcards, external and non-literal hosts are rejected"""
        assert not is_loopback_address(host)

    def test_format_ipv4(self):
        assert format_address("127.0.0.1", 8080) == "127.0.0.1:8080"

    def test_format_ipv6(self):
        assert format_address("::1", 8080) == "[::1]:8080"
