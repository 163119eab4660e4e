"""Tests for trusted client IP resolution."""

from __future__ import annotations

import ipaddress

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from oasis.client_ip import (
    HEADER_RULES,
    IPRange,
    InboundRequest,
    addr_to_int,
    client_ip_dependency,
    client_ip_from_request,
    is_private,
    valid_ip,
)


def _starlette_request(headers: dict[str, str], client: tuple[str, int] | None = ("203.0.113.7", 51000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": client,
    }
    return Request(scope)


# === Ranges ===


def test_addr_to_int_big_endian():
    assert addr_to_int(ipaddress.ip_address("1.2.3.4")) == 0x01020304
    assert addr_to_int(ipaddress.ip_address("255.255.255.255")) == 0xFFFFFFFF


def test_range_is_closed_interval():
    r = IPRange.parse("10.0.0.0", "10.255.255.255")
    assert r.encompasses(addr_to_int(ipaddress.ip_address("10.0.0.0")))
    assert r.encompasses(addr_to_int(ipaddress.ip_address("10.255.255.255")))
    assert not r.encompasses(addr_to_int(ipaddress.ip_address("11.0.0.0")))


@pytest.mark.parametrize("ip", ["192.168.1.1", "10.0.0.5", "127.0.0.1", "172.20.1.1", "169.254.3.3", "0.255.255.255", "192.0.2.10"])
def test_private_ranges(ip):
    assert is_private(ipaddress.ip_address(ip))
    assert not valid_ip(ip, skip_private=True)
    assert valid_ip(ip, skip_private=False)


@pytest.mark.parametrize("ip", ["1.0.0.0", "1.1.1.1", "2.255.255.255", "8.8.8.8", "172.32.0.1", "203.0.113.7"])
def test_public_never_excluded(ip):
    assert valid_ip(ip, skip_private=True)


def test_ipv6_not_range_checked():
    assert valid_ip("::1", skip_private=True)
    assert valid_ip("fd00::1", skip_private=True)


@pytest.mark.parametrize("candidate", ["", "   ", "not-an-ip", "999.1.1.1", None])
def test_invalid_candidates(candidate):
    assert not valid_ip(candidate)


# === Resolution ===


def test_forwarded_for_first_public():
    req = InboundRequest(headers={"X-Forwarded-For": "10.0.0.5, 8.8.8.8"})
    assert client_ip_from_request(req, skip_private=True) == "8.8.8.8"


def test_forwarded_for_one_slash_eight_is_public():
    req = InboundRequest(headers={"X-Forwarded-For": "10.0.0.5, 1.1.1.1"}, remote_addr="198.51.100.9")
    assert client_ip_from_request(req, skip_private=True) == "1.1.1.1"


def test_forwarded_for_first_when_private_allowed():
    req = InboundRequest(headers={"X-Forwarded-For": "10.0.0.5, 8.8.8.8"})
    assert client_ip_from_request(req) == "10.0.0.5"


def test_remote_addr_only():
    req = InboundRequest(server_variables={"REMOTE_ADDR": "203.0.113.7"})
    assert client_ip_from_request(req) == "203.0.113.7"


def test_invalid_client_ip_header_is_skipped():
    req = InboundRequest(
        headers={"X-Client-IP": "not-an-ip"},
        server_variables={"REMOTE_ADDR": "198.51.100.9"},
    )
    assert client_ip_from_request(req) == "198.51.100.9"


def test_client_ip_header_beats_forwarded_for():
    req = InboundRequest(headers={"X-Client-IP": "1.1.1.1", "X-Forwarded-For": "8.8.8.8"})
    assert client_ip_from_request(req) == "1.1.1.1"


def test_headers_are_case_insensitive():
    req = InboundRequest(headers={"x-forwarded-for": "8.8.4.4"})
    assert client_ip_from_request(req) == "8.8.4.4"


def test_ignore_list_skips_to_next_candidate():
    req = InboundRequest(headers={"X-Forwarded-For": "8.8.8.8, 1.1.1.1"})
    assert client_ip_from_request(req, ignore_addresses=["8.8.8.8"]) == "1.1.1.1"


def test_ignore_list_skips_to_next_rule():
    req = InboundRequest(
        headers={"X-Client-IP": "8.8.8.8"},
        server_variables={"REMOTE_ADDR": "203.0.113.7"},
    )
    assert client_ip_from_request(req, ignore_addresses={"8.8.8.8"}) == "203.0.113.7"


def test_server_variable_rule():
    req = InboundRequest(server_variables={"HTTP_X_CLUSTER_CLIENT_IP": "9.9.9.9", "REMOTE_ADDR": "203.0.113.7"})
    assert client_ip_from_request(req) == "9.9.9.9"


def test_fallback_is_unvalidated():
    req = InboundRequest(headers={"X-Forwarded-For": "10.1.1.1"}, remote_addr="10.0.0.1")
    assert client_ip_from_request(req, skip_private=True) == "10.0.0.1"


def test_nothing_known():
    assert client_ip_from_request(InboundRequest()) is None


def test_rules_end_with_remote_addr():
    assert HEADER_RULES[0].name == "X-Client-IP"
    assert HEADER_RULES[-1].name == "REMOTE_ADDR"
    assert [r.name for r in HEADER_RULES if r.comma_delimited] == ["X-Forwarded-For", "HTTP_X_FORWARDED_FOR"]


# === Starlette / FastAPI ===


def test_from_starlette_server_variables():
    req = InboundRequest.from_starlette(_starlette_request({"X-Cluster-Client-IP": "9.9.9.9"}))
    assert req.server_variables["HTTP_X_CLUSTER_CLIENT_IP"] == "9.9.9.9"
    assert req.server_variables["REMOTE_ADDR"] == "203.0.113.7"
    assert req.user_host_address == "203.0.113.7"


def test_from_starlette_forwarded_for():
    req = InboundRequest.from_starlette(_starlette_request({"X-Forwarded-For": "192.168.0.4, 8.8.8.8"}))
    assert client_ip_from_request(req, skip_private=True) == "8.8.8.8"


def test_from_starlette_without_client():
    req = InboundRequest.from_starlette(_starlette_request({}, client=None))
    assert client_ip_from_request(req) is None


def test_fastapi_dependency():
    app = FastAPI()

    @app.get("/ip")
    def read_ip(ip: str | None = Depends(client_ip_dependency(ignore_addresses=["8.8.8.8"]))):
        return {"ip": ip}

    client = TestClient(app)
    resp = client.get("/ip", headers={"X-Forwarded-For": "10.0.0.5, 8.8.8.8, 1.1.1.1"})
    assert resp.json() == {"ip": "1.1.1.1"}
