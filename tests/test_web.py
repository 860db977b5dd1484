# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Tests for the REST API server."""

import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "bridge"))

from pductl.acl import AccessControlList
from pductl.errors import InvalidOutletID, NotPolledYet
from pductl.pdu_model import BreakerStatus, GroupStatus, OutletStatus, Status
from pductl.web import API_PREFIX, WebServer, peer_common_name

IDENTITY_HEADER = "X-Test-Identity"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_status() -> Status:
    return Status(
        temperature=25.0,
        total_energy=1523.0,
        switches=[False, True],
        breakers=[BreakerStatus(name="CKT1", id=1, true_rms_current=3.2,
                                peak_rms_current=9.1)],
        groups=[GroupStatus(name="Circuit M1", id=1, breaker_id=1,
                            true_rms_current=1.8, true_rms_voltage=229.5)],
        outlets=[
            OutletStatus(name=f"Outlet {i}", id=i, breaker_id=1, group_id=1,
                         state=i != 2, true_rms_current=0.5, true_rms_voltage=230.0)
            for i in range(1, 4)
        ],
    )


class FakePDU:
    def __init__(self):
        self.switch_outlet = AsyncMock()
        self.lock_outlet = AsyncMock()
        self.reboot_outlet = AsyncMock()
        self.clear_maximum_currents = AsyncMock()
        self.temperature = AsyncMock(return_value=25.0)
        self.whoami = AsyncMock(return_value="admin")
        self.close = AsyncMock()
        self.status_calls = []
        self.status_error: Exception | None = None

    async def status(self, detailed: bool = False) -> Status:
        self.status_calls.append(detailed)
        if self.status_error is not None:
            raise self.status_error
        return make_status().copy(detailed)

    def get_health(self):
        return {"reachable": True}


class FakeLoginPDU(FakePDU):
    def __init__(self):
        super().__init__()
        self.sessions = []
        self.login = AsyncMock()
        self.logout = AsyncMock()

    async def with_login(self, username, password, body):
        self.sessions.append((username, password))
        return await body()


def header_identity(request):
    return request.headers.get(IDENTITY_HEADER)


ACL_EXAMPLE = [
    {"name": "^client1$", "outlets": [{"id": ".*", "operations": ["switch"]}]},
    {"name": "^client2$", "operations": ["status"]},
]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def pdu():
    return FakePDU()


@pytest_asyncio.fixture
async def client(pdu):
    """TestClient for a WebServer with no ACL."""
    ws = WebServer(pdu, identity_getter=header_identity)
    async with TestClient(TestServer(ws.app)) as c:
        yield c


@pytest_asyncio.fixture
async def acl_client(pdu):
    ws = WebServer(pdu, acl=AccessControlList.from_list(ACL_EXAMPLE),
                   identity_getter=header_identity)
    async with TestClient(TestServer(ws.app)) as c:
        yield c


# ===========================================================================
# Read routes
# ===========================================================================

class TestStatusRoutes:
    @pytest.mark.asyncio
    async def test_summary(self, client, pdu):
        resp = await client.get(f"{API_PREFIX}/status")
        assert resp.status == 200
        body = await resp.json()
        assert body["temp"] == 25.0
        assert body["kwh"] == 1523.0
        assert body["switches"] == [False, True]
        assert body["breakers"][0]["name"] == "CKT1"
        assert body["groups"][0]["breaker_id"] == 1
        assert "outlets" not in body
        assert pdu.status_calls == [False]

    @pytest.mark.asyncio
    async def test_detailed(self, client, pdu):
        resp = await client.get(f"{API_PREFIX}/status?detailed=true")
        body = await resp.json()
        assert len(body["outlets"]) == 3
        assert body["outlets"][1]["state"] is False
        assert pdu.status_calls == [True]

    @pytest.mark.asyncio
    async def test_all_outlets(self, client):
        resp = await client.get(f"{API_PREFIX}/status/outlets")
        body = await resp.json()
        assert [o["id"] for o in body] == [1, 2, 3]
        assert body[0]["power"] == pytest.approx(115.0)

    @pytest.mark.asyncio
    async def test_single_outlet(self, client):
        resp = await client.get(f"{API_PREFIX}/outlet/2/status")
        assert resp.status == 200
        body = await resp.json()
        assert body["id"] == 2
        assert body["name"] == "Outlet 2"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("outlet_id,status", [
        ("all", 404),
        ("abc", 404),
        ("9", 400),
    ])
    async def test_single_outlet_errors(self, client, outlet_id, status):
        resp = await client.get(f"{API_PREFIX}/outlet/{outlet_id}/status")
        assert resp.status == status
        assert "error" in await resp.json()

    @pytest.mark.asyncio
    async def test_temperature(self, client):
        resp = await client.get(f"{API_PREFIX}/temperature")
        assert await resp.json() == {"temperature": 25.0}

    @pytest.mark.asyncio
    async def test_whoami(self, client):
        resp = await client.get(f"{API_PREFIX}/whoami")
        assert await resp.json() == {"username": "admin"}


# ===========================================================================
# Mutating routes
# ===========================================================================

class TestCommandRoutes:
    @pytest.mark.asyncio
    async def test_clear(self, client, pdu):
        resp = await client.post(f"{API_PREFIX}/clear")
        assert resp.status == 200
        assert (await resp.json())["ok"] is True
        pdu.clear_maximum_currents.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_switch(self, client, pdu):
        resp = await client.post(f"{API_PREFIX}/outlet/3/state", json=False)
        assert resp.status == 200
        assert await resp.json() == {"ok": True, "outlet": "3", "state": False}
        pdu.switch_outlet.assert_awaited_once_with("3", False)

    @pytest.mark.asyncio
    async def test_lock(self, client, pdu):
        resp = await client.post(f"{API_PREFIX}/outlet/4/lock", json=True)
        assert resp.status == 200
        pdu.lock_outlet.assert_awaited_once_with("4", True)

    @pytest.mark.asyncio
    async def test_reboot_all(self, client, pdu):
        resp = await client.post(f"{API_PREFIX}/outlet/all/reboot")
        assert resp.status == 200
        pdu.reboot_outlet.assert_awaited_once_with("all")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [
        {"json": "on"},
        {"json": 1},
        {"data": "not json"},
        {},
    ])
    async def test_body_must_be_bool(self, client, pdu, kwargs):
        resp = await client.post(f"{API_PREFIX}/outlet/1/state", **kwargs)
        assert resp.status == 400
        pdu.switch_outlet.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_not_allowed_on_commands(self, client):
        resp = await client.get(f"{API_PREFIX}/clear")
        assert resp.status == 405


# ===========================================================================
# Error mapping
# ===========================================================================

class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_invalid_outlet_is_400(self, client, pdu):
        pdu.switch_outlet.side_effect = InvalidOutletID("21")
        resp = await client.post(f"{API_PREFIX}/outlet/21/state", json=True)
        assert resp.status == 400
        assert "21" in (await resp.json())["error"]

    @pytest.mark.asyncio
    async def test_not_polled_yet_is_503(self, client, pdu):
        pdu.status_error = NotPolledYet()
        resp = await client.get(f"{API_PREFIX}/status")
        assert resp.status == 503

    @pytest.mark.asyncio
    async def test_device_failure_is_500(self, client, pdu):
        pdu.temperature.side_effect = ConnectionResetError("console went away")
        resp = await client.get(f"{API_PREFIX}/temperature")
        assert resp.status == 500
        assert "console went away" in (await resp.json())["error"]

    @pytest.mark.asyncio
    async def test_unknown_route_is_404(self, client):
        resp = await client.get(f"{API_PREFIX}/nope")
        assert resp.status == 404


# ===========================================================================
# Access control
# ===========================================================================

class TestAccessControl:
    @pytest.mark.asyncio
    async def test_missing_identity_is_401(self, acl_client):
        resp = await acl_client.get(f"{API_PREFIX}/status")
        assert resp.status == 401

    @pytest.mark.asyncio
    async def test_whole_pdu_grant(self, acl_client):
        resp = await acl_client.get(f"{API_PREFIX}/status",
                                    headers={IDENTITY_HEADER: "client2"})
        assert resp.status == 200

    @pytest.mark.asyncio
    async def test_denied_operation_is_403(self, acl_client, pdu):
        resp = await acl_client.post(f"{API_PREFIX}/outlet/3/state", json=True,
                                     headers={IDENTITY_HEADER: "client2"})
        assert resp.status == 403
        pdu.switch_outlet.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_outlet_grant(self, acl_client, pdu):
        resp = await acl_client.post(f"{API_PREFIX}/outlet/3/state", json=True,
                                     headers={IDENTITY_HEADER: "client1"})
        assert resp.status == 200
        pdu.switch_outlet.assert_awaited_once_with("3", True)

    @pytest.mark.asyncio
    async def test_outlet_grant_does_not_cover_status(self, acl_client):
        resp = await acl_client.get(f"{API_PREFIX}/status",
                                    headers={IDENTITY_HEADER: "client1"})
        assert resp.status == 403

    @pytest.mark.asyncio
    async def test_unknown_identity(self, acl_client):
        resp = await acl_client.get(f"{API_PREFIX}/whoami",
                                    headers={IDENTITY_HEADER: "client3"})
        assert resp.status == 403

    @pytest.mark.asyncio
    async def test_health_skips_acl(self, acl_client):
        resp = await acl_client.get(f"{API_PREFIX}/health")
        assert resp.status == 200
        assert (await resp.json())["acl_entries"] == 2

    @pytest.mark.asyncio
    async def test_no_acl_needs_no_identity(self, client):
        resp = await client.post(f"{API_PREFIX}/clear")
        assert resp.status == 200


# ===========================================================================
# Session handling
# ===========================================================================

class TestSessions:
    @pytest.mark.asyncio
    async def test_routes_never_open_a_session(self):
        pdu = FakeLoginPDU()
        ws = WebServer(pdu)
        async with TestClient(TestServer(ws.app)) as c:
            resp = await c.post(f"{API_PREFIX}/outlet/1/state", json=True)
            assert resp.status == 200
            resp = await c.get(f"{API_PREFIX}/temperature")
            assert resp.status == 200
            await c.get(f"{API_PREFIX}/health")
        assert pdu.sessions == []
        pdu.login.assert_not_awaited()
        pdu.switch_outlet.assert_awaited_once_with("1", True)


# ===========================================================================
# Health and TLS identity
# ===========================================================================

class TestHealth:
    @pytest.mark.asyncio
    async def test_health_collects_layers(self, client):
        resp = await client.get(f"{API_PREFIX}/health")
        body = await resp.json()
        assert body["status"] == "ok"
        assert body["acl_entries"] == 0
        assert body["layers"] == {"FakePDU": {"reachable": True}}
        assert body["uptime"] >= 0

    @pytest.mark.asyncio
    async def test_start_stop(self, pdu, unused_tcp_port):
        ws = WebServer(pdu, host="127.0.0.1", port=unused_tcp_port)
        await ws.start()
        await ws.stop()
        await ws.stop()


class TestPeerCommonName:
    def _request(self, cert):
        request = MagicMock()
        request.transport.get_extra_info.return_value = cert
        return request

    def test_common_name(self):
        cert = {"subject": ((("countryName", "US"),), (("commonName", "client1"),))}
        assert peer_common_name(self._request(cert)) == "client1"

    def test_no_certificate(self):
        assert peer_common_name(self._request(None)) is None

    def test_no_common_name(self):
        cert = {"subject": ((("organizationName", "Lab"),),)}
        assert peer_common_name(self._request(cert)) is None

    def test_no_transport(self):
        request = MagicMock()
        request.transport = None
        assert peer_common_name(request) is None
