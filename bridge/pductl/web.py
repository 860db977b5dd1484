# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""REST API server in front of a PDU stack.

Every route is a thin translation to one capability call. When an ACL is
configured, the caller identity (common name of the TLS client
certificate) must be granted the route's operation, and for outlet routes
the outlet id as well.

Routes (all under /api/v1):
    GET  /status[?detailed=true]   status
    GET  /status/outlets           status-outlet-all
    GET  /outlet/{id}/status       status-outlet
    GET  /temperature              temperature
    GET  /whoami                   who-am-i
    POST /clear                    clear-maximum-currents
    POST /outlet/{id}/state        switch-outlet   (JSON body: true/false)
    POST /outlet/{id}/lock         lock-outlet     (JSON body: true/false)
    POST /outlet/{id}/reboot       reboot-outlet
    GET  /health                   (no ACL check)
"""

import json
import logging
import ssl
import time
from typing import Any, Awaitable, Callable

from aiohttp import web

from .acl import AccessControlList
from .errors import InvalidOutletID, NotFound, NotPolledYet
from .pdu_model import ALL, parse_outlet_id
from .transport import PDU

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

IdentityGetter = Callable[[web.Request], "str | None"]
Handler = Callable[[web.Request], Awaitable[web.Response]]


class MissingIdentity(Exception):
    """Request carried no client certificate identity."""


class AccessDenied(Exception):
    def __init__(self, identity: str, operation: str, outlet_id: str | None = None):
        self.identity = identity
        self.operation = operation
        self.outlet_id = outlet_id
        target = f" on outlet {outlet_id}" if outlet_id is not None else ""
        super().__init__(f"{identity} is not allowed to {operation}{target}")


class BadRequest(Exception):
    pass


def peer_common_name(request: web.Request) -> str | None:
    """Return the CN of the verified TLS client certificate, if any."""
    transport = request.transport
    if transport is None:
        return None
    cert = transport.get_extra_info("peercert")
    if not cert:
        return None
    for rdn in cert.get("subject", ()):
        for key, value in rdn:
            if key == "commonName":
                return value
    return None


def make_ssl_context(cert: str, key: str, cacert: str = "") -> ssl.SSLContext:
    """Server context requiring TLS 1.3 and a client certificate."""
    ctx = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH, cafile=cacert or None)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_3
    ctx.load_cert_chain(cert, key)
    ctx.verify_mode = ssl.CERT_REQUIRED
    return ctx


def _health_of(pdu: Any) -> dict[str, Any]:
    """Collect get_health() from every layer of a wrapper chain."""
    layers = {}
    seen = set()
    layer = pdu
    while layer is not None and id(layer) not in seen:
        seen.add(id(layer))
        get_health = getattr(layer, "get_health", None)
        if callable(get_health):
            layers[type(layer).__name__] = get_health()
        layer = getattr(layer, "pdu", None)
    return layers


class WebServer:
    """aiohttp server exposing a PDU over JSON."""

    def __init__(
        self,
        pdu: PDU,
        acl: AccessControlList | None = None,
        host: str = "0.0.0.0",
        port: int = 8080,
        ssl_context: ssl.SSLContext | None = None,
        identity_getter: IdentityGetter | None = None,
    ):
        self._pdu = pdu
        self._acl = acl if acl is not None else AccessControlList()
        self._host = host
        self._port = port
        self._ssl_context = ssl_context
        self._identity = identity_getter or peer_common_name
        self._start_time = time.time()

        self._app = web.Application(middlewares=[self._error_middleware])
        self._runner: web.AppRunner | None = None
        self._setup_routes()

    @property
    def app(self) -> web.Application:
        return self._app

    def _setup_routes(self):
        r = self._app.router
        p = API_PREFIX
        r.add_get(f"{p}/status", self._guard("status", self._handle_status))
        r.add_get(f"{p}/status/outlets",
                  self._guard("status-outlet-all", self._handle_status_outlets))
        r.add_get(f"{p}/outlet/{{id}}/status",
                  self._guard("status-outlet", self._handle_outlet_status))
        r.add_get(f"{p}/temperature", self._guard("temperature", self._handle_temperature))
        r.add_get(f"{p}/whoami", self._guard("who-am-i", self._handle_whoami))
        r.add_post(f"{p}/clear", self._guard("clear-maximum-currents", self._handle_clear))
        r.add_post(f"{p}/outlet/{{id}}/state",
                   self._guard("switch-outlet", self._handle_outlet_state))
        r.add_post(f"{p}/outlet/{{id}}/lock",
                   self._guard("lock-outlet", self._handle_outlet_lock))
        r.add_post(f"{p}/outlet/{{id}}/reboot",
                   self._guard("reboot-outlet", self._handle_outlet_reboot))
        r.add_get(f"{p}/health", self._handle_health)

    def _json(self, data, status=200):
        return web.Response(
            text=json.dumps(data),
            content_type="application/json",
            status=status,
        )

    # --- Middleware and access control ---

    @web.middleware
    async def _error_middleware(self, request, handler):
        start = time.monotonic()
        try:
            response = await handler(request)
        except web.HTTPException:
            raise
        except BadRequest as e:
            response = self._json({"error": str(e)}, 400)
        except InvalidOutletID as e:
            response = self._json({"error": str(e)}, 400)
        except MissingIdentity as e:
            response = self._json({"error": str(e)}, 401)
        except AccessDenied as e:
            logger.warning("API: %s", e)
            response = self._json({"error": str(e)}, 403)
        except NotFound as e:
            response = self._json({"error": str(e)}, 404)
        except NotPolledYet as e:
            response = self._json({"error": str(e)}, 503)
        except Exception as e:
            logger.exception("API: %s %s failed", request.method, request.path)
            response = self._json({"error": str(e)}, 500)
        logger.debug("API: %s %s -> %d (%.0fms)", request.method, request.path,
                     response.status, (time.monotonic() - start) * 1000)
        return response

    def _authorize(self, request: web.Request, operation: str) -> None:
        if not len(self._acl):
            return
        identity = self._identity(request)
        if not identity:
            raise MissingIdentity("client certificate required")
        outlet_id = request.match_info.get("id")
        if not self._acl.check(identity, operation, outlet_id):
            raise AccessDenied(identity, operation, outlet_id)

    def _guard(self, operation: str, handler: Handler) -> Handler:
        async def guarded(request: web.Request) -> web.Response:
            self._authorize(request, operation)
            return await handler(request)
        guarded.__name__ = handler.__name__
        return guarded

    @staticmethod
    async def _read_bool(request: web.Request) -> bool:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise BadRequest("request body must be JSON true or false")
        if not isinstance(body, bool):
            raise BadRequest("request body must be JSON true or false")
        return body

    # --- Handlers ---

    async def _handle_status(self, request):
        detailed = request.query.get("detailed", "false").lower() in ("true", "1", "yes")
        sts = await self._pdu.status(detailed)
        data = sts.to_dict()
        if not detailed:
            del data["outlets"]
        return self._json(data)

    async def _handle_status_outlets(self, request):
        sts = await self._pdu.status(True)
        return self._json([o.to_dict() for o in sts.outlets])

    async def _handle_outlet_status(self, request):
        outlet_id = request.match_info["id"]
        if outlet_id == ALL:
            raise NotFound(outlet_id)
        sts = await self._pdu.status(True)
        n = parse_outlet_id(outlet_id, len(sts.outlets))
        for outlet in sts.outlets:
            if outlet.id == n:
                return self._json(outlet.to_dict())
        raise NotFound(outlet_id)

    async def _handle_temperature(self, request):
        temp = await self._pdu.temperature()
        return self._json({"temperature": temp})

    async def _handle_whoami(self, request):
        user = await self._pdu.whoami()
        return self._json({"username": user})

    async def _handle_clear(self, request):
        await self._pdu.clear_maximum_currents()
        return self._json({"ok": True})

    async def _handle_outlet_state(self, request):
        outlet_id = request.match_info["id"]
        state = await self._read_bool(request)
        await self._pdu.switch_outlet(outlet_id, state)
        return self._json({"ok": True, "outlet": outlet_id, "state": state})

    async def _handle_outlet_lock(self, request):
        outlet_id = request.match_info["id"]
        locked = await self._read_bool(request)
        await self._pdu.lock_outlet(outlet_id, locked)
        return self._json({"ok": True, "outlet": outlet_id, "locked": locked})

    async def _handle_outlet_reboot(self, request):
        outlet_id = request.match_info["id"]
        await self._pdu.reboot_outlet(outlet_id)
        return self._json({"ok": True, "outlet": outlet_id})

    async def _handle_health(self, request):
        return self._json({
            "status": "ok",
            "uptime": round(time.time() - self._start_time, 1),
            "acl_entries": len(self._acl),
            "layers": _health_of(self._pdu),
        })

    # --- Lifecycle ---

    async def start(self):
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port,
                           ssl_context=self._ssl_context)
        await site.start()
        scheme = "https" if self._ssl_context else "http"
        logger.info("REST API started on %s://%s:%d%s", scheme, self._host,
                    self._port, API_PREFIX)

    async def stop(self):
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
