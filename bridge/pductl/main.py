# Baytech PDU Bridge
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Entry point -- Baytech console -> REST bridge.

Stack, innermost first:
    BaytechPDU   -- console session + report parsing
    PolledPDU    -- background poll loop with energy integration
                    (when PDU_POLL_INTERVAL > 0)
    CachedPDU    -- TTL cache with per-call login
                    (instead of the poller when PDU_POLL_INTERVAL is 0)
    WebServer    -- REST API with ACL and optional mTLS
"""

import asyncio
import logging
import signal
import sys

from . import __version__
from .acl import AccessControlList
from .baytech import BaytechPDU
from .cache import CachedPDU
from .config import Config, ConfigError, load_acl
from .energy import integrate_energy
from .poller import PolledPDU
from .transport import PDU
from .web import WebServer, make_ssl_context

logger = logging.getLogger(__name__)


class Bridge:
    """Builds the PDU stack from Config and runs it until stopped."""

    def __init__(self, config: Config):
        self.config = config
        self.pdu: PDU | None = None
        self.web: WebServer | None = None
        self._stop = asyncio.Event()

    async def build(self) -> PDU:
        cfg = self.config
        driver = await BaytechPDU.connect(
            cfg.address,
            baud=cfg.serial_baud,
            prompts=cfg.prompts,
            banking=cfg.banking,
            read_timeout=cfg.read_timeout,
            command_timeout=cfg.command_timeout or None,
        )
        if cfg.poll_interval > 0:
            # Status comes from the latest poll snapshot, no TTL cache on top
            poller = PolledPDU(driver, cfg.poll_interval, cfg.username, cfg.password,
                               on_status=integrate_energy)
            poller.start()
            return poller
        logger.info("Polling disabled, serving through the cache only")
        return CachedPDU(driver, ttl=cfg.cache_ttl,
                         username=cfg.username, password=cfg.password)

    def _load_acl(self) -> AccessControlList:
        if not self.config.acl_file:
            logger.warning("No ACL provided. No access control checks will be performed!")
            return AccessControlList()
        return load_acl(self.config.acl_file)

    async def run(self):
        cfg = self.config
        acl = self._load_acl()

        ssl_context = None
        if cfg.tls_enabled:
            ssl_context = make_ssl_context(cfg.tls_cert, cfg.tls_key, cfg.tls_cacert)
        else:
            logger.warning("TLS not configured, REST API is plain HTTP "
                           "and client identities cannot be verified")

        self.pdu = await self.build()
        self.web = WebServer(
            self.pdu,
            acl=acl,
            host=cfg.listen_host,
            port=cfg.web_port,
            ssl_context=ssl_context,
        )

        try:
            await self.web.start()
            logger.info("Baytech PDU bridge %s running", __version__)
            await self._stop.wait()
        finally:
            await self.web.stop()
            try:
                await self.pdu.close()
            except Exception:
                logger.exception("Error closing PDU connection")

    def stop(self):
        self._stop.set()


def main():
    try:
        config = Config()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    bridge = Bridge(config)
    loop = asyncio.new_event_loop()

    def _shutdown(sig, frame):
        logger.info("Received signal %s, shutting down...", sig)
        loop.call_soon_threadsafe(bridge.stop)

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    try:
        loop.run_until_complete(bridge.run())
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        pass
    finally:
        loop.close()
        logger.info("Bridge stopped.")


if __name__ == "__main__":
    main()
