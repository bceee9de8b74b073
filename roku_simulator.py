#!/usr/bin/env python3
"""
Roku TV simulator: ECP HTTP server plus SSDP responder.

Lets the integration be exercised without a physical Roku.

:copyright: (c) 2025 by Meir Miyara.
:license: MPL-2.0, see LICENSE for more details.
"""

import asyncio
import logging
import socket
from typing import List, Optional, Sequence, Tuple
from xml.sax.saxutils import escape

from aiohttp import web
from aiohttp.web import Request, Response

from uc_intg_uniremote.commands import ROKU_KEYS
from uc_intg_uniremote.discovery import SEARCH_TARGET

logger = logging.getLogger(__name__)


def get_local_ip() -> str:
    """Get the local IP address of the machine."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except Exception:
        return "127.0.0.1"


class RokuSimulator:
    """Simulates the ECP endpoints of a Roku TV."""

    def __init__(self, host: Optional[str] = None, port: int = 8060, device_name: str = "Living Room Roku",
                 model_name: str = "Roku TV SIM", serial_number: str = "SIM000000001"):
        self.host = host if host else get_local_ip()
        self.port = port
        self.device_name = device_name
        self.model_name = model_name
        self.serial_number = serial_number
        self.app = web.Application()
        self._runner: Optional[web.AppRunner] = None

        # Answer every ECP request with 403, as a Roku with External Control disabled does.
        self.forbidden = False
        self.response_delay = 0.0

        self.power = "on"
        self.active_app = "home"
        self.keypresses: List[str] = []
        self.launches: List[str] = []
        self.request_count = 0
        self.last_user_agent = None

        self._setup_routes()

    def _setup_routes(self):
        self.app.router.add_post('/keypress/{key}', self.handle_keypress)
        self.app.router.add_post('/launch/{app_id}', self.handle_launch)
        self.app.router.add_get('/query/device-info', self.handle_device_info)
        self.app.router.add_get('/debug/state', self.debug_state)
        self.app.router.add_get('/debug/reset', self.debug_reset)

    @property
    def location(self) -> str:
        return f"http://{self.host}:{self.port}/"

    async def _gate(self, request: Request) -> Optional[Response]:
        self.request_count += 1
        self.last_user_agent = request.headers.get("User-Agent")
        if self.response_delay:
            await asyncio.sleep(self.response_delay)
        if self.forbidden:
            return web.Response(status=403, reason="Forbidden")
        return None

    async def handle_keypress(self, request: Request) -> Response:
        rejected = await self._gate(request)
        if rejected is not None:
            return rejected

        key = request.match_info['key']
        if key not in ROKU_KEYS and not key.startswith("Lit_"):
            logger.warning(f"Unknown key received: {key}")
            return web.Response(status=400, reason="Bad Request")

        self.keypresses.append(key)
        if key == "PowerOff":
            self.power = "off"
        elif key == "PowerOn":
            self.power = "on"
        elif key == "Home":
            self.active_app = "home"
        logger.info(f"Key pressed: {key}")
        return web.Response(status=200)

    async def handle_launch(self, request: Request) -> Response:
        rejected = await self._gate(request)
        if rejected is not None:
            return rejected

        app_id = request.match_info['app_id']
        self.launches.append(app_id)
        self.active_app = app_id
        logger.info(f"Launched: {app_id}")
        return web.Response(status=200)

    def device_info_xml(self) -> str:
        power_mode = "PowerOn" if self.power == "on" else "DisplayOff"
        return (
            '<?xml version="1.0" encoding="UTF-8" ?>\n'
            "<device-info>\n"
            f"  <serial-number>{escape(self.serial_number)}</serial-number>\n"
            f"  <model-name>{escape(self.model_name)}</model-name>\n"
            f"  <friendly-device-name>{escape(self.device_name)}</friendly-device-name>\n"
            "  <is-tv>true</is-tv>\n"
            f"  <power-mode>{power_mode}</power-mode>\n"
            "</device-info>\n"
        )

    async def handle_device_info(self, request: Request) -> Response:
        rejected = await self._gate(request)
        if rejected is not None:
            return rejected
        return web.Response(text=self.device_info_xml(), content_type="text/xml")

    async def debug_state(self, request: Request) -> Response:
        return web.json_response({
            "power": self.power,
            "active_app": self.active_app,
            "keypresses": self.keypresses,
            "launches": self.launches,
            "forbidden": self.forbidden,
        })

    async def debug_reset(self, request: Request) -> Response:
        self.reset()
        return web.json_response({"status": "ok"})

    def reset(self) -> None:
        self.power = "on"
        self.active_app = "home"
        self.keypresses.clear()
        self.launches.clear()
        self.request_count = 0
        self.last_user_agent = None
        self.forbidden = False
        self.response_delay = 0.0

    async def start(self) -> None:
        """Start the simulator server. Port 0 binds an ephemeral port."""
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        if self.port == 0:
            self.port = self._runner.addresses[0][1]
        logger.info(f"Roku simulator '{self.device_name}' started on {self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None


def ssdp_response(location: str) -> bytes:
    return (
        "HTTP/1.1 200 OK\r\n"
        "Cache-Control: max-age=3600\r\n"
        f"ST: {SEARCH_TARGET}\r\n"
        f"LOCATION: {location}\r\n"
        "USN: uuid:roku:ecp:SIM000000001\r\n"
        "\r\n"
    ).encode("ascii")


class SsdpResponder(asyncio.DatagramProtocol):
    """
    Answers ``roku:ecp`` M-SEARCH requests.

    ``responses`` are sent back verbatim, in order, for every search, which
    lets callers include duplicates or malformed answers.
    """

    def __init__(self, responses: Sequence[bytes]):
        self.responses = list(responses)
        self.searches = 0
        self.transport: Optional[asyncio.DatagramTransport] = None

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data: bytes, addr: Tuple[str, int]) -> None:
        text = data.decode("utf-8", errors="ignore")
        if not text.startswith("M-SEARCH") or SEARCH_TARGET not in text:
            return
        self.searches += 1
        for response in self.responses:
            self.transport.sendto(response, addr)
        logger.debug(f"Answered M-SEARCH from {addr[0]}:{addr[1]} with {len(self.responses)} response(s)")

    async def start(self, host: str = "0.0.0.0", port: int = 1900) -> int:
        loop = asyncio.get_running_loop()
        await loop.create_datagram_endpoint(lambda: self, local_addr=(host, port))
        bound_port = self.transport.get_extra_info("sockname")[1]
        logger.info(f"SSDP responder listening on {host}:{bound_port}")
        return bound_port

    def stop(self) -> None:
        if self.transport is not None:
            self.transport.close()
            self.transport = None


async def main():
    """Main entry point for the simulator."""
    import argparse

    parser = argparse.ArgumentParser(description="Roku TV Simulator")
    parser.add_argument("--host", default=None, help="Host to bind to (default: auto-detect local IP)")
    parser.add_argument("--port", type=int, default=8060, help="ECP port to bind to (default: 8060)")
    parser.add_argument("--name", default="Living Room Roku", help="Friendly device name")
    parser.add_argument("--ssdp-port", type=int, default=1900, help="SSDP port to answer on (default: 1900)")
    parser.add_argument("--no-ssdp", action="store_true", help="Do not answer SSDP searches")
    parser.add_argument("--forbidden", action="store_true", help="Reject ECP requests with 403")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s [%(levelname)s] %(message)s')
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    simulator = RokuSimulator(args.host, args.port, args.name)
    simulator.forbidden = args.forbidden
    await simulator.start()

    responder = None
    if not args.no_ssdp:
        responder = SsdpResponder([ssdp_response(simulator.location)])
        await responder.start(port=args.ssdp_port)

    logger.info("Use this address in the integration setup:")
    logger.info(f"  {simulator.host}")
    logger.info("Test commands:")
    logger.info(f"  curl http://{simulator.host}:{simulator.port}/query/device-info")
    logger.info(f"  curl -X POST http://{simulator.host}:{simulator.port}/keypress/Home")

    try:
        while True:
            await asyncio.sleep(1)
    finally:
        if responder is not None:
            responder.stop()
        await simulator.stop()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Roku simulator stopped by user")
