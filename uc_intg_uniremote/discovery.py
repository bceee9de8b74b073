"""
SSDP discovery of Roku devices on the local network.

:copyright: (c) 2025 by Meir Miyara.
:license: MPL-2.0, see LICENSE for more details.
"""

import asyncio
import logging
import re
import socket
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import aiohttp

from uc_intg_uniremote.multicast import MulticastLock, hold_multicast_lock

_LOG = logging.getLogger(__name__)

SSDP_ADDRESS = "239.255.255.250"
SSDP_PORT = 1900
SSDP_MX = 2
SEARCH_TARGET = "roku:ecp"

DEFAULT_SCAN_TIMEOUT = 3.0
RECEIVE_TIMEOUT = 0.75
DEVICE_INFO_TIMEOUT = 1.0
RECEIVE_BUFFER_SIZE = 2048

M_SEARCH = (
    "M-SEARCH * HTTP/1.1\r\n"
    f"HOST: {SSDP_ADDRESS}:{SSDP_PORT}\r\n"
    'MAN: "ssdp:discover"\r\n'
    f"MX: {SSDP_MX}\r\n"
    f"ST: {SEARCH_TARGET}\r\n"
    "\r\n"
)

_IP_FROM_LOCATION = re.compile(r"https?://([0-9.]+):")


@dataclass(frozen=True)
class RokuDevice:
    ip: str
    location: str
    name: Optional[str] = None
    model: Optional[str] = None

    @property
    def display_name(self) -> str:
        label = self.name or "Roku"
        if self.model:
            label = f"{label} ({self.model})"
        return f"{label} - {self.ip}"


def parse_location(raw: str) -> Optional[str]:
    """Return the LOCATION header of an SSDP response, matched case-insensitively."""
    for line in raw.splitlines():
        name, sep, value = line.partition(":")
        if sep and name.strip().lower() == "location":
            value = value.strip()
            return value or None
    return None


def parse_ip_from_location(location: str) -> Optional[str]:
    match = _IP_FROM_LOCATION.search(location)
    return match.group(1) if match else None


def parse_device_info(body: str) -> Tuple[Optional[str], Optional[str]]:
    """Extract friendly name and model name from a device-info document."""
    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        _LOG.debug(f"Unparseable device-info payload: {e}")
        return None, None

    def _text(tag: str) -> Optional[str]:
        value = root.findtext(tag)
        if value is None:
            return None
        value = value.strip()
        return value or None

    return _text("friendly-device-name"), _text("model-name")


class RokuDiscovery:
    """
    One-shot SSDP scanner.

    ``scan`` sends a single M-SEARCH and collects answers until the overall
    budget expires, polling the socket in short slices. It always returns a
    list, possibly empty, and never raises for a misbehaving device.
    """

    def __init__(
        self,
        ssdp_address: str = SSDP_ADDRESS,
        ssdp_port: int = SSDP_PORT,
        receive_timeout: float = RECEIVE_TIMEOUT,
        device_info_timeout: float = DEVICE_INFO_TIMEOUT,
        multicast_lock: Optional[MulticastLock] = None,
    ):
        self._target = (ssdp_address, ssdp_port)
        self._receive_timeout = receive_timeout
        self._device_info_timeout = device_info_timeout
        self._multicast_lock = multicast_lock

    async def scan(self, timeout: float = DEFAULT_SCAN_TIMEOUT) -> List[RokuDevice]:
        async with hold_multicast_lock(self._multicast_lock):
            devices = await self._scan(timeout)
        _LOG.info(f"Roku discovery finished: {len(devices)} device(s) found")
        return devices

    def _open_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 2)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        return sock

    async def _scan(self, timeout: float) -> List[RokuDevice]:
        loop = asyncio.get_running_loop()
        found: Dict[str, RokuDevice] = {}
        deadline = loop.time() + timeout
        sock: Optional[socket.socket] = None

        try:
            sock = self._open_socket()
            await loop.sock_sendto(sock, M_SEARCH.encode("ascii"), self._target)
            _LOG.debug(f"M-SEARCH sent to {self._target[0]}:{self._target[1]}")

            session_timeout = aiohttp.ClientTimeout(total=self._device_info_timeout)
            async with aiohttp.ClientSession(timeout=session_timeout) as session:
                while True:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        break
                    try:
                        data, _addr = await asyncio.wait_for(
                            loop.sock_recvfrom(sock, RECEIVE_BUFFER_SIZE),
                            timeout=min(self._receive_timeout, remaining),
                        )
                    except asyncio.TimeoutError:
                        continue
                    except OSError as e:
                        _LOG.debug(f"SSDP receive error: {e}")
                        continue

                    try:
                        await self._handle_response(data, found, session)
                    except Exception as e:
                        _LOG.warning(f"Error parsing SSDP response: {e}")
        except OSError as e:
            _LOG.error(f"SSDP discovery failed: {e}")
        finally:
            if sock is not None:
                sock.close()

        return list(found.values())

    async def _handle_response(
        self, data: bytes, found: Dict[str, RokuDevice], session: aiohttp.ClientSession
    ) -> None:
        raw = data.decode("utf-8", errors="ignore")
        location = parse_location(raw)
        if not location:
            _LOG.debug("SSDP response without LOCATION header skipped")
            return
        if location in found:
            return
        ip = parse_ip_from_location(location)
        if not ip:
            _LOG.debug(f"No IP address in LOCATION {location}")
            return

        name, model = await self._fetch_device_info(session, location)
        found[location] = RokuDevice(ip=ip, location=location, name=name, model=model)
        _LOG.info(f"Found Roku {name or 'device'} at {ip}")

    async def _fetch_device_info(
        self, session: aiohttp.ClientSession, location: str
    ) -> Tuple[Optional[str], Optional[str]]:
        base = location if location.endswith("/") else f"{location}/"
        url = f"{base}query/device-info"
        try:
            async with session.get(url) as response:
                if not 200 <= response.status < 300:
                    return None, None
                body = await response.text(errors="replace")
            return parse_device_info(body)
        except (asyncio.TimeoutError, aiohttp.ClientError, OSError, ValueError) as e:
            _LOG.debug(f"device-info lookup failed for {location}: {e}")
            return None, None
