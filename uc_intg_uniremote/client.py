"""
Roku External Control Protocol (ECP) client implementation.

:copyright: (c) 2025 by Meir Miyara.
:license: MPL-2.0, see LICENSE for more details.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import aiohttp

from uc_intg_uniremote.commands import (
    ROKU_KEY_POWER_OFF,
    ROKU_KEY_POWER_ON,
    ROKU_ECP_KEYS,
    AbstractCommand,
)

_LOG = logging.getLogger(__name__)

ECP_PORT = 8060
USER_AGENT = "UniRemote/1.0"

DEFAULT_TIMEOUT = 2.0
POWER_ON_TIMEOUT = 5.0
POWER_ON_MAX_ATTEMPTS = 2
POWER_ON_RETRY_DELAY = 0.4

EXTERNAL_CONTROL_HINT = (
    " - Enable External Control: on your Roku go to Settings > System > Advanced system settings > "
    "External Control (or Control by mobile apps) and set Network Access to Default/Permissive and "
    "ensure Control by mobile apps is enabled. Also ensure the phone is on the same subnet, or use Permissive."
)
POWER_ON_TIMEOUT_HINT = (
    "The TV may be asleep with network disabled. On Roku TV, enable Settings > System > Power > "
    "Fast TV Start to allow wake over network. Otherwise, wake the TV with the physical remote, then try again."
)
KEY_TIMEOUT_HINT = (
    "The Roku did not respond. If the TV is asleep, enable Fast TV Start or wake it with the physical remote."
)


class OutcomeKind(Enum):
    SUCCESS = "success"
    PRECONDITION = "precondition"
    TRANSPORT = "transport"
    PROTOCOL = "protocol"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class Outcome:
    """User-facing result of a single control operation."""

    kind: OutcomeKind
    message: str

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    @classmethod
    def success(cls, message: str) -> "Outcome":
        return cls(OutcomeKind.SUCCESS, message)

    @classmethod
    def failure(cls, kind: OutcomeKind, message: str) -> "Outcome":
        return cls(kind, message)


class RokuError(Exception):
    """Base error for Roku requests."""


class RokuConnectionError(RokuError):
    """Transport level failure: timeout, refused connection, no route."""


class RokuCommandError(RokuError):
    """Roku answered with a non-success HTTP status."""

    def __init__(self, status: int, reason: str, url: str):
        super().__init__(f"HTTP {status} {reason} for {url}")
        self.status = status
        self.reason = reason
        self.url = url


class RokuControlClient:
    """
    Stateless ECP client.

    Every request opens its own short-lived session so overlapping commands
    (rapid button presses) never share a connection or a timeout budget.
    Public operations never raise; they return an ``Outcome``.
    """

    def __init__(
        self,
        port: int = ECP_PORT,
        timeout: float = DEFAULT_TIMEOUT,
        power_on_timeout: float = POWER_ON_TIMEOUT,
        power_on_retry_delay: float = POWER_ON_RETRY_DELAY,
        user_agent: str = USER_AGENT,
    ):
        self._port = port
        self._timeout = timeout
        self._power_on_timeout = power_on_timeout
        self._power_on_retry_delay = power_on_retry_delay
        self._headers = {
            "Accept": "*/*",
            "User-Agent": user_agent,
        }

    def build_url(self, address: str, path: str) -> str:
        return f"http://{address}:{self._port}{path}"

    async def _send_once(self, method: str, url: str, timeout: float, max_status: int = 204) -> int:
        """Perform one HTTP exchange, raising ``RokuError`` on any failure."""
        client_timeout = aiohttp.ClientTimeout(total=timeout, connect=timeout, sock_read=timeout)
        try:
            async with aiohttp.ClientSession(timeout=client_timeout, headers=self._headers) as session:
                data = b"" if method == "POST" else None
                async with session.request(method, url, data=data) as response:
                    await response.read()
                    if 200 <= response.status <= max_status:
                        return response.status
                    raise RokuCommandError(response.status, response.reason or "", url)
        except (asyncio.TimeoutError, aiohttp.ClientError, OSError) as e:
            raise RokuConnectionError(str(e) or type(e).__name__) from e

    async def send_key(self, address: str, key: str) -> Outcome:
        """Send ``POST /keypress/<key>``. Only PowerOn is retried."""
        power_on = key == ROKU_KEY_POWER_ON
        max_attempts = POWER_ON_MAX_ATTEMPTS if power_on else 1
        timeout = self._power_on_timeout if power_on else self._timeout
        url = self.build_url(address, f"/keypress/{key}")
        last_error: Optional[RokuConnectionError] = None

        for attempt in range(max_attempts):
            try:
                _LOG.debug(f"POST /keypress/{key} (attempt {attempt + 1}/{max_attempts})")
                status = await self._send_once("POST", url, timeout)
                _LOG.debug(f"OK {status} for {url}")
                return Outcome.success(f"{key} sent to {address}")
            except RokuCommandError as e:
                hint = EXTERNAL_CONTROL_HINT if e.status == 403 else ""
                message = f"{e}{hint}"
                _LOG.warning(message)
                return Outcome.failure(OutcomeKind.PROTOCOL, message)
            except RokuConnectionError as e:
                last_error = e
                if attempt < max_attempts - 1:
                    _LOG.info(f"{key} to {address} failed ({e}), retrying after {self._power_on_retry_delay}s")
                    await asyncio.sleep(self._power_on_retry_delay)

        message = self._transport_message(url, key, last_error)
        _LOG.error(message)
        return Outcome.failure(OutcomeKind.TRANSPORT, message)

    @staticmethod
    def _transport_message(url: str, key: str, error: Optional[RokuConnectionError]) -> str:
        cause = error.__cause__ if error is not None else None
        if isinstance(cause, (asyncio.TimeoutError, OSError)):
            hint = POWER_ON_TIMEOUT_HINT if key == ROKU_KEY_POWER_ON else KEY_TIMEOUT_HINT
            return f"Network timeout connecting to {url}. {hint}"
        if error is not None and str(error):
            return str(error)
        return f"Failed to reach Roku at {url}"

    async def launch(self, address: str, app_id: str) -> Outcome:
        """Launch a channel or input, e.g. ``12`` (Netflix) or ``tvinput.hdmi1``."""
        url = self.build_url(address, f"/launch/{app_id}")
        try:
            await self._send_once("POST", url, self._timeout)
            _LOG.info(f"Launched {app_id} on {address}")
            return Outcome.success(f"Launched {app_id}")
        except RokuCommandError as e:
            _LOG.warning(f"Launch failed: {e}")
            return Outcome.failure(OutcomeKind.PROTOCOL, str(e))
        except RokuConnectionError as e:
            _LOG.error(f"Launch of {app_id} on {address} failed: {e}")
            return Outcome.failure(OutcomeKind.TRANSPORT, str(e))

    async def validate(self, address: str) -> Outcome:
        """Check that a Roku answers ``GET /query/device-info``."""
        url = self.build_url(address, "/query/device-info")
        try:
            await self._send_once("GET", url, self._timeout, max_status=299)
            _LOG.info(f"Roku at {address} validated")
            return Outcome.success(f"Roku at {address} is reachable")
        except RokuCommandError as e:
            return Outcome.failure(OutcomeKind.PROTOCOL, f"HTTP {e.status}: {e.reason}")
        except RokuConnectionError as e:
            _LOG.warning(f"Roku validation failed for {address}: {e}")
            return Outcome.failure(OutcomeKind.TRANSPORT, str(e))

    async def send_command(self, address: str, command: AbstractCommand) -> Outcome:
        key = ROKU_ECP_KEYS.get(command)
        if key is None:
            return Outcome.failure(OutcomeKind.UNSUPPORTED, "Command not supported for Roku")
        return await self.send_key(address, key)

    async def volume_up(self, address: str) -> Outcome:
        return await self.send_command(address, AbstractCommand.VOLUME_UP)

    async def volume_down(self, address: str) -> Outcome:
        return await self.send_command(address, AbstractCommand.VOLUME_DOWN)

    async def power_off(self, address: str) -> Outcome:
        return await self.send_key(address, ROKU_KEY_POWER_OFF)

    async def power_on(self, address: str) -> Outcome:
        return await self.send_key(address, ROKU_KEY_POWER_ON)
