#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SsdpServer -- An SSDP discovery engine that can:

  1. Listen on the SSDP multicast address (typically 239.255.255.250:1900)
  2. Announce the local root device and its registered services with NOTIFY ssdp:alive
  3. Respond to M-SEARCH requests with unicast search responses
  4. Publish NOTIFY messages and all other received datagrams to subscribers as events
  5. Send M-SEARCH requests of its own, and withdraw its announcements with NOTIFY ssdp:byebye
"""

from __future__ import annotations

import asyncio
import inspect
from enum import Enum

from simple_ssdp.internal_types import *
from .pkg_logging import logger
from .constants import SSDP_ALL
from .exceptions import SsdpError, SsdpSendError
from .config import SsdpServerConfig, SsdpMulticastGroup
from .registry import SsdpServiceRegistry
from .events import SsdpEventSink
from .ssdp_message import (
    SsdpMessage,
    decode,
    encode_msearch,
    encode_response,
    encode_notify_alive,
    encode_notify_bye,
  )
from .ssdp_socket import SsdpSocket, SsdpSocketListener
from .util import get_local_ip_address

SsdpSocketFactory = Callable[[SsdpSocketListener, str], SsdpSocket]
"""Creates an unbound SsdpSocket owned by a listener, given a display name."""

StopCallback = Callable[[], Any]
"""Called when stop() has finished closing the sockets. May be a coroutine function."""

class SsdpServerState(Enum):
    IDLE = "idle"
    """Constructed; the unicast socket is bound but nothing is being sent or received."""

    LISTENING = "listening"
    """The multicast socket is receiving and the device has been announced."""

    STOPPED = "stopped"
    """Terminal. Both sockets are closed."""

class SsdpServer(SsdpSocketListener, AsyncContextManager['SsdpServer']):
    """
    An SSDP discovery engine for a single root device. See the module docstring.

    Usage:
        server = SsdpServer(config)
        server.register_service("urn:schemas-upnp-org:service:ContentDirectory:1")
        server.events.on_notify(lambda message: print(message.usn))
        async with server:
            server.discover()
            await asyncio.sleep(10)

    Failures to send are never raised to the caller of advertise(), discover() or respond();
    they are published as error events.
    """

    config: SsdpServerConfig

    multicast_group: SsdpMulticastGroup
    """The multicast address and port to listen on and advertise to."""

    registry: SsdpServiceRegistry
    """The identity of the local device and its registered services."""

    events: SsdpEventSink
    """Subscribers to discover, notify and error events."""

    host: str
    """The local IP address advertised in LOCATION headers."""

    location: str
    """"<host>:<port><path>" of the device description. Computed once at construction."""

    filter_search_targets: bool = False
    """If True, an M-SEARCH is answered only for the USNs whose target matches its ST header.
       If False, every registered service is returned for any ST other than "ssdp:all"."""

    advertise_interval: float = 0.0
    """The interval (in seconds) at which all announcements are repeated. If 0.0, the device
       is announced only once, when the server starts."""

    state: SsdpServerState = SsdpServerState.IDLE

    multicast_socket: SsdpSocket
    """Bound to the multicast port; receives all traffic and sends group-addressed messages."""

    unicast_socket: SsdpSocket
    """Bound to config.port; sends search responses."""

    advertiser_task: Optional[asyncio.Task[None]] = None
    """The task that repeats announcements, if advertise_interval > 0."""

    def __init__(
            self,
            config: SsdpServerConfig,
            registry: Optional[SsdpServiceRegistry]=None,
            events: Optional[SsdpEventSink]=None,
            host: Optional[str]=None,
            socket_factory: SsdpSocketFactory=SsdpSocket,
            filter_search_targets: bool=False,
            advertise_interval: float=0.0,
          ) -> None:
        super().__init__()
        self.config = config
        self.multicast_group = config.multicast_group
        self.registry = SsdpServiceRegistry(config.device_name) if registry is None else registry
        self.events = SsdpEventSink() if events is None else events
        self.host = get_local_ip_address() if host is None else host
        self.location = f"{self.host}:{config.port}{config.location}"
        self.filter_search_targets = filter_search_targets
        self.advertise_interval = advertise_interval
        self.multicast_socket = socket_factory(self, "multicast")
        self.unicast_socket = socket_factory(self, "unicast")
        # The response port is reserved now so that responses can be sent as soon as the server starts
        self.unicast_socket.bind(config.port)
        logger.debug(f"Created SsdpServer: uuid={self.registry.device_uuid}, location={self.location}")

    def __str__(self) -> str:
        return f"SsdpServer({self.registry.device_type}, uuid={self.registry.device_uuid}, state={self.state.value})"

    def __repr__(self) -> str:
        return str(self)

    @property
    def device_uuid(self) -> str:
        return self.registry.device_uuid

    def register_service(self, service_urn: str) -> None:
        """Registers a service for advertising. Services registered after start() are not announced
           until the next announce()."""
        self.registry.register(service_urn)

    def get_num_registered(self) -> int:
        return self.registry.count()

    def get_all_registered_services(self) -> List[str]:
        return self.registry.list()

    async def start(self) -> None:
        """Starts listening on the multicast group and announces the device and its services.

        Raises SsdpBindError if the multicast socket cannot be bound or cannot join the group.
        """
        if self.state != SsdpServerState.IDLE:
            raise SsdpError(f"Cannot start {self}")
        try:
            self.multicast_socket.bind(self.multicast_group.port)
            self.multicast_socket.add_membership(self.multicast_group.address)
            await self.unicast_socket.open()
            # connection_made() announces the device once the multicast socket is ready
            await self.multicast_socket.open()
            if self.advertise_interval > 0.0:
                self.advertiser_task = asyncio.create_task(self._run_advertiser_task())
        except BaseException:
            await self.close()
            raise

    async def stop(self, usn: Optional[str]=None, on_complete: Optional[StopCallback]=None) -> bool:
        """Sends a single NOTIFY ssdp:byebye for usn (default: the device UUID), then closes the sockets
           and calls on_complete.

        Only the one USN is withdrawn; callers with several registered services send a byebye for each
        with withdraw() before stopping.

        If the byebye cannot be sent, an error event is published, the sockets are left open, and
        False is returned.
        """
        if self.state != SsdpServerState.LISTENING:
            raise SsdpError(f"Cannot stop {self}")
        if usn is None:
            usn = self.registry.device_uuid
        if not self.withdraw(usn):
            return False
        await self._cancel_advertiser_task()
        await self._close_sockets()
        logger.info(f"Stopped {self}")
        if on_complete is not None:
            result = on_complete()
            if inspect.isawaitable(result):
                await result
        return True

    async def close(self) -> None:
        """Closes both sockets without sending a byebye. The server cannot be restarted."""
        await self._cancel_advertiser_task()
        await self._close_sockets()

    async def _close_sockets(self) -> None:
        self.state = SsdpServerState.STOPPED
        self.multicast_socket.close()
        self.unicast_socket.close()
        await self.multicast_socket.wait_closed()
        await self.unicast_socket.wait_closed()

    def announce(self) -> None:
        """Sends NOTIFY ssdp:alive for the root device (rootdevice, UUID and device type), followed
           by one for each registered service in registration order."""
        for usn in self.registry.all_usns():
            self.advertise(usn)

    def advertise(self, usn: str) -> None:
        """Sends a single NOTIFY ssdp:alive for usn to the multicast group.

        On failure the multicast socket is closed and an error event is published.
        """
        notify = encode_notify_alive(
            self.location,
            usn,
            self.config.product,
            self.config.product_version,
            self.multicast_group.address,
            self.multicast_group.port,
          )
        try:
            self.multicast_socket.sendto(notify.encode('utf-8'), self._group_addr())
        except SsdpSendError as e:
            self.multicast_socket.close()
            self.events.publish_error(f"Error sending ssdp:alive: {e}")

    def withdraw(self, usn: str) -> bool:
        """Sends a single NOTIFY ssdp:byebye for usn to the multicast group.

        On failure an error event is published and False is returned. The socket is not closed.
        """
        notify = encode_notify_bye(usn, self.multicast_group.address, self.multicast_group.port)
        try:
            self.multicast_socket.sendto(notify.encode('utf-8'), self._group_addr())
        except SsdpSendError as e:
            self.events.publish_error(f"Error sending ssdp:byebye: {e}")
            return False
        return True

    def discover(self, search_target: str=SSDP_ALL, host: Optional[str]=None, port: Optional[int]=None) -> None:
        """Sends a single M-SEARCH for search_target. By default it is sent to the multicast group;
           a host and port may be given for a unicast search.

        Responses arrive as discover events. On failure the multicast socket is closed and an
        error event is published.
        """
        if host is None:
            host = self.multicast_group.address
        if port is None:
            port = self.multicast_group.port
        msearch = encode_msearch(search_target, host, port)
        try:
            self.multicast_socket.sendto(msearch.encode('utf-8'), (host, port))
        except SsdpSendError as e:
            self.multicast_socket.close()
            self.events.publish_error(f"Error on UDP socket for M-SEARCH: {e}")

    def respond(self, usn: str, host: str, port: int) -> None:
        """Sends a single search response for usn to host:port through the unicast socket.

        On failure only the unicast socket is closed, and an error event is published.
        """
        response = encode_response(self.location, usn, self.config.product, self.config.product_version)
        try:
            self.unicast_socket.sendto(response.encode('utf-8'), (host, port))
        except SsdpSendError as e:
            self.unicast_socket.close()
            self.events.publish_error(f"Error sending response: {e}")

    def _group_addr(self) -> HostAndPort:
        return (self.multicast_group.address, self.multicast_group.port)

    def search_response_usns(self, search_target: Optional[str]) -> List[str]:
        """The USNs to answer an M-SEARCH for search_target with, in sending order."""
        if self.filter_search_targets:
            if search_target is None:
                return []
            return self.registry.matching_usns(search_target)
        if search_target == SSDP_ALL:
            return self.registry.all_usns()
        return self.registry.list()

    def handle_message(self, raw_data: bytes, message: SsdpMessage) -> None:
        """Classifies a received datagram and acts on it."""
        text = raw_data.decode('utf-8', errors='replace')
        if "M-SEARCH" in text:
            src_addr = message.src_addr
            assert src_addr is not None
            usns = self.search_response_usns(message.st)
            logger.debug(f"Received M-SEARCH from {src_addr}: st={message.st}; sending {len(usns)} responses")
            for usn in usns:
                self.respond(usn, src_addr[0], src_addr[1])
        elif "NOTIFY" in text:
            self.events.publish_notify(message)
        else:
            self.events.publish_discover(message)

    #@override
    def connection_made(self, ssdp_socket: SsdpSocket) -> None:
        logger.debug(f"Connection made: {ssdp_socket}")
        if ssdp_socket is self.multicast_socket and self.state == SsdpServerState.IDLE:
            self.state = SsdpServerState.LISTENING
            logger.info(f"Listening on {self.multicast_group}; announcing {self.registry.count() + 3} USNs")
            self.announce()

    #@override
    def datagram_received(self, ssdp_socket: SsdpSocket, addr: HostAndPort, data: bytes) -> None:
        if ssdp_socket is not self.multicast_socket:
            logger.debug(f"Ignoring datagram received on {ssdp_socket} from {addr}: {data!r}")
            return
        try:
            message = decode(data, addr[0], addr[1])
            self.handle_message(data, message)
        except Exception as e:
            logger.warning(f"Error handling datagram from {addr}, raw=[{data!r}]: {e}")

    #@override
    def error_received(self, ssdp_socket: SsdpSocket, exc: Exception) -> None:
        logger.info(f"Error received from transport {ssdp_socket}: {exc}")
        ssdp_socket.close()
        kind = "multicast" if ssdp_socket is self.multicast_socket else "unicast"
        self.events.publish_error(f"Error on UDP {kind} socket: {exc}")

    #@override
    def connection_lost(self, ssdp_socket: SsdpSocket, exc: Optional[Exception]) -> None:
        logger.debug(f"Connection to transport lost on {ssdp_socket}, exc={exc}")

    async def _run_advertiser_task(self) -> None:
        logger.debug(f"SSDP advertiser task starting, advertising every {self.advertise_interval} seconds")
        assert self.advertise_interval > 0.0
        try:
            while self.state == SsdpServerState.LISTENING:
                await asyncio.sleep(self.advertise_interval)
                if self.state == SsdpServerState.LISTENING and self.multicast_socket.is_open:
                    self.announce()
        except asyncio.CancelledError:
            logger.debug("SSDP advertiser task cancelled; exiting")
            raise
        logger.debug("SSDP advertiser task exiting")

    async def _cancel_advertiser_task(self) -> None:
        task = self.advertiser_task
        if task is None:
            return
        self.advertiser_task = None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        if exc is None and self.state == SsdpServerState.LISTENING:
            if await self.stop():
                return False
        await self.close()
        return False
