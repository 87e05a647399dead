#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SsdpSocket -- a single UDP socket used for SSDP traffic that can:

  1. Bind to a local port, optionally sharing it with other processes (SO_REUSEADDR/SO_REUSEPORT)
  2. Join an IPv4 multicast group
  3. Attach to the asyncio event loop and deliver received datagrams to an SsdpSocketListener
  4. Send fire-and-forget datagrams to a multicast or unicast address

  Binding is synchronous so that a port can be reserved before an event loop is running; the
  socket does not send or receive until open() has been awaited.
"""

from __future__ import annotations

import asyncio
from asyncio import Future
import socket
import sys

from simple_ssdp.internal_types import *
from .pkg_logging import logger
from .exceptions import SsdpError, SsdpBindError, SsdpSendError

class SsdpSocketListener:
    """
    Receives callbacks from the SsdpSockets it owns. Every callback identifies the socket
    involved, so one listener may own several sockets. The default implementations do nothing.
    """

    def connection_made(self, ssdp_socket: SsdpSocket) -> None:
        """Called when the socket is attached to the event loop and ready to send and receive."""
        pass

    def datagram_received(self, ssdp_socket: SsdpSocket, addr: HostAndPort, data: bytes) -> None:
        """Called when a datagram is received."""
        pass

    def error_received(self, ssdp_socket: SsdpSocket, exc: Exception) -> None:
        """Called when a send or receive operation raises an OSError asynchronously."""
        pass

    def connection_lost(self, ssdp_socket: SsdpSocket, exc: Optional[Exception]) -> None:
        """Called when the socket has been closed."""
        pass

class _SsdpSocketProtocol(asyncio.DatagramProtocol):
    """An adapter between the asyncio transport and SsdpSocket."""

    ssdp_socket: SsdpSocket

    def __init__(self, ssdp_socket: SsdpSocket):
        self.ssdp_socket = ssdp_socket

    def connection_made(self, transport: asyncio.BaseTransport):
        # Note: asyncio datagram transports do not inherit from asyncio.DatagramTransport, although they
        # implement the same interface.
        self.ssdp_socket.transport = transport # type: ignore[assignment]
        self.ssdp_socket.listener.connection_made(self.ssdp_socket)

    def datagram_received(self, data: bytes, addr: Tuple[str, int]):
        self.ssdp_socket.listener.datagram_received(self.ssdp_socket, (addr[0], addr[1]), data)

    def error_received(self, exc: Exception):
        self.ssdp_socket.listener.error_received(self.ssdp_socket, exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self.ssdp_socket.transport = None
        self.ssdp_socket.set_closed(exc)
        self.ssdp_socket.listener.connection_lost(self.ssdp_socket, exc)

class SsdpSocket:
    """A UDP socket for SSDP traffic. See the module docstring."""

    listener: SsdpSocketListener
    """The owner that receives datagrams and lifecycle callbacks."""

    sockname: str
    """The name of the socket as it should be displayed in logs, etc"""

    sock: Optional[socket.socket] = None
    """The low-level socket, once bound."""

    transport: Optional[asyncio.DatagramTransport] = None
    """The asyncio transport, while the socket is open."""

    _closed: Optional[Future[None]] = None
    """Set when the socket has been closed. Created by open(), since that is the first point
       at which an event loop is known to be running."""

    _is_closed: bool = False

    def __init__(self, listener: SsdpSocketListener, sockname: str="ssdp"):
        self.listener = listener
        self.sockname = sockname

    def __str__(self) -> str:
        return f"SsdpSocket({self.sockname})"

    def __repr__(self) -> str:
        return str(self)

    @property
    def is_open(self) -> bool:
        """True if the socket is attached to the event loop and has not been closed."""
        return self.transport is not None and not self._is_closed

    @property
    def is_closed(self) -> bool:
        return self._is_closed

    def bind(self, port: int, address: str='', reuse_addr: bool=True) -> None:
        """Create the low-level socket and bind it to (address, port).

        Raises SsdpBindError if the socket cannot be created or bound.
        """
        if self.sock is not None:
            raise SsdpError(f"{self} is already bound")
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        except OSError as e:
            raise SsdpBindError(f"Unable to create UDP socket for {self}: {e}") from e
        try:
            if reuse_addr:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                if sys.platform not in ( 'win32', 'cygwin' ):
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            sock.bind((address, port))
        except OSError as e:
            sock.close()
            raise SsdpBindError(f"Unable to bind {self} to {address or '*'}:{port}: {e}") from e
        self.sock = sock
        logger.debug(f"Bound {self} to {sock.getsockname()}")

    def add_membership(self, multicast_address: str, interface_address: str='0.0.0.0') -> None:
        """Join an IPv4 multicast group on the interface with the given address (default: any).

        Raises SsdpBindError if the socket is not bound or the group cannot be joined.
        """
        if self.sock is None:
            raise SsdpBindError(f"{self} must be bound before joining multicast group {multicast_address}")
        mreq = socket.inet_aton(multicast_address) + socket.inet_aton(interface_address)
        logger.debug(f"Joining multicast group {multicast_address} on {interface_address}; mreq={mreq!r}")
        try:
            self.sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        except OSError as e:
            raise SsdpBindError(f"Unable to join multicast group {multicast_address} on {self}: {e}") from e

    async def open(self) -> None:
        """Attach the bound socket to the running event loop. The listener's connection_made() is
           called before this returns."""
        if self.sock is None:
            raise SsdpError(f"{self} must be bound before it is opened")
        if self.transport is not None:
            raise SsdpError(f"{self} is already open")
        loop = asyncio.get_running_loop()
        self._closed = loop.create_future()
        await loop.create_datagram_endpoint(
            lambda: _SsdpSocketProtocol(self),
            sock=self.sock
          )
        logger.debug(f"Created datagram endpoint for {self}")

    def sendto(self, data: bytes, addr: HostAndPort) -> None:
        """Send a datagram. Delivery is not confirmed.

        Raises SsdpSendError if the socket is not open or the send is rejected immediately.
        Failures detected later are reported to the listener's error_received().
        """
        if not self.is_open:
            raise SsdpSendError(f"{self} is not open")
        assert self.transport is not None
        logger.debug(f"Sending datagram via {self} to {addr}: {data!r}")
        try:
            self.transport.sendto(data, addr)
        except OSError as e:
            raise SsdpSendError(f"Error sending datagram via {self} to {addr}: {e}") from e

    def close(self) -> None:
        """Close the socket. Datagrams already queued are flushed first. Safe to call more than once."""
        if self._is_closed:
            return
        self._is_closed = True
        logger.debug(f"Closing {self}")
        if self.transport is not None:
            # connection_lost() will follow once the transport's send buffer is flushed
            self.transport.close()
        else:
            if self.sock is not None:
                self.sock.close()
            self.set_closed(None)
            self.listener.connection_lost(self, None)

    def set_closed(self, exc: Optional[Exception]) -> None:
        self._is_closed = True
        if self._closed is not None and not self._closed.done():
            self._closed.set_result(None)

    async def wait_closed(self) -> None:
        """Waits until the socket has been closed."""
        if self._closed is not None:
            await self._closed
