"""Shared fixtures: an in-memory stand-in for SsdpSocket and a ready-made server."""

from __future__ import annotations

import asyncio
from typing import List, Optional, Tuple

import pytest

from simple_ssdp import (
    SsdpBindError,
    SsdpSendError,
    SsdpServer,
    SsdpServerConfig,
    SsdpServiceRegistry,
)
from simple_ssdp.ssdp_socket import SsdpSocketListener

DEVICE_UUID = "2fac1234-31f8-11b4-a222-08002b34c003"
LOCAL_HOST = "192.168.1.10"


class FakeSsdpSocket:
    """Records sends instead of touching the network; tests inject received datagrams."""

    def __init__(self, listener: SsdpSocketListener, sockname: str = "ssdp"):
        self.listener = listener
        self.sockname = sockname
        self.bound_port: Optional[int] = None
        self.memberships: List[str] = []
        self.sent: List[Tuple[bytes, Tuple[str, int]]] = []
        self.opened = False
        self.is_closed = False
        self.fail_send = False
        self.fail_bind = False
        self._closed: Optional[asyncio.Future] = None

    @property
    def is_open(self) -> bool:
        return self.opened and not self.is_closed

    def bind(self, port: int, address: str = "", reuse_addr: bool = True) -> None:
        if self.fail_bind:
            raise SsdpBindError(f"Unable to bind {self.sockname} to {port}")
        self.bound_port = port

    def add_membership(self, multicast_address: str, interface_address: str = "0.0.0.0") -> None:
        self.memberships.append(multicast_address)

    async def open(self) -> None:
        self._closed = asyncio.get_running_loop().create_future()
        self.opened = True
        self.listener.connection_made(self)

    def sendto(self, data: bytes, addr: Tuple[str, int]) -> None:
        if not self.is_open:
            raise SsdpSendError(f"{self.sockname} is not open")
        if self.fail_send:
            raise SsdpSendError(f"Error sending via {self.sockname}")
        self.sent.append((data, addr))

    def close(self) -> None:
        if self.is_closed:
            return
        self.is_closed = True
        if self._closed is not None and not self._closed.done():
            self._closed.set_result(None)
        self.listener.connection_lost(self, None)

    async def wait_closed(self) -> None:
        if self._closed is not None:
            await self._closed

    def inject(self, data: bytes, addr: Tuple[str, int]) -> None:
        self.listener.datagram_received(self, addr, data)


@pytest.fixture
def config() -> SsdpServerConfig:
    return SsdpServerConfig(
        device_name="MediaServer",
        port=8008,
        location="/description.xml",
        product="Acme",
        product_version="2.1",
    )


@pytest.fixture
def registry() -> SsdpServiceRegistry:
    return SsdpServiceRegistry("MediaServer", device_uuid=DEVICE_UUID)


@pytest.fixture
def server(config, registry) -> SsdpServer:
    return SsdpServer(config, registry=registry, host=LOCAL_HOST, socket_factory=FakeSsdpSocket)
