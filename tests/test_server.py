"""Tests for SsdpServer, using FakeSsdpSocket in place of real UDP sockets."""

import asyncio

import pytest

from conftest import DEVICE_UUID, LOCAL_HOST, FakeSsdpSocket

from simple_ssdp import (
    DISCOVERY_SERVICE_NT,
    SsdpBindError,
    SsdpError,
    SsdpMulticastGroup,
    SsdpServer,
    SsdpServerConfig,
    SsdpServerState,
    SsdpServiceRegistry,
    decode,
    encode_msearch,
    encode_notify_alive,
    encode_response,
)

GROUP = ("239.255.255.250", 1900)
DEVICE_TYPE = "urn:schemas-upnp-org:device:MediaServer:1"
SERVICES = [
    "urn:schemas-upnp-org:service:ContentDirectory:1",
    "urn:schemas-upnp-org:service:ConnectionManager:1",
]


def decoded(sock: FakeSsdpSocket):
    return [decode(data, addr[0], addr[1]) for data, addr in sock.sent]


def test_construction_binds_unicast_socket(server, config):
    assert server.state == SsdpServerState.IDLE
    assert server.unicast_socket.bound_port == config.port
    assert server.multicast_socket.bound_port is None
    assert server.location == f"{LOCAL_HOST}:8008/description.xml"


def test_construction_bind_failure_raises(config):
    class FailingSocket(FakeSsdpSocket):
        def __init__(self, listener, sockname="ssdp"):
            super().__init__(listener, sockname)
            self.fail_bind = True

    with pytest.raises(SsdpBindError):
        SsdpServer(config, host=LOCAL_HOST, socket_factory=FailingSocket)


def test_registry_surface(server):
    assert server.get_num_registered() == 0
    for urn in SERVICES:
        server.register_service(urn)
    assert server.get_num_registered() == 2
    assert server.get_all_registered_services() == [f"{DEVICE_UUID}::{urn}" for urn in SERVICES]
    assert server.device_uuid == DEVICE_UUID


async def test_start_announces_root_device_then_services(server):
    for urn in SERVICES:
        server.register_service(urn)
    await server.start()

    assert server.state == SsdpServerState.LISTENING
    assert server.multicast_socket.bound_port == 1900
    assert server.multicast_socket.memberships == ["239.255.255.250"]
    sent = decoded(server.multicast_socket)
    assert len(sent) == 3 + len(SERVICES)
    assert all(addr == GROUP for _, addr in server.multicast_socket.sent)
    assert all(m.nts == "ssdp:alive" for m in sent)
    assert [m.usn for m in sent] == [
        "upnp:rootdevice",
        DEVICE_UUID,
        DEVICE_TYPE,
    ] + [f"{DEVICE_UUID}::{urn}" for urn in SERVICES]
    assert [m.nt for m in sent] == ["upnp:rootdevice", DEVICE_UUID, DEVICE_TYPE] + SERVICES
    assert all(m.location == f"http://{LOCAL_HOST}:8008/description.xml" for m in sent)
    assert server.unicast_socket.sent == []


async def test_start_twice_raises(server):
    await server.start()
    with pytest.raises(SsdpError):
        await server.start()


async def test_start_bind_failure_raises_and_stops(server):
    server.multicast_socket.fail_bind = True
    with pytest.raises(SsdpBindError):
        await server.start()
    assert server.state == SsdpServerState.STOPPED
    assert server.unicast_socket.is_closed


async def test_msearch_ssdp_all_answers_root_and_services(server):
    for urn in SERVICES:
        server.register_service(urn)
    await server.start()

    server.multicast_socket.inject(encode_msearch("ssdp:all").encode(), ("10.0.0.7", 51234))

    sent = server.unicast_socket.sent
    assert len(sent) == 3 + len(SERVICES)
    assert all(addr == ("10.0.0.7", 51234) for _, addr in sent)
    responses = decoded(server.unicast_socket)
    assert all(r.status_code == 200 for r in responses)
    assert [r.st for r in responses] == ["upnp:rootdevice", DEVICE_UUID, DEVICE_TYPE] + SERVICES


async def test_msearch_other_target_answers_every_service(server):
    for urn in SERVICES:
        server.register_service(urn)
    await server.start()

    server.multicast_socket.inject(encode_msearch("urn:no-such-thing").encode(), ("10.0.0.7", 51234))

    responses = decoded(server.unicast_socket)
    assert [r.usn for r in responses] == [f"{DEVICE_UUID}::{urn}" for urn in SERVICES]


async def test_msearch_with_no_services_and_specific_target_sends_nothing(server):
    await server.start()
    server.multicast_socket.inject(encode_msearch("upnp:rootdevice").encode(), ("10.0.0.7", 51234))
    assert server.unicast_socket.sent == []


async def test_msearch_filtered_by_target(config, registry):
    server = SsdpServer(
        config, registry=registry, host=LOCAL_HOST, socket_factory=FakeSsdpSocket, filter_search_targets=True
    )
    for urn in SERVICES:
        server.register_service(urn)
    await server.start()

    server.multicast_socket.inject(encode_msearch(SERVICES[1]).encode(), ("10.0.0.7", 51234))
    server.multicast_socket.inject(encode_msearch("upnp:rootdevice").encode(), ("10.0.0.7", 51234))
    server.multicast_socket.inject(encode_msearch("urn:no-such-thing").encode(), ("10.0.0.7", 51234))

    assert [r.st for r in decoded(server.unicast_socket)] == [SERVICES[1], "upnp:rootdevice"]


async def test_notify_published_as_notify_event(server):
    notifies, discovers = [], []
    server.events.on_notify(notifies.append)
    server.events.on_discover(discovers.append)
    await server.start()

    usn = "other-uuid::urn:schemas-upnp-org:service:AVTransport:1"
    server.multicast_socket.inject(
        encode_notify_alive("10.0.0.9:80/d.xml", usn, "Other", "1").encode(), ("10.0.0.9", 1900)
    )

    assert len(notifies) == 1
    assert discovers == []
    assert notifies[0].usn == usn
    assert notifies[0].address == "10.0.0.9"
    assert notifies[0].port == 1900
    assert server.unicast_socket.sent == []


async def test_other_datagrams_published_as_discover_events(server):
    notifies, discovers = [], []
    server.events.on_notify(notifies.append)
    server.events.on_discover(discovers.append)
    await server.start()

    response = encode_response("10.0.0.9:80/d.xml", "other::urn:x", "Other", "1")
    server.multicast_socket.inject(response.encode(), ("10.0.0.9", 1900))
    server.multicast_socket.inject(b"complete garbage", ("10.0.0.9", 1900))

    assert notifies == []
    assert len(discovers) == 2
    assert discovers[0].status_code == 200
    assert discovers[1]["address"] == "10.0.0.9"


async def test_datagrams_on_unicast_socket_are_ignored(server):
    discovers = []
    server.events.on_discover(discovers.append)
    await server.start()
    server.unicast_socket.inject(encode_msearch("ssdp:all").encode(), ("10.0.0.7", 51234))
    assert discovers == []
    assert server.unicast_socket.sent == []


async def test_stop_sends_one_byebye_then_closes(server):
    server.register_service(SERVICES[0])
    await server.start()
    server.multicast_socket.sent.clear()
    completed = []

    def on_complete():
        completed.append(server.multicast_socket.is_closed)

    usn = f"{DEVICE_UUID}::{SERVICES[0]}"
    assert await server.stop(usn, on_complete) is True

    sent = decoded(server.multicast_socket)
    assert len(sent) == 1
    assert sent[0].nts == "ssdp:byebye"
    assert sent[0].nt == DISCOVERY_SERVICE_NT
    assert sent[0].usn == usn
    assert server.multicast_socket.sent[0][1] == GROUP
    assert completed == [True]
    assert server.unicast_socket.is_closed
    assert server.state == SsdpServerState.STOPPED


async def test_stop_defaults_to_device_uuid_and_accepts_async_callback(server):
    await server.start()
    server.multicast_socket.sent.clear()
    completed = []

    async def on_complete():
        completed.append(True)

    await server.stop(on_complete=on_complete)
    assert decoded(server.multicast_socket)[0].usn == DEVICE_UUID
    assert completed == [True]


async def test_stop_send_failure_reports_and_keeps_socket_open(server):
    errors, completed = [], []
    server.events.on_error(errors.append)
    await server.start()
    server.multicast_socket.fail_send = True

    assert await server.stop(DEVICE_UUID, lambda: completed.append(True)) is False

    assert completed == []
    assert len(errors) == 1
    assert "byebye" in errors[0]
    assert not server.multicast_socket.is_closed
    assert server.state == SsdpServerState.LISTENING


async def test_stop_when_idle_raises(server):
    with pytest.raises(SsdpError):
        await server.stop()


async def test_discover_sends_msearch_to_group_by_default(server):
    await server.start()
    server.multicast_socket.sent.clear()

    server.discover()
    server.discover("upnp:rootdevice", "10.0.0.5", 5000)

    (first, first_addr), (second, second_addr) = server.multicast_socket.sent
    assert first.decode() == encode_msearch("ssdp:all")
    assert first_addr == GROUP
    assert second.decode() == encode_msearch("upnp:rootdevice", "10.0.0.5", 5000)
    assert second_addr == ("10.0.0.5", 5000)


async def test_discover_failure_closes_multicast_socket(server):
    errors = []
    server.events.on_error(errors.append)
    await server.start()
    server.multicast_socket.fail_send = True

    server.discover()

    assert server.multicast_socket.is_closed
    assert not server.unicast_socket.is_closed
    assert len(errors) == 1
    assert "M-SEARCH" in errors[0]


async def test_advertise_failure_closes_multicast_socket(server):
    errors = []
    server.events.on_error(errors.append)
    await server.start()
    server.multicast_socket.fail_send = True

    server.advertise("upnp:rootdevice")
    assert server.multicast_socket.is_closed
    assert len(errors) == 1

    # every later send on the closed socket fails too
    server.multicast_socket.fail_send = False
    server.advertise("upnp:rootdevice")
    assert len(errors) == 2


async def test_respond_failure_closes_only_unicast_socket(server):
    errors = []
    server.events.on_error(errors.append)
    await server.start()
    server.unicast_socket.fail_send = True

    server.respond("upnp:rootdevice", "10.0.0.7", 51234)

    assert server.unicast_socket.is_closed
    assert not server.multicast_socket.is_closed
    assert len(errors) == 1
    assert "response" in errors[0]


async def test_transport_error_closes_socket_and_publishes(server):
    errors = []
    server.events.on_error(errors.append)
    await server.start()

    server.error_received(server.multicast_socket, OSError("network is down"))

    assert server.multicast_socket.is_closed
    assert errors == ["Error on UDP multicast socket: network is down"]


async def test_context_manager_starts_and_stops(config):
    registry = SsdpServiceRegistry("MediaServer", device_uuid=DEVICE_UUID)
    server = SsdpServer(config, registry=registry, host=LOCAL_HOST, socket_factory=FakeSsdpSocket)
    async with server as s:
        assert s is server
        assert server.state == SsdpServerState.LISTENING
    assert server.state == SsdpServerState.STOPPED
    last = decode(server.multicast_socket.sent[-1][0], *GROUP)
    assert last.nts == "ssdp:byebye"
    assert last.usn == DEVICE_UUID


async def test_close_sends_no_byebye(server):
    await server.start()
    server.multicast_socket.sent.clear()
    await server.close()
    assert server.multicast_socket.sent == []
    assert server.state == SsdpServerState.STOPPED
    with pytest.raises(SsdpError):
        await server.start()


async def test_custom_multicast_group_used_for_host_header(config, registry):
    group = SsdpMulticastGroup("239.1.2.3", 1901)
    config = SsdpServerConfig.from_dict(dict(config.to_dict(), multicast_address=group.address, multicast_port=group.port))
    server = SsdpServer(config, registry=registry, host=LOCAL_HOST, socket_factory=FakeSsdpSocket)
    await server.start()
    assert server.multicast_socket.bound_port == 1901
    assert server.multicast_socket.memberships == ["239.1.2.3"]

    assert await server.stop() is True

    sent = server.multicast_socket.sent
    assert len(sent) == 4
    assert all(addr == ("239.1.2.3", 1901) for _, addr in sent)
    messages = decoded(server.multicast_socket)
    assert [m.nts for m in messages] == ["ssdp:alive"] * 3 + ["ssdp:byebye"]
    assert all(m.host == "239.1.2.3:1901" for m in messages)


async def test_withdraw_sends_one_byebye_and_leaves_sockets_open(server):
    server.register_service(SERVICES[0])
    await server.start()
    server.multicast_socket.sent.clear()

    usn = f"{DEVICE_UUID}::{SERVICES[0]}"
    assert server.withdraw(usn) is True

    assert len(server.multicast_socket.sent) == 1
    message = decoded(server.multicast_socket)[0]
    assert message.nts == "ssdp:byebye"
    assert message.usn == usn
    assert server.multicast_socket.sent[0][1] == GROUP
    assert server.multicast_socket.is_open
    assert server.unicast_socket.is_open
    assert server.state == SsdpServerState.LISTENING


async def test_advertise_interval_repeats_announcements(config, registry):
    server = SsdpServer(
        config, registry=registry, host=LOCAL_HOST, socket_factory=FakeSsdpSocket, advertise_interval=0.05
    )
    server.register_service(SERVICES[0])
    await server.start()
    per_round = 3 + 1
    assert len(server.multicast_socket.sent) == per_round

    await asyncio.sleep(0.17)

    sent = decoded(server.multicast_socket)
    assert len(sent) >= 2 * per_round
    assert len(sent) % per_round == 0
    assert all(m.nts == "ssdp:alive" for m in sent)
    assert [m.usn for m in sent[per_round:2 * per_round]] == [m.usn for m in sent[:per_round]]
    await server.close()


async def test_close_cancels_advertiser(config, registry):
    server = SsdpServer(
        config, registry=registry, host=LOCAL_HOST, socket_factory=FakeSsdpSocket, advertise_interval=0.05
    )
    await server.start()
    task = server.advertiser_task
    assert task is not None and not task.done()

    await server.close()

    assert server.advertiser_task is None
    assert task.cancelled()
    n = len(server.multicast_socket.sent)
    await asyncio.sleep(0.12)
    assert len(server.multicast_socket.sent) == n


async def test_stop_cancels_advertiser(config, registry):
    server = SsdpServer(
        config, registry=registry, host=LOCAL_HOST, socket_factory=FakeSsdpSocket, advertise_interval=0.05
    )
    await server.start()
    task = server.advertiser_task
    server.multicast_socket.sent.clear()

    assert await server.stop() is True

    assert task.cancelled()
    await asyncio.sleep(0.12)
    assert [m.nts for m in decoded(server.multicast_socket)] == ["ssdp:byebye"]
