# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Package simple_ssdp implements the Simple Service Discovery Protocol (SSDP) used by UPnP.

SSDP devices announce themselves and their services by multicasting NOTIFY ssdp:alive
messages to 239.255.255.250:1900, answer M-SEARCH queries with unicast HTTP-like
responses, and withdraw their announcements with NOTIFY ssdp:byebye. All messages are
small text datagrams with HTTP-style headers, and there are no acknowledgements.

SsdpServer announces a single root device and its registered services, responds to
searches, and publishes every other datagram it hears to subscribers of its SsdpEventSink.
"""

from .version import __version__

from .internal_types import Jsonable, JsonableDict, HostAndPort

from .exceptions import SsdpError, SsdpBindError, SsdpSendError, SsdpConfigError

from .ssdp_message import (
    SsdpMessage,
    SsdpSearchMessage,
    SsdpNotifyMessage,
    SsdpResponseMessage,
    decode,
    encode_msearch,
    encode_response,
    encode_notify_alive,
    encode_notify_bye,
    usn_to_target,
  )
from .registry import SsdpServiceRegistry
from .events import SsdpEventSink, SsdpEventKind
from .ssdp_socket import SsdpSocket, SsdpSocketListener
from .config import SsdpServerConfig, SsdpMulticastGroup
from .server import SsdpServer, SsdpServerState
from .util import CaseInsensitiveDict
from .constants import (
    SSDP_MULTICAST_ADDRESS,
    SSDP_PORT,
    SSDP_ALL,
    UPNP_ROOT_DEVICE,
    DISCOVERY_SERVICE_NT,
  )

__all__ = [
    '__version__',
    'Jsonable', 'JsonableDict', 'HostAndPort',
    'SsdpError', 'SsdpBindError', 'SsdpSendError', 'SsdpConfigError',
    'SsdpMessage', 'SsdpSearchMessage', 'SsdpNotifyMessage', 'SsdpResponseMessage',
    'decode', 'encode_msearch', 'encode_response', 'encode_notify_alive', 'encode_notify_bye', 'usn_to_target',
    'SsdpServiceRegistry',
    'SsdpEventSink', 'SsdpEventKind',
    'SsdpSocket', 'SsdpSocketListener',
    'SsdpServerConfig', 'SsdpMulticastGroup',
    'SsdpServer', 'SsdpServerState',
    'CaseInsensitiveDict',
    'SSDP_MULTICAST_ADDRESS', 'SSDP_PORT', 'SSDP_ALL', 'UPNP_ROOT_DEVICE', 'DISCOVERY_SERVICE_NT',
]
