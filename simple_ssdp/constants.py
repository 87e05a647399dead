# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Constants used by this package"""

SSDP_MULTICAST_ADDRESS = "239.255.255.250"
"""The multicast address used by SSDP for UDP multicast."""

SSDP_PORT = 1900
"""The port number used by SSDP for UDP multicast."""

DEFAULT_MAX_AGE = 1800
"""The advertised CACHE-CONTROL max-age, in seconds."""

SSDP_ALL = "ssdp:all"
"""The search target that matches every device and service."""

UPNP_ROOT_DEVICE = "upnp:rootdevice"
"""The NT/ST value that identifies a root device."""

SSDP_DISCOVER = "ssdp:discover"
SSDP_ALIVE = "ssdp:alive"
SSDP_BYEBYE = "ssdp:byebye"

DISCOVERY_SERVICE_NT = "urn:schemas-upnp-org:service:DiscoveryService:1"
"""The NT header sent with every ssdp:byebye notification."""

SEARCH_MX = 3
"""The MX (maximum wait, in seconds) header sent with every M-SEARCH."""

USN_DELIMITER = "::"
"""Separates the device UUID from the service URN in a USN."""
