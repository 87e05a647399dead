#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SsdpServiceRegistry -- the identity of the local device and the services it advertises.
"""

from __future__ import annotations

import uuid

from simple_ssdp.internal_types import *
from .pkg_logging import logger
from .constants import SSDP_ALL, UPNP_ROOT_DEVICE, USN_DELIMITER
from .ssdp_message import usn_to_target

def device_type_urn(device_name: str) -> str:
    """The UPnP device type URN for a device name; e.g., "urn:schemas-upnp-org:device:MediaServer:1"."""
    return f"urn:schemas-upnp-org:device:{device_name}:1"

class SsdpServiceRegistry:
    """
    Holds the device identity (UUID, device type, friendly name) and the ordered list of
    registered service USNs.

    Registration order is preserved so that advertisements and search responses are sent
    in a deterministic order. Duplicate registrations are not filtered.
    """

    device_uuid: str
    """A UUID generated once per registry and stable for its lifetime."""

    device_type: str
    """The UPnP device type URN."""

    friendly_name: str

    _services: List[str]
    """Registered service USNs, each "<device_uuid>::<service_urn>"."""

    def __init__(self, device_name: str, device_uuid: Optional[str]=None, friendly_name: Optional[str]=None):
        self.device_uuid = str(uuid.uuid4()) if device_uuid is None else device_uuid
        self.device_type = device_type_urn(device_name)
        self.friendly_name = device_name if friendly_name is None else friendly_name
        self._services = []

    def __str__(self) -> str:
        return f"SsdpServiceRegistry(uuid={self.device_uuid}, type={self.device_type}, services={self._services})"

    def __repr__(self) -> str:
        return str(self)

    def register(self, service_urn: str) -> None:
        """Register a service for advertising, e.g., "urn:schemas-upnp-org:service:ContentDirectory:1"."""
        usn = f"{self.device_uuid}{USN_DELIMITER}{service_urn}"
        self._services.append(usn)
        logger.debug(f"Registered service {usn}")

    def count(self) -> int:
        """The number of registered services."""
        return len(self._services)

    def list(self) -> List[str]:
        """All registered service USNs, in registration order."""
        return list(self._services)

    def root_device_usns(self) -> List[str]:
        """The three USNs that are always advertised for the root device, in advertising order."""
        return [UPNP_ROOT_DEVICE, self.device_uuid, self.device_type]

    def all_usns(self) -> List[str]:
        """The root device USNs followed by the registered service USNs."""
        return self.root_device_usns() + self._services

    def matching_usns(self, search_target: str) -> List[str]:
        """The USNs whose NT/ST value equals search_target. "ssdp:all" matches every USN."""
        if search_target == SSDP_ALL:
            return self.all_usns()
        return [ usn for usn in self.all_usns() if usn_to_target(usn) == search_target ]
