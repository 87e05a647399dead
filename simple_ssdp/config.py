#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Configuration of an SsdpServer.

An SsdpServerConfig may be constructed directly, or loaded from JSON text such as:

    {
      "device_name": "MediaServer",
      "port": 8080,
      "location": "/description.xml",
      "product": "Acme",
      "product_version": "1.0",
      "multicast_address": "239.255.255.250",
      "multicast_port": 1900
    }

The multicast fields are optional.
"""

from __future__ import annotations

import os
import json

from simple_ssdp.internal_types import *
from .constants import SSDP_MULTICAST_ADDRESS, SSDP_PORT
from .exceptions import SsdpConfigError

class SsdpMulticastGroup(NamedTuple):
    """The multicast group that SSDP traffic is sent to and received on."""

    address: str = SSDP_MULTICAST_ADDRESS
    port: int = SSDP_PORT

    def __str__(self) -> str:
        return f"{self.address}:{self.port}"

DEFAULT_MULTICAST_GROUP = SsdpMulticastGroup()

class SsdpServerConfig:
    """The construction parameters of an SsdpServer. All fields except multicast_group are required."""

    device_name: str
    """The UPnP device name, used in the device type URN "urn:schemas-upnp-org:device:<device_name>:1"."""

    port: int
    """The local port for unicast search responses. Also the port of the advertised LOCATION URL."""

    location: str
    """Appended to "<host>:<port>" to form the LOCATION URL; normally the path of the device
       description document, e.g., "/description.xml"."""

    product: str
    product_version: str

    multicast_group: SsdpMulticastGroup

    def __init__(
            self,
            device_name: str,
            port: int,
            location: str,
            product: str,
            product_version: str,
            multicast_group: SsdpMulticastGroup=DEFAULT_MULTICAST_GROUP,
          ):
        self.device_name = device_name
        self.port = port
        self.location = location
        self.product = product
        self.product_version = product_version
        self.multicast_group = multicast_group
        self.validate()

    def __str__(self) -> str:
        return f"SsdpServerConfig({self.to_dict()})"

    def __repr__(self) -> str:
        return str(self)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, SsdpServerConfig):
            return False
        return self.to_dict() == other.to_dict()

    def validate(self) -> None:
        """Raises SsdpConfigError if any field is missing or invalid."""
        for name in ('device_name', 'location', 'product', 'product_version'):
            value = getattr(self, name)
            if not isinstance(value, str) or value == '':
                raise SsdpConfigError(f"Config: Expected property {name} to be a nonempty str, got {value!r}")
        for name, port in (('port', self.port), ('multicast_port', self.multicast_group.port)):
            if not isinstance(port, int) or isinstance(port, bool) or not (0 <= port <= 65535):
                raise SsdpConfigError(f"Config: Expected property {name} to be a port number, got {port!r}")

    def to_dict(self) -> JsonableDict:
        return dict(
            device_name=self.device_name,
            port=self.port,
            location=self.location,
            product=self.product,
            product_version=self.product_version,
            multicast_address=self.multicast_group.address,
            multicast_port=self.multicast_group.port,
          )

    @classmethod
    def from_dict(cls, json_data: Mapping[str, Any]) -> SsdpServerConfig:
        if not isinstance(json_data, Mapping):
            raise SsdpConfigError(f"Config: Expected config data to be dict, got {type(json_data)}")
        missing = [ name for name in ('device_name', 'port', 'location', 'product', 'product_version') if name not in json_data ]
        if len(missing) > 0:
            raise SsdpConfigError(f"Config: Missing required properties: {', '.join(missing)}")
        multicast_group = SsdpMulticastGroup(
            json_data.get('multicast_address', SSDP_MULTICAST_ADDRESS),
            json_data.get('multicast_port', SSDP_PORT),
          )
        return cls(
            device_name=json_data['device_name'],
            port=json_data['port'],
            location=json_data['location'],
            product=json_data['product'],
            product_version=json_data['product_version'],
            multicast_group=multicast_group,
          )

    @staticmethod
    def parse_json(config_text: str) -> JsonableDict:
        """Parses JSON config text into a dict without validating its properties, so that it can be
           merged with other settings before from_dict() is called."""
        try:
            json_data = json.loads(config_text)
        except json.JSONDecodeError as e:
            raise SsdpConfigError(f"Config: Invalid JSON: {e}") from e
        if not isinstance(json_data, dict):
            raise SsdpConfigError(f"Config: Expected config data to be dict, got {type(json_data)}")
        return json_data

    @staticmethod
    def read_json_file(pathname: str) -> JsonableDict:
        """Reads a JSON config file into a dict without validating its properties."""
        pathname = os.path.abspath(os.path.expanduser(pathname))
        with open(pathname, encoding='utf-8') as f:
            config_text = f.read()
        return SsdpServerConfig.parse_json(config_text)

    @classmethod
    def loads(cls, config_text: str) -> SsdpServerConfig:
        return cls.from_dict(cls.parse_json(config_text))

    @classmethod
    def load_file(cls, pathname: str) -> SsdpServerConfig:
        return cls.from_dict(cls.read_json_file(pathname))
