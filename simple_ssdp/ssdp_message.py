#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Encoding and decoding of the four SSDP message types:

  1. M-SEARCH requests
  2. HTTP/1.1 200 OK search responses
  3. NOTIFY ssdp:alive advertisements
  4. NOTIFY ssdp:byebye withdrawals

The encoders produce the exact wire text expected by UPnP control points. The decoder
accepts any datagram and never raises; lines it cannot interpret are dropped.
"""

from __future__ import annotations

import re
import platform
from email.utils import formatdate

from simple_ssdp.internal_types import *
from .pkg_logging import logger

from .constants import (
    SSDP_MULTICAST_ADDRESS,
    SSDP_PORT,
    DEFAULT_MAX_AGE,
    SSDP_DISCOVER,
    SSDP_ALIVE,
    SSDP_BYEBYE,
    DISCOVERY_SERVICE_NT,
    SEARCH_MX,
    USN_DELIMITER,
  )
from .util import CaseInsensitiveDict, split_bytes_at_lf_or_crlf

MessageValue = Union[str, int]

REMOTE_INFO_KEYS = ('address', 'port', 'family', 'size')
"""Keys merged into a decoded message from the sender's address info."""

def usn_to_target(usn: str) -> str:
    """Derive the NT/ST header value from a USN.

    "<uuid>::<urn>" yields "<urn>". A USN without "::" (e.g., "upnp:rootdevice" or a bare
    device UUID) is its own target.
    """
    i = usn.find(USN_DELIMITER)
    if i < 0:
        return usn.strip()
    return usn[i + len(USN_DELIMITER):].strip()

def server_string(product: str, product_version: str) -> str:
    """The SERVER header value: "<os>/<os version> UPnP/1.1 <product>/<product version>"."""
    return f"{platform.system()}/{platform.release()} UPnP/1.1 {product}/{product_version}"

def _format_message(statement: str, headers: Sequence[Tuple[str, str]]) -> str:
    lines = [statement]
    for name, value in headers:
        # A header with an empty value is written without a trailing space (e.g., "EXT:")
        lines.append(f"{name}: {value}" if value != '' else f"{name}:")
    return '\r\n'.join(lines) + '\r\n\r\n'

def encode_msearch(search_target: str, host: str=SSDP_MULTICAST_ADDRESS, port: int=SSDP_PORT) -> str:
    """Build an M-SEARCH request for search_target, addressed to host:port."""
    return _format_message(
        "M-SEARCH * HTTP/1.1",
        [
            ("HOST", f"{host}:{port}"),
            ("MAN", f'"{SSDP_DISCOVER}"'),
            ("MX", str(SEARCH_MX)),
            ("ST", search_target),
        ]
      )

def encode_response(location: str, usn: str, product: str, product_version: str) -> str:
    """Build the unicast 200 OK response to an M-SEARCH for one USN.

    location is "host:port/path" without the "http://" scheme.
    """
    return _format_message(
        "HTTP/1.1 200 OK",
        [
            ("CACHE-CONTROL", f"max-age = {DEFAULT_MAX_AGE}"),
            ("DATE", formatdate(usegmt=True)),
            ("EXT", ""),
            ("LOCATION", f"http://{location}"),
            ("SERVER", server_string(product, product_version)),
            ("ST", usn_to_target(usn)),
            ("USN", usn),
        ]
      )

def encode_notify_alive(
        location: str,
        usn: str,
        product: str,
        product_version: str,
        host: str=SSDP_MULTICAST_ADDRESS,
        port: int=SSDP_PORT,
      ) -> str:
    """Build a NOTIFY ssdp:alive advertisement for one USN, addressed to the multicast group host:port."""
    return _format_message(
        "NOTIFY * HTTP/1.1",
        [
            ("HOST", f"{host}:{port}"),
            ("CACHE-CONTROL", f"max-age = {DEFAULT_MAX_AGE}"),
            ("LOCATION", f"http://{location}"),
            ("NT", usn_to_target(usn)),
            ("NTS", SSDP_ALIVE),
            ("SERVER", server_string(product, product_version)),
            ("USN", usn),
        ]
      )

def encode_notify_bye(usn: str, host: str=SSDP_MULTICAST_ADDRESS, port: int=SSDP_PORT) -> str:
    """Build a NOTIFY ssdp:byebye withdrawal. NT is always the discovery service URN."""
    return _format_message(
        "NOTIFY * HTTP/1.1",
        [
            ("HOST", f"{host}:{port}"),
            ("NT", DISCOVERY_SERVICE_NT),
            ("NTS", SSDP_BYEBYE),
            ("USN", usn),
        ]
      )

class SsdpMessage(Mapping[str, MessageValue]):
    """A decoded SSDP datagram.

    Behaves as a read-only mapping from lower-cased header name to trimmed header value,
    with the sender's address info merged in under "address", "port", "family" and "size".
    Lookups are case-insensitive. Headers this class knows nothing about are kept as-is.
    """

    _raw_data: bytes
    """The raw UDP datagram contents"""

    _statement_line: str
    """The first line of the datagram; e.g., "M-SEARCH * HTTP/1.1", "HTTP/1.1 200 OK", etc."""

    _fields: CaseInsensitiveDict[MessageValue]
    """Headers and remote info. Keys are stored lower-cased."""

    def __init__(self, raw_data: bytes, statement_line: str, fields: Mapping[str, MessageValue]):
        self._raw_data = raw_data
        self._statement_line = statement_line
        self._fields = CaseInsensitiveDict(fields)

    def __str__(self) -> str:
        return f"{self.__class__.__name__}('{self._statement_line}', {dict(self._fields)})"

    def __repr__(self) -> str:
        return str(self)

    def __getitem__(self, key: str) -> MessageValue:
        return self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, SsdpMessage):
            return False
        return self._raw_data == other._raw_data and dict(self._fields) == dict(other._fields)

    def __hash__(self) -> int:
        return hash(self._raw_data)

    @property
    def raw_data(self) -> bytes:
        """The raw UDP datagram contents"""
        return self._raw_data

    @property
    def statement_line(self) -> str:
        """The first line of the datagram"""
        return self._statement_line

    def _get_str(self, key: str) -> Optional[str]:
        result = self._fields.get(key)
        if not isinstance(result, str):
            return None
        return result

    @property
    def address(self) -> Optional[str]:
        """The sender's IP address"""
        return self._get_str('address')

    @property
    def port(self) -> Optional[int]:
        """The sender's UDP port"""
        result = self._fields.get('port')
        if not isinstance(result, int):
            return None
        return result

    @property
    def src_addr(self) -> Optional[HostAndPort]:
        """The sender's (address, port), or None if either is unknown"""
        address = self.address
        port = self.port
        if address is None or port is None:
            return None
        return (address, port)

    @property
    def host(self) -> Optional[str]:
        return self._get_str('host')

    @property
    def st(self) -> Optional[str]:
        """The ST (search target) header"""
        return self._get_str('st')

    @property
    def nt(self) -> Optional[str]:
        """The NT (notification type) header"""
        return self._get_str('nt')

    @property
    def nts(self) -> Optional[str]:
        """The NTS (notification sub-type) header"""
        return self._get_str('nts')

    @property
    def usn(self) -> Optional[str]:
        return self._get_str('usn')

    @property
    def location(self) -> Optional[str]:
        return self._get_str('location')

    @property
    def server(self) -> Optional[str]:
        return self._get_str('server')

    @property
    def cache_control(self) -> Optional[str]:
        return self._get_str('cache-control')

    _max_age_re = re.compile(r'max-age *= *(?P<max_age>[0-9]+)', re.IGNORECASE)

    @property
    def max_age(self) -> Optional[int]:
        """The max-age directive of the CACHE-CONTROL header, in seconds.

        Returns None if there is no valid max-age directive.
        """
        cache_control = self.cache_control
        if cache_control is None:
            return None
        m = self._max_age_re.search(cache_control)
        if not m:
            return None
        return int(m.group('max_age'))

    def to_dict(self) -> JsonableDict:
        """A JSON-serializable copy of the fields, plus the statement line under "statement"."""
        result: JsonableDict = { k.lower(): v for k, v in self._fields.items() }
        result['statement'] = self._statement_line
        return result

class SsdpSearchMessage(SsdpMessage):
    """A decoded M-SEARCH request."""

    @property
    def man(self) -> Optional[str]:
        """The MAN header with surrounding quotes removed"""
        result = self._get_str('man')
        if result is None:
            return None
        return result.strip('"')

    @property
    def mx(self) -> Optional[int]:
        """The MX header in seconds, or None if missing or not an integer"""
        result = self._get_str('mx')
        if result is None:
            return None
        try:
            return int(result)
        except ValueError:
            return None

class SsdpNotifyMessage(SsdpMessage):
    """A decoded NOTIFY request (ssdp:alive or ssdp:byebye)."""

    @property
    def is_alive(self) -> bool:
        return self.nts == SSDP_ALIVE

    @property
    def is_byebye(self) -> bool:
        return self.nts == SSDP_BYEBYE

class SsdpResponseMessage(SsdpMessage):
    """A decoded "HTTP/1.1 <code> <reason>" search response."""

    _status_line_re = re.compile(r'^HTTP/(?P<version>[0-9]+\.[0-9]+) +(?P<status_code>[0-9]+)(?: +(?P<reason>.*[^ ]))? *$')

    @property
    def status_code(self) -> Optional[int]:
        """The status code from the statement line (e.g., 200), or None if it cannot be parsed"""
        m = self._status_line_re.match(self.statement_line)
        if not m:
            return None
        return int(m.group('status_code'))

    @property
    def reason(self) -> Optional[str]:
        m = self._status_line_re.match(self.statement_line)
        if not m:
            return None
        return m.group('reason')

def _message_class_for_statement(statement_line: str) -> type[SsdpMessage]:
    if statement_line.startswith('M-SEARCH'):
        return SsdpSearchMessage
    if statement_line.startswith('NOTIFY'):
        return SsdpNotifyMessage
    if statement_line.startswith('HTTP/'):
        return SsdpResponseMessage
    return SsdpMessage

def decode(raw_data: bytes, address: str, port: int, family: str="IPv4") -> SsdpMessage:
    """Parse a received datagram into an SsdpMessage.

    Each line whose first colon is at index > 1 contributes lower(key.strip()) -> value.strip().
    The statement line (e.g., "NOTIFY * HTTP/1.1") has no such colon and contributes nothing.
    The sender's address info is merged in afterwards, so it wins over same-named headers.

    Never raises on malformed input.
    """
    text_lines = [ line.decode('utf-8', errors='replace') for line in split_bytes_at_lf_or_crlf(raw_data) ]
    statement_line = text_lines[0] if len(text_lines) > 0 else ''
    fields: Dict[str, MessageValue] = {}
    for line in text_lines:
        i = line.find(':')
        if i > 1:
            key = line[:i].strip().lower()
            if key != '':
                fields[key] = line[i + 1:].strip()
    fields['address'] = address
    fields['port'] = port
    fields['family'] = family
    fields['size'] = len(raw_data)
    message_class = _message_class_for_statement(statement_line)
    result = message_class(raw_data, statement_line, fields)
    logger.debug(f"Decoded datagram from {address}:{port}: {result}")
    return result
