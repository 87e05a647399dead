#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Exceptions defined by this package"""

class SsdpError(Exception):
  """Base class for all error exceptions defined by this package."""
  pass

class SsdpBindError(SsdpError):
  """A UDP socket could not be bound or could not join the multicast group."""
  pass

class SsdpSendError(SsdpError):
  """A datagram could not be sent."""
  pass

class SsdpConfigError(SsdpError):
  """The server configuration is missing a field or has an invalid value."""
  pass
