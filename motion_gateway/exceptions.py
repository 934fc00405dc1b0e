#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Exceptions defined by this package"""

class MotionGatewayError(Exception):
  """Base class for all error exceptions defined by this package."""
  pass

class TransportError(MotionGatewayError):
  """A socket could not be bound, or a datagram could not be sent."""
  pass

class ClientClosedError(TransportError):
  """The client was closed while a request was still waiting for a reply."""
  pass

class DecodeError(MotionGatewayError):
  """An inbound datagram was not a JSON object with a recognized msgType."""
  pass

class ValidationError(MotionGatewayError, ValueError):
  """Request parameters were rejected before anything was sent."""
  pass

class AuthError(MotionGatewayError):
  """An access token could not be produced."""
  pass

class InvalidKeyError(AuthError):
  """The secret key is not a valid AES key length."""
  pass

class InvalidTokenError(AuthError):
  """The session token is not a whole number of AES blocks."""
  pass

class SupersededError(MotionGatewayError):
  """A newer request with the same wait handle replaced this one."""
  pass

class RequestTimeoutError(MotionGatewayError, TimeoutError):
  """No matching reply arrived before the retry schedule was exhausted."""
  pass

class GatewayActionError(MotionGatewayError):
  """The gateway acknowledged a request but reported an actionResult failure."""
  pass
