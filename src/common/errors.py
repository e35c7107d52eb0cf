"""Error taxonomy for the telemetry relay. All failures stay local to the peer that hit them."""


class RelayError(Exception):
    pass


class TransportUnavailable(RelayError):
    """The channel is not supported on this peer; activation is skipped, never retried."""


class DeliveryDropped(RelayError):
    """An immediate send could not be handed to the transport. Swallowed by channels."""


class MalformedPayload(RelayError, ValueError):
    """Inbound payload is not a mapping or does not carry the expected discriminator."""
