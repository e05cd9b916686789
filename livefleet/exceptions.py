class LiveFleetError(Exception):
    """Base class for errors raised by the livefleet app."""


class RoutingError(LiveFleetError):
    """The routing backend failed or returned no usable geometry."""


class PollError(LiveFleetError):
    """The live locations endpoint could not be fetched or parsed."""
