"""Domain-specific errors for btrelay."""


class BtRelayError(Exception):
    """Base error for btrelay."""


class ProfileValidationError(BtRelayError):
    """Raised when a relay profile file does not conform to schema or semantics."""


class ProfileLoadError(BtRelayError):
    """Raised when loading profile sources fails."""


class NotConnectedError(BtRelayError):
    """Raised when sending with no link and no intent to reconnect."""


class NoRememberedDeviceError(BtRelayError):
    """Raised when reconnecting with no active device."""


class UnknownDeviceError(BtRelayError):
    """Raised when an operation references an id missing from the registry."""


class DeviceDiscoveryError(BtRelayError):
    """Raised when scanning finds no relay, even with the broadened filter."""


class TransportError(BtRelayError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised on connect or protocol setup failures."""


class TransportSendError(TransportError):
    """Raised when a write to the relay fails."""
