"""Domain-specific errors for bluest."""


class BlueStError(Exception):
    """Base error for bluest."""


class FormatError(BlueStError, ValueError):
    """Raised when bytes received from a device do not match the wire format."""


class TruncatedFrameError(FormatError):
    """Raised when a frame ends before a fixed-width payload is complete."""


class RecordBoundsError(BlueStError, IndexError):
    """Raised when an advertisement record runs past the end of its buffer."""


class ArgumentError(BlueStError, ValueError):
    """Raised when a caller passes a value the protocol cannot encode."""


class ConfigurationError(BlueStError):
    """Raised when a session or profile cannot be set up as requested."""


class ProfileLoadError(ConfigurationError):
    """Raised when reading profile sources fails."""


class ProfileValidationError(ConfigurationError):
    """Raised when a profile file does not conform to schema or semantics."""


class DeviceSelectionError(BlueStError):
    """Raised when scanning cannot resolve a single target device."""


class UnsupportedError(BlueStError):
    """Raised when the device lacks the characteristic an operation needs."""


class OperationCancelledError(BlueStError):
    """Raised when a register operation is cancelled or times out."""


class RegisterAccessError(BlueStError):
    """Raised when the device reports an error for a register operation."""

    def __init__(self, index: int, code: int) -> None:
        super().__init__(
            f"Device reported error 0x{code:02X} while accessing register 0x{index:02X}"
        )
        self.index = index
        self.code = code


class TransportError(BlueStError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised on BLE connect failures."""


class TransportUnreachableError(TransportError):
    """Raised when the device is no longer reachable over the link."""


class NotificationError(BlueStError):
    """Raised when arming or disarming notifications fails."""

    def __init__(self, message: str, errors: tuple[BaseException, ...] = ()) -> None:
        super().__init__(message)
        self.errors = errors
