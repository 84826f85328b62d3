class ConfigError(Exception):
    """Invalid or missing value in the configuration file / command line."""


class DeviceError(OSError):
    """
    Raised when an operation on a TUN/TAP device fails. Like any OSError the
    value is either a message or an (errno, strerror) pair, so callers can
    check e.errno the same way they do for sockets.
    """


class DeviceCreationError(DeviceError):
    """The virtual interface could not be allocated."""


class ConfigurationError(DeviceError):
    """A device setting (address, netmask, MTU, ...) could not be applied."""

    def __init__(self, field, cause):
        self.field = field
        self.cause = cause
        super().__init__(f"Cannot set {field}: {cause}")


class BindError(OSError):
    """The local UDP endpoint could not be bound."""


class ControlError(Exception):
    """The `ip` command failed or is not available."""
