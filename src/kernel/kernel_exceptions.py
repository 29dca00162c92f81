class KernelError(Exception):
    def __init__(self, reason, details=None):
        self.reason = reason
        self.details = details
        super().__init__(reason)


class MessageFormatError(KernelError, ValueError):
    pass


class UnknownMessageType(KernelError):
    pass


class AttributeResolutionError(KernelError, AttributeError):
    """The name does not resolve to any declared remote attribute."""

    status = "AttributeError"


class AccessError(KernelError):
    """The name resolves, but the requested direction is not permitted."""

    status = "AccessError"


class InputChannelBusy(KernelError):
    pass


class InputAbandoned(KernelError):
    pass


class UsageError(KernelError):
    pass


class IllegalTransitionError(KernelError):
    pass
