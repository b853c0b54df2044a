"""
Exceptions raised by the lnnetkit adapters and workflows.

All exceptions keep the message of the underlying failure as their string
representation, so it can be shown unmodified to a user.
"""


class LnNetKitError(Exception):
    pass


class WaitTimeout(LnNetKitError, TimeoutError):
    """A polled operation did not succeed before the timeout."""


class WrongAdapterForNode(LnNetKitError, TypeError):
    """A node was handed to the service of another implementation."""

    def __init__(self, service, required, actual):
        self.service = service
        self.required = required
        self.actual = actual
        super().__init__(
            f"{service} cannot be used for '{actual}' nodes "
            f"(requires '{required}')")


class PaymentFailed(LnNetKitError):
    """The lightning node reported that a payment could not be made."""


class InsufficientFundsRecoveryFailed(LnNetKitError):
    """Coins were mined to cover a payment, but sending still failed."""


class RpcError(LnNetKitError):
    """Error response of the bitcoind JSON-RPC interface."""

    def __init__(self, message, code=None):
        self.code = code
        super().__init__(message)


class RestError(LnNetKitError):
    """Error response of a lightning node's REST interface."""

    def __init__(self, message, status=None, code=None):
        self.status = status
        self.code = code
        super().__init__(message)
