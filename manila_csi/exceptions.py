"""Manila CSI plugin exceptions.

``ManilaCSIException`` subclasses carry the gRPC status code they are reported
with. ``ManilaAPIError`` subclasses describe failures of the Manila API itself
and are classified into RPC errors by the service layer.
"""

import enum

import grpc


class ManilaException(Exception):
    """Base exception for all plugin errors."""

    message = "An unknown exception occurred."

    def __init__(self, message=None, **kwargs):
        """Initialize exception with optional custom message."""
        self.kwargs = kwargs
        if message:
            self.message = message
        if kwargs:
            self.message = self.message % kwargs
        super(ManilaException, self).__init__(self.message)


class ManilaCSIException(ManilaException):
    """Error reported to the CSI caller with a gRPC status code."""

    code = grpc.StatusCode.INTERNAL

    def __init__(self, message=None, code=None, **kwargs):
        if code is not None:
            self.code = code
        super(ManilaCSIException, self).__init__(message, **kwargs)


class InvalidArgument(ManilaCSIException):
    code = grpc.StatusCode.INVALID_ARGUMENT
    message = "Invalid argument: %(details)s"


class NotFound(ManilaCSIException):
    code = grpc.StatusCode.NOT_FOUND
    message = "%(resource)s %(resource_id)s not found"


class FailedPrecondition(ManilaCSIException):
    code = grpc.StatusCode.FAILED_PRECONDITION
    message = "Failed precondition: %(details)s"


class Unavailable(ManilaCSIException):
    """Resource is in an expected transient state, safe to retry later."""

    code = grpc.StatusCode.UNAVAILABLE
    message = "%(resource)s %(resource_id)s is in transient %(status)s state"


class Aborted(ManilaCSIException):
    """A request for the same resource name is already in flight."""

    code = grpc.StatusCode.ABORTED
    message = "%(resource)s %(name)s is already being processed"


class AlreadyExists(ManilaCSIException):
    code = grpc.StatusCode.ALREADY_EXISTS
    message = (
        "%(resource)s %(name)s already exists, but is incompatible "
        "with the request: %(reason)s"
    )


class DeadlineExceeded(ManilaCSIException):
    code = grpc.StatusCode.DEADLINE_EXCEEDED
    message = "deadline exceeded while waiting for %(resource)s %(name)s to become %(status)s"


class Cancelled(ManilaCSIException):
    code = grpc.StatusCode.CANCELLED
    message = "request was cancelled while waiting for %(what)s"


class Unauthenticated(ManilaCSIException):
    code = grpc.StatusCode.UNAUTHENTICATED
    message = "failed to create Manila v2 client: %(details)s"


class Unimplemented(ManilaCSIException):
    code = grpc.StatusCode.UNIMPLEMENTED
    message = "%(method)s is not implemented"


class Internal(ManilaCSIException):
    code = grpc.StatusCode.INTERNAL
    message = "Internal error: %(details)s"


class ManilaErrorCode(enum.IntEnum):
    """Classified Manila user-message detail IDs."""

    UNKNOWN = 0
    NO_VALID_HOST = 1
    UNEXPECTED_NETWORK = 2
    AVAILABILITY = 3
    CAPABILITIES = 4
    CAPACITY = 5

    def to_rpc_code(self):
        return _RPC_CODES.get(self, grpc.StatusCode.INTERNAL)


_RPC_CODES = {
    ManilaErrorCode.NO_VALID_HOST: grpc.StatusCode.OUT_OF_RANGE,
    ManilaErrorCode.UNEXPECTED_NETWORK: grpc.StatusCode.INVALID_ARGUMENT,
    ManilaErrorCode.AVAILABILITY: grpc.StatusCode.RESOURCE_EXHAUSTED,
    ManilaErrorCode.CAPABILITIES: grpc.StatusCode.INVALID_ARGUMENT,
    ManilaErrorCode.CAPACITY: grpc.StatusCode.OUT_OF_RANGE,
}

# Manila user message "detail_id" values
MANILA_ERROR_CODES = {
    "002": ManilaErrorCode.NO_VALID_HOST,
    "003": ManilaErrorCode.UNEXPECTED_NETWORK,
    "007": ManilaErrorCode.AVAILABILITY,
    "008": ManilaErrorCode.CAPABILITIES,
    "009": ManilaErrorCode.CAPACITY,
}


def error_code_from_detail_id(detail_id):
    return MANILA_ERROR_CODES.get(detail_id, ManilaErrorCode.UNKNOWN)


class ResourceInErrorState(ManilaCSIException):
    """Share or snapshot reached an error status.

    The status code is taken from the classified Manila error code of the
    most recent user message for the resource.
    """

    message = '%(resource)s %(resource_id)s is in error state "%(status)s": %(details)s'

    def __init__(self, error_code=ManilaErrorCode.UNKNOWN, **kwargs):
        self.error_code = error_code
        super(ResourceInErrorState, self).__init__(code=error_code.to_rpc_code(), **kwargs)


class UnexpectedResourceState(ManilaCSIException):
    code = grpc.StatusCode.INTERNAL
    message = (
        "%(resource)s %(resource_id)s is in an unexpected state: "
        "wanted either %(wanted)s, got %(status)s"
    )


class BackoffExhausted(ManilaException):
    """All backoff steps were used without reaching the desired condition."""

    message = "timed out waiting for the condition after %(steps)s attempts"


class ManilaAPIError(ManilaException):
    """Manila API communication errors."""

    message = "Manila API error: %(details)s"


class ManilaResourceNotFound(ManilaAPIError):
    """Generic resource not found error.

    Use specific subclasses (ShareNotFound, SnapshotNotFound, ...)
    when the resource type is known.
    """

    message = "Resource %(resource_id)s not found"


class ShareNotFound(ManilaResourceNotFound):
    message = "Share %(share_id)s not found"


class SnapshotNotFound(ManilaResourceNotFound):
    message = "Snapshot %(snapshot_id)s not found"


class ShareTypeNotFound(ManilaResourceNotFound):
    message = "Share type %(share_type)s not found"


class ManilaAPIConnectionError(ManilaAPIError):
    message = "Failed to connect to Manila API: %(details)s"


class ManilaAPITimeout(ManilaAPIError):
    message = "Manila API request timed out: %(details)s"


class ManilaAuthenticationError(ManilaAPIError):
    message = "Manila authentication error: %(details)s"
