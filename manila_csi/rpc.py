"""Logging and error handling shared by the CSI servicers."""

import functools
import inspect
import itertools

import grpc
from google.protobuf import text_format
from oslo_log import log as logging

from . import exceptions

LOG = logging.getLogger(__name__)

STRIPPED = "***stripped***"

_call_ids = itertools.count(1)


def strip_secrets(message):
    """Return a one-line text rendering of ``message`` with secret values masked."""
    if message is None:
        return ""
    if "secrets" in message.DESCRIPTOR.fields_by_name and len(message.secrets):
        stripped = type(message)()
        stripped.CopyFrom(message)
        for key in list(stripped.secrets):
            stripped.secrets[key] = STRIPPED
        message = stripped
    return text_format.MessageToString(message, as_one_line=True)


def rpc_error_code(exc: grpc.RpcError):
    """Status code and details of an error returned by the downstream plugin."""
    code = exc.code() if callable(getattr(exc, "code", None)) else grpc.StatusCode.UNKNOWN
    details = exc.details() if callable(getattr(exc, "details", None)) else str(exc)
    return code, details


class Instrumented:
    """Mixin that logs every RPC and converts exceptions into gRPC status codes.

    Each public method of the generated servicer base class is wrapped by
    ``logged`` when a subclass is defined.
    """

    SILENCED = ["Probe", "NodeGetCapabilities"]

    @classmethod
    def logged(cls, func):
        method = func.__name__
        log = LOG.debug if method in cls.SILENCED else LOG.info

        @functools.wraps(func)
        def wrapper(self, request, context):
            call_id = next(_call_ids)
            log("[ID:%d] GRPC call: %s", call_id, method)
            LOG.debug("[ID:%d] GRPC request: %s", call_id, strip_secrets(request))

            try:
                response = func(self, request, context)
            except exceptions.ManilaCSIException as exc:
                LOG.error("[ID:%d] GRPC error: %s %s", call_id, exc.code.name, exc)
                context.abort(exc.code, str(exc))
            except grpc.RpcError as exc:
                code, details = rpc_error_code(exc)
                LOG.error("[ID:%d] GRPC error from forwarded call: %s %s", call_id, code.name, details)
                context.abort(code, details)
            except Exception as exc:
                LOG.exception("[ID:%d] Exception during %s", call_id, method)
                context.abort(grpc.StatusCode.INTERNAL, f"[{method}]: {exc}")

            LOG.debug("[ID:%d] GRPC response: %s", call_id, strip_secrets(response))
            return response

        return wrapper

    @classmethod
    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        for name, _ in inspect.getmembers(cls.__base__, inspect.isfunction):
            if name.startswith("_"):
                continue
            setattr(cls, name, cls.logged(getattr(cls, name)))
