"""Helper functions for the Manila CSI plugin."""

import dataclasses
import threading
from typing import Callable, List, Optional, Tuple

from oslo_log import log as logging

from . import exceptions

LOG = logging.getLogger(__name__)

BYTES_IN_GIB = 1024 * 1024 * 1024

TOPOLOGY_KEY = "topology.manila.csi.openstack.org/zone"

UNIX_SCHEME = "unix://"
TCP_SCHEME = "tcp://"


def bytes_to_gib(size_in_bytes: int) -> int:
    """Convert a byte count to whole GiB, rounding up.

    Shares are sized in whole gibibytes, so the result is never below 1.
    """
    size_in_gib = size_in_bytes // BYTES_IN_GIB
    if size_in_gib * BYTES_IN_GIB < size_in_bytes:
        size_in_gib += 1
    return max(size_in_gib, 1)


def parse_grpc_endpoint(endpoint: str) -> Tuple[str, str]:
    """Split a CSI endpoint into protocol and address.

    Accepts ``/abs/path``, ``unix:///abs/path``, ``unix://abs/path``
    and ``tcp://host:port``.

    Raises:
        ValueError: Endpoint uses an unsupported scheme
    """
    if endpoint.startswith("/"):
        return "unix", endpoint

    if endpoint.startswith(UNIX_SCHEME):
        addr = endpoint[len(UNIX_SCHEME):]
        if not addr.startswith("/"):
            # "unix://tmp/csi.sock" is missing one slash
            addr = "/" + addr
        return "unix", addr

    if endpoint.startswith(TCP_SCHEME):
        return "tcp", endpoint[len(TCP_SCHEME):]

    raise ValueError(f"endpoint {endpoint} uses unsupported scheme")


def grpc_target(proto: str, addr: str) -> str:
    """Format a parsed endpoint as a gRPC target/bind address."""
    if proto == "unix":
        return UNIX_SCHEME + addr
    return addr


def split_export_location_path(path: str) -> Tuple[str, str]:
    """Split ``<address>:<location>`` on the last colon.

    ``10.0.0.1:/share`` gives ``("10.0.0.1", "/share")`` and
    ``mon1:6789,mon2:6789:/volumes/x`` gives the monitor list and root path.
    """
    delim_pos = path.rfind(":")
    if delim_pos <= 0:
        raise ValueError(f"failed to parse address and location from export location '{path}'")
    return path[:delim_pos], path[delim_pos + 1:]


def split_trim(value: str, sep: str = ",") -> List[str]:
    return [item.strip() for item in value.split(sep) if item.strip()]


def compare_protocol(proto_a: Optional[str], proto_b: Optional[str]) -> bool:
    return (proto_a or "").upper() == (proto_b or "").upper()


def coalesce_value(value: Optional[str]) -> str:
    return value if value else "<none>"


@dataclasses.dataclass(frozen=True)
class Backoff:
    """Exponential backoff parameters.

    ``steps`` bounds the number of condition checks; the wait before the next
    check starts at ``duration`` seconds and is multiplied by ``factor``.
    """

    duration: float
    factor: float = 1.0
    steps: int = 1


def wait_for(
    condition: Callable[[], bool],
    backoff: Backoff,
    context=None,
    description: str = "the condition",
) -> None:
    """Call ``condition`` until it returns True.

    Exceptions raised by ``condition`` stop the wait and propagate.

    Args:
        condition: Callable returning True once the wait is over
        backoff: Backoff parameters
        context: Optional gRPC servicer context. The wait ends as soon as the
            RPC is cancelled or its deadline expires.
        description: What is being waited for, used in messages

    Raises:
        BackoffExhausted: All steps were used up
        Cancelled: The RPC terminated while waiting
    """
    interrupted = threading.Event()
    if context is not None and not context.add_callback(interrupted.set):
        raise exceptions.Cancelled(what=description)

    duration = backoff.duration
    for step in range(backoff.steps):
        if condition():
            return
        if step == backoff.steps - 1:
            break
        if interrupted.wait(duration):
            LOG.info("RPC terminated while waiting for %s", description)
            raise exceptions.Cancelled(what=description)
        duration *= backoff.factor

    raise exceptions.BackoffExhausted(steps=backoff.steps)


def availability_zone_from_topology(topology_key: str, accessibility_requirements) -> str:
    """First zone named by preferred, then requisite topologies, or an empty string."""
    if accessibility_requirements is None:
        return ""
    for topologies in (accessibility_requirements.preferred, accessibility_requirements.requisite):
        for topology in topologies:
            zone = topology.segments.get(topology_key)
            if zone:
                return zone
    return ""
