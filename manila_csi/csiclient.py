"""Client for the node plugin that performs the actual mounts.

Node RPCs received by this plugin are forwarded to that plugin over a single
gRPC channel opened at startup.
"""

import itertools
import time
from typing import Optional, Set

import grpc
from oslo_log import log as logging

from . import utils
from .csi import csi_pb2
from .csi import csi_pb2_grpc
from .rpc import strip_secrets

LOG = logging.getLogger(__name__)

_fwd_call_ids = itertools.count(1)


class _LoggingInterceptor(grpc.UnaryUnaryClientInterceptor):
    """Logs forwarded calls with secrets stripped."""

    def intercept_unary_unary(self, continuation, client_call_details, request):
        call_id = next(_fwd_call_ids)
        LOG.debug("[ID:%d] FWD GRPC call: %s", call_id, client_call_details.method)
        LOG.debug("[ID:%d] FWD GRPC request: %s", call_id, strip_secrets(request))

        outcome = continuation(client_call_details, request)
        error = outcome.exception()
        if error is not None:
            LOG.info("[ID:%d] FWD GRPC error: %s", call_id, error)
        else:
            LOG.debug("[ID:%d] FWD GRPC response: %s", call_id, strip_secrets(outcome.result()))
        return outcome


class ForwardingClient:
    """Persistent connection to the forwarding plugin."""

    def __init__(self, endpoint: str):
        """
        Args:
            endpoint: CSI endpoint of the forwarding plugin, e.g. unix:///csi/csi-nfs.sock

        Raises:
            ValueError: Endpoint is malformed
        """
        proto, addr = utils.parse_grpc_endpoint(endpoint)
        self.endpoint = endpoint
        self.target = utils.grpc_target(proto, addr)
        self._raw_channel = None
        self._channel = None
        self.identity = None
        self.node = None

    def connect(self, retry_interval: float = 1.0, max_attempts: Optional[int] = None) -> None:
        """Open the channel and block until it is ready.

        Args:
            retry_interval: Seconds between "still connecting" reports
            max_attempts: Give up after this many intervals (None retries forever)

        Raises:
            grpc.FutureTimeoutError: Channel not ready after ``max_attempts``
        """
        if self._channel is not None:
            return

        raw_channel = grpc.insecure_channel(self.target)
        attempt = 0
        while True:
            try:
                grpc.channel_ready_future(raw_channel).result(timeout=retry_interval)
                break
            except grpc.FutureTimeoutError:
                attempt += 1
                LOG.warning("still connecting to %s", self.target)
                if max_attempts is not None and attempt >= max_attempts:
                    raw_channel.close()
                    raise

        self._raw_channel = raw_channel
        self._channel = grpc.intercept_channel(raw_channel, _LoggingInterceptor())
        self.identity = csi_pb2_grpc.IdentityStub(self._channel)
        self.node = csi_pb2_grpc.NodeStub(self._channel)
        LOG.info("Connected to forwarding plugin at %s", self.target)

    def close(self) -> None:
        if self._raw_channel is not None:
            self._raw_channel.close()
        self._raw_channel = None
        self._channel = None

    # Identity

    def probe(self, timeout: Optional[float] = None):
        return self.identity.Probe(csi_pb2.ProbeRequest(), timeout=timeout)

    def probe_forever(self, single_probe_timeout: float = 5.0, interval: float = 1.0) -> None:
        """Probe the forwarding plugin until it reports it's ready.

        Raises:
            grpc.RpcError: Probe failed with anything but a timeout or UNAVAILABLE
        """
        while True:
            LOG.info("Probing forwarding plugin at %s", self.target)
            try:
                response = self.probe(timeout=single_probe_timeout)
            except grpc.RpcError as e:
                code = e.code() if callable(getattr(e, "code", None)) else None
                if code not in (grpc.StatusCode.DEADLINE_EXCEEDED, grpc.StatusCode.UNAVAILABLE):
                    raise
                LOG.warning("Forwarding plugin is not available yet: %s", e)
            else:
                # An unset "ready" field means the plugin is ready
                if not response.HasField("ready") or response.ready.value:
                    LOG.info("Forwarding plugin is ready")
                    return
                LOG.info("Forwarding plugin is not ready yet")
            time.sleep(interval)

    def get_plugin_info(self, timeout: Optional[float] = None):
        return self.identity.GetPluginInfo(csi_pb2.GetPluginInfoRequest(), timeout=timeout)

    # Node

    def node_get_capabilities(self, timeout: Optional[float] = None) -> Set[int]:
        """Return the node service RPC capability types of the forwarding plugin."""
        response = self.node.NodeGetCapabilities(csi_pb2.NodeGetCapabilitiesRequest(), timeout=timeout)
        return {cap.rpc.type for cap in response.capabilities if cap.HasField("rpc")}

    def node_stage_volume(self, request, timeout: Optional[float] = None):
        return self.node.NodeStageVolume(request, timeout=timeout)

    def node_unstage_volume(self, request, timeout: Optional[float] = None):
        return self.node.NodeUnstageVolume(request, timeout=timeout)

    def node_publish_volume(self, request, timeout: Optional[float] = None):
        return self.node.NodePublishVolume(request, timeout=timeout)

    def node_unpublish_volume(self, request, timeout: Optional[float] = None):
        return self.node.NodeUnpublishVolume(request, timeout=timeout)
