"""Manila CSI driver: wires the CSI services and serves them over gRPC."""

import os
from concurrent import futures

import grpc
from oslo_log import log as logging

from . import __version__
from . import csiclient
from . import lifecycle
from . import runtimeconfig
from . import shareadapters
from . import utils
from .controller import ControllerService
from .csi import CSI_SPEC_VERSION
from .csi import csi_pb2
from .csi import csi_pb2_grpc
from .identity import IdentityService
from .manila.capabilities import CapabilitiesCache
from .manila.client import ClientBuilder
from .node import NodeService

LOG = logging.getLogger(__name__)

DRIVER_VERSION = "0.9.0"


class Driver:
    """Manila CSI driver.

    Args:
        opts: Options of the ``manila_csi`` configuration group
        client_builder: Manila client builder (default: built from ``opts``)
        forwarding_client: Client of the forwarding plugin (default: built from ``opts``)

    Raises:
        ValueError: Required option is missing or malformed
    """

    def __init__(self, opts, client_builder=None, forwarding_client=None):
        for name, value in (
            ("node ID", opts.node_id),
            ("driver name", opts.driver_name),
            ("driver endpoint", opts.endpoint),
            ("FWD endpoint", opts.fwd_endpoint),
            ("share protocol selector", opts.share_protocol_selector),
        ):
            if not value:
                raise ValueError(f"{name} is missing")

        self.opts = opts
        self.name = opts.driver_name
        self.node_id = opts.node_id
        self.node_az = opts.node_az or ""
        self.with_topology = bool(opts.with_topology)
        self.cluster_id = opts.cluster_id or ""
        self.fq_version = f"{DRIVER_VERSION}@{__version__}"

        self.share_protocol = shareadapters.ShareProtocol.from_string(opts.share_protocol_selector)
        self.share_adapter = shareadapters.get_share_adapter(
            self.share_protocol,
            runtime_config_loader=runtimeconfig.RuntimeConfigLoader(opts.runtime_config_file),
            access_key_backoff=utils.Backoff(
                duration=opts.access_key_poll_interval, factor=1.2, steps=10
            ),
        )

        try:
            self.server_proto, self.server_addr = utils.parse_grpc_endpoint(opts.endpoint)
        except ValueError as e:
            raise ValueError(f"failed to parse server endpoint address {opts.endpoint}: {e}")
        try:
            utils.parse_grpc_endpoint(opts.fwd_endpoint)
        except ValueError as e:
            raise ValueError(f"failed to parse proxy client address {opts.fwd_endpoint}: {e}")

        self.client_builder = client_builder or ClientBuilder(
            extra_user_agent_data=opts.user_agent,
            timeout=opts.manila_api_timeout,
            retry_count=opts.manila_api_retry_count,
            microversion=opts.manila_microversion,
        )
        self.forwarding_client = forwarding_client or csiclient.ForwardingClient(opts.fwd_endpoint)
        self.lifecycle = lifecycle.LifecycleManager(
            backoff=utils.Backoff(
                duration=opts.status_poll_interval,
                factor=opts.status_poll_factor,
                steps=opts.status_poll_retries,
            )
        )

        self.identity = None
        self.controller = None
        self.node = None

        LOG.info("Driver: %s", self.name)
        LOG.info("Driver version: %s", self.fq_version)
        LOG.info("CSI spec version: %s", CSI_SPEC_VERSION)
        LOG.info("Operating on %s shares", self.share_protocol.value)
        if self.with_topology:
            LOG.info("Topology awareness enabled, node availability zone: %s", self.node_az)
        else:
            LOG.info("Topology awareness disabled")

    def init_proxied_driver(self):
        """Wait for the forwarding plugin and fetch its node capabilities.

        Returns:
            Set of node service RPC types of the forwarding plugin
        """
        self.forwarding_client.connect()
        self.forwarding_client.probe_forever(single_probe_timeout=self.opts.fwd_probe_interval)

        timeout = self.opts.fwd_init_timeout
        plugin_info = self.forwarding_client.get_plugin_info(timeout=timeout)
        LOG.info("proxying CSI driver %s version %s", plugin_info.name, plugin_info.vendor_version)

        return self.forwarding_client.node_get_capabilities(timeout=timeout)

    def setup(self) -> None:
        """Initialize the forwarding plugin and build the CSI services."""
        node_caps = sorted(self.init_proxied_driver())
        for cap in node_caps:
            LOG.info("Enabling node service capability: %s",
                     csi_pb2.NodeServiceCapability.RPC.Type.Name(cap))

        protocol = self.share_protocol.value
        self.identity = IdentityService(
            self.name, self.fq_version, self.forwarding_client, with_topology=self.with_topology
        )
        self.controller = ControllerService(
            protocol,
            self.share_adapter,
            self.client_builder,
            lifecycle_manager=self.lifecycle,
            capabilities_cache=CapabilitiesCache(),
            cluster_id=self.cluster_id,
            with_topology=self.with_topology,
        )
        self.node = NodeService(
            self.node_id,
            protocol,
            self.share_adapter,
            self.client_builder,
            self.forwarding_client,
            node_capabilities=node_caps,
            node_az=self.node_az,
            with_topology=self.with_topology,
        )

    def build_server(self) -> grpc.Server:
        if self.identity is None:
            self.setup()

        server = grpc.server(futures.ThreadPoolExecutor(max_workers=self.opts.max_workers))
        csi_pb2_grpc.add_IdentityServicer_to_server(self.identity, server)
        csi_pb2_grpc.add_ControllerServicer_to_server(self.controller, server)
        csi_pb2_grpc.add_NodeServicer_to_server(self.node, server)

        if self.server_proto == "unix":
            try:
                os.remove(self.server_addr)
            except FileNotFoundError:
                pass

        address = utils.grpc_target(self.server_proto, self.server_addr)
        if server.add_insecure_port(address) == 0:
            raise RuntimeError(f"failed to listen on {address}")
        return server

    def run(self) -> None:
        server = self.build_server()
        server.start()
        LOG.info("Listening for connections on %s", self.opts.endpoint)
        try:
            server.wait_for_termination()
        finally:
            self.forwarding_client.close()
