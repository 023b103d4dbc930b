"""CSI Identity service."""

import grpc
from oslo_log import log as logging

from . import exceptions
from .csi import csi_pb2
from .csi import csi_pb2_grpc
from .rpc import Instrumented

LOG = logging.getLogger(__name__)


class IdentityService(csi_pb2_grpc.IdentityServicer, Instrumented):

    def __init__(self, driver_name: str, vendor_version: str, forwarding_client, with_topology: bool = False):
        self.driver_name = driver_name
        self.vendor_version = vendor_version
        self.forwarding_client = forwarding_client
        self.with_topology = with_topology

    def GetPluginInfo(self, request, context):
        if not self.driver_name:
            raise exceptions.ManilaCSIException("Driver name not configured", code=grpc.StatusCode.UNAVAILABLE)

        return csi_pb2.GetPluginInfoResponse(
            name=self.driver_name,
            vendor_version=self.vendor_version,
        )

    def GetPluginCapabilities(self, request, context):
        capabilities = [
            csi_pb2.PluginCapability(
                service=csi_pb2.PluginCapability.Service(
                    type=csi_pb2.PluginCapability.Service.CONTROLLER_SERVICE
                )
            ),
            csi_pb2.PluginCapability(
                volume_expansion=csi_pb2.PluginCapability.VolumeExpansion(
                    type=csi_pb2.PluginCapability.VolumeExpansion.ONLINE
                )
            ),
        ]
        if self.with_topology:
            capabilities.append(
                csi_pb2.PluginCapability(
                    service=csi_pb2.PluginCapability.Service(
                        type=csi_pb2.PluginCapability.Service.VOLUME_ACCESSIBILITY_CONSTRAINTS
                    )
                )
            )
        return csi_pb2.GetPluginCapabilitiesResponse(capabilities=capabilities)

    def Probe(self, request, context):
        """Readiness of this plugin is readiness of the forwarding plugin."""
        try:
            return self.forwarding_client.probe(timeout=context.time_remaining())
        except grpc.RpcError as e:
            raise exceptions.FailedPrecondition(
                details=f"connecting to fwd plugin at {self.forwarding_client.endpoint} failed: {e}"
            )
