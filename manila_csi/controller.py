"""CSI Controller service."""

import json
from typing import Dict

from google.protobuf import timestamp_pb2
from oslo_log import log as logging
from oslo_utils import strutils

from . import exceptions
from . import lifecycle
from . import options
from . import utils
from . import validation
from . import volumesource
from .csi import csi_pb2
from .csi import csi_pb2_grpc
from .manila.capabilities import CapabilitiesCache, ManilaCapability
from .pending import PendingSet
from .rpc import Instrumented

LOG = logging.getLogger(__name__)

CLUSTER_METADATA_KEY = "manila.csi.openstack.org/cluster"

CONTROLLER_CAPABILITIES = [
    csi_pb2.ControllerServiceCapability.RPC.CREATE_DELETE_VOLUME,
    csi_pb2.ControllerServiceCapability.RPC.CREATE_DELETE_SNAPSHOT,
    csi_pb2.ControllerServiceCapability.RPC.EXPAND_VOLUME,
]


def prepare_share_metadata(append_share_metadata: str, cluster_id: str) -> Dict[str, str]:
    """Build share metadata from the appendShareMetadata parameter and the cluster ID.

    Raises:
        InvalidArgument: appendShareMetadata is not a JSON object of strings
    """
    metadata = {}
    if append_share_metadata:
        try:
            metadata = json.loads(append_share_metadata)
        except ValueError as e:
            raise exceptions.InvalidArgument(details=f"failed to parse appendShareMetadata field: {e}")
        if not isinstance(metadata, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in metadata.items()
        ):
            raise exceptions.InvalidArgument(
                details="failed to parse appendShareMetadata field: expected a JSON object of strings"
            )

    if cluster_id:
        existing = metadata.get(CLUSTER_METADATA_KEY)
        if existing is not None and existing != cluster_id:
            LOG.warning(
                "skip adding cluster ID %s to share metadata because appended metadata "
                "already defines it as %s", cluster_id, existing
            )
        else:
            metadata[CLUSTER_METADATA_KEY] = cluster_id

    return metadata


def filter_parameters_for_volume_context(params: Dict[str, str], recognized_fields) -> Dict[str, str]:
    return {name: params[name] for name in recognized_fields if name in params}


def verify_volume_compatibility(size_gib: int, request, share, share_opts) -> None:
    """Check that an existing share matches a CreateVolume request.

    Raises:
        AlreadyExists: Share is incompatible, the reason names the mismatching field
    """
    requested_snapshot_id = ""
    if request.HasField("volume_content_source") and request.volume_content_source.HasField("snapshot"):
        requested_snapshot_id = request.volume_content_source.snapshot.snapshot_id

    reason = None
    if share.size != size_gib:
        reason = f"size mismatch: wanted {size_gib}, got {share.size}"
    elif not utils.compare_protocol(share.share_proto, share_opts.protocol):
        reason = (f"share protocol mismatch: wanted {utils.coalesce_value(share_opts.protocol)}, "
                  f"got {utils.coalesce_value(share.share_proto)}")
    elif (share.share_network_id or "") != (share_opts.share_network_id or ""):
        reason = (f"share network ID mismatch: wanted {utils.coalesce_value(share_opts.share_network_id)}, "
                  f"got {utils.coalesce_value(share.share_network_id)}")
    elif (share.snapshot_id or "") != requested_snapshot_id:
        reason = (f"source snapshot ID mismatch: wanted {utils.coalesce_value(requested_snapshot_id)}, "
                  f"got {utils.coalesce_value(share.snapshot_id)}")

    if reason:
        raise exceptions.AlreadyExists(resource="volume", name=request.name, reason=reason)


def verify_snapshot_compatibility(snapshot, request) -> None:
    if snapshot.share_id != request.source_volume_id:
        raise exceptions.AlreadyExists(
            resource="snapshot",
            name=request.name,
            reason=f"source share ID mismatch: wanted {request.source_volume_id}, got {snapshot.share_id}",
        )


class ControllerService(csi_pb2_grpc.ControllerServicer, Instrumented):
    """Provisions Manila shares and snapshots."""

    def __init__(
        self,
        share_protocol: str,
        share_adapter,
        client_builder,
        lifecycle_manager=None,
        capabilities_cache=None,
        cluster_id: str = "",
        with_topology: bool = False,
    ):
        """
        Args:
            share_protocol: Upper-case share protocol the plugin operates on
            share_adapter: shareadapters.ShareAdapter for ``share_protocol``
            client_builder: Builds Manila clients from OpenstackOptions
            lifecycle_manager: lifecycle.LifecycleManager
            capabilities_cache: Share type capabilities cache
            cluster_id: Cluster ID stored in share metadata
            with_topology: Report accessible topology of volumes
        """
        self.share_protocol = share_protocol
        self.share_adapter = share_adapter
        self.client_builder = client_builder
        self.lifecycle = lifecycle_manager or lifecycle.LifecycleManager()
        self.capabilities = capabilities_cache or CapabilitiesCache()
        self.cluster_id = cluster_id
        self.with_topology = with_topology
        self.pending_volumes = PendingSet("volume")
        self.pending_snapshots = PendingSet("snapshot")

    @staticmethod
    def _openstack_options(secrets) -> options.OpenstackOptions:
        try:
            return options.OpenstackOptions.from_secrets(dict(secrets))
        except ValueError as e:
            raise exceptions.InvalidArgument(details=f"invalid OpenStack secrets: {e}")

    def _manila_client(self, os_opts):
        try:
            return self.client_builder.new(os_opts)
        except exceptions.ManilaAPIError as e:
            raise exceptions.Unauthenticated(details=str(e))

    def _get_share(self, manila_client, share_id: str):
        try:
            return manila_client.get_share_by_id(share_id)
        except exceptions.ShareNotFound:
            raise exceptions.NotFound(resource="volume", resource_id=share_id)
        except exceptions.ManilaAPIError as e:
            raise exceptions.Internal(details=f"failed to retrieve volume {share_id}: {e}")

    def _check_share_from_snapshot_support(self, manila_client, share_opts) -> None:
        try:
            caps = self.capabilities.get(share_opts.type, manila_client)
        except exceptions.ManilaAPIError as e:
            raise exceptions.Internal(
                details=f"failed to get Manila capabilities for share type {share_opts.type}: {e}"
            )
        if not caps.get(ManilaCapability.SHARE_FROM_SNAPSHOT):
            raise exceptions.InvalidArgument(
                details=f"share type {share_opts.type} does not advertise "
                        f"{ManilaCapability.SHARE_FROM_SNAPSHOT.value} capability"
            )

    def _accessible_topology(self, request, share, share_opts):
        if not self.with_topology:
            return []
        if strutils.bool_from_string(share_opts.auto_topology) and share.availability_zone:
            return [csi_pb2.Topology(segments={utils.TOPOLOGY_KEY: share.availability_zone})]
        # All preferred topologies are considered valid, nodes from those
        # zones are required to be able to reach the storage
        return list(request.accessibility_requirements.preferred)

    def CreateVolume(self, request, context):
        validation.validate_create_volume_request(request)

        params = dict(request.parameters)
        params["protocol"] = self.share_protocol

        try:
            share_opts = options.ControllerVolumeContext.from_parameters(params)
        except ValueError as e:
            raise exceptions.InvalidArgument(details=f"invalid volume parameters: {e}")

        metadata = prepare_share_metadata(share_opts.append_share_metadata, self.cluster_id)
        os_opts = self._openstack_options(request.secrets)

        with self.pending_volumes.guard(request.name):
            manila_client = self._manila_client(os_opts)

            size_gib = utils.bytes_to_gib(request.capacity_range.required_bytes)

            if strutils.bool_from_string(share_opts.auto_topology):
                zone = utils.availability_zone_from_topology(
                    utils.TOPOLOGY_KEY, request.accessibility_requirements
                )
                if zone:
                    share_opts = share_opts.model_copy(update={"availability_zone": zone})

            creator = volumesource.get_volume_creator(request)
            if isinstance(creator, volumesource.VolumeFromSnapshot):
                self._check_share_from_snapshot_support(manila_client, share_opts)

            share = creator.create(
                manila_client, self.lifecycle, request.name, size_gib, share_opts, metadata, context=context
            )

            verify_volume_compatibility(size_gib, request, share, share_opts)

            access_right = self.share_adapter.get_or_grant_access(manila_client, share, share_opts, context)

            volume_context = filter_parameters_for_volume_context(
                params, options.node_volume_context_fields()
            )
            volume_context["shareID"] = share.id
            volume_context["shareAccessIDs"] = access_right.id

            volume = csi_pb2.Volume(
                volume_id=share.id,
                capacity_bytes=size_gib * utils.BYTES_IN_GIB,
                volume_context=volume_context,
                accessible_topology=self._accessible_topology(request, share, share_opts),
            )
            if request.HasField("volume_content_source"):
                volume.content_source.CopyFrom(request.volume_content_source)

            LOG.info("Volume %s (share ID %s) is ready", request.name, share.id)
            return csi_pb2.CreateVolumeResponse(volume=volume)

    def DeleteVolume(self, request, context):
        validation.validate_delete_volume_request(request)
        manila_client = self._manila_client(self._openstack_options(request.secrets))

        self.lifecycle.delete_share(manila_client, request.volume_id)
        return csi_pb2.DeleteVolumeResponse()

    def CreateSnapshot(self, request, context):
        validation.validate_create_snapshot_request(request)
        if len(request.parameters):
            LOG.info("parameters in CreateSnapshot requests are ignored")

        os_opts = self._openstack_options(request.secrets)

        with self.pending_snapshots.guard(request.name):
            manila_client = self._manila_client(os_opts)

            try:
                source_share = manila_client.get_share_by_id(request.source_volume_id)
            except exceptions.ShareNotFound:
                raise exceptions.NotFound(resource="source volume", resource_id=request.source_volume_id)
            except exceptions.ManilaAPIError as e:
                raise exceptions.Internal(
                    details=f"failed to retrieve source volume {request.source_volume_id} "
                            f"when creating snapshot {request.name}: {e}"
                )

            if not utils.compare_protocol(source_share.share_proto, self.share_protocol):
                raise exceptions.InvalidArgument(
                    details=f"share protocol mismatch: requested snapshot of {source_share.share_proto} "
                            f"volume {request.source_volume_id}, but share protocol selector is set "
                            f"to {self.share_protocol}"
                )

            # The parent share must support both snapshots and restoring them
            if not source_share.snapshot_support or not source_share.create_share_from_snapshot_support:
                raise exceptions.InvalidArgument(
                    details=f"cannot create snapshot {request.name} for volume {request.source_volume_id}: "
                            "parent share must advertise snapshot_support and "
                            "create_share_from_snapshot_support capabilities"
                )

            snapshot = self.lifecycle.get_or_create_snapshot(
                manila_client, request.name, source_share.id, context=context
            )

            verify_snapshot_compatibility(snapshot, request)

            result = csi_pb2.Snapshot(
                snapshot_id=snapshot.id,
                source_volume_id=request.source_volume_id,
                size_bytes=source_share.size * utils.BYTES_IN_GIB,
                # get_or_create_snapshot returns available snapshots only
                ready_to_use=True,
            )
            if snapshot.created_at is not None:
                creation_time = timestamp_pb2.Timestamp()
                creation_time.FromDatetime(snapshot.created_at)
                result.creation_time.CopyFrom(creation_time)
            else:
                LOG.warning("snapshot %s has no creation timestamp", snapshot.id)

            return csi_pb2.CreateSnapshotResponse(snapshot=result)

    def DeleteSnapshot(self, request, context):
        validation.validate_delete_snapshot_request(request)
        manila_client = self._manila_client(self._openstack_options(request.secrets))

        self.lifecycle.delete_snapshot(manila_client, request.snapshot_id)
        return csi_pb2.DeleteSnapshotResponse()

    def ControllerGetCapabilities(self, request, context):
        return csi_pb2.ControllerGetCapabilitiesResponse(
            capabilities=[
                csi_pb2.ControllerServiceCapability(
                    rpc=csi_pb2.ControllerServiceCapability.RPC(type=cap)
                )
                for cap in CONTROLLER_CAPABILITIES
            ]
        )

    def ValidateVolumeCapabilities(self, request, context):
        validation.validate_validate_volume_capabilities_request(request)
        os_opts = self._openstack_options(request.secrets)

        for capability in request.volume_capabilities:
            if capability.HasField("block"):
                return csi_pb2.ValidateVolumeCapabilitiesResponse(message="block access type is not allowed")
            if not capability.HasField("mount"):
                return csi_pb2.ValidateVolumeCapabilitiesResponse(
                    message="volume must be accessible via filesystem API"
                )
            if capability.access_mode.mode == csi_pb2.VolumeCapability.AccessMode.UNKNOWN:
                return csi_pb2.ValidateVolumeCapabilitiesResponse(message="unknown volume access mode")

        manila_client = self._manila_client(os_opts)
        share = self._get_share(manila_client, request.volume_id)

        if share.status != lifecycle.SHARE_AVAILABLE:
            if share.status == lifecycle.SHARE_CREATING:
                raise exceptions.Unavailable(resource="volume", resource_id=request.volume_id, status=share.status)
            raise exceptions.FailedPrecondition(
                details=f"volume {request.volume_id} is in an unexpected state: "
                        f"wanted {lifecycle.SHARE_AVAILABLE}, got {share.status}"
            )

        if not utils.compare_protocol(share.share_proto, self.share_protocol):
            raise exceptions.InvalidArgument(
                details=f"share protocol mismatch: wanted {self.share_protocol}, got {share.share_proto}"
            )

        return csi_pb2.ValidateVolumeCapabilitiesResponse(
            confirmed=csi_pb2.ValidateVolumeCapabilitiesResponse.Confirmed(
                volume_context=dict(request.volume_context),
                volume_capabilities=list(request.volume_capabilities),
                parameters=dict(request.parameters),
            )
        )

    def ControllerExpandVolume(self, request, context):
        validation.validate_controller_expand_volume_request(request)
        manila_client = self._manila_client(self._openstack_options(request.secrets))

        share = self._get_share(manila_client, request.volume_id)

        # Guards against racing with CreateVolume or another expansion
        with self.pending_volumes.guard(share.name):
            required_bytes = request.capacity_range.required_bytes
            current_size_bytes = share.size * utils.BYTES_IN_GIB

            if current_size_bytes >= required_bytes:
                LOG.info("Volume %s is already %d GiB, no expansion needed", share.name, share.size)
                return csi_pb2.ControllerExpandVolumeResponse(capacity_bytes=current_size_bytes)

            desired_size_gib = utils.bytes_to_gib(required_bytes)
            self.lifecycle.extend_share(manila_client, share, desired_size_gib, context=context)

            return csi_pb2.ControllerExpandVolumeResponse(capacity_bytes=desired_size_gib * utils.BYTES_IN_GIB)

    def ControllerPublishVolume(self, request, context):
        raise exceptions.Unimplemented(method="ControllerPublishVolume")

    def ControllerUnpublishVolume(self, request, context):
        raise exceptions.Unimplemented(method="ControllerUnpublishVolume")

    def ListVolumes(self, request, context):
        raise exceptions.Unimplemented(method="ListVolumes")

    def GetCapacity(self, request, context):
        raise exceptions.Unimplemented(method="GetCapacity")

    def ListSnapshots(self, request, context):
        raise exceptions.Unimplemented(method="ListSnapshots")
