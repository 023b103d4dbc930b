"""CSI Node service.

Node RPCs are forwarded to the node plugin of the share protocol (e.g.
csi-driver-nfs or ceph-csi). Before forwarding, the volume context and
secrets are replaced with mount parameters built from the Manila share.
"""

import dataclasses
from typing import Dict, Optional, Tuple

from oslo_concurrency import lockutils
from oslo_log import log as logging

from . import exceptions
from . import lifecycle
from . import options
from . import utils
from . import validation
from .csi import csi_pb2
from .csi import csi_pb2_grpc
from .manila.models import AccessRight
from .rpc import Instrumented

LOG = logging.getLogger(__name__)


@dataclasses.dataclass
class StageCacheEntry:
    volume_context: Dict[str, str]
    stage_secret: Dict[str, str]
    publish_secret: Dict[str, str]


class StageCache:
    """Staging data built by NodeStageVolume, reused by NodePublishVolume.

    Entries are keyed by volume ID and live until NodeUnstageVolume. Entries
    are built under a lock of their own volume ID; the cache-wide lock is only
    held to read or insert.
    """

    def __init__(self):
        self._entries = {}
        self._lock = lockutils.ReaderWriterLock()
        self._build_locks = lockutils.Semaphores()

    def get(self, volume_id: str) -> Optional[StageCacheEntry]:
        with self._lock.read_lock():
            return self._entries.get(volume_id)

    def get_or_build(self, volume_id: str, build) -> StageCacheEntry:
        """Return the entry for ``volume_id``, building it with ``build()`` if missing.

        Concurrent calls for a missing entry run ``build`` only once. Nothing
        is cached if ``build`` raises.
        """
        entry = self.get(volume_id)
        if entry is not None:
            return entry

        with lockutils.lock(volume_id, semaphores=self._build_locks):
            entry = self.get(volume_id)
            if entry is None:
                entry = build()
                with self._lock.write_lock():
                    self._entries[volume_id] = entry
            return entry

    def delete(self, volume_id: str) -> None:
        with self._lock.write_lock():
            self._entries.pop(volume_id, None)

    def __contains__(self, volume_id: str) -> bool:
        with self._lock.read_lock():
            return volume_id in self._entries

    def __len__(self) -> int:
        with self._lock.read_lock():
            return len(self._entries)


class NodeService(csi_pb2_grpc.NodeServicer, Instrumented):
    """Resolves Manila shares into mount parameters and forwards node RPCs."""

    def __init__(
        self,
        node_id: str,
        share_protocol: str,
        share_adapter,
        client_builder,
        forwarding_client,
        node_capabilities=(),
        node_az: str = "",
        with_topology: bool = False,
    ):
        """
        Args:
            node_id: ID of this node
            share_protocol: Upper-case share protocol the plugin operates on
            share_adapter: shareadapters.ShareAdapter for ``share_protocol``
            client_builder: Builds Manila clients from OpenstackOptions
            forwarding_client: csiclient.ForwardingClient of the node plugin
            node_capabilities: Node service RPC types of the forwarding plugin
            node_az: Availability zone of this node
            with_topology: Report the node's topology segment
        """
        self.node_id = node_id
        self.share_protocol = share_protocol
        self.share_adapter = share_adapter
        self.client_builder = client_builder
        self.forwarding_client = forwarding_client
        self.node_capabilities = list(node_capabilities)
        self.node_az = node_az
        self.with_topology = with_topology
        self.supports_node_stage = (
            csi_pb2.NodeServiceCapability.RPC.STAGE_UNSTAGE_VOLUME in self.node_capabilities
        )
        self.stage_cache = StageCache()

    @staticmethod
    def _parse_options(request) -> Tuple[options.NodeVolumeContext, options.OpenstackOptions]:
        try:
            share_opts = options.NodeVolumeContext.from_volume_context(dict(request.volume_context))
        except ValueError as e:
            raise exceptions.InvalidArgument(details=f"invalid volume parameters: {e}")
        try:
            os_opts = options.OpenstackOptions.from_secrets(dict(request.secrets))
        except ValueError as e:
            raise exceptions.InvalidArgument(details=f"invalid volume secret: {e}")
        return share_opts, os_opts

    def build_volume_context(
        self, volume_id: str, share_opts: options.NodeVolumeContext, os_opts: options.OpenstackOptions
    ) -> Tuple[Dict[str, str], AccessRight]:
        """Build the volume context of ``volume_id`` and find its access right.

        Raises:
            Unauthenticated: Manila client cannot be created
            InvalidArgument: Share is unusable, or the access right is missing
                or not named in the volume context
            Internal: Manila API failure
        """
        try:
            manila_client = self.client_builder.new(os_opts)
        except exceptions.ManilaAPIError as e:
            raise exceptions.Unauthenticated(details=str(e))

        try:
            if share_opts.share_id:
                share = manila_client.get_share_by_id(share_opts.share_id)
            else:
                share = manila_client.get_share_by_name(share_opts.share_name)
        except exceptions.ManilaAPIError as e:
            ref = (f"share ID {share_opts.share_id}" if share_opts.share_id
                   else f"share name {share_opts.share_name}")
            raise exceptions.InvalidArgument(details=f"failed to retrieve volume {volume_id} ({ref}): {e}")

        if not utils.compare_protocol(share.share_proto, self.share_protocol):
            raise exceptions.InvalidArgument(
                details=f"wrong share protocol {share.share_proto} for volume {volume_id} "
                        f"(share ID {share.id}), the plugin is set to operate in {self.share_protocol}"
            )

        if share.status != lifecycle.SHARE_AVAILABLE:
            raise exceptions.InvalidArgument(
                details=f"invalid share status for volume {volume_id} (share ID {share.id}): "
                        f"expected '{lifecycle.SHARE_AVAILABLE}', got '{share.status}'"
            )

        try:
            locations = manila_client.get_export_locations(share.id)
        except exceptions.ManilaAPIError as e:
            raise exceptions.Internal(
                details=f"failed to retrieve export locations for volume {volume_id} (share ID {share.id}): {e}"
            )

        access_ids = share_opts.access_ids()
        if not access_ids:
            raise exceptions.InvalidArgument(
                details=f"no access right IDs in volume context of volume {volume_id} (share ID {share.id})"
            )

        try:
            rights = manila_client.get_access_rights(share.id)
        except exceptions.ManilaAPIError as e:
            raise exceptions.Internal(
                details=f"failed to list access rights for volume {volume_id} (share ID {share.id}): {e}"
            )
        access_right = next((r for r in rights if r.id in access_ids), None)
        if access_right is None:
            raise exceptions.InvalidArgument(
                details=f"cannot find access right {','.join(access_ids)} for volume "
                        f"{volume_id} (share ID {share.id})"
            )

        try:
            volume_context = self.share_adapter.build_volume_context(locations, share, share_opts)
        except ValueError as e:
            raise exceptions.InvalidArgument(details=f"failed to build volume context for volume {volume_id}: {e}")

        return volume_context, access_right

    def _build_stage_entry(self, volume_id, share_opts, os_opts) -> StageCacheEntry:
        volume_context, access_right = self.build_volume_context(volume_id, share_opts, os_opts)
        return StageCacheEntry(
            volume_context=volume_context,
            stage_secret=self.share_adapter.build_stage_secret(access_right),
            publish_secret=self.share_adapter.build_publish_secret(access_right),
        )

    @staticmethod
    def _forwarded(request, volume_context, secrets):
        forwarded = type(request)()
        forwarded.CopyFrom(request)
        forwarded.volume_context.clear()
        forwarded.volume_context.update(volume_context)
        forwarded.secrets.clear()
        forwarded.secrets.update(secrets or {})
        return forwarded

    def NodeStageVolume(self, request, context):
        validation.validate_node_stage_volume_request(request)
        share_opts, os_opts = self._parse_options(request)
        volume_id = request.volume_id

        entry = self.stage_cache.get_or_build(
            volume_id, lambda: self._build_stage_entry(volume_id, share_opts, os_opts)
        )

        return self.forwarding_client.node_stage_volume(
            self._forwarded(request, entry.volume_context, entry.stage_secret),
            timeout=context.time_remaining(),
        )

    def NodeUnstageVolume(self, request, context):
        validation.validate_node_unstage_volume_request(request)

        self.stage_cache.delete(request.volume_id)

        return self.forwarding_client.node_unstage_volume(request, timeout=context.time_remaining())

    def NodePublishVolume(self, request, context):
        validation.validate_node_publish_volume_request(request)
        share_opts, os_opts = self._parse_options(request)
        volume_id = request.volume_id

        entry = None
        if self.supports_node_stage:
            # NodeStageVolume should've already built the staging data
            entry = self.stage_cache.get(volume_id)
            if entry is None:
                LOG.warning(
                    "STAGE_UNSTAGE_VOLUME capability is enabled, but node stage cache doesn't "
                    "contain an entry for %s - this is most likely a bug! Rebuilding staging data anyway...",
                    volume_id,
                )

        if entry is None:
            entry = self._build_stage_entry(volume_id, share_opts, os_opts)

        return self.forwarding_client.node_publish_volume(
            self._forwarded(request, entry.volume_context, entry.publish_secret),
            timeout=context.time_remaining(),
        )

    def NodeUnpublishVolume(self, request, context):
        validation.validate_node_unpublish_volume_request(request)

        return self.forwarding_client.node_unpublish_volume(request, timeout=context.time_remaining())

    def NodeGetInfo(self, request, context):
        response = csi_pb2.NodeGetInfoResponse(node_id=self.node_id)
        if self.with_topology:
            response.accessible_topology.segments[utils.TOPOLOGY_KEY] = self.node_az
        return response

    def NodeGetCapabilities(self, request, context):
        return csi_pb2.NodeGetCapabilitiesResponse(
            capabilities=[
                csi_pb2.NodeServiceCapability(rpc=csi_pb2.NodeServiceCapability.RPC(type=cap))
                for cap in self.node_capabilities
            ]
        )

    def NodeGetVolumeStats(self, request, context):
        raise exceptions.Unimplemented(method="NodeGetVolumeStats")

    def NodeExpandVolume(self, request, context):
        raise exceptions.Unimplemented(method="NodeExpandVolume")
