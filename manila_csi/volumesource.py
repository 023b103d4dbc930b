"""Volume content sources for CreateVolume."""

import abc
from typing import Dict, Optional

from oslo_log import log as logging
from oslo_utils import uuidutils

from . import exceptions
from . import lifecycle
from . import utils
from .manila.client import SCHEDULER_HINTS_MICROVERSION
from .manila.models import Share

LOG = logging.getLogger(__name__)


def resolve_share_list_to_ids(manila_client, share_list: str) -> str:
    """Resolve a comma-separated list of share IDs or names to share IDs.

    Raises:
        NotFound: A referenced share doesn't exist
        Internal: Manila API failure
    """
    share_ids = []
    for ref in utils.split_trim(share_list):
        try:
            if uuidutils.is_uuid_like(ref):
                try:
                    share = manila_client.get_share_by_id(ref)
                except exceptions.ShareNotFound:
                    # a share may be named like a UUID
                    share = manila_client.get_share_by_name(ref)
            else:
                share = manila_client.get_share_by_name(ref)
        except exceptions.ShareNotFound:
            raise exceptions.NotFound(resource="referenced share", resource_id=ref)
        except exceptions.ManilaAPIError as e:
            raise exceptions.Internal(details=f"failed to resolve share {ref}: {e}")
        share_ids.append(share.id)
    return ",".join(share_ids)


def build_create_opts(
    manila_client,
    name: str,
    size_gib: int,
    share_opts,
    metadata: Optional[Dict[str, str]] = None,
    snapshot_id: Optional[str] = None,
):
    """Build Manila share create options.

    Returns:
        Tuple of (create options, microversion override or None)
    """
    opts = {
        "availability_zone": share_opts.availability_zone,
        "share_proto": share_opts.protocol,
        "share_type": share_opts.type,
        "share_network_id": share_opts.share_network_id,
        "share_group_id": share_opts.group_id,
        "name": name,
        "description": lifecycle.SHARE_DESCRIPTION,
        "size": size_gib,
        "metadata": metadata or {},
        "snapshot_id": snapshot_id,
    }

    microversion = None
    if share_opts.affinity or share_opts.anti_affinity:
        hints = {}
        if share_opts.affinity:
            hints["same_host"] = resolve_share_list_to_ids(manila_client, share_opts.affinity)
        if share_opts.anti_affinity:
            hints["different_host"] = resolve_share_list_to_ids(manila_client, share_opts.anti_affinity)
        opts["scheduler_hints"] = hints
        microversion = SCHEDULER_HINTS_MICROVERSION

    return opts, microversion


class VolumeCreator(abc.ABC):
    """Creates the share backing a new volume."""

    @abc.abstractmethod
    def create(
        self,
        manila_client,
        lifecycle_manager: lifecycle.LifecycleManager,
        name: str,
        size_gib: int,
        share_opts,
        metadata: Dict[str, str],
        context=None,
    ) -> Share:
        """Get or create the share ``name`` and wait until it's available."""

    @staticmethod
    def _create(manila_client, lifecycle_manager, name, size_gib, share_opts, metadata, snapshot_id, context):
        opts, microversion = build_create_opts(
            manila_client, name, size_gib, share_opts, metadata, snapshot_id
        )
        try:
            return lifecycle_manager.get_or_create_share(
                manila_client, name, opts, microversion=microversion, context=context
            )
        except (exceptions.ResourceInErrorState, exceptions.UnexpectedResourceState) as e:
            if snapshot_id:
                message = f"failed to restore snapshot {snapshot_id} into volume {name}: {e}"
            else:
                message = f"failed to create volume {name}: {e}"
            raise exceptions.ManilaCSIException(message, code=e.code)


class BlankVolume(VolumeCreator):

    def create(self, manila_client, lifecycle_manager, name, size_gib, share_opts, metadata, context=None):
        return self._create(manila_client, lifecycle_manager, name, size_gib, share_opts, metadata, None, context)


class VolumeFromSnapshot(VolumeCreator):
    """Restores a snapshot into a new share."""

    def __init__(self, snapshot_id: str):
        self.snapshot_id = snapshot_id

    def create(self, manila_client, lifecycle_manager, name, size_gib, share_opts, metadata, context=None):
        if not self.snapshot_id:
            raise exceptions.InvalidArgument(details="snapshot ID cannot be empty")

        try:
            snapshot = manila_client.get_snapshot_by_id(self.snapshot_id)
        except exceptions.SnapshotNotFound:
            raise exceptions.NotFound(resource="source snapshot", resource_id=self.snapshot_id)
        except exceptions.ManilaAPIError as e:
            raise exceptions.Internal(details=f"failed to retrieve snapshot {self.snapshot_id}: {e}")

        if snapshot.status != lifecycle.SNAPSHOT_AVAILABLE:
            if snapshot.status == lifecycle.SNAPSHOT_CREATING:
                raise exceptions.Unavailable(
                    resource="snapshot", resource_id=snapshot.id, status=snapshot.status
                )
            raise exceptions.FailedPrecondition(
                details=f"snapshot {snapshot.id} is in invalid state: "
                        f"expected '{lifecycle.SNAPSHOT_AVAILABLE}', got '{snapshot.status}'"
            )

        try:
            source_share = manila_client.get_share_by_id(snapshot.share_id)
        except exceptions.ShareNotFound:
            raise exceptions.NotFound(resource="parent volume of snapshot", resource_id=snapshot.share_id)
        except exceptions.ManilaAPIError as e:
            raise exceptions.Internal(details=f"failed to retrieve parent volume of snapshot {snapshot.id}: {e}")

        if not utils.compare_protocol(source_share.share_proto, share_opts.protocol):
            raise exceptions.InvalidArgument(
                details=f"share protocol mismatch: snapshot {snapshot.id} is of a "
                        f"{source_share.share_proto} share, requested {share_opts.protocol}"
            )

        return self._create(
            manila_client, lifecycle_manager, name, size_gib, share_opts, metadata, snapshot.id, context
        )


def get_volume_creator(request) -> VolumeCreator:
    """Pick the volume creator for a CreateVolumeRequest content source.

    Raises:
        Unimplemented: Volume cloning was requested
        InvalidArgument: Content source is neither a snapshot nor a volume
    """
    if not request.HasField("volume_content_source"):
        return BlankVolume()

    source = request.volume_content_source
    if source.HasField("volume"):
        raise exceptions.Unimplemented("volume cloning is not supported yet")
    if source.HasField("snapshot"):
        return VolumeFromSnapshot(source.snapshot.snapshot_id)
    raise exceptions.InvalidArgument(details="invalid volume content source")
