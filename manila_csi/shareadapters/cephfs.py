"""CephFS share adapter."""

from typing import Dict, Optional

from oslo_log import log as logging

from .. import exceptions
from .. import exportlocation
from .. import utils
from ..manila.models import AccessRight, Share
from .base import ShareAdapter

LOG = logging.getLogger(__name__)

ACCESS_TYPE = "cephx"
MOUNT_OPTIONS_METADATA_KEY = "__mount_options"


def extract_fs_name(share: Optional[Share]) -> str:
    """Extract the CephFS filesystem name from share metadata.

    ``__mount_options`` holds comma-separated options, e.g. ``fs=myfs,other=x``.
    """
    if share is None or not share.metadata:
        return ""

    mount_options = share.metadata.get(MOUNT_OPTIONS_METADATA_KEY)
    if mount_options is None:
        LOG.debug("No %s metadata found in share %s", MOUNT_OPTIONS_METADATA_KEY, share.id)
        return ""

    for option in utils.split_trim(mount_options):
        if option.startswith("fs="):
            return option[len("fs="):]

    LOG.debug("No fs found in %s metadata for share %s: %s",
              MOUNT_OPTIONS_METADATA_KEY, share.id, mount_options)
    return ""


class CephFSShareAdapter(ShareAdapter):
    """Grants cephx access and exposes ceph-csi static volume parameters."""

    def __init__(self, access_key_backoff: utils.Backoff = utils.Backoff(duration=5, factor=1.2, steps=10)):
        self.access_key_backoff = access_key_backoff

    def get_or_grant_access(self, manila_client, share, options, context=None) -> AccessRight:
        client_ids = utils.split_trim(options.cephfs_client_id) if options.cephfs_client_id else []
        access_to = client_ids[0] if client_ids else share.name

        access_right = self._find_or_grant(manila_client, share, ACCESS_TYPE, access_to)
        if access_right.access_key:
            return access_right

        # Manila assigns the cephx key asynchronously
        found = {}

        def key_assigned():
            try:
                rights = manila_client.get_access_rights(share.id)
            except exceptions.ManilaAPIError as e:
                raise exceptions.Internal(details=f"failed to list access rights of volume {share.name}: {e}")
            for right in rights:
                if right.access_to == access_to and right.access_key:
                    found["right"] = right
                    return True
            LOG.debug("Access key for %s is not set yet, retrying...", access_to)
            return False

        try:
            utils.wait_for(
                key_assigned,
                self.access_key_backoff,
                context=context,
                description=f"access key for {access_to} on volume {share.name}",
            )
        except exceptions.BackoffExhausted:
            raise exceptions.DeadlineExceeded(
                resource="access key of volume", name=share.name, status="assigned"
            )
        return found["right"]

    def build_volume_context(self, locations, share, options) -> Dict[str, str]:
        try:
            index = exportlocation.find_export_location(locations, exportlocation.any_export_location)
        except ValueError as e:
            raise ValueError(f"failed to choose an export location: {e}")

        monitors, root_path = utils.split_export_location_path(locations[index].path)

        volume_context = {
            "monitors": monitors,
            "rootPath": root_path,
            "mounter": options.cephfs_mounter,
            "provisionVolume": "false",
        }
        if options.cephfs_kernel_mount_options:
            volume_context["kernelMountOptions"] = options.cephfs_kernel_mount_options
        if options.cephfs_fuse_mount_options:
            volume_context["fuseMountOptions"] = options.cephfs_fuse_mount_options

        fs_name = extract_fs_name(share)
        if fs_name:
            LOG.debug("Found fs_name in share metadata: %s", fs_name)
            volume_context["fsName"] = fs_name

        return volume_context

    def build_stage_secret(self, access_right):
        return {
            "userID": access_right.access_to,
            "userKey": access_right.access_key or "",
        }
