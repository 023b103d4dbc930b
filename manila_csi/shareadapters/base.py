"""Share adapter interface."""

import abc
from typing import Dict, List, Optional, Sequence

from oslo_log import log as logging

from .. import exceptions
from ..manila.models import AccessRight, ExportLocation, Share

LOG = logging.getLogger(__name__)


class ShareAdapter(abc.ABC):
    """Protocol-specific access and mount parameter handling.

    Adapters grant access to a share on the controller side, and translate a
    share and its access right into the volume context and secrets the node
    plugin mounts it with.
    """

    @abc.abstractmethod
    def get_or_grant_access(self, manila_client, share: Share, options, context=None) -> AccessRight:
        """Return an access right for ``share``, granting one if it doesn't exist yet.

        Args:
            manila_client: Manila client
            share: Share to grant access to
            options: options.ControllerVolumeContext of the request
            context: Optional gRPC servicer context, for cancellable waits

        Raises:
            Internal: Access rights cannot be listed or granted
        """

    @abc.abstractmethod
    def build_volume_context(
        self, locations: Sequence[ExportLocation], share: Share, options
    ) -> Dict[str, str]:
        """Build the volume context for NodeStageVolume and NodePublishVolume.

        Args:
            locations: Export locations of the share
            share: The share
            options: options.NodeVolumeContext of the volume

        Raises:
            ValueError: No usable export location
        """

    def build_stage_secret(self, access_right: Optional[AccessRight]) -> Dict[str, str]:
        return {}

    def build_publish_secret(self, access_right: Optional[AccessRight]) -> Dict[str, str]:
        return {}

    @staticmethod
    def _list_access_rights(manila_client, share: Share) -> List[AccessRight]:
        try:
            return manila_client.get_access_rights(share.id)
        except exceptions.ManilaResourceNotFound:
            return []
        except exceptions.ManilaAPIError as e:
            raise exceptions.Internal(details=f"failed to list access rights of volume {share.name}: {e}")

    def _find_or_grant(
        self, manila_client, share: Share, access_type: str, access_to: str, access_level: str = "rw"
    ) -> AccessRight:
        for right in self._list_access_rights(manila_client, share):
            if (right.access_type == access_type and right.access_to == access_to
                    and right.access_level == access_level):
                LOG.debug("%s access right %s for share %s already exists", access_type, access_to, share.name)
                return right

        try:
            return manila_client.grant_access(share.id, access_type, access_to, access_level)
        except exceptions.ManilaAPIError as e:
            raise exceptions.Internal(details=f"failed to grant access to volume {share.name}: {e}")
