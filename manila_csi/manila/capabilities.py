"""Share type capabilities derived from Manila share type extra specs."""

import enum
from typing import Dict

from oslo_concurrency import lockutils
from oslo_log import log as logging
from oslo_utils import strutils

from ..exceptions import ShareTypeNotFound

LOG = logging.getLogger(__name__)

SNAPSHOT_SUPPORT = "snapshot_support"
CREATE_SHARE_FROM_SNAPSHOT_SUPPORT = "create_share_from_snapshot_support"


class ManilaCapability(enum.Enum):
    SNAPSHOT = SNAPSHOT_SUPPORT
    SHARE_FROM_SNAPSHOT = CREATE_SHARE_FROM_SNAPSHOT_SUPPORT


class CapabilitiesCache:
    """Caches capabilities per share type.

    Share type extra specs are not expected to change while the plugin runs.
    """

    def __init__(self):
        self._caps = {}
        self._lock = lockutils.ReaderWriterLock()

    def get(self, share_type: str, manila_client) -> Dict[ManilaCapability, bool]:
        """Return capabilities of ``share_type`` (a share type ID or name).

        Raises:
            ShareTypeNotFound: No share type with this ID or name
            ManilaAPIError: Extra specs cannot be retrieved
        """
        with self._lock.read_lock():
            caps = self._caps.get(share_type)
        if caps is not None:
            return caps

        with self._lock.write_lock():
            caps = self._caps.get(share_type)
            if caps is None:
                extra_specs = _get_extra_specs(share_type, manila_client)
                caps = {
                    cap: strutils.bool_from_string(extra_specs.get(cap.value))
                    for cap in ManilaCapability
                }
                LOG.debug("Capabilities of share type %s: %s", share_type, caps)
                self._caps[share_type] = caps
            return caps


def _get_extra_specs(share_type: str, manila_client):
    try:
        return manila_client.get_extra_specs(share_type)
    except ShareTypeNotFound:
        # share_type may be a share type name
        share_type_id = manila_client.get_share_type_id_from_name(share_type)
        return manila_client.get_extra_specs(share_type_id)
