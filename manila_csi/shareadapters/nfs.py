"""NFS share adapter."""

import ipaddress
from typing import Dict, Optional, Sequence

from oslo_log import log as logging

from .. import exportlocation
from .. import utils
from ..manila.models import ExportLocation
from .base import ShareAdapter

LOG = logging.getLogger(__name__)

ACCESS_TYPE = "ip"


def _parse_network(match_address: str):
    # A bare address means an exact match
    try:
        address = ipaddress.ip_address(match_address)
        return ipaddress.ip_network(f"{address}/{address.max_prefixlen}")
    except ValueError:
        pass
    try:
        return ipaddress.ip_network(match_address, strict=False)
    except ValueError:
        raise ValueError(
            f"matchExportLocationAddress filter '{match_address}' is not a CIDR-formatted IP address"
        )


def match_export_location_address(locations: Sequence[ExportLocation], match_address: str) -> int:
    """Choose an export location whose address lies within ``match_address``.

    Raises:
        ValueError: Filter is not a valid address, an export location address
            is not an IP, or nothing matches
    """
    network = _parse_network(match_address)

    def predicate(location: ExportLocation) -> bool:
        addr, _ = utils.split_export_location_path(location.path)
        try:
            host_ip = ipaddress.ip_address(addr)
        except ValueError:
            raise ValueError(f"IP '{addr}' in export location path {location.path} is invalid")
        return host_ip.version == network.version and host_ip in network

    try:
        return exportlocation.find_export_location(locations, predicate)
    except ValueError as e:
        raise ValueError(f"matchExportLocationAddress filter '{match_address}': {e}")


class NFSShareAdapter(ShareAdapter):
    """Grants IP access and exposes ``server`` and ``share`` to the node plugin."""

    def __init__(self, runtime_config_loader=None):
        self.runtime_config_loader = runtime_config_loader

    def get_or_grant_access(self, manila_client, share, options, context=None):
        return self._find_or_grant(manila_client, share, ACCESS_TYPE, options.nfs_share_client)

    def choose_export_location(self, locations: Sequence[ExportLocation]) -> int:
        """Choose an export location, honoring runtime config filters.

        Falls back to any suitable location if the runtime config defines no
        export location filter.
        """
        match_address = self._match_address()
        if match_address:
            return match_export_location_address(locations, match_address)
        return exportlocation.find_export_location(locations, exportlocation.any_export_location)

    def _match_address(self) -> Optional[str]:
        if self.runtime_config_loader is None:
            return None
        try:
            conf = self.runtime_config_loader.get()
        except (OSError, ValueError) as e:
            raise ValueError(
                f"failed to read runtime config file {self.runtime_config_loader.filename}: {e}"
            )
        if conf is None or conf.nfs is None:
            return None
        return conf.nfs.match_export_location_address or None

    def build_volume_context(self, locations, share, options) -> Dict[str, str]:
        try:
            index = self.choose_export_location(locations)
        except ValueError as e:
            raise ValueError(f"failed to choose an export location: {e}")

        server, share_path = utils.split_export_location_path(locations[index].path)
        return {
            "server": server,
            "share": share_path,
        }
