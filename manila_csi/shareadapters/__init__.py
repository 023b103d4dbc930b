"""Share adapters, one per supported share protocol."""

import enum

from .base import ShareAdapter
from .cephfs import CephFSShareAdapter
from .nfs import NFSShareAdapter


class ShareProtocol(enum.Enum):
    NFS = "NFS"
    CEPHFS = "CEPHFS"

    @classmethod
    def from_string(cls, protocol: str) -> "ShareProtocol":
        """Raises ValueError for an unsupported protocol."""
        try:
            return cls((protocol or "").upper())
        except ValueError:
            raise ValueError(
                f"share protocol {protocol!r} not supported, "
                f"available protocols are {[p.value for p in cls]}"
            )


def get_share_adapter(protocol, runtime_config_loader=None, access_key_backoff=None) -> ShareAdapter:
    """Build the share adapter for ``protocol``.

    Args:
        protocol: ShareProtocol or its name
        runtime_config_loader: runtimeconfig.RuntimeConfigLoader, used by NFS
        access_key_backoff: Backoff for cephx access key polling

    Raises:
        ValueError: Unsupported protocol
    """
    if not isinstance(protocol, ShareProtocol):
        protocol = ShareProtocol.from_string(protocol)

    if protocol is ShareProtocol.NFS:
        return NFSShareAdapter(runtime_config_loader=runtime_config_loader)
    if access_key_backoff is not None:
        return CephFSShareAdapter(access_key_backoff=access_key_backoff)
    return CephFSShareAdapter()


__all__ = [
    "CephFSShareAdapter",
    "NFSShareAdapter",
    "ShareAdapter",
    "ShareProtocol",
    "get_share_adapter",
]
