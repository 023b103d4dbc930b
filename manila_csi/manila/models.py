"""Manila API resources used by the plugin."""

import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


def _parse_timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
    if not value:
        return None
    try:
        created = datetime.datetime.fromisoformat(value.rstrip("Z"))
    except ValueError:
        return None
    if created.tzinfo is None:
        created = created.replace(tzinfo=datetime.timezone.utc)
    return created


@dataclass
class Share:
    id: str
    name: str = ""
    status: str = ""
    size: int = 0
    share_proto: str = ""
    share_type: str = ""
    share_network_id: Optional[str] = None
    availability_zone: Optional[str] = None
    snapshot_id: Optional[str] = None
    snapshot_support: bool = False
    create_share_from_snapshot_support: bool = False
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Share":
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            status=data.get("status") or "",
            size=int(data.get("size") or 0),
            share_proto=data.get("share_proto") or "",
            share_type=data.get("share_type") or "",
            share_network_id=data.get("share_network_id"),
            availability_zone=data.get("availability_zone"),
            snapshot_id=data.get("snapshot_id"),
            snapshot_support=bool(data.get("snapshot_support")),
            create_share_from_snapshot_support=bool(data.get("create_share_from_snapshot_support")),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class Snapshot:
    id: str
    name: str = ""
    status: str = ""
    share_id: str = ""
    size: int = 0
    created_at: Optional[datetime.datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            status=data.get("status") or "",
            share_id=data.get("share_id") or "",
            size=int(data.get("size") or 0),
            created_at=_parse_timestamp(data.get("created_at")),
        )


@dataclass
class AccessRight:
    id: str
    access_type: str
    access_to: str
    access_level: str
    access_key: Optional[str] = None
    state: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessRight":
        return cls(
            id=data["id"],
            access_type=data.get("access_type") or "",
            access_to=data.get("access_to") or "",
            access_level=data.get("access_level") or "",
            access_key=data.get("access_key"),
            state=data.get("state"),
        )


@dataclass
class ExportLocation:
    path: str
    preferred: bool = False
    is_admin_only: bool = False
    id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExportLocation":
        return cls(
            path=data.get("path") or "",
            preferred=bool(data.get("preferred")),
            is_admin_only=bool(data.get("is_admin_only")),
            id=data.get("id"),
        )


@dataclass
class UserMessage:
    id: str
    detail_id: str = ""
    user_message: str = ""
    resource_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserMessage":
        return cls(
            id=data["id"],
            detail_id=data.get("detail_id") or "",
            user_message=data.get("user_message") or "",
            resource_id=data.get("resource_id"),
        )
