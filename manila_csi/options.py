"""Parsing and validation of CSI parameters, volume contexts and secrets.

Each option class is a pydantic model of string fields aliased to the keys of
the input map. Empty values are rejected. Rules spanning several keys are
checked by ``model_validator`` hooks.

StorageClass parameters must all be known. Volume contexts and secrets may
carry keys set by the CO or the user for other consumers; those are ignored.

The ``from_*`` constructors raise ``ValueError`` (pydantic's
``ValidationError`` is one) on invalid input.
"""

from typing import Any, Dict, List, Optional, Tuple

from oslo_log import log as logging
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

LOG = logging.getLogger(__name__)


def _validate(cls, data: Optional[Dict[str, str]]):
    try:
        return cls.model_validate(dict(data or {}))
    except ValidationError as e:
        errors = []
        for err in e.errors():
            loc = ".".join(str(part) for part in err["loc"])
            errors.append(f"{loc}: {err['msg']}" if loc else err["msg"])
        raise ValueError("; ".join(errors)) from e


def _requires(present: Dict[str, str], owner: str, *groups: str) -> None:
    """Check the keys ``owner`` depends on.

    Each group is a key, or ``a|b`` when exactly one of the alternatives must
    be set.
    """
    for group in groups:
        alternatives = group.split("|")
        found = [alt for alt in alternatives if present.get(alt)]
        if len(alternatives) == 1 and not found:
            raise ValueError(f"parameter '{owner}' requires '{alternatives[0]}'")
        if len(alternatives) > 1 and len(found) != 1:
            raise ValueError(f"parameter '{owner}' requires exactly one of {alternatives}, got {found}")


def _exactly_one(present: Dict[str, str], first: str, second: str) -> None:
    if present.get(first) and present.get(second):
        raise ValueError(f"parameter '{first}' cannot be used together with '{second}'")
    if not present.get(first) and not present.get(second):
        raise ValueError(f"missing required parameter '{first}' or '{second}'")


class _Options(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, str_min_length=1)

    def _present(self) -> Dict[str, str]:
        return {k: v for k, v in self.model_dump(by_alias=True).items() if v}


class ControllerVolumeContext(_Options):
    """CreateVolume parameters (StorageClass parameters)."""

    model_config = ConfigDict(extra="forbid")

    protocol: str = Field(alias="protocol", pattern=r"(?i)^(CEPHFS|NFS)$")
    type: str = Field(default="default", alias="type")
    share_network_id: str = Field(default="", alias="shareNetworkID")
    auto_topology: str = Field(default="false", alias="autoTopology", pattern=r"(?i)^(true|false)$")
    availability_zone: str = Field(default="", alias="availability")
    append_share_metadata: str = Field(default="", alias="appendShareMetadata")
    affinity: str = Field(default="", alias="affinity")
    anti_affinity: str = Field(default="", alias="antiAffinity")
    group_id: str = Field(default="", alias="groupID")

    # Share adapter options
    cephfs_mounter: str = Field(default="fuse", alias="cephfs-mounter", pattern=r"^(kernel|fuse)$")
    cephfs_client_id: str = Field(default="", alias="cephfs-clientID")
    cephfs_kernel_mount_options: str = Field(default="", alias="cephfs-kernelMountOptions")
    cephfs_fuse_mount_options: str = Field(default="", alias="cephfs-fuseMountOptions")
    nfs_share_client: str = Field(default="0.0.0.0/0", alias="nfs-shareClient")

    @classmethod
    def from_parameters(cls, data: Optional[Dict[str, str]]) -> "ControllerVolumeContext":
        return _validate(cls, data)


class NodeVolumeContext(_Options):
    """Volume context received by NodeStageVolume and NodePublishVolume."""

    share_id: str = Field(default="", alias="shareID")
    share_name: str = Field(default="", alias="shareName")
    # shareAccessID is the single-ID form kept for volumes created by older releases
    share_access_id: str = Field(default="", alias="shareAccessID")
    share_access_ids: str = Field(default="", alias="shareAccessIDs")

    # Share adapter options
    cephfs_mounter: str = Field(default="fuse", alias="cephfs-mounter", pattern=r"^(kernel|fuse)$")
    cephfs_kernel_mount_options: str = Field(default="", alias="cephfs-kernelMountOptions")
    cephfs_fuse_mount_options: str = Field(default="", alias="cephfs-fuseMountOptions")

    @model_validator(mode="after")
    def check_references(self) -> "NodeVolumeContext":
        present = self._present()
        _exactly_one(present, "shareID", "shareName")
        _exactly_one(present, "shareAccessIDs", "shareAccessID")
        return self

    @classmethod
    def from_volume_context(cls, data: Optional[Dict[str, str]]) -> "NodeVolumeContext":
        return _validate(cls, data)

    def access_ids(self) -> List[str]:
        if self.share_access_ids:
            return [i.strip() for i in self.share_access_ids.split(",") if i.strip()]
        if self.share_access_id:
            return [self.share_access_id]
        return []


def node_volume_context_fields() -> List[str]:
    """Keys of the node volume context, used to filter CreateVolume parameters."""
    return [f.alias for f in NodeVolumeContext.model_fields.values()]


class OpenstackOptions(_Options):
    """OpenStack credentials passed in CSI secrets."""

    auth_url: str = Field(alias="os-authURL")
    region_name: str = Field(alias="os-region")
    cert_authority_path: str = Field(default="", alias="os-certAuthorityPath")
    tls_insecure: str = Field(default="", alias="os-TLSInsecure", pattern=r"^(true|false)$")

    # User authentication
    password: str = Field(default="", alias="os-password")
    user_id: str = Field(default="", alias="os-userID")
    username: str = Field(default="", alias="os-userName")
    domain_id: str = Field(default="", alias="os-domainID")
    domain_name: str = Field(default="", alias="os-domainName")
    project_id: str = Field(default="", alias="os-projectID")
    project_name: str = Field(default="", alias="os-projectName")

    # Trustee authentication
    trust_id: str = Field(default="", alias="os-trustID")
    trustee_id: str = Field(default="", alias="os-trusteeID")
    trustee_password: str = Field(default="", alias="os-trusteePassword")

    # Application credential authentication
    application_credential_id: str = Field(default="", alias="os-applicationCredentialID")
    application_credential_name: str = Field(default="", alias="os-applicationCredentialName")
    application_credential_secret: str = Field(default="", alias="os-applicationCredentialSecret")

    @model_validator(mode="after")
    def check_credentials(self) -> "OpenstackOptions":
        present = self._present()
        _requires(present, "os-authURL", "os-password|os-trustID|os-applicationCredentialSecret")
        if self.password:
            _requires(
                present, "os-password",
                "os-domainID|os-domainName", "os-projectID|os-projectName", "os-userID|os-userName",
            )
        if self.trust_id:
            _requires(present, "os-trustID", "os-trusteeID", "os-trusteePassword")
        if self.trustee_id:
            _requires(present, "os-trusteeID", "os-trustID")
        if self.trustee_password:
            _requires(present, "os-trusteePassword", "os-trustID")
        if self.application_credential_id:
            _requires(present, "os-applicationCredentialID", "os-applicationCredentialSecret")
        if self.application_credential_name:
            _requires(
                present, "os-applicationCredentialName",
                "os-applicationCredentialSecret", "os-userID|os-userName",
            )
        if self.application_credential_secret:
            _requires(
                present, "os-applicationCredentialSecret",
                "os-applicationCredentialID|os-applicationCredentialName",
            )
        return self

    @classmethod
    def from_secrets(cls, data: Optional[Dict[str, str]]) -> "OpenstackOptions":
        return _validate(cls, data)

    def verify(self):
        """Value for the ``verify`` argument of a keystoneauth1 session."""
        if self.tls_insecure == "true":
            return False
        if self.cert_authority_path:
            return self.cert_authority_path
        return True

    def to_auth_options(self) -> Tuple[str, Dict[str, Any]]:
        """Build keystoneauth1 plugin name and loader options.

        Returns:
            Tuple of (auth plugin name, load_from_options kwargs)
        """
        if self.application_credential_secret:
            return "v3applicationcredential", {
                "auth_url": self.auth_url,
                "application_credential_id": self.application_credential_id or None,
                "application_credential_name": self.application_credential_name or None,
                "application_credential_secret": self.application_credential_secret,
                "user_id": self.user_id or None,
                "username": self.username or None,
                "user_domain_id": self.domain_id or None,
                "user_domain_name": self.domain_name or None,
            }

        if self.trust_id:
            return "v3password", {
                "auth_url": self.auth_url,
                "user_id": self.trustee_id,
                "password": self.trustee_password,
                "trust_id": self.trust_id,
            }

        return "v3password", {
            "auth_url": self.auth_url,
            "user_id": self.user_id or None,
            "username": self.username or None,
            "password": self.password,
            "user_domain_id": self.domain_id or None,
            "user_domain_name": self.domain_name or None,
            "project_id": self.project_id or None,
            "project_name": self.project_name or None,
            "project_domain_id": self.domain_id or None,
            "project_domain_name": self.domain_name or None,
        }
