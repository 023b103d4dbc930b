"""Manila v2 API client used by the CSI plugin."""

import threading
from typing import Any, Dict, List, Optional

import requests
from keystoneauth1 import exceptions as ks_exceptions
from keystoneauth1 import loading as ks_loading
from keystoneauth1 import session as ks_session
from oslo_log import log as logging
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .. import __version__
from ..exceptions import (
    ManilaAPIConnectionError,
    ManilaAPIError,
    ManilaAPITimeout,
    ManilaAuthenticationError,
    ManilaResourceNotFound,
    ShareNotFound,
    ShareTypeNotFound,
    SnapshotNotFound,
)
from .models import AccessRight, ExportLocation, Share, Snapshot, UserMessage

LOG = logging.getLogger(__name__)

MINIMUM_MICROVERSION = "2.37"
SCHEDULER_HINTS_MICROVERSION = "2.65"
SERVICE_TYPE = "sharev2"


class ManilaClient:
    """Manila shared file systems v2 API client.

    All requests go through a keystoneauth1 session, which resolves the
    ``sharev2`` endpoint from the service catalog and handles tokens.
    """

    def __init__(
        self,
        session,
        region_name: Optional[str] = None,
        interface: str = "public",
        microversion: str = MINIMUM_MICROVERSION,
    ):
        """Initialize Manila API client.

        Args:
            session: keystoneauth1 session
            region_name: Region used for endpoint lookup
            interface: Endpoint interface (public, internal, admin)
            microversion: Manila API microversion
        """
        self.session = session
        self.microversion = microversion
        self.endpoint_filter = {
            "service_type": SERVICE_TYPE,
            "interface": interface,
            "region_name": region_name,
        }

    @staticmethod
    def _error_message(response) -> str:
        # Manila wraps errors as {"itemNotFound": {"message": "...", "code": 404}}
        try:
            error_data = response.json()
        except ValueError:
            return response.text
        if isinstance(error_data, dict):
            for value in error_data.values():
                if isinstance(value, dict) and "message" in value:
                    return value["message"]
        return response.text

    @staticmethod
    def _not_found(path: str):
        parts = [p for p in path.split("?")[0].split("/") if p]
        resource_id = parts[1] if len(parts) > 1 else path
        if parts and parts[0] == "shares":
            return ShareNotFound(share_id=resource_id)
        if parts and parts[0] == "snapshots":
            return SnapshotNotFound(snapshot_id=resource_id)
        if parts and parts[0] == "types":
            return ShareTypeNotFound(share_type=resource_id)
        return ManilaResourceNotFound(resource_id=resource_id)

    def _make_request(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        microversion: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Make HTTP request to the Manila API.

        Args:
            method: HTTP method (GET, POST, DELETE)
            path: API path relative to the sharev2 endpoint (e.g., /shares/detail)
            json_data: Request body as JSON
            params: Query parameters
            microversion: Overrides the client microversion for this request

        Returns:
            Response data dictionary (empty dict for responses without a body)

        Raises:
            ManilaAPIConnectionError: Connection failed
            ManilaAPITimeout: Request timed out
            ManilaAuthenticationError: Keystone authentication failed
            ManilaResourceNotFound: Resource not found (404)
            ManilaAPIError: API returned error
        """
        headers = {
            "Accept": "application/json",
            "X-OpenStack-Manila-API-Version": microversion or self.microversion,
        }

        LOG.debug("Making %s request to %s with params=%s", method, path, params)

        try:
            response = self.session.request(
                path,
                method,
                json=json_data,
                params=params,
                headers=headers,
                endpoint_filter=self.endpoint_filter,
                raise_exc=False,
            )
        except ks_exceptions.ConnectTimeout as e:
            LOG.error("Request timeout: %s %s", method, path)
            raise ManilaAPITimeout(details=str(e))
        except ks_exceptions.ConnectionError as e:
            LOG.error("Connection error: %s %s, %s", method, path, e)
            raise ManilaAPIConnectionError(details=str(e))
        except (ks_exceptions.Unauthorized, ks_exceptions.AuthorizationFailure) as e:
            LOG.error("Authentication failed: %s", e)
            raise ManilaAuthenticationError(details=str(e))
        except ks_exceptions.ClientException as e:
            LOG.error("Request exception: %s %s, %s", method, path, e)
            raise ManilaAPIError(details=str(e))

        LOG.debug("Response status: %s", response.status_code)

        if response.status_code >= 400:
            error_msg = self._error_message(response)
            if response.status_code == 404:
                LOG.debug("Resource not found: %s, error: %s", path, error_msg)
                raise self._not_found(path)
            LOG.error("API error: HTTP %s, %s", response.status_code, error_msg)
            raise ManilaAPIError(details=f"HTTP {response.status_code}: {error_msg}")

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    # Shares

    def get_share_by_id(self, share_id: str) -> Share:
        response = self._make_request("GET", f"/shares/{share_id}")
        return Share.from_dict(response["share"])

    def get_share_by_name(self, name: str) -> Share:
        """Look up a share by its name.

        Raises:
            ShareNotFound: No share with this name
            ManilaAPIError: More than one share has this name
        """
        response = self._make_request("GET", "/shares/detail", params={"name": name})
        found = [s for s in response.get("shares", []) if s.get("name") == name]
        if not found:
            raise ShareNotFound(share_id=name)
        if len(found) > 1:
            raise ManilaAPIError(details=f"found {len(found)} shares with name {name}")
        return Share.from_dict(found[0])

    def create_share(self, opts: Dict[str, Any], microversion: Optional[str] = None) -> Share:
        """Create a share.

        Args:
            opts: Share attributes (name, size, share_proto, share_type, ...)
            microversion: Microversion override, needed for scheduler hints

        Returns:
            The new share, usually in "creating" status
        """
        body = {"share": {k: v for k, v in opts.items() if v not in (None, "", {})}}
        response = self._make_request("POST", "/shares", json_data=body, microversion=microversion)
        share = Share.from_dict(response["share"])
        LOG.info("Created share %s (ID %s)", share.name, share.id)
        return share

    def delete_share(self, share_id: str) -> None:
        self._make_request("DELETE", f"/shares/{share_id}")
        LOG.info("Requested deletion of share %s", share_id)

    def extend_share(self, share_id: str, new_size: int) -> None:
        self._make_request(
            "POST", f"/shares/{share_id}/action", json_data={"extend": {"new_size": new_size}}
        )
        LOG.info("Requested extension of share %s to %d GiB", share_id, new_size)

    def get_export_locations(self, share_id: str) -> List[ExportLocation]:
        response = self._make_request("GET", f"/shares/{share_id}/export_locations")
        return [ExportLocation.from_dict(loc) for loc in response.get("export_locations", [])]

    # Access rights

    def get_access_rights(self, share_id: str) -> List[AccessRight]:
        response = self._make_request(
            "POST", f"/shares/{share_id}/action", json_data={"access_list": None}
        )
        return [AccessRight.from_dict(r) for r in response.get("access_list", [])]

    def grant_access(
        self, share_id: str, access_type: str, access_to: str, access_level: str
    ) -> AccessRight:
        body = {
            "allow_access": {
                "access_type": access_type,
                "access_to": access_to,
                "access_level": access_level,
            }
        }
        response = self._make_request("POST", f"/shares/{share_id}/action", json_data=body)
        LOG.info("Granted %s access for %s to share %s", access_type, access_to, share_id)
        return AccessRight.from_dict(response["access"])

    # Snapshots

    def get_snapshot_by_id(self, snapshot_id: str) -> Snapshot:
        response = self._make_request("GET", f"/snapshots/{snapshot_id}")
        return Snapshot.from_dict(response["snapshot"])

    def get_snapshot_by_name(self, name: str) -> Snapshot:
        response = self._make_request("GET", "/snapshots/detail", params={"name": name})
        found = [s for s in response.get("snapshots", []) if s.get("name") == name]
        if not found:
            raise SnapshotNotFound(snapshot_id=name)
        if len(found) > 1:
            raise ManilaAPIError(details=f"found {len(found)} snapshots with name {name}")
        return Snapshot.from_dict(found[0])

    def create_snapshot(self, share_id: str, name: str, description: str = "") -> Snapshot:
        body = {"snapshot": {"share_id": share_id, "name": name, "description": description}}
        response = self._make_request("POST", "/snapshots", json_data=body)
        snapshot = Snapshot.from_dict(response["snapshot"])
        LOG.info("Created snapshot %s (ID %s) of share %s", name, snapshot.id, share_id)
        return snapshot

    def delete_snapshot(self, snapshot_id: str) -> None:
        self._make_request("DELETE", f"/snapshots/{snapshot_id}")
        LOG.info("Requested deletion of snapshot %s", snapshot_id)

    # Share types

    def get_extra_specs(self, share_type_id: str) -> Dict[str, Any]:
        response = self._make_request("GET", f"/types/{share_type_id}/extra_specs")
        return response.get("extra_specs", {})

    def get_share_type_id_from_name(self, name: str) -> str:
        response = self._make_request("GET", "/types")
        for share_type in response.get("share_types", []):
            if share_type.get("name") == name:
                return share_type["id"]
        raise ShareTypeNotFound(share_type=name)

    # User messages

    def get_user_messages(
        self,
        resource_id: str,
        message_level: str = "ERROR",
        limit: int = 1,
        sort_key: str = "created_at",
        sort_dir: str = "desc",
    ) -> List[UserMessage]:
        params = {
            "resource_id": resource_id,
            "message_level": message_level,
            "limit": limit,
            "sort_key": sort_key,
            "sort_dir": sort_dir,
        }
        response = self._make_request("GET", "/messages", params=params)
        return [UserMessage.from_dict(m) for m in response.get("messages", [])]


class ClientBuilder:
    """Builds Manila clients from CSI secrets.

    Clients are cached per set of credentials, so repeated requests carrying
    the same secrets reuse one authenticated session.
    """

    def __init__(
        self,
        user_agent: str = "manila-csi-plugin",
        extra_user_agent_data: Optional[List[str]] = None,
        timeout: int = 30,
        retry_count: int = 3,
        microversion: str = MINIMUM_MICROVERSION,
    ):
        self.user_agent = " ".join(
            [f"{user_agent}/{__version__}"] + list(extra_user_agent_data or [])
        )
        self.timeout = timeout
        self.retry_count = retry_count
        self.microversion = microversion
        self._clients = {}
        self._clients_lock = threading.Lock()

    def _http_session(self) -> requests.Session:
        http = requests.Session()
        # Only retry safe methods (GET) to avoid duplicate operations
        retry_strategy = Retry(
            total=self.retry_count,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        http.mount("http://", adapter)
        http.mount("https://", adapter)
        return http

    def new(self, os_options) -> ManilaClient:
        """Return a Manila client authenticated with ``os_options``.

        Args:
            os_options: options.OpenstackOptions parsed from CSI secrets

        Raises:
            ManilaAuthenticationError: Credentials cannot be loaded
        """
        with self._clients_lock:
            client = self._clients.get(os_options)
            if client is not None:
                return client

            plugin_name, auth_kwargs = os_options.to_auth_options()
            try:
                loader = ks_loading.get_plugin_loader(plugin_name)
                auth = loader.load_from_options(**auth_kwargs)
            except ks_exceptions.ClientException as e:
                raise ManilaAuthenticationError(details=str(e))

            session = ks_session.Session(
                auth=auth,
                session=self._http_session(),
                verify=os_options.verify(),
                timeout=self.timeout,
                user_agent=self.user_agent,
            )
            client = ManilaClient(
                session,
                region_name=os_options.region_name,
                microversion=self.microversion,
            )
            self._clients[os_options] = client
            LOG.debug("Created Manila client for %s in region %s",
                      os_options.auth_url, os_options.region_name)
            return client
