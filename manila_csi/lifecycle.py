"""Share and snapshot lifecycle.

Shares and snapshots are looked up by name and created if missing, then
polled with exponential backoff until they reach the desired status. Manila
errors are classified here: callers only ever see ``ManilaCSIException``.
"""

from typing import Callable, Iterable, Optional, Tuple

from oslo_log import log as logging

from . import exceptions
from . import utils
from .manila.models import Share, Snapshot

LOG = logging.getLogger(__name__)

SHARE_CREATING = "creating"
SHARE_CREATING_FROM_SNAPSHOT = "creating_from_snapshot"
SHARE_DELETING = "deleting"
SHARE_EXTENDING = "extending"
SHARE_ERROR = "error"
SHARE_ERROR_DELETING = "error_deleting"
SHARE_ERROR_EXTENDING = "extending_error"
SHARE_AVAILABLE = "available"

SHARE_ERROR_STATUSES = frozenset([SHARE_ERROR, SHARE_ERROR_DELETING, SHARE_ERROR_EXTENDING])

SNAPSHOT_CREATING = "creating"
SNAPSHOT_DELETING = "deleting"
SNAPSHOT_ERROR = "error"
SNAPSHOT_ERROR_DELETING = "error_deleting"
SNAPSHOT_AVAILABLE = "available"

SNAPSHOT_ERROR_STATUSES = frozenset([SNAPSHOT_ERROR, SNAPSHOT_ERROR_DELETING])

SHARE_DESCRIPTION = "provisioned-by=manila.csi.openstack.org"
SNAPSHOT_DESCRIPTION = "snapshotted-by=manila.csi.openstack.org"

DEFAULT_BACKOFF = utils.Backoff(duration=3, factor=1.2, steps=10)
ROLLBACK_BACKOFF = utils.Backoff(duration=1, factor=1.5, steps=5)


def last_resource_error(manila_client, resource_id: str) -> Tuple[exceptions.ManilaErrorCode, str]:
    """Fetch the most recent Manila error message for a resource.

    Returns:
        Tuple of (classified error code, user message)

    Raises:
        ManilaAPIError: Messages cannot be retrieved
    """
    messages = manila_client.get_user_messages(
        resource_id=resource_id,
        message_level="ERROR",
        limit=1,
        sort_key="created_at",
        sort_dir="desc",
    )
    if messages:
        msg = messages[0]
        return exceptions.error_code_from_detail_id(msg.detail_id), msg.user_message
    return exceptions.ManilaErrorCode.UNKNOWN, "unknown error"


class LifecycleManager:
    """Get-or-create, wait, extend and delete for shares and snapshots."""

    def __init__(self, backoff=DEFAULT_BACKOFF, rollback_backoff=ROLLBACK_BACKOFF):
        self.backoff = backoff
        self.rollback_backoff = rollback_backoff

    def _wait_for_status(
        self,
        manila_client,
        kind: str,
        fetch: Callable,
        resource_id: str,
        transient_states: Iterable[str],
        desired_status: str,
        error_states: Iterable[str],
        success_on_not_found: bool = False,
        backoff: Optional[utils.Backoff] = None,
        context=None,
    ):
        """Poll a resource until it reaches ``desired_status``.

        Returns:
            The resource in its desired status, or None if it disappeared
            and ``success_on_not_found`` is set

        Raises:
            ResourceInErrorState: Resource is in one of ``error_states``
            UnexpectedResourceState: Resource is neither transient nor desired
            DeadlineExceeded: All poll attempts used up
            Cancelled: RPC terminated while waiting
            Internal: Resource cannot be retrieved
        """
        transient_states = list(transient_states)
        last = {}

        def condition():
            try:
                resource = fetch(resource_id)
            except exceptions.ManilaResourceNotFound:
                if success_on_not_found:
                    last["resource"] = None
                    return True
                raise exceptions.Internal(details=f"{kind} {resource_id} disappeared while waiting for it")
            except exceptions.ManilaAPIError as e:
                raise exceptions.Internal(details=f"failed to retrieve {kind} {resource_id}: {e}")

            last["resource"] = resource
            if resource.status == desired_status:
                return True
            if resource.status in transient_states:
                LOG.debug("%s %s is in transient state %s", kind, resource_id, resource.status)
                return False
            if resource.status in error_states:
                try:
                    error_code, message = last_resource_error(manila_client, resource_id)
                except exceptions.ManilaAPIError as e:
                    error_code = exceptions.ManilaErrorCode.UNKNOWN
                    message = f"error description could not be retrieved: {e}"
                raise exceptions.ResourceInErrorState(
                    error_code=error_code,
                    resource=kind,
                    resource_id=resource_id,
                    status=resource.status,
                    details=message,
                )
            raise exceptions.UnexpectedResourceState(
                resource=kind,
                resource_id=resource_id,
                wanted=f"{transient_states} or {desired_status or 'deleted'}",
                status=resource.status,
            )

        try:
            utils.wait_for(
                condition,
                backoff or self.backoff,
                context=context,
                description=f"{kind} {resource_id} to become {desired_status or 'deleted'}",
            )
        except exceptions.BackoffExhausted:
            raise exceptions.DeadlineExceeded(
                resource=kind, name=resource_id, status=desired_status or "deleted"
            )
        return last.get("resource")

    # Shares

    def wait_for_share_status(
        self,
        manila_client,
        share_id: str,
        transient_states: Iterable[str],
        desired_status: str,
        success_on_not_found: bool = False,
        backoff: Optional[utils.Backoff] = None,
        context=None,
    ) -> Optional[Share]:
        return self._wait_for_status(
            manila_client,
            "share",
            manila_client.get_share_by_id,
            share_id,
            transient_states,
            desired_status,
            SHARE_ERROR_STATUSES,
            success_on_not_found=success_on_not_found,
            backoff=backoff,
            context=context,
        )

    def get_or_create_share(
        self, manila_client, name: str, create_opts: dict, microversion: Optional[str] = None, context=None
    ) -> Share:
        """Return the share called ``name``, creating it if missing.

        Waits until the share is available. A share that ends up in an
        error state is rolled back before the error is raised.

        Raises:
            ResourceInErrorState: Share creation failed, code is classified
            DeadlineExceeded: Share did not become available in time
            Internal: Manila API failure
        """
        try:
            share = manila_client.get_share_by_name(name)
            LOG.debug("volume %s already exists (share ID %s)", name, share.id)
        except exceptions.ShareNotFound:
            try:
                share = manila_client.create_share(create_opts, microversion=microversion)
            except exceptions.ManilaAPIError as e:
                raise exceptions.Internal(details=f"failed to create volume {name}: {e}")
        except exceptions.ManilaAPIError as e:
            raise exceptions.Internal(details=f"failed to retrieve volume {name}: {e}")

        if share.status == SHARE_AVAILABLE:
            return share

        try:
            return self.wait_for_share_status(
                manila_client,
                share.id,
                [SHARE_CREATING, SHARE_CREATING_FROM_SNAPSHOT],
                SHARE_AVAILABLE,
                context=context,
            )
        except (exceptions.ResourceInErrorState, exceptions.UnexpectedResourceState):
            self.try_delete_share(manila_client, share)
            raise
        except exceptions.DeadlineExceeded:
            raise exceptions.DeadlineExceeded(resource="volume", name=name, status=SHARE_AVAILABLE)

    def try_delete_share(self, manila_client, share: Optional[Share]) -> None:
        """Best-effort share removal for roll-backs. Never raises."""
        if share is None:
            return

        LOG.info("Rolling back volume %s (share ID %s)", share.name, share.id)
        try:
            manila_client.delete_share(share.id)
        except exceptions.ManilaAPIError as e:
            LOG.error("couldn't delete volume %s in a roll-back procedure: %s", share.name, e)
            return

        try:
            self.wait_for_share_status(
                manila_client,
                share.id,
                [SHARE_DELETING],
                "",
                success_on_not_found=True,
                backoff=self.rollback_backoff,
            )
        except exceptions.DeadlineExceeded:
            LOG.warning("volume %s is still being deleted in a roll-back procedure", share.name)
        except exceptions.ManilaException as e:
            LOG.error("couldn't retrieve volume %s in a roll-back procedure: %s", share.name, e)

    def delete_share(self, manila_client, share_id: str) -> None:
        """Delete a share. A missing share counts as deleted.

        Raises:
            Internal: Manila API failure
        """
        try:
            manila_client.delete_share(share_id)
        except exceptions.ShareNotFound:
            LOG.info("volume with share ID %s not found, assuming it to be already deleted", share_id)
        except exceptions.ManilaAPIError as e:
            raise exceptions.Internal(details=f"failed to delete volume {share_id}: {e}")

    def extend_share(self, manila_client, share: Share, new_size_gib: int, context=None) -> Share:
        """Extend a share and wait until it's available again.

        There is no roll-back: a failed extension leaves the share at its
        previous size.

        Raises:
            ResourceInErrorState: Extension failed, code is classified
            DeadlineExceeded: Share did not become available in time
            Internal: Manila API failure
        """
        try:
            manila_client.extend_share(share.id, new_size_gib)
        except exceptions.ManilaAPIError as e:
            raise exceptions.Internal(details=f"failed to resize volume {share.name}: {e}")

        try:
            return self.wait_for_share_status(
                manila_client, share.id, [SHARE_EXTENDING], SHARE_AVAILABLE, context=context
            )
        except exceptions.DeadlineExceeded:
            raise exceptions.DeadlineExceeded(resource="volume", name=share.name, status=SHARE_AVAILABLE)

    # Snapshots

    def wait_for_snapshot_status(
        self,
        manila_client,
        snapshot_id: str,
        transient_states: Iterable[str],
        desired_status: str,
        success_on_not_found: bool = False,
        backoff: Optional[utils.Backoff] = None,
        context=None,
    ) -> Optional[Snapshot]:
        return self._wait_for_status(
            manila_client,
            "snapshot",
            manila_client.get_snapshot_by_id,
            snapshot_id,
            transient_states,
            desired_status,
            SNAPSHOT_ERROR_STATUSES,
            success_on_not_found=success_on_not_found,
            backoff=backoff,
            context=context,
        )

    def get_or_create_snapshot(self, manila_client, name: str, source_share_id: str, context=None) -> Snapshot:
        """Return the snapshot called ``name``, creating it if missing.

        Raises:
            ResourceInErrorState: Snapshot creation failed, code is classified
            DeadlineExceeded: Snapshot did not become available in time
            Internal: Manila API failure
        """
        try:
            snapshot = manila_client.get_snapshot_by_name(name)
            LOG.debug("snapshot %s already exists (snapshot ID %s)", name, snapshot.id)
        except exceptions.SnapshotNotFound:
            try:
                snapshot = manila_client.create_snapshot(source_share_id, name, SNAPSHOT_DESCRIPTION)
            except exceptions.ManilaAPIError as e:
                raise exceptions.Internal(
                    details=f"failed to create snapshot {name} of volume {source_share_id}: {e}"
                )
        except exceptions.ManilaAPIError as e:
            raise exceptions.Internal(details=f"failed to look up snapshot {name}: {e}")

        if snapshot.status == SNAPSHOT_AVAILABLE:
            return snapshot

        try:
            return self.wait_for_snapshot_status(
                manila_client, snapshot.id, [SNAPSHOT_CREATING], SNAPSHOT_AVAILABLE, context=context
            )
        except (exceptions.ResourceInErrorState, exceptions.UnexpectedResourceState):
            self.try_delete_snapshot(manila_client, snapshot)
            raise
        except exceptions.DeadlineExceeded:
            raise exceptions.DeadlineExceeded(resource="snapshot", name=name, status=SNAPSHOT_AVAILABLE)

    def try_delete_snapshot(self, manila_client, snapshot: Optional[Snapshot]) -> None:
        """Best-effort snapshot removal for roll-backs. Never raises."""
        if snapshot is None:
            return

        LOG.info("Rolling back snapshot %s (snapshot ID %s)", snapshot.name, snapshot.id)
        try:
            manila_client.delete_snapshot(snapshot.id)
        except exceptions.ManilaAPIError as e:
            LOG.error("couldn't delete snapshot %s in a roll-back procedure: %s", snapshot.name, e)
            return

        try:
            self.wait_for_snapshot_status(
                manila_client,
                snapshot.id,
                [SNAPSHOT_DELETING],
                "",
                success_on_not_found=True,
                backoff=self.rollback_backoff,
            )
        except exceptions.DeadlineExceeded:
            LOG.warning("snapshot %s is still being deleted in a roll-back procedure", snapshot.name)
        except exceptions.ManilaException as e:
            LOG.error("couldn't retrieve snapshot %s in a roll-back procedure: %s", snapshot.name, e)

    def delete_snapshot(self, manila_client, snapshot_id: str) -> None:
        """Delete a snapshot. A missing snapshot counts as deleted.

        Raises:
            Internal: Manila API failure
        """
        try:
            manila_client.delete_snapshot(snapshot_id)
        except exceptions.SnapshotNotFound:
            LOG.info("snapshot %s not found, assuming it to be already deleted", snapshot_id)
        except exceptions.ManilaAPIError as e:
            raise exceptions.Internal(details=f"failed to delete snapshot {snapshot_id}: {e}")
