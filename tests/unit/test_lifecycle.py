"""
Unit tests for share and snapshot lifecycle handling.
"""

import grpc
import pytest

from manila_csi import exceptions
from manila_csi import lifecycle
from manila_csi.manila.models import UserMessage


def _error_message(detail_id):
    return UserMessage(id="msg-id", detail_id=detail_id, user_message="something went wrong")


@pytest.mark.unit
class TestGetOrCreateShare:
    def test_existing_available_share(self, lifecycle_manager, mock_manila_client, make_share):
        mock_manila_client.get_share_by_name.return_value = make_share()

        share = lifecycle_manager.get_or_create_share(mock_manila_client, "pvc-1", {"name": "pvc-1"})

        assert share.id == "share-id"
        mock_manila_client.create_share.assert_not_called()
        mock_manila_client.get_share_by_id.assert_not_called()

    def test_creates_and_waits(self, lifecycle_manager, mock_manila_client, make_share):
        mock_manila_client.get_share_by_name.side_effect = exceptions.ShareNotFound(share_id="pvc-1")
        mock_manila_client.create_share.return_value = make_share(status="creating")
        mock_manila_client.get_share_by_id.side_effect = [
            make_share(status="creating"),
            make_share(status="available"),
        ]

        share = lifecycle_manager.get_or_create_share(
            mock_manila_client, "pvc-1", {"name": "pvc-1"}, microversion="2.65"
        )

        assert share.status == "available"
        mock_manila_client.create_share.assert_called_once_with({"name": "pvc-1"}, microversion="2.65")
        assert mock_manila_client.get_share_by_id.call_count == 2

    def test_restoring_from_snapshot_is_transient(self, lifecycle_manager, mock_manila_client, make_share):
        mock_manila_client.get_share_by_name.return_value = make_share(status="creating_from_snapshot")
        mock_manila_client.get_share_by_id.side_effect = [
            make_share(status="creating_from_snapshot"),
            make_share(status="available"),
        ]

        share = lifecycle_manager.get_or_create_share(mock_manila_client, "pvc-1", {})

        assert share.status == "available"

    @pytest.mark.parametrize(
        "detail_id,code",
        [
            ("002", grpc.StatusCode.OUT_OF_RANGE),
            ("003", grpc.StatusCode.INVALID_ARGUMENT),
            ("007", grpc.StatusCode.RESOURCE_EXHAUSTED),
            ("008", grpc.StatusCode.INVALID_ARGUMENT),
            ("009", grpc.StatusCode.OUT_OF_RANGE),
            ("001", grpc.StatusCode.INTERNAL),
        ],
    )
    def test_error_state_is_classified_and_rolled_back(
        self, lifecycle_manager, mock_manila_client, make_share, detail_id, code
    ):
        mock_manila_client.get_share_by_name.side_effect = exceptions.ShareNotFound(share_id="pvc-1")
        mock_manila_client.create_share.return_value = make_share(status="creating")
        mock_manila_client.get_share_by_id.side_effect = [
            make_share(status="error"),
            exceptions.ShareNotFound(share_id="share-id"),
        ]
        mock_manila_client.get_user_messages.return_value = [_error_message(detail_id)]

        with pytest.raises(exceptions.ResourceInErrorState, match="something went wrong") as exc_info:
            lifecycle_manager.get_or_create_share(mock_manila_client, "pvc-1", {})

        assert exc_info.value.code == code
        mock_manila_client.delete_share.assert_called_once_with("share-id")
        mock_manila_client.get_user_messages.assert_called_once_with(
            resource_id="share-id", message_level="ERROR", limit=1, sort_key="created_at", sort_dir="desc"
        )

    def test_error_without_user_message(self, lifecycle_manager, mock_manila_client, make_share):
        mock_manila_client.get_share_by_name.return_value = make_share(status="creating")
        mock_manila_client.get_share_by_id.side_effect = [
            make_share(status="error"),
            exceptions.ShareNotFound(share_id="share-id"),
        ]

        with pytest.raises(exceptions.ResourceInErrorState, match="unknown error") as exc_info:
            lifecycle_manager.get_or_create_share(mock_manila_client, "pvc-1", {})

        assert exc_info.value.code == grpc.StatusCode.INTERNAL

    def test_user_message_lookup_failure(self, lifecycle_manager, mock_manila_client, make_share):
        mock_manila_client.get_share_by_name.return_value = make_share(status="creating")
        mock_manila_client.get_share_by_id.side_effect = [
            make_share(status="error"),
            exceptions.ShareNotFound(share_id="share-id"),
        ]
        mock_manila_client.get_user_messages.side_effect = exceptions.ManilaAPIError(details="down")

        with pytest.raises(exceptions.ResourceInErrorState, match="error description could not be retrieved"):
            lifecycle_manager.get_or_create_share(mock_manila_client, "pvc-1", {})

    def test_rollback_failure_keeps_original_error(self, lifecycle_manager, mock_manila_client, make_share):
        mock_manila_client.get_share_by_name.return_value = make_share(status="creating")
        mock_manila_client.get_share_by_id.return_value = make_share(status="error")
        mock_manila_client.get_user_messages.return_value = [_error_message("002")]
        mock_manila_client.delete_share.side_effect = exceptions.ManilaAPIError(details="down")

        with pytest.raises(exceptions.ResourceInErrorState) as exc_info:
            lifecycle_manager.get_or_create_share(mock_manila_client, "pvc-1", {})

        assert exc_info.value.code == grpc.StatusCode.OUT_OF_RANGE

    def test_stuck_share_exceeds_deadline(self, lifecycle_manager, mock_manila_client, make_share):
        mock_manila_client.get_share_by_name.return_value = make_share(status="creating")
        mock_manila_client.get_share_by_id.return_value = make_share(status="creating")

        with pytest.raises(exceptions.DeadlineExceeded, match="volume pvc-1 to become available") as exc_info:
            lifecycle_manager.get_or_create_share(mock_manila_client, "pvc-1", {})

        assert exc_info.value.code == grpc.StatusCode.DEADLINE_EXCEEDED
        assert mock_manila_client.get_share_by_id.call_count == 3
        mock_manila_client.delete_share.assert_not_called()

    def test_unexpected_state_is_rolled_back(self, lifecycle_manager, mock_manila_client, make_share):
        mock_manila_client.get_share_by_name.return_value = make_share(status="creating")
        mock_manila_client.get_share_by_id.side_effect = [
            make_share(status="migrating"),
            make_share(status="deleting"),
            exceptions.ShareNotFound(share_id="share-id"),
        ]

        with pytest.raises(exceptions.UnexpectedResourceState, match="got migrating") as exc_info:
            lifecycle_manager.get_or_create_share(mock_manila_client, "pvc-1", {})

        assert exc_info.value.code == grpc.StatusCode.INTERNAL
        mock_manila_client.delete_share.assert_called_once_with("share-id")

    def test_cancelled_rpc(self, lifecycle_manager, mock_manila_client, make_share, cancelled_context):
        mock_manila_client.get_share_by_name.return_value = make_share(status="creating")

        with pytest.raises(exceptions.Cancelled) as exc_info:
            lifecycle_manager.get_or_create_share(mock_manila_client, "pvc-1", {}, context=cancelled_context)

        assert exc_info.value.code == grpc.StatusCode.CANCELLED
        mock_manila_client.delete_share.assert_not_called()

    def test_lookup_failure(self, lifecycle_manager, mock_manila_client):
        mock_manila_client.get_share_by_name.side_effect = exceptions.ManilaAPIError(details="down")

        with pytest.raises(exceptions.Internal, match="failed to retrieve volume pvc-1"):
            lifecycle_manager.get_or_create_share(mock_manila_client, "pvc-1", {})

    def test_create_failure(self, lifecycle_manager, mock_manila_client):
        mock_manila_client.get_share_by_name.side_effect = exceptions.ShareNotFound(share_id="pvc-1")
        mock_manila_client.create_share.side_effect = exceptions.ManilaAPIError(details="quota")

        with pytest.raises(exceptions.Internal, match="failed to create volume pvc-1"):
            lifecycle_manager.get_or_create_share(mock_manila_client, "pvc-1", {})

    def test_share_disappears_while_waiting(self, lifecycle_manager, mock_manila_client, make_share):
        mock_manila_client.get_share_by_name.return_value = make_share(status="creating")
        mock_manila_client.get_share_by_id.side_effect = exceptions.ShareNotFound(share_id="share-id")

        with pytest.raises(exceptions.Internal, match="disappeared"):
            lifecycle_manager.get_or_create_share(mock_manila_client, "pvc-1", {})


@pytest.mark.unit
class TestDeleteAndExtendShare:
    def test_delete_share(self, lifecycle_manager, mock_manila_client):
        lifecycle_manager.delete_share(mock_manila_client, "share-id")

        mock_manila_client.delete_share.assert_called_once_with("share-id")

    def test_delete_missing_share_succeeds(self, lifecycle_manager, mock_manila_client):
        mock_manila_client.delete_share.side_effect = exceptions.ShareNotFound(share_id="share-id")

        lifecycle_manager.delete_share(mock_manila_client, "share-id")

    def test_delete_failure(self, lifecycle_manager, mock_manila_client):
        mock_manila_client.delete_share.side_effect = exceptions.ManilaAPIError(details="HTTP 500")

        with pytest.raises(exceptions.Internal, match="failed to delete volume share-id"):
            lifecycle_manager.delete_share(mock_manila_client, "share-id")

    def test_extend_share(self, lifecycle_manager, mock_manila_client, make_share):
        mock_manila_client.get_share_by_id.side_effect = [
            make_share(status="extending", size=1),
            make_share(status="available", size=3),
        ]

        share = lifecycle_manager.extend_share(mock_manila_client, make_share(size=1), 3)

        assert share.size == 3
        mock_manila_client.extend_share.assert_called_once_with("share-id", 3)

    def test_extend_error_is_not_rolled_back(self, lifecycle_manager, mock_manila_client, make_share):
        mock_manila_client.get_share_by_id.return_value = make_share(status="extending_error")
        mock_manila_client.get_user_messages.return_value = [_error_message("009")]

        with pytest.raises(exceptions.ResourceInErrorState) as exc_info:
            lifecycle_manager.extend_share(mock_manila_client, make_share(size=1), 3)

        assert exc_info.value.code == grpc.StatusCode.OUT_OF_RANGE
        mock_manila_client.delete_share.assert_not_called()

    def test_extend_request_failure(self, lifecycle_manager, mock_manila_client, make_share):
        mock_manila_client.extend_share.side_effect = exceptions.ManilaAPIError(details="HTTP 400")

        with pytest.raises(exceptions.Internal, match="failed to resize volume pvc-1"):
            lifecycle_manager.extend_share(mock_manila_client, make_share(), 3)

    def test_extend_deadline(self, lifecycle_manager, mock_manila_client, make_share):
        mock_manila_client.get_share_by_id.return_value = make_share(status="extending")

        with pytest.raises(exceptions.DeadlineExceeded, match="volume pvc-1"):
            lifecycle_manager.extend_share(mock_manila_client, make_share(), 3)


@pytest.mark.unit
class TestSnapshots:
    def test_creates_and_waits(self, lifecycle_manager, mock_manila_client, make_snapshot):
        mock_manila_client.get_snapshot_by_name.side_effect = exceptions.SnapshotNotFound(snapshot_id="snap-1")
        mock_manila_client.create_snapshot.return_value = make_snapshot(status="creating")
        mock_manila_client.get_snapshot_by_id.side_effect = [make_snapshot(status="available")]

        snapshot = lifecycle_manager.get_or_create_snapshot(mock_manila_client, "snap-1", "share-id")

        assert snapshot.status == "available"
        mock_manila_client.create_snapshot.assert_called_once_with(
            "share-id", "snap-1", lifecycle.SNAPSHOT_DESCRIPTION
        )

    def test_existing_snapshot(self, lifecycle_manager, mock_manila_client, make_snapshot):
        mock_manila_client.get_snapshot_by_name.return_value = make_snapshot()

        lifecycle_manager.get_or_create_snapshot(mock_manila_client, "snap-1", "share-id")

        mock_manila_client.create_snapshot.assert_not_called()

    def test_error_state_is_rolled_back(self, lifecycle_manager, mock_manila_client, make_snapshot):
        mock_manila_client.get_snapshot_by_name.return_value = make_snapshot(status="creating")
        mock_manila_client.get_snapshot_by_id.side_effect = [
            make_snapshot(status="error"),
            exceptions.SnapshotNotFound(snapshot_id="snapshot-id"),
        ]
        mock_manila_client.get_user_messages.return_value = [_error_message("007")]

        with pytest.raises(exceptions.ResourceInErrorState) as exc_info:
            lifecycle_manager.get_or_create_snapshot(mock_manila_client, "snap-1", "share-id")

        assert exc_info.value.code == grpc.StatusCode.RESOURCE_EXHAUSTED
        mock_manila_client.delete_snapshot.assert_called_once_with("snapshot-id")

    def test_snapshot_lookup_failure(self, lifecycle_manager, mock_manila_client):
        mock_manila_client.get_snapshot_by_name.side_effect = exceptions.ManilaAPIError(details="down")

        with pytest.raises(exceptions.Internal, match="failed to look up snapshot snap-1"):
            lifecycle_manager.get_or_create_snapshot(mock_manila_client, "snap-1", "share-id")

    def test_delete_missing_snapshot_succeeds(self, lifecycle_manager, mock_manila_client):
        mock_manila_client.delete_snapshot.side_effect = exceptions.SnapshotNotFound(snapshot_id="snapshot-id")

        lifecycle_manager.delete_snapshot(mock_manila_client, "snapshot-id")

    def test_delete_snapshot_failure(self, lifecycle_manager, mock_manila_client):
        mock_manila_client.delete_snapshot.side_effect = exceptions.ManilaAPIError(details="HTTP 500")

        with pytest.raises(exceptions.Internal, match="failed to delete snapshot snapshot-id"):
            lifecycle_manager.delete_snapshot(mock_manila_client, "snapshot-id")
