"""
Unit tests for CreateVolume content sources.
"""

import grpc
import pytest

from manila_csi import exceptions
from manila_csi.csi import csi_pb2
from manila_csi.options import ControllerVolumeContext
from manila_csi.volumesource import (
    BlankVolume,
    VolumeFromSnapshot,
    build_create_opts,
    get_volume_creator,
    resolve_share_list_to_ids,
)

SHARE_UUID = "0b6ef4f2-7c4a-4c7e-bb0c-9ae5d3b1f6a1"


@pytest.mark.unit
class TestResolveShareListToIds:
    def test_uuid_reference(self, mock_manila_client, make_share):
        mock_manila_client.get_share_by_id.return_value = make_share(id=SHARE_UUID)

        assert resolve_share_list_to_ids(mock_manila_client, SHARE_UUID) == SHARE_UUID
        mock_manila_client.get_share_by_name.assert_not_called()

    def test_uuid_like_name(self, mock_manila_client, make_share):
        mock_manila_client.get_share_by_id.side_effect = exceptions.ShareNotFound(share_id=SHARE_UUID)
        mock_manila_client.get_share_by_name.return_value = make_share(id="named-like-uuid")

        assert resolve_share_list_to_ids(mock_manila_client, SHARE_UUID) == "named-like-uuid"
        mock_manila_client.get_share_by_name.assert_called_once_with(SHARE_UUID)

    def test_names_are_resolved_in_order(self, mock_manila_client, make_share):
        shares = {"pvc-a": make_share(id="id-a"), "pvc-b": make_share(id="id-b")}
        mock_manila_client.get_share_by_name.side_effect = shares.get

        assert resolve_share_list_to_ids(mock_manila_client, " pvc-a , pvc-b,") == "id-a,id-b"

    def test_missing_share(self, mock_manila_client):
        mock_manila_client.get_share_by_name.side_effect = exceptions.ShareNotFound(share_id="pvc-x")

        with pytest.raises(exceptions.NotFound, match="referenced share pvc-x not found"):
            resolve_share_list_to_ids(mock_manila_client, "pvc-x")

    def test_api_error(self, mock_manila_client):
        mock_manila_client.get_share_by_name.side_effect = exceptions.ManilaAPIError(details="HTTP 500")

        with pytest.raises(exceptions.Internal, match="failed to resolve share pvc-x"):
            resolve_share_list_to_ids(mock_manila_client, "pvc-x")


@pytest.mark.unit
class TestBuildCreateOpts:
    def test_without_affinity(self, mock_manila_client):
        share_opts = ControllerVolumeContext.from_parameters(
            {"protocol": "NFS", "shareNetworkID": "net-1", "availability": "nova"}
        )

        opts, microversion = build_create_opts(
            mock_manila_client, "pvc-1", 2, share_opts, metadata={"k": "v"}
        )

        assert microversion is None
        assert "scheduler_hints" not in opts
        assert opts["share_proto"] == "NFS"
        assert opts["share_type"] == "default"
        assert opts["share_network_id"] == "net-1"
        assert opts["availability_zone"] == "nova"
        assert opts["size"] == 2
        assert opts["metadata"] == {"k": "v"}
        assert opts["snapshot_id"] is None

    def test_with_affinity(self, mock_manila_client, make_share):
        mock_manila_client.get_share_by_name.side_effect = lambda name: make_share(id=f"id-{name}")
        share_opts = ControllerVolumeContext.from_parameters(
            {"protocol": "NFS", "affinity": "a", "antiAffinity": "b,c"}
        )

        opts, microversion = build_create_opts(mock_manila_client, "pvc-1", 1, share_opts)

        assert microversion == "2.65"
        assert opts["scheduler_hints"] == {"same_host": "id-a", "different_host": "id-b,id-c"}


@pytest.mark.unit
class TestGetVolumeCreator:
    def test_blank_volume(self):
        assert isinstance(get_volume_creator(csi_pb2.CreateVolumeRequest(name="pvc-1")), BlankVolume)

    def test_from_snapshot(self):
        request = csi_pb2.CreateVolumeRequest(
            name="pvc-1",
            volume_content_source=csi_pb2.VolumeContentSource(
                snapshot=csi_pb2.VolumeContentSource.SnapshotSource(snapshot_id="snapshot-id")
            ),
        )

        creator = get_volume_creator(request)

        assert isinstance(creator, VolumeFromSnapshot)
        assert creator.snapshot_id == "snapshot-id"

    def test_cloning_is_unimplemented(self):
        request = csi_pb2.CreateVolumeRequest(
            name="pvc-1",
            volume_content_source=csi_pb2.VolumeContentSource(
                volume=csi_pb2.VolumeContentSource.VolumeSource(volume_id="share-id")
            ),
        )

        with pytest.raises(exceptions.Unimplemented) as exc_info:
            get_volume_creator(request)

        assert exc_info.value.code == grpc.StatusCode.UNIMPLEMENTED


@pytest.mark.unit
class TestVolumeFromSnapshot:
    def test_empty_snapshot_id(self, mock_manila_client, lifecycle_manager):
        share_opts = ControllerVolumeContext.from_parameters({"protocol": "NFS"})

        with pytest.raises(exceptions.InvalidArgument, match="snapshot ID cannot be empty"):
            VolumeFromSnapshot("").create(mock_manila_client, lifecycle_manager, "pvc-1", 1, share_opts, {})

    def test_protocol_mismatch(self, mock_manila_client, lifecycle_manager, make_snapshot, make_share):
        mock_manila_client.get_snapshot_by_id.return_value = make_snapshot()
        mock_manila_client.get_share_by_id.return_value = make_share(share_proto="CEPHFS")
        share_opts = ControllerVolumeContext.from_parameters({"protocol": "NFS"})

        with pytest.raises(exceptions.InvalidArgument, match="share protocol mismatch"):
            VolumeFromSnapshot("snapshot-id").create(
                mock_manila_client, lifecycle_manager, "pvc-1", 1, share_opts, {}
            )
        mock_manila_client.create_share.assert_not_called()
