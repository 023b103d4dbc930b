"""Shape checks for incoming CSI requests.

Each validator raises ``exceptions.InvalidArgument`` for a malformed request.
"""

from . import exceptions


def _require(condition, details):
    if not condition:
        raise exceptions.InvalidArgument(details=details)


# Controller service

def validate_create_volume_request(request):
    _require(request.name, "volume name cannot be empty")
    _require(len(request.volume_capabilities) > 0, "volume capabilities cannot be empty")
    for capability in request.volume_capabilities:
        _require(not capability.HasField("block"), "block access type not allowed")
    _require(len(request.secrets) > 0, "secrets cannot be nil or empty")


def validate_delete_volume_request(request):
    _require(request.volume_id, "volume ID cannot be empty")
    _require(len(request.secrets) > 0, "secrets cannot be nil or empty")


def validate_create_snapshot_request(request):
    _require(request.name, "snapshot name cannot be empty")
    _require(request.source_volume_id, "source volume ID cannot be empty")
    _require(len(request.secrets) > 0, "secrets cannot be nil or empty")


def validate_delete_snapshot_request(request):
    _require(request.snapshot_id, "snapshot ID cannot be empty")
    _require(len(request.secrets) > 0, "secrets cannot be nil or empty")


def validate_validate_volume_capabilities_request(request):
    _require(request.volume_id, "volume ID missing in request")
    _require(len(request.volume_capabilities) > 0, "volume capabilities cannot be nil or empty")
    _require(len(request.secrets) > 0, "secrets cannot be nil or empty")


def validate_controller_expand_volume_request(request):
    _require(request.volume_id, "volume ID missing in request")
    _require(request.HasField("capacity_range"), "capacity range missing in request")
    _require(len(request.secrets) > 0, "secrets cannot be nil or empty")


# Node service

def validate_node_stage_volume_request(request):
    _require(request.HasField("volume_capability"), "volume capability missing in request")
    _require(request.volume_id, "volume ID missing in request")
    _require(request.staging_target_path, "staging path missing in request")
    _require(len(request.volume_context) > 0, "volume context cannot be nil or empty")
    _require(len(request.secrets) > 0, "stage secrets cannot be nil or empty")


def validate_node_unstage_volume_request(request):
    _require(request.staging_target_path, "staging path missing in request")
    _require(request.volume_id, "volume ID missing in request")


def validate_node_publish_volume_request(request):
    _require(request.HasField("volume_capability"), "volume capability missing in request")
    _require(request.volume_id, "volume ID missing in request")
    _require(request.target_path, "target path missing in request")
    _require(len(request.volume_context) > 0, "volume context cannot be nil or empty")
    _require(len(request.secrets) > 0, "node publish secrets cannot be nil or empty")


def validate_node_unpublish_volume_request(request):
    _require(request.target_path, "target path missing in request")
    _require(request.volume_id, "volume ID missing in request")
