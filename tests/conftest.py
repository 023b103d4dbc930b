"""
Pytest configuration and fixtures.
"""

import datetime
import shutil
import tempfile
from pathlib import Path
from unittest.mock import Mock

import grpc
import pytest

from manila_csi import lifecycle
from manila_csi import utils
from manila_csi.manila.models import AccessRight, ExportLocation, Share, Snapshot


class FakeRpcError(grpc.RpcError):
    """Status raised by FakeContext.abort, or by a mocked downstream plugin."""

    def __init__(self, code, details=""):
        super().__init__(f"{code.name}: {details}")
        self._code = code
        self._details = details

    def code(self):
        return self._code

    def details(self):
        return self._details


class FakeContext:
    """Minimal grpc.ServicerContext."""

    def __init__(self, active=True, time_remaining=None):
        self.active = active
        self.callbacks = []
        self._time_remaining = time_remaining

    def abort(self, code, details):
        raise FakeRpcError(code, details)

    def add_callback(self, callback):
        if not self.active:
            return False
        self.callbacks.append(callback)
        return True

    def is_active(self):
        return self.active

    def time_remaining(self):
        return self._time_remaining

    def cancel(self):
        self.active = False
        for callback in self.callbacks:
            callback()


@pytest.fixture
def context():
    """Servicer context of an active RPC without a deadline."""
    return FakeContext()


@pytest.fixture
def cancelled_context():
    """Servicer context of an RPC that was already cancelled."""
    return FakeContext(active=False)


@pytest.fixture
def rpc_error():
    """grpc.RpcError class carrying a status code."""
    return FakeRpcError


@pytest.fixture
def secrets():
    """OpenStack password credentials as passed in CSI secrets."""
    return {
        "os-authURL": "https://keystone.example.com:5000/v3",
        "os-region": "RegionOne",
        "os-userName": "demo",
        "os-password": "secret",
        "os-domainName": "Default",
        "os-projectName": "demo",
    }


@pytest.fixture
def make_share():
    """Factory of Manila shares."""

    def _make(**overrides):
        attrs = {
            "id": "share-id",
            "name": "pvc-1",
            "status": lifecycle.SHARE_AVAILABLE,
            "size": 1,
            "share_proto": "NFS",
            "share_type": "default",
        }
        attrs.update(overrides)
        return Share(**attrs)

    return _make


@pytest.fixture
def make_snapshot():
    """Factory of Manila snapshots."""

    def _make(**overrides):
        attrs = {
            "id": "snapshot-id",
            "name": "snapshot-1",
            "status": lifecycle.SNAPSHOT_AVAILABLE,
            "share_id": "share-id",
            "size": 1,
            "created_at": datetime.datetime(2024, 3, 1, 12, 30, tzinfo=datetime.timezone.utc),
        }
        attrs.update(overrides)
        return Snapshot(**attrs)

    return _make


@pytest.fixture
def make_access_right():
    """Factory of share access rights."""

    def _make(**overrides):
        attrs = {
            "id": "access-id",
            "access_type": "ip",
            "access_to": "0.0.0.0/0",
            "access_level": "rw",
        }
        attrs.update(overrides)
        return AccessRight(**attrs)

    return _make


@pytest.fixture
def nfs_export_locations():
    """Export locations of an NFS share."""
    return [
        ExportLocation(path="192.168.1.10:/shares/share-id", preferred=False, is_admin_only=True),
        ExportLocation(path="10.0.0.5:/shares/share-id", preferred=True),
        ExportLocation(path="192.168.1.20:/shares/share-id", preferred=False),
    ]


@pytest.fixture
def mock_manila_client():
    """Create a mock Manila API client."""
    client = Mock()

    client.get_user_messages.return_value = []
    client.get_access_rights.return_value = []
    client.get_export_locations.return_value = []
    client.grant_access.return_value = AccessRight(
        id="access-id", access_type="ip", access_to="0.0.0.0/0", access_level="rw"
    )
    client.get_extra_specs.return_value = {
        "snapshot_support": "True",
        "create_share_from_snapshot_support": "True",
    }

    return client


@pytest.fixture
def mock_client_builder(mock_manila_client):
    """Client builder handing out ``mock_manila_client``."""
    builder = Mock()
    builder.new.return_value = mock_manila_client
    return builder


@pytest.fixture
def lifecycle_manager():
    """Lifecycle manager that polls without sleeping."""
    return lifecycle.LifecycleManager(
        backoff=utils.Backoff(duration=0, factor=1, steps=3),
        rollback_backoff=utils.Backoff(duration=0, factor=1, steps=2),
    )


@pytest.fixture
def temp_dir():
    """Create a short temporary directory, usable for unix socket paths."""
    temp_path = tempfile.mkdtemp(prefix="csi")
    yield Path(temp_path)
    shutil.rmtree(temp_path)
