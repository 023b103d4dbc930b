"""Runtime configuration file.

The file is JSON, for example::

    {"nfs": {"matchExportLocationAddress": "10.0.0.0/24"}}

It is read again on every use, so operators may change it while the plugin
is running.
"""

import json
from dataclasses import dataclass
from typing import Optional

from oslo_log import log as logging

LOG = logging.getLogger(__name__)


@dataclass
class NfsConfig:
    match_export_location_address: str = ""


@dataclass
class RuntimeConfig:
    nfs: Optional[NfsConfig] = None


class RuntimeConfigLoader:
    def __init__(self, filename: Optional[str] = None):
        self.filename = filename

    def get(self) -> Optional[RuntimeConfig]:
        """Read the runtime config file.

        Returns:
            RuntimeConfig, or None if no file is configured or it doesn't exist

        Raises:
            ValueError: File content is not valid
            OSError: File exists but cannot be read
        """
        if not self.filename:
            return None

        try:
            with open(self.filename, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None

        if data is None:
            return None
        if not isinstance(data, dict):
            raise ValueError(f"runtime config {self.filename} must contain a JSON object")

        conf = RuntimeConfig()
        nfs = data.get("nfs")
        if nfs is not None:
            if not isinstance(nfs, dict):
                raise ValueError(f"'nfs' section in runtime config {self.filename} must be an object")
            conf.nfs = NfsConfig(
                match_export_location_address=nfs.get("matchExportLocationAddress") or "",
            )
        LOG.debug("Loaded runtime config from %s: %s", self.filename, conf)
        return conf
