"""CSI plugin provisioning OpenStack Manila shares."""

__version__ = "0.9.0"
