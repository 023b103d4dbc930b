"""Configuration options for the Manila CSI plugin."""

from oslo_config import cfg

# Configuration group name
CONF_GROUP = "manila_csi"

SUPPORTED_SHARE_PROTOCOLS = ["NFS", "CEPHFS"]


def _get_manila_csi_opts():
    """Get Manila CSI plugin configuration options.

    Returns:
        List of oslo_config options
    """
    return [
        # Plugin identity
        cfg.StrOpt(
            "driver_name",
            default="manila.csi.openstack.org",
            help="Name of the CSI driver reported by GetPluginInfo",
        ),
        cfg.StrOpt(
            "node_id",
            default=None,
            help="This node's ID. Required.",
        ),
        cfg.StrOpt(
            "node_az",
            default=None,
            help="This node's availability zone, reported as a topology segment",
        ),
        cfg.BoolOpt(
            "with_topology",
            default=False,
            help=(
                "Cluster is topology-aware. Enables the "
                "VOLUME_ACCESSIBILITY_CONSTRAINTS plugin capability and "
                "accessible topology in CreateVolume responses."
            ),
        ),
        cfg.StrOpt(
            "share_protocol_selector",
            default=None,
            choices=SUPPORTED_SHARE_PROTOCOLS,
            ignore_case=True,
            help="Manila share protocol this plugin instance operates on. Required.",
        ),
        cfg.StrOpt(
            "cluster_id",
            default=None,
            help=(
                "Cluster identifier stored in the metadata of every share "
                "created by this plugin under manila.csi.openstack.org/cluster"
            ),
        ),
        # Endpoints
        cfg.StrOpt(
            "endpoint",
            default="unix://tmp/csi.sock",
            help="CSI endpoint this plugin listens on (unix:// or tcp://)",
        ),
        cfg.StrOpt(
            "fwd_endpoint",
            default=None,
            help=(
                "CSI Node Plugin endpoint to which all Node Service RPCs are "
                "forwarded. Must be able to handle the file-system specified "
                "in share_protocol_selector. Required."
            ),
        ),
        cfg.IntOpt(
            "max_workers",
            default=10,
            min=1,
            max=256,
            help="Number of worker threads serving gRPC requests",
        ),
        cfg.IntOpt(
            "fwd_probe_interval",
            default=5,
            min=1,
            max=300,
            help="Seconds between readiness probes of the forwarding plugin at startup",
        ),
        cfg.IntOpt(
            "fwd_init_timeout",
            default=15,
            min=1,
            max=600,
            help="Timeout in seconds for plugin info and capability calls to the forwarding plugin",
        ),
        cfg.StrOpt(
            "runtime_config_file",
            default=None,
            help=(
                "Path to the runtime configuration file. The file is re-read "
                "on every use and may be changed while the plugin is running."
            ),
        ),
        # Manila API
        cfg.StrOpt(
            "manila_microversion",
            default="2.37",
            help="Manila API microversion sent with every request (2.37 or newer)",
        ),
        cfg.IntOpt(
            "manila_api_timeout",
            default=30,
            min=1,
            max=300,
            help="Manila API request timeout in seconds",
        ),
        cfg.IntOpt(
            "manila_api_retry_count",
            default=3,
            min=0,
            max=10,
            help="Number of Manila API request retries for transient failures",
        ),
        cfg.MultiStrOpt(
            "user_agent",
            default=[],
            help="Extra data added to the Manila client User-Agent header",
        ),
        # Share and snapshot status polling
        cfg.FloatOpt(
            "status_poll_interval",
            default=3.0,
            min=0,
            help="Initial interval in seconds between share/snapshot status checks",
        ),
        cfg.FloatOpt(
            "status_poll_factor",
            default=1.2,
            min=1.0,
            help="Multiplier applied to the status check interval after every attempt",
        ),
        cfg.IntOpt(
            "status_poll_retries",
            default=10,
            min=1,
            help=(
                "Number of share/snapshot status checks before giving up "
                "with DEADLINE_EXCEEDED"
            ),
        ),
        cfg.FloatOpt(
            "access_key_poll_interval",
            default=5.0,
            min=0,
            help="Initial interval in seconds between checks for a cephx access key",
        ),
    ]


def register_opts(conf, group=None):
    """Register Manila CSI plugin configuration options.

    Args:
        conf: oslo_config.cfg.ConfigOpts instance
        group: Configuration group name (default: CONF_GROUP)
    """
    if group is None:
        group = CONF_GROUP
    conf.register_opts(_get_manila_csi_opts(), group=group)


def list_opts():
    """Return a list of Manila CSI options for oslo-config-generator.

    Returns:
        List of (group_name, options) tuples
    """
    return [
        (CONF_GROUP, _get_manila_csi_opts()),
    ]
