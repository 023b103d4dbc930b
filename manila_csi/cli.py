#!/usr/bin/env python3
"""
Command line entry point of the Manila CSI plugin.
"""

import sys
from pathlib import Path
from typing import List, Optional

import typer
from oslo_config import cfg
from oslo_log import log as logging

from manila_csi import configuration
from manila_csi.driver import Driver

PROJECT = "manila-csi-plugin"

app = typer.Typer(
    name=PROJECT,
    help="CSI Manila driver",
    add_completion=False,
)


def load_config(config_files=None, overrides=None, debug=False) -> cfg.ConfigOpts:
    """Build the plugin configuration.

    Command line overrides take precedence over config file values.
    """
    conf = cfg.ConfigOpts()
    logging.register_options(conf)
    configuration.register_opts(conf)
    conf([], project=PROJECT, default_config_files=[str(f) for f in (config_files or [])])

    for name, value in (overrides or {}).items():
        if value is not None:
            conf.set_override(name, value, group=configuration.CONF_GROUP)
    if debug:
        conf.set_override("debug", True)
    return conf


@app.command()
def serve(
    endpoint: Optional[str] = typer.Option(None, "--endpoint", help="CSI endpoint"),
    driver_name: Optional[str] = typer.Option(None, "--drivername", help="Name of the driver"),
    node_id: Optional[str] = typer.Option(None, "--nodeid", help="Node ID"),
    node_az: Optional[str] = typer.Option(None, "--nodeaz", help="Node availability zone"),
    runtime_config_file: Optional[str] = typer.Option(
        None, "--runtime-config-file", help="Path to the runtime configuration file"
    ),
    with_topology: Optional[bool] = typer.Option(
        None, "--with-topology/--without-topology", help="Cluster is topology-aware"
    ),
    share_protocol_selector: Optional[str] = typer.Option(
        None, "--share-protocol-selector", help="Manila share protocol (NFS or CEPHFS)"
    ),
    fwd_endpoint: Optional[str] = typer.Option(
        None, "--fwdendpoint", help="CSI Node Plugin endpoint to which all Node Service RPCs are forwarded"
    ),
    cluster_id: Optional[str] = typer.Option(
        None, "--cluster-id", help="Cluster identifier stored in share metadata"
    ),
    user_agent: Optional[List[str]] = typer.Option(
        None, "--user-agent", help="Extra data added to the User-Agent header (repeatable)"
    ),
    config_file: Optional[List[Path]] = typer.Option(
        None, "--config-file", exists=True, dir_okay=False, help="oslo.config file (repeatable)"
    ),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """Run the Manila CSI plugin."""
    conf = load_config(
        config_files=config_file,
        overrides={
            "endpoint": endpoint,
            "driver_name": driver_name,
            "node_id": node_id,
            "node_az": node_az,
            "runtime_config_file": runtime_config_file,
            "with_topology": with_topology,
            "share_protocol_selector": share_protocol_selector,
            "fwd_endpoint": fwd_endpoint,
            "cluster_id": cluster_id,
            "user_agent": user_agent or None,
        },
        debug=debug,
    )
    logging.setup(conf, PROJECT)

    driver = Driver(conf.manila_csi)
    driver.run()


def main() -> int:
    """Main entry point."""
    try:
        app()
        return 0
    except KeyboardInterrupt:
        typer.echo("\nOperation cancelled by user", err=True)
        return 130
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
