#!/usr/bin/env python3
"""
cl-vitality: A Channel Health Monitor Plugin for Core Lightning

Keeps an eye on the node's channels and its public reachability:

CHANNEL HEALTH:
---------------
Once an hour every channel in CHANNELD_NORMAL or CHANNELD_AWAITING_SPLICE is
inspected for error statuses, peers that do not reconnect, HTLCs close to
(or past) expiry, and missing or broken gossip. Peers with findings are
force-disconnected and reconnected, then inspected again. Whatever is still
wrong after that is sent as a single report via email and/or Telegram.

AMBOSS PING:
------------
Every 5 minutes a signed timestamp is submitted to the Amboss HealthCheck
mutation. Single failures are retried quickly and silently; sustained
failures are alerted with a growing retry interval.

Dependencies:
- pyln-client: Core Lightning plugin framework
- requests: Amboss GraphQL API and Telegram Bot API

License: MIT
"""

import signal
import threading
from typing import Any, Dict, Optional

from pyln.client import Plugin

from modules.config import (
    CONFIG_FIELD_TYPES, IMMUTABLE_CONFIG_KEYS, OPTION_SPECS, Config,
    describe_sinks, resolve_config_key,
)
from modules.health_cycle import HealthCheckCycle
from modules.metrics import PrometheusExporter
from modules.notifier import Notifier
from modules.reachability import ReachabilityProber
from modules.rpc_gateway import RpcGateway
from modules.scheduler import ChannelHealthLoop, ReachabilityLoop, run_supervised


TEST_NOTIFICATION_SUBJECT = "Test Notification"
TEST_NOTIFICATION_BODY = "This is a test notification sent from vitality"


# Initialize the plugin
plugin = Plugin()

# =============================================================================
# GRACEFUL SHUTDOWN SUPPORT
# =============================================================================
# When `lightning-cli plugin stop cl-vitality` is called, CLN sends SIGTERM.
# We catch this signal and set the event, causing both loops (and any
# remediation wait in progress) to exit immediately instead of waiting for
# their sleep timers (up to an hour).

shutdown_event = threading.Event()

# Global instances (initialized in init)
config: Optional[Config] = None
notifier: Optional[Notifier] = None
metrics_exporter: Optional[PrometheusExporter] = None
channel_loop: Optional[ChannelHealthLoop] = None
reachability_loop: Optional[ReachabilityLoop] = None


for _option_id, _spec in OPTION_SPECS.items():
    plugin.add_option(
        name=_option_id.value,
        default=_spec.default,
        description=_spec.description
    )


# =============================================================================
# INITIALIZATION
# =============================================================================

@plugin.init()
def init(options: Dict[str, Any], configuration: Dict[str, Any], plugin: Plugin, **kwargs):
    """
    Initialize the vitality plugin.

    This is called once when the plugin starts. We:
    1. Parse and validate options
    2. Build the gateway, notifier and (optionally) the metrics exporter
    3. Start the channel health and Amboss ping loops
    """
    global config, notifier, metrics_exporter, channel_loop, reachability_loop

    plugin.log("Initializing cl-vitality plugin...")

    try:
        config = Config.from_options(options)
    except ValueError as e:
        plugin.log(f"Invalid vitality option: {e}", level='error')
        return {"disable": f"Invalid vitality option: {e}"}

    cfg = config.snapshot()
    for line in describe_sinks(cfg):
        plugin.log(line)

    gateway = RpcGateway(plugin)
    notifier = Notifier(plugin)

    if cfg.enable_prometheus:
        metrics_exporter = PrometheusExporter(port=cfg.prometheus_port, plugin=plugin)
        if not metrics_exporter.start_server():
            plugin.log("Prometheus metrics disabled due to server startup failure", level='warn')
            metrics_exporter = None
    else:
        metrics_exporter = None
        plugin.log("Prometheus metrics exporter disabled by configuration")

    cycle = HealthCheckCycle(gateway, plugin, config, notifier, shutdown_event, metrics_exporter)
    channel_loop = ChannelHealthLoop(cycle, plugin, config, notifier, shutdown_event, metrics_exporter)

    prober = ReachabilityProber(gateway, plugin)
    reachability_loop = ReachabilityLoop(prober, plugin, config, notifier, shutdown_event, metrics_exporter)

    # =========================================================================
    # SIGNAL HANDLER: Clean Shutdown on `lightning-cli plugin stop`
    # =========================================================================
    def handle_shutdown_signal(signum, frame):
        """Set shutdown_event so every loop exits at its next wait."""
        plugin.log("Received SIGTERM, initiating clean shutdown...", level='info')
        shutdown_event.set()

        if metrics_exporter:
            try:
                metrics_exporter.stop_server()
            except Exception as e:
                plugin.log(f"Error stopping metrics server: {e}", level='warn')

    signal.signal(signal.SIGTERM, handle_shutdown_signal)

    # Start background threads (daemon=True so they don't block shutdown)
    threading.Thread(
        target=run_supervised, args=(channel_loop, plugin, config, notifier),
        daemon=True, name="channel-health"
    ).start()
    threading.Thread(
        target=run_supervised, args=(reachability_loop, plugin, config, notifier),
        daemon=True, name="reachability-probe"
    ).start()

    plugin.log("cl-vitality plugin initialized successfully!")
    return None


# =============================================================================
# RPC METHODS
# =============================================================================

@plugin.method("vitality-testnotifications")
def vitality_testnotifications(plugin: Plugin) -> Dict[str, Any]:
    """
    Send a test message through every configured notification sink.

    Usage: lightning-cli vitality-testnotifications
    """
    if config is None or notifier is None:
        return {"error": "Plugin not initialized"}

    cfg = config.snapshot()
    if not notifier.active_sinks(cfg):
        return {"error": "No notification sink is configured"}

    results = notifier.notify(cfg, TEST_NOTIFICATION_SUBJECT, TEST_NOTIFICATION_BODY)
    return {"results": results}


@plugin.method("vitality-config")
def vitality_config(plugin: Plugin, action: str, key: str = None, value: str = None) -> Dict[str, Any]:
    """
    Get or set runtime configuration.

    Usage:
      lightning-cli vitality-config get                 # Get all config
      lightning-cli vitality-config get <key>           # Get specific key
      lightning-cli vitality-config set <key> <value>   # Set key
      lightning-cli vitality-config list-mutable        # List changeable keys

    Keys may be given as field names (watch_gossip) or option names
    (vitality-watch-gossip).

    Examples:
      lightning-cli vitality-config set expiring_htlcs 12
      lightning-cli vitality-config set vitality-watch-gossip true
    """
    if config is None:
        return {"error": "Plugin not initialized"}

    if action == "get":
        public = config.snapshot().public_dict()
        if key:
            field_name = resolve_config_key(key)
            if field_name not in CONFIG_FIELD_TYPES:
                return {"error": f"Unknown config key: {key}"}
            return {
                "key": field_name,
                "value": public[field_name],
                "version": config.version
            }
        return {
            "config": public,
            "version": config.version
        }

    elif action == "set":
        if not key or value is None:
            return {"error": "Usage: vitality-config set <key> <value>"}

        field_name = resolve_config_key(key)
        result = config.update_runtime(field_name, str(value))

        if result.get("status") == "success":
            plugin.log(
                f"CONFIG UPDATE: {field_name} changed from {result['old_value']} "
                f"to {result['new_value']} (v{result['version']})",
                level='info'
            )
            for line in describe_sinks(config.snapshot()):
                plugin.log(line, level='debug')

        return result

    elif action == "list-mutable":
        mutable = [k for k in CONFIG_FIELD_TYPES.keys() if k not in IMMUTABLE_CONFIG_KEYS]
        return {"mutable_keys": sorted(mutable), "count": len(mutable)}

    else:
        return {"error": f"Unknown action: {action}. Use 'get', 'set', or 'list-mutable'"}


@plugin.method("vitality-status")
def vitality_status(plugin: Plugin) -> Dict[str, Any]:
    """
    Get the current status of both monitoring loops.

    Usage: lightning-cli vitality-status
    """
    if config is None or notifier is None:
        return {"error": "Plugin not fully initialized"}

    cfg = config.snapshot()
    return {
        "status": "running",
        "sinks": list(notifier.active_sinks(cfg)),
        "channel_health": {
            "enabled": cfg.channel_watch_enabled,
            **(channel_loop.status() if channel_loop else {}),
        },
        "amboss": {
            "enabled": cfg.amboss,
            **(reachability_loop.status() if reachability_loop else {}),
        },
        "prometheus": metrics_exporter is not None and metrics_exporter.is_running(),
        "config_version": cfg.version,
    }


# =============================================================================
# ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    plugin.run()
