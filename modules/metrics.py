"""
Prometheus Metrics Exporter module for cl-vitality

Exposes the health loops' outcomes for external monitoring using only
the Python standard library (no prometheus_client or flask).

- Thread-safe gauges and counters with labels
- Background HTTP server serving /metrics in the Prometheus text format

All metric names are prefixed with 'cl_vitality_'.
"""

import socket
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Dict, Optional


class MetricType:
    """Metric type constants."""
    GAUGE = "gauge"
    COUNTER = "counter"


class PrometheusExporter:
    """
    Lightweight Prometheus metrics exporter.

    Usage:
        exporter = PrometheusExporter(port=9810, plugin=plugin)
        exporter.start_server()
        exporter.set_gauge(MetricNames.SLACKER_PEERS, 2, {"pass": "final"})
        exporter.inc_counter(MetricNames.PROBE_FAILURES_TOTAL)
    """

    def __init__(self, port: int = 9810, plugin=None):
        self.port = port
        self.plugin = plugin
        self._lock = threading.Lock()
        # name -> {"type": ..., "help": ..., "values": {frozenset(labels): value}}
        self._metrics: Dict[str, Dict[str, Any]] = {}
        self._server: Optional[HTTPServer] = None
        self._server_thread: Optional[threading.Thread] = None
        self._running = False

    def _log(self, message: str, level: str = 'info'):
        if self.plugin:
            self.plugin.log(message, level=level)

    def _store(self, name: str, metric_type: str, help_text: str) -> Dict[str, Any]:
        if name not in self._metrics:
            self._metrics[name] = {"type": metric_type, "help": help_text, "values": {}}
        return self._metrics[name]["values"]

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None,
                  help_text: str = "") -> None:
        """Set a gauge. help_text is only used the first time a metric is seen."""
        label_key = frozenset((labels or {}).items())
        with self._lock:
            self._store(name, MetricType.GAUGE, help_text)[label_key] = value

    def inc_counter(self, name: str, value: float = 1, labels: Optional[Dict[str, str]] = None,
                    help_text: str = "") -> None:
        label_key = frozenset((labels or {}).items())
        with self._lock:
            values = self._store(name, MetricType.COUNTER, help_text)
            values[label_key] = values.get(label_key, 0) + value

    def get_metric(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        label_key = frozenset((labels or {}).items())
        with self._lock:
            if name in self._metrics:
                return self._metrics[name]["values"].get(label_key)
        return None

    def format_prometheus(self) -> str:
        """Render every metric in the Prometheus text exposition format."""
        lines = []
        with self._lock:
            for name, metric in sorted(self._metrics.items()):
                if metric.get("help"):
                    lines.append(f"# HELP {name} {metric['help']}")
                lines.append(f"# TYPE {name} {metric['type']}")
                for label_key, value in sorted(metric["values"].items(), key=lambda x: str(x[0])):
                    if label_key:
                        label_part = ", ".join(f'{k}="{v}"' for k, v in sorted(label_key))
                        lines.append(f"{name}{{{label_part}}} {value}")
                    else:
                        lines.append(f"{name} {value}")
                lines.append("")
        return "\n".join(lines)

    def _create_request_handler(self):
        exporter = self

        class MetricsHandler(BaseHTTPRequestHandler):
            """Serves /metrics."""

            def log_message(self, format, *args):
                pass

            def do_GET(self):
                try:
                    if self.path in ('/', '/metrics'):
                        content = exporter.format_prometheus().encode('utf-8')
                        self.send_response(200)
                        self.send_header('Content-Type', 'text/plain; charset=utf-8')
                        self.send_header('Content-Length', str(len(content)))
                        self.end_headers()
                        self.wfile.write(content)
                    else:
                        self.send_response(404)
                        self.send_header('Content-Type', 'text/plain')
                        self.end_headers()
                        self.wfile.write(b'Not Found. Try /metrics')
                except (BrokenPipeError, ConnectionResetError):
                    # Client went away mid-response
                    pass

        return MetricsHandler

    def start_server(self) -> bool:
        """
        Start the HTTP server in a background thread.

        Returns:
            True if the server is running, False if it could not bind
        """
        if self._running:
            return True

        try:
            self._server = HTTPServer(('0.0.0.0', self.port), self._create_request_handler())
            self._server.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        except OSError as e:
            self._log(
                f"Failed to start Prometheus server on port {self.port}: {e}. "
                "Plugin continues without metrics.",
                level='error'
            )
            return False

        self._server_thread = threading.Thread(
            target=self._server.serve_forever, daemon=True, name="prometheus-exporter"
        )
        self._server_thread.start()
        self._running = True
        self._log(f"Prometheus metrics server started on port {self.port}")
        return True

    def stop_server(self):
        if self._server:
            self._server.shutdown()
            self._running = False
            self._log("Prometheus metrics server stopped")

    def is_running(self) -> bool:
        return self._running


class MetricNames:
    """Standard metric names for cl-vitality."""

    # Channel health (Gauges)
    SLACKER_PEERS = "cl_vitality_slacker_peers"
    GOSSIP_INDEX_SIZE = "cl_vitality_gossip_index_size"

    # Channel health (Counters)
    FINDINGS_TOTAL = "cl_vitality_findings_total"
    CYCLE_FAILURES_TOTAL = "cl_vitality_cycle_failures_total"

    # Reachability probe
    PROBE_FAILURES_TOTAL = "cl_vitality_probe_failures_total"
    PROBE_INTERVAL_SECONDS = "cl_vitality_probe_interval_seconds"

    # System health (Gauges)
    SYSTEM_LAST_RUN_TIMESTAMP = "cl_vitality_system_last_run_timestamp_seconds"


METRIC_HELP = {
    MetricNames.SLACKER_PEERS: "Peers with at least one finding in the last inspection pass",
    MetricNames.GOSSIP_INDEX_SIZE: "Number of channels in the gossip index",
    MetricNames.FINDINGS_TOTAL: "Total findings produced by inspection passes",
    MetricNames.CYCLE_FAILURES_TOTAL: "Total loop iterations that ended in an error",
    MetricNames.PROBE_FAILURES_TOTAL: "Total failed reachability probes",
    MetricNames.PROBE_INTERVAL_SECONDS: "Current reachability probe interval",
    MetricNames.SYSTEM_LAST_RUN_TIMESTAMP: "Unix timestamp of last successful task run (for health monitoring)",
}
