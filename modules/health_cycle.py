"""
Health Check Cycle module for cl-vitality

Orchestrates one channel-health run:

    FETCH_STATE -> INSPECT -> (no findings: DONE)
                -> REMEDIATE -> RE-FETCH_STATE -> RE-INSPECT
                -> AGGREGATE -> DISPATCH -> DONE

Fetch and RPC errors propagate to the caller (the scheduler alerts on
them); remediation errors become findings; notification errors are
logged by the Notifier.
"""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .channel_health import HealthInspector, SlackerReport
from .config import Config, ConfigSnapshot
from .gossip import GossipIndex, GossipIndexBuilder
from .metrics import METRIC_HELP, MetricNames, PrometheusExporter
from .notifier import Notifier
from .remediation import RemediationActuator, channels_by_peer
from .rpc_gateway import NodeInfo, PeerChannel, RpcGateway


REPORT_SUBJECT = "Channel check report"


class CycleStage(Enum):
    """Where a cycle ended."""
    ALL_GOOD = "all_good"            # First pass found nothing
    RESOLVED = "resolved"            # Remediation fixed everything
    ALERTED = "alerted"              # Findings remained and were dispatched


@dataclass
class CycleResult:
    """Outcome of one HealthCheckCycle.run()."""
    stage: CycleStage
    started_at: int
    duration_seconds: float
    first_pass: Dict[str, List[str]] = field(default_factory=dict)
    final_pass: Dict[str, List[str]] = field(default_factory=dict)
    alert_body: str = ""
    dispatch_results: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "started_at": self.started_at,
            "duration_seconds": round(self.duration_seconds, 1),
            "first_pass_slackers": len(self.first_pass),
            "final_pass_slackers": len(self.final_pass),
            "final_pass": self.final_pass,
            "dispatch_results": self.dispatch_results,
        }


@dataclass
class NodeState:
    """Everything one inspection pass needs, fetched together."""
    info: NodeInfo
    channels: List[PeerChannel]
    gossip: Optional[GossipIndex]


def render_alert_body(first_pass: SlackerReport, final_pass: SlackerReport,
                      aliases: Dict[str, str]) -> str:
    """
    Render the alert for every peer still failing after remediation.

    Each peer block lists the first-pass findings (including remediation
    failures) followed by the confirmation-pass findings.
    """
    blocks = []
    for peer_id, final_findings in final_pass.items():
        findings = first_pass.findings(peer_id) + final_findings
        alias = aliases.get(peer_id)
        header = f"{peer_id} ({alias}):" if alias else f"{peer_id}:"
        blocks.append(f"{header}\n" + "\n".join(findings) + "\n")
    return "\n".join(blocks)


class HealthCheckCycle:
    """
    One full inspect/remediate/confirm/alert run.

    Usage:
        cycle = HealthCheckCycle(gateway, plugin, config, notifier, shutdown_event)
        result = cycle.run()
    """

    def __init__(self, gateway: RpcGateway, plugin, config: Config, notifier: Notifier,
                 shutdown_event: Optional[threading.Event] = None,
                 metrics: Optional[PrometheusExporter] = None,
                 inspector: Optional[HealthInspector] = None,
                 gossip_builder: Optional[GossipIndexBuilder] = None,
                 actuator: Optional[RemediationActuator] = None):
        self.gateway = gateway
        self.plugin = plugin
        self.config = config
        self.notifier = notifier
        self.metrics = metrics
        self.inspector = inspector or HealthInspector(plugin)
        self.gossip_builder = gossip_builder or GossipIndexBuilder(gateway, plugin)
        self.actuator = actuator or RemediationActuator(gateway, plugin, shutdown_event)

    def _log(self, message: str, level: str = 'info') -> None:
        self.plugin.log(f"check_channel: {message}", level=level)

    def _fetch_state(self, cfg: ConfigSnapshot) -> NodeState:
        channels = self.gateway.list_peer_channels()
        info = self.gateway.get_info()
        gossip = self.gossip_builder.build_index() if cfg.watch_gossip else None
        if gossip is not None and self.metrics:
            self.metrics.set_gauge(
                MetricNames.GOSSIP_INDEX_SIZE, len(gossip), None,
                METRIC_HELP[MetricNames.GOSSIP_INDEX_SIZE]
            )
        return NodeState(info=info, channels=channels, gossip=gossip)

    def _inspect(self, state: NodeState, cfg: ConfigSnapshot) -> SlackerReport:
        return self.inspector.inspect(
            state.channels, cfg, state.info.blockheight, state.info.network, state.gossip
        )

    def _record_pass(self, name: str, report: SlackerReport) -> None:
        if self.metrics:
            self.metrics.set_gauge(
                MetricNames.SLACKER_PEERS, len(report), {"pass": name},
                METRIC_HELP[MetricNames.SLACKER_PEERS]
            )
            self.metrics.inc_counter(
                MetricNames.FINDINGS_TOTAL, report.total_findings(), {"pass": name},
                METRIC_HELP[MetricNames.FINDINGS_TOTAL]
            )

    def run(self) -> CycleResult:
        started_at = int(time.time())
        start = time.monotonic()
        self._log("Starting")

        cfg = self.config.snapshot()

        state = self._fetch_state(cfg)
        self._log("Got state of all local channels")
        aliases = self.gateway.list_nodes()

        first_pass = self._inspect(state, cfg)
        self._record_pass("first", first_pass)

        if not first_pass:
            duration = time.monotonic() - start
            self._log(f"All good. Duration: {int(duration)}s")
            return CycleResult(CycleStage.ALL_GOOD, started_at, duration)

        self.actuator.remediate(first_pass, channels_by_peer(state.channels))

        state = self._fetch_state(cfg)
        final_pass = self._inspect(state, cfg)
        self._record_pass("final", final_pass)

        if not final_pass:
            duration = time.monotonic() - start
            self._log(f"All good after remediation. Duration: {int(duration)}s")
            return CycleResult(CycleStage.RESOLVED, started_at, duration,
                               first_pass=first_pass.to_dict())

        body = render_alert_body(first_pass, final_pass, aliases)
        self._log(f"Sending notifications. Duration: {int(time.monotonic() - start)}s")
        dispatch_results = self.notifier.notify(cfg, REPORT_SUBJECT, body)

        return CycleResult(
            CycleStage.ALERTED, started_at, time.monotonic() - start,
            first_pass=first_pass.to_dict(),
            final_pass=final_pass.to_dict(),
            alert_body=body,
            dispatch_results=dispatch_results,
        )
