"""
cl-vitality modules package

This package contains the core modules for the vitality plugin:
- config: Plugin options, runtime configuration and snapshots
- rpc_gateway: Typed, serialized access to lightningd RPC
- gossip: Gossip index of the node's view of the channel graph
- channel_health: Per-channel inspection rules
- remediation: Forced disconnect/reconnect of slacker peers
- health_cycle: Inspect, remediate, confirm and alert
- reachability: Amboss online ping
- notifier: Email and Telegram alerts
- scheduler: Background loops
- metrics: Prometheus exporter
"""

from .config import Config, ConfigSnapshot, OptionId, OptionKind
from .rpc_gateway import RpcGateway, PeerChannel, GossipRecord, NodeInfo, ChannelLifecycle
from .gossip import GossipIndexBuilder
from .channel_health import HealthInspector, SlackerReport
from .remediation import RemediationActuator
from .health_cycle import HealthCheckCycle, CycleResult, CycleStage
from .reachability import ReachabilityProber, ReachabilityError
from .notifier import Notifier, NotificationError
from .scheduler import ChannelHealthLoop, ReachabilityLoop
from .metrics import PrometheusExporter, MetricNames

__all__ = [
    'Config',
    'ConfigSnapshot',
    'OptionId',
    'OptionKind',
    'RpcGateway',
    'PeerChannel',
    'GossipRecord',
    'NodeInfo',
    'ChannelLifecycle',
    'GossipIndexBuilder',
    'HealthInspector',
    'SlackerReport',
    'RemediationActuator',
    'HealthCheckCycle',
    'CycleResult',
    'CycleStage',
    'ReachabilityProber',
    'ReachabilityError',
    'Notifier',
    'NotificationError',
    'ChannelHealthLoop',
    'ReachabilityLoop',
    'PrometheusExporter',
    'MetricNames',
]
