"""
Remediation module for cl-vitality

Tries to shake a misbehaving peer loose by forcing a disconnect and
reconnecting. Two phases:

1. Disconnect (force=True) every reported peer that is currently connected,
   then give lightningd a settle delay
2. Reconnect every reported peer without address hints (lightningd resolves
   the address from gossip), then wait for the channels to restabilize

RPC failures in either phase are recorded as extra findings for the peer
and never abort the cycle.
"""

import threading
from typing import Dict, Optional, Sequence

from pyln.client import RpcError

from .channel_health import SlackerReport
from .rpc_gateway import PeerChannel, RpcGateway, rpc_error_message


SETTLE_SECONDS = 10        # After disconnects
RESTABILIZE_SECONDS = 30   # After reconnects, before re-inspection


def channels_by_peer(channels: Sequence[PeerChannel]) -> Dict[str, list]:
    """Group a listpeerchannels snapshot by peer id."""
    grouped: Dict[str, list] = {}
    for chan in channels:
        if chan.peer_id:
            grouped.setdefault(chan.peer_id, []).append(chan)
    return grouped


class RemediationActuator:
    """Forced disconnect/reconnect of slacker peers."""

    def __init__(self, gateway: RpcGateway, plugin,
                 shutdown_event: Optional[threading.Event] = None,
                 settle_seconds: int = SETTLE_SECONDS,
                 restabilize_seconds: int = RESTABILIZE_SECONDS):
        self.gateway = gateway
        self.plugin = plugin
        self.shutdown_event = shutdown_event or threading.Event()
        self.settle_seconds = settle_seconds
        self.restabilize_seconds = restabilize_seconds

    def _log(self, message: str, level: str = 'info') -> None:
        self.plugin.log(f"check_channel: {message}", level=level)

    def _wait(self, seconds: int) -> None:
        self._log(f"Waiting {seconds}s")
        self.shutdown_event.wait(seconds)

    def remediate(self, report: SlackerReport,
                  live_channels_by_peer: Dict[str, Sequence[PeerChannel]]) -> SlackerReport:
        """
        Disconnect and reconnect every peer in report.

        Args:
            report: Findings from the first inspection pass; extended in place
            live_channels_by_peer: Current channels grouped per peer

        Returns:
            The same report, with remediation failures appended
        """
        disconnects = 0
        for peer_id in report.peers():
            peer_channels = live_channels_by_peer.get(peer_id)
            if not peer_channels:
                continue
            if not any(chan.connected for chan in peer_channels):
                self._log(f"already disconnected from: {peer_id}")
                continue

            self._log(f"disconnecting from: {peer_id}")
            disconnects += 1
            try:
                self.gateway.disconnect(peer_id, force=True)
                self._log("disconnect successful")
            except RpcError as e:
                message = rpc_error_message(e)
                self._log(f"Could not disconnect from {peer_id}: {message}")
                report.add(peer_id, f"Could not disconnect: {message}")

        if disconnects:
            self._wait(self.settle_seconds)

        reconnects = 0
        for peer_id in report.peers():
            reconnects += 1
            try:
                self.gateway.connect(peer_id)
                self._log(f"connect successful: {peer_id}")
            except RpcError as e:
                message = rpc_error_message(e)
                self._log(f"Could not connect to {peer_id}: {message}")
                report.add(peer_id, f"Could not connect: {message}")

        if reconnects:
            self._wait(self.restabilize_seconds)

        return report
