"""
Channel Health module for cl-vitality

Classifies every open channel against independent anomaly rules and
collects human readable findings per peer ("slackers"):

1. Status lines: errors reported by the channel state machine, fee
   disagreements, stuck HTLCs and lost channel state
2. Disconnection: peer is offline and lightningd is not going to retry
3. Expiring HTLCs: an HTLC is close to (or past) its expiry height
4. Gossip consistency: missing, one-sided, inactive or non-public
   announcements for a connected channel

Only channels in CHANNELD_NORMAL or CHANNELD_AWAITING_SPLICE are looked
at. Rules are additive: one channel can produce several findings.
"""

from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from .config import ConfigSnapshot
from .gossip import GossipIndex, gossip_floor, is_gossip_warm
from .rpc_gateway import INSPECTED_STATES, PeerChannel


class SlackerReport:
    """
    Ordered mapping of peer_id -> findings for one inspection pass.

    Findings are only ever appended; peers keep the order in which their
    first finding was discovered.
    """

    def __init__(self):
        self._findings: Dict[str, List[str]] = {}

    def add(self, peer_id: str, finding: str) -> None:
        self._findings.setdefault(peer_id, []).append(finding)

    def findings(self, peer_id: str) -> List[str]:
        return list(self._findings.get(peer_id, []))

    def peers(self) -> List[str]:
        return list(self._findings)

    def items(self) -> Iterator[Tuple[str, List[str]]]:
        for peer_id, findings in self._findings.items():
            yield peer_id, list(findings)

    def total_findings(self) -> int:
        return sum(len(f) for f in self._findings.values())

    def to_dict(self) -> Dict[str, List[str]]:
        return {peer_id: list(findings) for peer_id, findings in self._findings.items()}

    def __contains__(self, peer_id: object) -> bool:
        return peer_id in self._findings

    def __len__(self) -> int:
        return len(self._findings)

    def __bool__(self) -> bool:
        return bool(self._findings)

    def __repr__(self) -> str:
        return f"SlackerReport({self._findings!r})"


class HealthInspector:
    """
    Runs the anomaly rules over a listpeerchannels snapshot.

    The inspector is stateless between calls; every inspect() returns a
    fresh SlackerReport.
    """

    def __init__(self, plugin):
        self.plugin = plugin

    def _warn(self, message: str) -> None:
        self.plugin.log(f"check_channel: {message}", level='warn')

    def inspect(self, channels: Sequence[PeerChannel], config: ConfigSnapshot,
                current_height: int, network: str,
                gossip_index: Optional[GossipIndex] = None) -> SlackerReport:
        """
        Classify each inspected channel and collect findings per peer.

        Args:
            channels: listpeerchannels snapshot
            config: Snapshot taken at cycle start
            current_height: Current block height
            network: Network name from getinfo (scales the gossip floor)
            gossip_index: Output of GossipIndexBuilder, None when gossip
                watching is off

        Returns:
            SlackerReport with one entry per peer that has findings
        """
        report = SlackerReport()
        # Peers that already got a specific status-line finding in this pass
        peers_with_errors: Set[str] = set()

        gossip_warm = False
        if gossip_index is not None and config.watch_gossip:
            gossip_warm = is_gossip_warm(gossip_index, network)
            if not gossip_warm:
                self._warn(
                    f"gossip_store still too empty ({len(gossip_index)} <= "
                    f"{gossip_floor(network)} on {network}), skipping gossip checks"
                )

        inspected = [
            chan for chan in channels
            if chan.state in INSPECTED_STATES and chan.peer_id
        ]

        if config.watch_channels:
            # Status lines of every channel first: the disconnection rule is
            # suppressed per peer, whatever order the channels come in
            will_reconnect = [
                self._check_status(chan, config, report, peers_with_errors)
                for chan in inspected
            ]
            for chan, contained_reconnect in zip(inspected, will_reconnect):
                self._check_disconnected(chan, contained_reconnect, report, peers_with_errors)

        for chan in inspected:
            if config.expiring_htlcs > 0:
                self._check_htlcs(chan, config.expiring_htlcs, current_height, report)

            if gossip_warm and chan.connected:
                self._check_gossip(chan, gossip_index, report)

        return report

    def _check_status(self, chan: PeerChannel, config: ConfigSnapshot,
                      report: SlackerReport, peers_with_errors: Set[str]) -> bool:
        """Scan status lines; returns True if lightningd will reconnect on its own."""
        peer_id = chan.peer_id
        contained_reconnect = False

        for status in chan.status:
            lowered = status.lower()
            if "error" in lowered:
                self._warn(
                    f"Found peer with error in status but not in closing state: "
                    f"{peer_id} status: {status}"
                )
                report.add(
                    peer_id,
                    f"Found peer with error in status but not in closing state. Status: {status}"
                )
                peers_with_errors.add(peer_id)
            if config.watch_gossip:
                if "update_fee" in lowered:
                    self._warn(f"Can't agree on fee with: {peer_id} status: {status}")
                    report.add(peer_id, f"Can't agree on fee. Status: {status}")
                    peers_with_errors.add(peer_id)
                if "htlc" in lowered:
                    self._warn(f"{peer_id} status: {status}")
                    report.add(peer_id, f"Status: {status}")
                    peers_with_errors.add(peer_id)
            if "will attempt reconnect" in lowered:
                contained_reconnect = True

        if config.watch_gossip and chan.lost_state:
            self._warn(
                f"Lost state with: {peer_id} status: "
                "we are fallen behind i.e. lost some channel state"
            )
            report.add(
                peer_id,
                "Lost state. Status: we are fallen behind i.e. lost some channel state"
            )
            peers_with_errors.add(peer_id)

        return contained_reconnect

    def _check_disconnected(self, chan: PeerChannel, contained_reconnect: bool,
                            report: SlackerReport, peers_with_errors: Set[str]) -> None:
        # connected=None means lightningd did not say; nothing to report
        if chan.connected is not False:
            return
        if contained_reconnect or chan.peer_id in peers_with_errors:
            return
        statuses = "\n".join(chan.status)
        self._warn(
            f"Found disconnected peer that does not want to reconnect: "
            f"{chan.peer_id} status instead is: {statuses}"
        )
        report.add(
            chan.peer_id,
            f"Found disconnected peer that does not want to reconnect. "
            f"Status instead is: {statuses}"
        )

    def _check_htlcs(self, chan: PeerChannel, threshold: int, current_height: int,
                     report: SlackerReport) -> None:
        for htlc in chan.htlcs:
            if htlc.expiry is None:
                continue
            remaining = htlc.expiry - current_height
            if remaining < 0:
                self._warn(
                    f"Found peer {chan.peer_id} with channel {chan.label} with expired "
                    f"htlc: {-remaining} blocks past expiry"
                )
                report.add(
                    chan.peer_id,
                    f"Found channel {chan.label} with expired htlc: "
                    f"{-remaining} blocks past expiry"
                )
            elif remaining < threshold:
                self._warn(
                    f"Found peer {chan.peer_id} with channel {chan.label} with close "
                    f"to expiry htlc: {remaining} blocks"
                )
                report.add(
                    chan.peer_id,
                    f"Found channel {chan.label} with close to expiry htlc: {remaining} blocks"
                )

    def _check_gossip(self, chan: PeerChannel, gossip_index: GossipIndex,
                      report: SlackerReport) -> None:
        scid = chan.short_channel_id
        if scid is None:
            return
        peer_id = chan.peer_id
        chan_gossip = gossip_index.get(scid, [])

        if not chan_gossip:
            self._warn(f"Found peer {peer_id} with channel {scid} with no gossip")
            report.add(peer_id, f"Found channel {scid} with no gossip")
            return

        if len(chan_gossip) == 1:
            self._warn(f"Found connected peer {peer_id} with channel {scid} with one-sided gossip")
            report.add(peer_id, f"Found connected channel {scid} with one-sided gossip")
            return

        public = chan.private is False
        for side in chan_gossip:
            if not side.active:
                self._warn(
                    f"Found connected peer {peer_id} with channel {scid} with inactive gossip"
                )
                report.add(peer_id, f"Found connected channel {scid} with inactive gossip")
            if public and not side.public:
                self._warn(
                    f"Found public peer {peer_id} with channel {scid} with non-public gossip"
                )
                report.add(peer_id, f"Found public channel {scid} with non-public gossip")
