"""
Gossip Index module for cl-vitality

Builds an index of every channel announcement the node knows about,
keyed by short channel id. A fully announced channel has two directional
records, a one-sided one has one, and a channel nobody gossiped about
has none.

Right after lightningd starts the gossip store can be nearly empty, so
gossip findings are only trusted once the index holds at least a
network-scaled number of channels (see is_gossip_warm).
"""

import time
from collections import defaultdict
from typing import Dict, List

from .rpc_gateway import GossipRecord, RpcGateway


GossipIndex = Dict[str, List[GossipRecord]]

# Minimum index size before gossip is considered synced, per network
GOSSIP_WARM_FLOOR: Dict[str, int] = {
    "bitcoin": 30000,
    "testnet": 3000,
    "testnet4": 3000,
    "signet": 300,
    "regtest": 0,
}


def gossip_floor(network: str) -> int:
    """Warmth floor for a network; unknown networks use the mainnet floor."""
    return GOSSIP_WARM_FLOOR.get(network, GOSSIP_WARM_FLOOR["bitcoin"])


def is_gossip_warm(index: GossipIndex, network: str) -> bool:
    """Warm once the index holds more entries than the floor; a zero floor is always warm."""
    floor = gossip_floor(network)
    return floor == 0 or len(index) > floor


class GossipIndexBuilder:
    """Fetches listchannels and groups the records per channel."""

    def __init__(self, gateway: RpcGateway, plugin):
        self.gateway = gateway
        self.plugin = plugin

    def build_index(self) -> GossipIndex:
        """
        Fetch all channel announcements and group them by short channel id.

        Directional duplicates are kept; nothing is filtered. RPC errors
        propagate.
        """
        start = time.monotonic()
        self.plugin.log("check_channel: getting our gossip...", level='debug')

        index: Dict[str, List[GossipRecord]] = defaultdict(list)
        for record in self.gateway.list_channels():
            index[record.short_channel_id].append(record)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        self.plugin.log(
            f"check_channel: got our gossip in {elapsed_ms}ms, gossip size: {len(index)}",
            level='debug'
        )
        return dict(index)
