"""
Pytest fixtures for cl-vitality tests.

Provides mock plugin, RPC, and channel/config builder fixtures.
"""

import os
import sys
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

# Add modules to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from modules.config import Config
from modules.rpc_gateway import ChannelLifecycle, GossipRecord, Htlc, PeerChannel


@pytest.fixture
def mock_plugin():
    """Create a mock plugin with basic functionality."""
    plugin = MagicMock()
    plugin.log = MagicMock()
    plugin.rpc = MagicMock()
    return plugin


@pytest.fixture
def mock_rpc(mock_plugin):
    """Create a mock RPC interface (attached to mock_plugin.rpc)."""
    rpc = mock_plugin.rpc

    # Default return values
    rpc.getinfo.return_value = {
        "id": "02" + "f" * 64,
        "alias": "test-node",
        "network": "regtest",
        "blockheight": 800000,
    }
    rpc.listpeerchannels.return_value = {"channels": []}
    rpc.listchannels.return_value = {"channels": []}
    rpc.listnodes.return_value = {"nodes": []}
    rpc.connect.return_value = {"id": "02" + "a" * 64}
    rpc.disconnect.return_value = {}
    rpc.signmessage.return_value = {"zbase": "d6tqaeuonjhi98mmont9m4wag7gg4krg1f4txonug3h31e9h6p6k6nbwjondnj46dkyausobstnk7fhyy998bhgc1yr98dfmhb4k54d7"}

    return rpc


@pytest.fixture
def sample_peer_ids() -> List[str]:
    """Sample peer node IDs for testing."""
    return [
        "02" + "a" * 64,
        "03" + "b" * 64,
        "02" + "c" * 64,
    ]


@pytest.fixture
def make_channel():
    """Factory for PeerChannel snapshots with healthy defaults."""
    def _make(peer_id: str,
              short_channel_id: Optional[str] = "800000x1x0",
              state: Optional[ChannelLifecycle] = ChannelLifecycle.NORMAL,
              connected: Optional[bool] = True,
              private: Optional[bool] = False,
              status: Optional[List[str]] = None,
              htlc_expiries: Optional[List[int]] = None,
              lost_state: bool = False) -> PeerChannel:
        return PeerChannel(
            peer_id=peer_id,
            short_channel_id=short_channel_id,
            state=state,
            connected=connected,
            private=private,
            status=list(status or []),
            htlcs=[Htlc(expiry=e, direction="out") for e in (htlc_expiries or [])],
            lost_state=lost_state,
        )
    return _make


@pytest.fixture
def make_config():
    """Factory for Config objects; keyword arguments override defaults."""
    def _make(**overrides: Any) -> Config:
        config = Config()
        for key, value in overrides.items():
            setattr(config, key, value)
        return config
    return _make


@pytest.fixture
def mail_and_telegram_config(make_config):
    """Config with both notification sinks fully configured."""
    return make_config(
        smtp_username="alerts",
        smtp_password="hunter2",
        smtp_server="smtp.example.com",
        smtp_port=587,
        email_from="node@example.com",
        email_to="ops@example.com",
        telegram_token="123:abc",
        telegram_usernames=["111", "222"],
    )


def gossip_pair(scid: str, active=(True, True), public=(True, True)) -> List[GossipRecord]:
    """Two directional announcements for one channel."""
    return [
        GossipRecord(short_channel_id=scid, active=active[0], public=public[0]),
        GossipRecord(short_channel_id=scid, active=active[1], public=public[1]),
    ]


def filler_gossip(count: int) -> Dict[str, List[GossipRecord]]:
    """A gossip index with count healthy unrelated channels."""
    index: Dict[str, List[GossipRecord]] = {}
    for i in range(count):
        scid = f"700000x{i}x0"
        index[scid] = gossip_pair(scid)
    return index


@pytest.fixture
def warm_gossip():
    """Factory for a gossip index big enough to pass the mainnet floor."""
    def _make(extra: Optional[Dict[str, List[GossipRecord]]] = None,
              size: int = 30001) -> Dict[str, List[GossipRecord]]:
        index = filler_gossip(size)
        index.update(extra or {})
        return index
    return _make


@pytest.fixture
def gossip_records():
    """Expose gossip_pair to tests."""
    return gossip_pair


def rpc_channel(peer_id: str, scid: str = "800000x1x0", state: str = "CHANNELD_NORMAL",
                connected: bool = True, status: Optional[List[str]] = None) -> Dict[str, Any]:
    """A listpeerchannels entry as lightningd returns it."""
    return {
        "peer_id": peer_id,
        "peer_connected": connected,
        "state": state,
        "short_channel_id": scid,
        "private": False,
        "status": list(status or []),
        "htlcs": [],
    }


@pytest.fixture
def make_rpc_channel():
    return rpc_channel
