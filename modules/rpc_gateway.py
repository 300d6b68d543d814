"""
RPC Gateway module for cl-vitality

Typed request/response wrapper around the pyln-client RPC interface.
Every call is a single request with no retries; errors (RpcError,
transport OSErrors) propagate to the caller.

pyln-client's RPC is not inherently thread-safe for concurrent calls,
and both background loops share it, so all calls are serialized through
one lock.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pyln.client import Plugin, RpcError


class ChannelLifecycle(Enum):
    """
    Channel states reported by listpeerchannels.

    Only NORMAL and AWAITING_SPLICE are inspected for health; every
    state the plugin does not care about collapses into OTHER.
    """
    NORMAL = "CHANNELD_NORMAL"
    AWAITING_SPLICE = "CHANNELD_AWAITING_SPLICE"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional['ChannelLifecycle']:
        if raw is None:
            return None
        for state in cls:
            if state.value == raw:
                return state
        return cls.OTHER


INSPECTED_STATES = frozenset({ChannelLifecycle.NORMAL, ChannelLifecycle.AWAITING_SPLICE})


@dataclass(frozen=True)
class Htlc:
    """An in-flight HTLC on one channel."""
    expiry: Optional[int] = None
    direction: Optional[str] = None

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> 'Htlc':
        return cls(expiry=data.get("expiry"), direction=data.get("direction"))


@dataclass(frozen=True)
class PeerChannel:
    """
    Snapshot of one channel as returned by listpeerchannels.

    Attributes:
        peer_id: Node ID of the peer
        short_channel_id: None for channels that are not announced yet
        state: Parsed lifecycle state, None when lightningd omits it
        connected: peer_connected flag, None when absent
        private: None when absent
        status: Free-text status lines from the channel state machine
        htlcs: In-flight HTLCs
        lost_state: True if we fell behind and lost channel state
    """
    peer_id: str
    short_channel_id: Optional[str] = None
    state: Optional[ChannelLifecycle] = None
    connected: Optional[bool] = None
    private: Optional[bool] = None
    status: List[str] = field(default_factory=list)
    htlcs: List[Htlc] = field(default_factory=list)
    lost_state: bool = False

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> 'PeerChannel':
        return cls(
            peer_id=data.get("peer_id", ""),
            short_channel_id=data.get("short_channel_id"),
            state=ChannelLifecycle.parse(data.get("state")),
            connected=data.get("peer_connected"),
            private=data.get("private"),
            status=list(data.get("status") or []),
            htlcs=[Htlc.from_rpc(h) for h in (data.get("htlcs") or [])],
            lost_state=bool(data.get("lost_state", False)),
        )

    @property
    def label(self) -> str:
        """Channel name for messages."""
        return self.short_channel_id or "unannounced channel"


@dataclass(frozen=True)
class GossipRecord:
    """One directional channel announcement from listchannels."""
    short_channel_id: str
    active: bool
    public: bool
    source: str = ""
    destination: str = ""

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> 'GossipRecord':
        return cls(
            short_channel_id=data.get("short_channel_id", ""),
            active=bool(data.get("active", False)),
            public=bool(data.get("public", False)),
            source=data.get("source", ""),
            destination=data.get("destination", ""),
        )


@dataclass(frozen=True)
class NodeInfo:
    """The parts of getinfo the plugin uses."""
    node_id: str
    blockheight: int
    network: str

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> 'NodeInfo':
        return cls(
            node_id=data.get("id", ""),
            blockheight=int(data.get("blockheight", 0)),
            network=data.get("network", "bitcoin"),
        )


def rpc_error_message(error: Exception) -> str:
    """Extract the human readable message from an RpcError."""
    details = getattr(error, "error", None)
    if isinstance(details, dict) and details.get("message"):
        return str(details["message"])
    return str(error)


class RpcGateway:
    """
    Serialized, typed access to lightningd.

    Usage:
        gateway = RpcGateway(plugin)
        info = gateway.get_info()
        channels = gateway.list_peer_channels()
    """

    def __init__(self, plugin: Plugin):
        self.plugin = plugin
        self._lock = threading.Lock()

    def _call(self, method: str, **kwargs) -> Dict[str, Any]:
        with self._lock:
            return getattr(self.plugin.rpc, method)(**kwargs)

    def get_info(self) -> NodeInfo:
        return NodeInfo.from_rpc(self._call("getinfo"))

    def list_peer_channels(self, peer_id: Optional[str] = None) -> List[PeerChannel]:
        kwargs = {"peer_id": peer_id} if peer_id else {}
        result = self._call("listpeerchannels", **kwargs)
        channels = result.get("channels")
        if channels is None:
            raise RpcError("listpeerchannels", kwargs, {"message": "No channels found"})
        return [PeerChannel.from_rpc(c) for c in channels]

    def list_nodes(self, node_id: Optional[str] = None) -> Dict[str, str]:
        """Return node_id -> alias for every node that announced an alias."""
        kwargs = {"node_id": node_id} if node_id else {}
        result = self._call("listnodes", **kwargs)
        return {
            node["nodeid"]: node["alias"]
            for node in result.get("nodes", [])
            if node.get("nodeid") and node.get("alias")
        }

    def list_channels(self, short_channel_id: Optional[str] = None,
                      source: Optional[str] = None,
                      destination: Optional[str] = None) -> List[GossipRecord]:
        kwargs = {
            k: v for k, v in (
                ("short_channel_id", short_channel_id),
                ("source", source),
                ("destination", destination),
            ) if v is not None
        }
        result = self._call("listchannels", **kwargs)
        return [GossipRecord.from_rpc(c) for c in result.get("channels", [])]

    def connect(self, peer_id: str, host: Optional[str] = None,
                port: Optional[int] = None) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"peer_id": peer_id}
        if host is not None:
            kwargs["host"] = host
        if port is not None:
            kwargs["port"] = port
        return self._call("connect", **kwargs)

    def disconnect(self, peer_id: str, force: bool = True) -> Dict[str, Any]:
        return self._call("disconnect", peer_id=peer_id, force=force)

    def sign_message(self, message: str) -> str:
        """Sign message with the node key and return the zbase signature."""
        result = self._call("signmessage", message=message)
        zbase = result.get("zbase")
        if not zbase:
            raise RpcError("signmessage", {"message": message},
                           {"message": f"Unexpected result in signmessage: {result}"})
        return zbase
