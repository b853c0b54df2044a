"""
Cache of the latest state polled from the lightning nodes.

The cache is never the source of truth, every entry is overwritten by the next
successful poll of the node.
"""
from typing import Dict, List, Optional

from lnnetkit.lib.types import Channel, NodeBalances, NodeInfo


class NodeState(object):
    def __init__(self):
        self.info: Optional[NodeInfo] = None
        self.wallet_balance: Optional[NodeBalances] = None
        # None means the channels were not polled yet
        self.channels: Optional[List[Channel]] = None

    def __repr__(self):
        return (f'<NodeState info={self.info} '
                f'wallet_balance={self.wallet_balance} '
                f'channels={self.channels}>')


class LightningStore(object):
    """
    Maps node names to their latest normalized state.
    """
    def __init__(self):
        self.nodes: Dict[str, NodeState] = {}

    def _state(self, node) -> NodeState:
        if node.name not in self.nodes:
            self.nodes[node.name] = NodeState()
        return self.nodes[node.name]

    def get(self, name) -> Optional[NodeState]:
        return self.nodes.get(name)

    def set_info(self, node, info):
        self._state(node).info = info

    def set_wallet_balance(self, node, balance):
        self._state(node).wallet_balance = balance

    def set_channels(self, node, channels):
        self._state(node).channels = channels

    def remove_node(self, name):
        self.nodes.pop(name, None)
