"""
Network components for the bitcoin/lightning regtest network.

These descriptors are the only state handed to the process launcher. They are
created by :mod:`lnnetkit.lib.topology` and mutated by the orchestrator.
"""
from enum import IntEnum
from typing import Dict, List, Optional


class Status(IntEnum):
    STARTING = 0
    STARTED = 1
    STOPPING = 2
    STOPPED = 3
    ERROR = 4


class CommonNode(object):
    type: str

    def __init__(self, id: int, network_id: int, name: str,
                 implementation: str, version: str,
                 status: Status = Status.STOPPED,
                 ports: Optional[Dict[str, int]] = None):
        """
        :param id: int: unique within the node kind of a network
        :param network_id: int
        :param name: str: unique human readable identifier, e.g. alice
        :param implementation: str: e.g. LND, c-lightning, eclair, bitcoind
        :param version: str
        :param status: Status
        :param ports: dict: role -> port number
        """
        self.id = id
        self.network_id = network_id
        self.name = name
        self.implementation = implementation
        self.version = version
        self.status = status
        self.ports = ports or {}
        self.error_msg: Optional[str] = None

    def __repr__(self):
        return (f'<{type(self).__name__} {self.name} '
                f'{self.implementation} v{self.version} {self.status.name}>')


class BitcoinNode(CommonNode):
    type = 'bitcoin'

    def __init__(self, *args, peer_names: Optional[List[str]] = None,
                 **kwargs):
        super().__init__(*args, **kwargs)
        self.peer_names = peer_names or []


class LightningNode(CommonNode):
    type = 'lightning'

    def __init__(self, *args, backend_name: str = '',
                 paths: Optional[Dict[str, str]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.backend_name = backend_name
        self.paths = paths or {}


class Network(object):
    """
    A regtest topology of bitcoin backends and lightning nodes.
    """
    def __init__(self, id: int, name: str, path: str,
                 status: Status = Status.STOPPED):
        self.id = id
        self.name = name
        self.path = path
        self.status = status
        self.bitcoin_nodes: List[BitcoinNode] = []
        self.lightning_nodes: List[LightningNode] = []

    @property
    def nodes(self) -> List[CommonNode]:
        return [*self.bitcoin_nodes, *self.lightning_nodes]

    def node_by_name(self, name) -> CommonNode:
        for node in self.nodes:
            if node.name == name:
                return node
        raise KeyError(f"Node '{name}' not found in network '{self.name}'")

    def backend_of(self, node: LightningNode) -> BitcoinNode:
        """
        Returns the bitcoin node backing a lightning node.
        """
        for btc_node in self.bitcoin_nodes:
            if btc_node.name == node.backend_name:
                return btc_node
        raise KeyError(
            f"Backend '{node.backend_name}' of {node.name} not found in "
            f"network '{self.name}'")

    def started_lightning_nodes(self) -> List[LightningNode]:
        return [n for n in self.lightning_nodes if n.status == Status.STARTED]

    def __repr__(self):
        return f'<Network {self.id} {self.name} {self.status.name}>'
