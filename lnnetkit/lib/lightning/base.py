"""
The contract every lightning implementation is normalized to.
"""
from abc import ABC, abstractmethod
import logging
from typing import List, Optional

from lnnetkit.lib.common import (
    WAIT_UNTIL_ONLINE_INTERVAL, WAIT_UNTIL_ONLINE_TIMEOUT
)
from lnnetkit.lib.errors import WrongAdapterForNode
from lnnetkit.lib.types import (
    Channel, ChannelPoint, NodeAddress, NodeBalances, NodeInfo, Peer,
    PayReceipt
)
from lnnetkit.lib.utils import wait_for

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def parse_rpc_url(rpc_url):
    """
    Splits a connection string of the form pubkey@host:port.

    :param rpc_url: str
    :return: (pubkey, host), host is empty if not given
    """
    pubkey, _, host = rpc_url.partition('@')
    if not pubkey:
        raise ValueError(f"Invalid node identifier '{rpc_url}'")
    return pubkey, host


class LightningService(ABC):
    """
    Normalizes the api of one lightning implementation.

    All public methods take the node descriptor as first argument and refuse
    nodes of other implementations.
    """
    # implementation tag of the nodes this service works with
    implementation: str
    # seconds to wait for the node to process newly mined blocks
    settle_delay: float

    def __init__(self):
        self._clients = {}

    def cast(self, node):
        if node.implementation != self.implementation:
            raise WrongAdapterForNode(
                type(self).__name__, self.implementation, node.implementation)
        return node

    def client(self, node):
        """
        Returns the REST client of a node. Credentials are read once per node
        and port, the client is reused for all further requests.
        """
        key = (node.name, node.ports['rest'])
        if key not in self._clients:
            self._clients[key] = self.create_client(node)
        return self._clients[key]

    def drop_client(self, node):
        for key in [k for k in self._clients if k[0] == node.name]:
            del self._clients[key]

    @abstractmethod
    def create_client(self, node):
        pass

    @abstractmethod
    async def get_info(self, node) -> NodeInfo:
        pass

    @abstractmethod
    async def get_balances(self, node) -> NodeBalances:
        pass

    @abstractmethod
    async def get_new_address(self, node) -> NodeAddress:
        pass

    @abstractmethod
    async def get_channels(self, node) -> List[Channel]:
        """
        Returns the channels initiated by the node, which are not closed.
        """

    @abstractmethod
    async def get_peers(self, node) -> List[Peer]:
        pass

    @abstractmethod
    async def connect_peer(self, node, to_rpc_url: str):
        pass

    @abstractmethod
    async def _fund_channel(self, node, pubkey: str,
                            amount: int) -> ChannelPoint:
        pass

    @abstractmethod
    async def close_channel(self, node, channel_point: str):
        pass

    @abstractmethod
    async def create_invoice(self, node, amount: int,
                             memo: Optional[str] = None) -> str:
        pass

    @abstractmethod
    async def pay_invoice(self, node, invoice: str,
                          amount: Optional[int] = None) -> PayReceipt:
        pass

    async def open_channel(self, node, to_rpc_url, amount) -> ChannelPoint:
        """
        Opens a channel to another node, connects to it first if necessary.

        :param node: LightningNode: the funding node
        :param to_rpc_url: str: pubkey@host:port of the remote node
        :param amount: int or str: channel capacity in satoshis
        :return: ChannelPoint
        """
        self.cast(node)
        pubkey, _ = parse_rpc_url(to_rpc_url)
        peers = await self.get_peers(node)
        if not any(p.pubkey == pubkey for p in peers):
            logger.info("%s: Connecting to %s", node.name, to_rpc_url)
            await self.connect_peer(node, to_rpc_url)
        logger.info("%s: Open channel to %s with %s sats", node.name, pubkey,
                    amount)
        return await self._fund_channel(node, pubkey, int(amount))

    async def wait_until_online(self, node,
                                interval=WAIT_UNTIL_ONLINE_INTERVAL,
                                timeout=WAIT_UNTIL_ONLINE_TIMEOUT):
        """
        Polls the node until it answers api calls.
        """
        self.cast(node)

        async def probe():
            return await self.get_info(node)

        return await wait_for(probe, interval, timeout)
