"""
Module for driving funding and channel workflows on a regtest network.

The orchestrator glues the bitcoind and lightning services together. It keeps
the latest state of the lightning nodes in a :class:`LightningStore` and a
graph of every network, which is resynced after channel changes.
"""
import asyncio
import logging

from lnnetkit.lib.chart import init_chart_from_network, update_chart_from_nodes
from lnnetkit.lib.common import BLOCKS_TIL_CONFIRMED
from lnnetkit.lib.events import BlocksMined, EventChannel
from lnnetkit.lib.store import LightningStore, NodeState
from lnnetkit.lib.utils import delay, format_dict, from_sats_numeric

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class Orchestrator(object):
    """
    Runs the workflows of regtest networks.

    Every workflow awaits its steps in order, the first failing step aborts
    the workflow and its exception is propagated.
    """
    def __init__(self, lightning_factory, bitcoind_service, store=None,
                 events=None):
        """
        :param lightning_factory: LightningFactory
        :param bitcoind_service: BitcoindService
        :param store: LightningStore: a fresh store if not given
        :param events: EventChannel: a fresh channel if not given
        """
        self.lightning_factory = lightning_factory
        self.bitcoind = bitcoind_service
        self.store = store if store is not None else LightningStore()
        self.events = events if events is not None else EventChannel()
        self.networks = {}
        self.charts = {}

        self.events.subscribe(self.mine_listener)

    def add_network(self, network):
        self.networks[network.id] = network
        self.charts[network.id] = init_chart_from_network(network)
        logger.debug("NET: Added network %s.", network)

    def network_by_id(self, network_id):
        try:
            return self.networks[network_id]
        except KeyError:
            raise KeyError(
                f'Network with id {network_id} not found') from None

    def _service(self, node):
        return self.lightning_factory.get_service(node)

    # node state
    async def get_info(self, node):
        info = await self._service(node).get_info(node)
        self.store.set_info(node, info)
        return info

    async def get_wallet_balance(self, node):
        balance = await self._service(node).get_balances(node)
        self.store.set_wallet_balance(node, balance)
        return balance

    async def get_channels(self, node):
        channels = await self._service(node).get_channels(node)
        self.store.set_channels(node, channels)
        return channels

    async def get_all_info(self, node):
        await self.get_info(node)
        await self.get_wallet_balance(node)
        await self.get_channels(node)
        return self.store.get(node.name)

    def remove_node(self, node):
        """
        Removes a lightning node from its network, its cached state and the
        graph.
        """
        network = self.network_by_id(node.network_id)
        network.lightning_nodes.remove(node)
        self.store.remove_node(node.name)

        chart = self.charts.get(network.id)
        if chart:
            chart['nodes'].pop(node.name, None)
            for link_id, link in list(chart['links'].items()):
                if node.name in (link['from']['nodeId'],
                                 link['to']['nodeId']):
                    del chart['links'][link_id]
        logger.info("NET: Removed %s from network %s.", node.name,
                    network.name)

    # workflows
    async def mine(self, blocks, node):
        """
        Mines blocks on a bitcoin node and notifies the listeners.

        :param blocks: int
        :param node: BitcoinNode
        :return: list of block hashes
        """
        block_hashes = await self.bitcoind.mine(blocks, node)
        self.events.emit(BlocksMined(blocks, node))
        return block_hashes

    async def deposit_funds(self, node, sats):
        """
        Sends on-chain funds from the backing bitcoin node to a lightning node.

        :param node: LightningNode
        :param sats: int or str: amount in satoshis
        :return: NodeBalances: the refreshed wallet balance
        """
        network = self.network_by_id(node.network_id)
        btc_node = network.backend_of(node)
        address = await self._service(node).get_new_address(node)
        coins = from_sats_numeric(sats)
        logger.info("%s: Depositing %s sats from %s.", node.name, sats,
                    btc_node.name)
        await self.bitcoind.send_funds(btc_node, address.address, coins)
        await self.mine(BLOCKS_TIL_CONFIRMED, btc_node)
        await self.wait_for_nodes([node])
        return await self.get_wallet_balance(node)

    async def open_channel(self, from_node, to_node, sats, auto_fund=False):
        """
        Opens a channel between two lightning nodes.

        :param from_node: LightningNode: the funding node
        :param to_node: LightningNode
        :param sats: int or str: capacity in satoshis
        :param auto_fund: bool: deposit twice the capacity to the funding node
            first
        :return: ChannelPoint
        """
        if auto_fund:
            await self.deposit_funds(from_node, int(sats) * 2)

        # the remote node's connection string is part of its info
        state = self.store.get(to_node.name)
        if state is None or state.info is None:
            await self.get_info(to_node)
        rpc_url = self.store.get(to_node.name).info.rpc_url

        channel_point = await self._service(from_node).open_channel(
            from_node, rpc_url, sats)

        network = self.network_by_id(from_node.network_id)
        await self.mine(BLOCKS_TIL_CONFIRMED, network.backend_of(from_node))
        await self.wait_for_nodes([from_node, to_node])
        await self.sync_chart(network)
        return channel_point

    async def close_channel(self, node, channel_point):
        """
        Closes a channel and mines a block to confirm the closing transaction.
        """
        await self._service(node).close_channel(node, channel_point)

        network = self.network_by_id(node.network_id)
        await self.mine(1, network.backend_of(node))
        await self.wait_for_nodes([node])
        await self.sync_chart(network)

    async def create_invoice(self, node, amount, memo=None):
        return await self._service(node).create_invoice(node, amount, memo)

    async def pay_invoice(self, node, invoice, amount=None):
        """
        Pays an invoice, the graph is resynced as channel balances changed.

        :return: PayReceipt
        """
        receipt = await self._service(node).pay_invoice(node, invoice, amount)
        logger.info("%s: Paid %s sats to %s.", node.name, receipt.amount,
                    receipt.destination)
        await self.sync_chart(self.network_by_id(node.network_id))
        return receipt

    async def wait_for_nodes(self, nodes):
        """
        Gives the nodes time to process new blocks.

        Waits for the longest settle delay of the nodes' implementations.
        """
        delays = [self._service(n).settle_delay for n in nodes]
        if delays:
            await delay(max(delays))

    async def mine_listener(self, event):
        """
        Refreshes all started lightning nodes of a network after blocks were
        mined in it.
        """
        network = self.network_by_id(event.node.network_id)
        await self.wait_for_nodes(network.lightning_nodes)
        await asyncio.gather(*[self.get_all_info(n)
                               for n in network.started_lightning_nodes()])

    async def sync_chart(self, network):
        """
        Refreshes the started lightning nodes and updates the network's graph
        with their channels.

        :return: dict: the new graph
        """
        await asyncio.gather(*[self.get_all_info(n)
                               for n in network.started_lightning_nodes()])
        chart = self.charts.get(network.id) or init_chart_from_network(network)
        nodes_data = {n.name: self.store.get(n.name) or NodeState()
                      for n in network.lightning_nodes}
        self.charts[network.id] = update_chart_from_nodes(chart, nodes_data)
        logger.debug("NET: Links of %s:\n%s", network.name,
                     format_dict(self.charts[network.id]['links']))
        return self.charts[network.id]
