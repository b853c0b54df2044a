"""
Module for starting and stopping regtest networks.

The processes of the nodes are run by a :class:`NodeLauncher`, which is not
part of this package. The controller takes care of everything around it:
images, ports, waiting for the nodes to come online and peering the bitcoin
backends.
"""
from abc import ABC, abstractmethod
import asyncio
import logging

from lnnetkit.lib.errors import WrongAdapterForNode
from lnnetkit.lib.network_components import BitcoinNode, Status
from lnnetkit.lib.topology import (
    apply_open_ports, get_missing_images, get_open_ports
)

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class NodeLauncher(ABC):
    """
    Runs the node processes of a network, e.g. as containers.
    """
    @abstractmethod
    async def pull_images(self, images):
        pass

    @abstractmethod
    async def start(self, network):
        pass

    @abstractmethod
    async def stop(self, network):
        pass


class NetworkController(object):
    def __init__(self, orchestrator, launcher):
        """
        :param orchestrator: Orchestrator
        :param launcher: NodeLauncher
        """
        self.orchestrator = orchestrator
        self.launcher = launcher

    def _set_status(self, network, status):
        network.status = status
        for node in network.nodes:
            node.status = status
            node.error_msg = None

    async def start(self, network, pulled_images=()):
        """
        Starts a network and waits for all nodes to come online.

        Nodes that don't come online are marked with Status.ERROR, the other
        nodes are still usable.

        :param network: Network
        :param pulled_images: images which are already available to the
            launcher
        :return: dict: the graph of the network
        """
        logger.info("NET: Starting network %s.", network.name)
        missing = get_missing_images(network, pulled_images)
        if missing:
            await self.launcher.pull_images(missing)

        apply_open_ports(network, get_open_ports(network))

        self._set_status(network, Status.STARTING)
        try:
            await self.launcher.start(network)
        except Exception:
            self._set_status(network, Status.ERROR)
            raise

        await asyncio.gather(*[self._wait_for_node(n) for n in network.nodes])

        network.status = Status.STARTED
        failed = [n.name for n in network.nodes if n.status == Status.ERROR]
        if failed:
            logger.warning("NET: Network %s started, nodes %s failed.",
                           network.name, failed)
        else:
            logger.info("NET: Network %s started.", network.name)

        if network.id not in self.orchestrator.networks:
            self.orchestrator.add_network(network)
        return await self.orchestrator.sync_chart(network)

    async def _wait_for_node(self, node):
        try:
            if isinstance(node, BitcoinNode):
                bitcoind = self.orchestrator.bitcoind
                await bitcoind.wait_until_online(node)
                await bitcoind.connect_peers(node)
            else:
                service = self.orchestrator.lightning_factory.get_service(node)
                await service.wait_until_online(node)
        except WrongAdapterForNode:
            raise
        except Exception as e:
            node.status = Status.ERROR
            node.error_msg = str(e)
            logger.error("NET: %s failed to start: %s", node.name, e)
        else:
            node.status = Status.STARTED
            logger.debug("NET: %s is online.", node.name)

    async def stop(self, network):
        """
        Stops all nodes of a network and drops their cached state.
        """
        logger.info("NET: Stopping network %s.", network.name)
        self._set_status(network, Status.STOPPING)
        await self.launcher.stop(network)
        self._set_status(network, Status.STOPPED)
        factory = self.orchestrator.lightning_factory
        for node in network.lightning_nodes:
            self.orchestrator.store.remove_node(node.name)
            factory.get_service(node).drop_client(node)
