from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock, Mock, patch

from lnnetkit.lib.errors import WaitTimeout, WrongAdapterForNode
from lnnetkit.lib.lightning import (
    CLightningService, LightningFactory, LndService
)
from lnnetkit.lib.network import NetworkController, NodeLauncher
from lnnetkit.lib.network_components import Status
from lnnetkit.lib.orchestrator import Orchestrator

from helpers import (
    ALICE_PUBKEY, BOB_PUBKEY, CAROL_PUBKEY, get_info, get_network,
    mock_lightning_service
)


class RecordingLauncher(NodeLauncher):
    def __init__(self):
        self.pulled = []
        self.started = []
        self.stopped = []

    async def pull_images(self, images):
        self.pulled.extend(images)

    async def start(self, network):
        self.started.append(network)

    async def stop(self, network):
        self.stopped.append(network)


class TestNetworkController(IsolatedAsyncioTestCase):
    def setUp(self):
        self.network = get_network(lnd_nodes=2, clightning_nodes=1,
                                   status=Status.STOPPED)
        self.alice, self.bob, self.carol = self.network.lightning_nodes
        infos = {
            'alice': get_info(ALICE_PUBKEY),
            'bob': get_info(BOB_PUBKEY),
            'carol': get_info(CAROL_PUBKEY),
        }
        self.lnd = mock_lightning_service(LndService(), infos)
        self.lnd.wait_until_online = AsyncMock()
        self.clightning = mock_lightning_service(CLightningService(), infos)
        self.clightning.wait_until_online = AsyncMock()

        self.bitcoind = Mock()
        self.bitcoind.wait_until_online = AsyncMock()
        self.bitcoind.connect_peers = AsyncMock()

        self.orchestrator = Orchestrator(
            LightningFactory([self.lnd, self.clightning]), self.bitcoind)
        self.launcher = RecordingLauncher()
        self.controller = NetworkController(self.orchestrator, self.launcher)

        patcher = patch('lnnetkit.lib.topology.is_port_available',
                        return_value=True)
        patcher.start()
        self.addCleanup(patcher.stop)

    async def test_start(self):
        chart = await self.controller.start(
            self.network, pulled_images=['bitcoind:0.19.0.1'])

        self.assertEqual(['lnd:0.8.2-beta', 'clightning:0.8.0'],
                         self.launcher.pulled)
        self.assertEqual([self.network], self.launcher.started)
        self.assertEqual(Status.STARTED, self.network.status)
        self.assertEqual([Status.STARTED] * 4,
                         [n.status for n in self.network.nodes])
        self.bitcoind.connect_peers.assert_awaited_once_with(
            self.network.bitcoin_nodes[0])
        self.assertEqual(2, self.lnd.wait_until_online.await_count)
        self.clightning.wait_until_online.assert_awaited_once_with(self.carol)

        self.assertIs(self.network, self.orchestrator.network_by_id(1))
        self.assertIn('alice', chart['nodes'])
        self.assertIsNotNone(self.orchestrator.store.get('carol'))

    async def test_start_moves_ports(self):
        with patch('lnnetkit.lib.topology.is_port_available',
                   side_effect=lambda port: port != 8081):
            await self.controller.start(self.network)
        self.assertEqual(8082, self.alice.ports['rest'])
        self.assertEqual(8083, self.bob.ports['rest'])

    async def test_node_not_online(self):
        self.clightning.wait_until_online.side_effect = WaitTimeout(
            'connection refused')
        await self.controller.start(self.network)

        self.assertEqual(Status.ERROR, self.carol.status)
        self.assertEqual('connection refused', self.carol.error_msg)
        self.assertEqual(Status.STARTED, self.alice.status)
        self.assertEqual(Status.STARTED, self.network.status)
        # only started nodes are polled
        self.assertIsNone(self.orchestrator.store.get('carol'))

    async def test_wrong_adapter_propagates(self):
        self.clightning.wait_until_online.side_effect = WrongAdapterForNode(
            'CLightningService', 'c-lightning', 'LND')
        with self.assertRaises(WrongAdapterForNode):
            await self.controller.start(self.network)
        self.assertNotEqual(Status.ERROR, self.carol.status)

    async def test_launch_failure(self):
        self.launcher.start = AsyncMock(side_effect=OSError('no docker'))
        with self.assertRaises(OSError):
            await self.controller.start(self.network)
        self.assertEqual(Status.ERROR, self.network.status)
        self.lnd.wait_until_online.assert_not_awaited()

    async def test_stop(self):
        await self.controller.start(self.network)
        self.lnd._clients[('alice', self.alice.ports['rest'])] = Mock()
        await self.controller.stop(self.network)

        self.assertEqual([self.network], self.launcher.stopped)
        self.assertEqual(Status.STOPPED, self.network.status)
        self.assertEqual([Status.STOPPED] * 4,
                         [n.status for n in self.network.nodes])
        self.assertEqual({}, self.orchestrator.store.nodes)
        self.assertEqual({}, self.lnd._clients)
