from decimal import Decimal
import logging.config
from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock, call, Mock, patch

from lnnetkit.lib.bitcoind import BitcoindService
from lnnetkit.lib.common import BLOCKS_TIL_CONFIRMED, logger_config
from lnnetkit.lib.errors import PaymentFailed, WrongAdapterForNode
from lnnetkit.lib.events import EventChannel
from lnnetkit.lib.lightning import (
    CLightningService, LightningFactory, LndService
)
from lnnetkit.lib.network_components import Status
from lnnetkit.lib.orchestrator import Orchestrator
from lnnetkit.lib.store import LightningStore
from lnnetkit.lib.types import ChannelPoint, NodeBalances, PayReceipt

from helpers import (
    ALICE_PUBKEY, BOB_PUBKEY, CAROL_PUBKEY, FUNDING_TXID, get_channel,
    get_info, get_network, mock_lightning_service
)

logging.config.dictConfig(logger_config)
logger = logging.getLogger()
logger.setLevel(logging.DEBUG)
logger.handlers[0].setLevel(logging.INFO)


class OrchestratorTestCase(IsolatedAsyncioTestCase):
    def setUp(self):
        self.network = get_network(lnd_nodes=2, clightning_nodes=1)
        self.alice, self.bob, self.carol = self.network.lightning_nodes
        self.backend = self.network.bitcoin_nodes[0]

        self.infos = {
            'alice': get_info(ALICE_PUBKEY, 'alice'),
            'bob': get_info(BOB_PUBKEY, 'bob'),
            'carol': get_info(CAROL_PUBKEY, 'carol'),
        }
        self.channels = {}
        self.lnd = mock_lightning_service(
            LndService(), self.infos, self.channels)
        self.clightning = mock_lightning_service(
            CLightningService(), self.infos, self.channels)

        # bitcoind itself is mocked on the rpc level
        self.rpc_responses = {
            'getblockchaininfo': {'blocks': 101},
            'getwalletinfo': {'balance': Decimal(0)},
            'listtransactions': [{'confirmations': 100}],
            'getnewaddress': 'bcrt1qminer',
            'generatetoaddress': ['hash'],
            'sendtoaddress': 'txid',
        }
        self.rpc = Mock()
        self.rpc.call = AsyncMock(
            side_effect=lambda method, *params: self.rpc_responses[method])
        self.bitcoind = BitcoindService()
        self.bitcoind.client = Mock(return_value=self.rpc)

        self.store = LightningStore()
        self.events = EventChannel()
        self.orchestrator = Orchestrator(
            LightningFactory([self.lnd, self.clightning]), self.bitcoind,
            store=self.store, events=self.events)
        self.orchestrator.add_network(self.network)
        # workflows are tested without the refresh after mining
        self.events.unsubscribe(self.orchestrator.mine_listener)

        patcher = patch('lnnetkit.lib.bitcoind.delay', new_callable=AsyncMock)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.delay = AsyncMock()
        patcher = patch('lnnetkit.lib.orchestrator.delay', self.delay)
        patcher.start()
        self.addCleanup(patcher.stop)

    async def asyncTearDown(self):
        await self.events.join()

    def rpc_calls(self, method):
        return [c.args[1:] for c in self.rpc.call.await_args_list
                if c.args[0] == method]


class TestNodeState(OrchestratorTestCase):
    async def test_get_all_info(self):
        self.channels['alice'] = [get_channel(BOB_PUBKEY)]
        state = await self.orchestrator.get_all_info(self.alice)
        self.assertEqual(ALICE_PUBKEY, state.info.pubkey)
        self.assertEqual('0', state.wallet_balance.total)
        self.assertEqual(1, len(state.channels))
        self.assertIs(state, self.store.get('alice'))

    async def test_remove_node(self):
        await self.orchestrator.get_all_info(self.bob)
        self.orchestrator.remove_node(self.bob)
        self.assertIsNone(self.store.get('bob'))
        self.assertEqual([self.alice, self.carol],
                         self.network.lightning_nodes)
        chart = self.orchestrator.charts[self.network.id]
        self.assertNotIn('bob', chart['nodes'])
        self.assertNotIn('bob-backend', chart['links'])

    async def test_unknown_network(self):
        self.network.lightning_nodes[0].network_id = 7
        with self.assertRaises(KeyError):
            await self.orchestrator.deposit_funds(self.alice, 1000)


class TestDeposit(OrchestratorTestCase):
    async def test_deposit_into_empty_wallet(self):
        self.lnd.get_balances.return_value = NodeBalances(
            '250000', '250000', '0')
        balance = await self.orchestrator.deposit_funds(self.alice, 250000)

        self.assertEqual(
            [('bcrt1qdeposit', Decimal('0.0025'))],
            self.rpc_calls('sendtoaddress'))
        # one block covers the deposit, then the deposit gets confirmed
        self.assertEqual(
            [(1, 'bcrt1qminer'), (BLOCKS_TIL_CONFIRMED, 'bcrt1qminer')],
            self.rpc_calls('generatetoaddress'))
        self.delay.assert_awaited_with(LndService.settle_delay)
        self.assertGreaterEqual(int(balance.confirmed), 250000)
        self.assertEqual(balance, self.store.get('alice').wallet_balance)

    async def test_deposit_from_backing_node(self):
        network = get_network(lnd_nodes=2, clightning_nodes=0,
                              bitcoind_nodes=2)
        network.id = 2
        for node in network.nodes:
            node.network_id = 2
        self.orchestrator.add_network(network)
        self.rpc_responses['getwalletinfo'] = {'balance': Decimal(10)}

        await self.orchestrator.deposit_funds(network.lightning_nodes[1],
                                              1000)
        backend2 = network.bitcoin_nodes[1]
        self.bitcoind.client.assert_any_call(backend2)
        self.assertNotIn(call(network.bitcoin_nodes[0]),
                         self.bitcoind.client.call_args_list)


class TestChannels(OrchestratorTestCase):
    async def test_open_channel(self):
        self.channels['alice'] = [get_channel(BOB_PUBKEY)]
        channel_point = await self.orchestrator.open_channel(
            self.alice, self.bob, 250000)

        self.assertEqual(ChannelPoint(FUNDING_TXID, 0), channel_point)
        self.lnd.connect_peer.assert_awaited_once_with(
            self.alice, f'{BOB_PUBKEY}@127.0.0.1:9735')
        self.lnd._fund_channel.assert_awaited_once_with(
            self.alice, BOB_PUBKEY, 250000)
        self.assertEqual([(BLOCKS_TIL_CONFIRMED, 'bcrt1qminer')],
                         self.rpc_calls('generatetoaddress'))
        self.assertEqual([], self.rpc_calls('sendtoaddress'))

        link_id = f'{FUNDING_TXID}:0'[-12:]
        chart = self.orchestrator.charts[self.network.id]
        self.assertEqual('bob', chart['links'][link_id]['to']['nodeId'])

    async def test_open_channel_connects_first(self):
        steps = Mock()
        steps.attach_mock(self.lnd.connect_peer, 'connect_peer')
        steps.attach_mock(self.lnd._fund_channel, 'fund_channel')
        await self.orchestrator.open_channel(self.alice, self.bob, 250000)
        self.assertEqual(
            [call.connect_peer(self.alice, f'{BOB_PUBKEY}@127.0.0.1:9735'),
             call.fund_channel(self.alice, BOB_PUBKEY, 250000)],
            steps.mock_calls)

    async def test_open_channel_to_peer(self):
        self.lnd.get_peers.return_value = [Mock(pubkey=BOB_PUBKEY)]
        await self.orchestrator.open_channel(self.alice, self.bob, 250000)
        self.lnd.connect_peer.assert_not_awaited()
        self.lnd._fund_channel.assert_awaited_once()

    async def test_open_channel_waits_for_slowest_node(self):
        await self.orchestrator.open_channel(self.alice, self.carol, 250000)
        self.delay.assert_awaited_once_with(CLightningService.settle_delay)

    async def test_open_channel_uses_cached_info(self):
        self.store.set_info(self.bob, get_info(BOB_PUBKEY, rpc_url='cached'))
        self.lnd.get_peers.return_value = [Mock(pubkey=BOB_PUBKEY)]
        for node in self.network.lightning_nodes:
            node.status = Status.STOPPED
        await self.orchestrator.open_channel(self.alice, self.bob, 250000)
        self.lnd.get_info.assert_not_awaited()

    async def test_open_channel_auto_fund(self):
        self.rpc_responses['getwalletinfo'] = {'balance': Decimal(10)}
        await self.orchestrator.open_channel(
            self.alice, self.bob, 250000, auto_fund=True)
        self.assertEqual([('bcrt1qdeposit', Decimal('0.005'))],
                         self.rpc_calls('sendtoaddress'))
        self.assertEqual(2, len(self.rpc_calls('generatetoaddress')))

    async def test_open_channel_failure_aborts(self):
        self.lnd._fund_channel.side_effect = WrongAdapterForNode(
            'LndService', 'LND', 'eclair')
        with self.assertRaises(WrongAdapterForNode):
            await self.orchestrator.open_channel(self.alice, self.bob, 250000)
        self.assertEqual([], self.rpc_calls('generatetoaddress'))

    async def test_close_channel(self):
        await self.orchestrator.close_channel(self.alice, 'txid:0')
        self.lnd.close_channel.assert_awaited_once_with(self.alice, 'txid:0')
        self.assertEqual([(1, 'bcrt1qminer')],
                         self.rpc_calls('generatetoaddress'))
        self.delay.assert_awaited_once_with(LndService.settle_delay)


class TestPayments(OrchestratorTestCase):
    async def test_create_invoice(self):
        invoice = await self.orchestrator.create_invoice(self.bob, 1000)
        self.assertEqual('lnbcrt10u1', invoice)
        self.lnd.create_invoice.assert_awaited_once_with(self.bob, 1000, None)

    async def test_pay_invoice(self):
        receipt = PayReceipt('ab' * 32, 1000, BOB_PUBKEY)
        self.lnd.pay_invoice.return_value = receipt
        self.assertEqual(receipt, await self.orchestrator.pay_invoice(
            self.alice, 'lnbcrt10u1'))
        # the graph was resynced
        self.assertIsNotNone(self.store.get('alice'))

    async def test_pay_invoice_failure(self):
        self.lnd.pay_invoice.side_effect = PaymentFailed('no route')
        self.orchestrator.sync_chart = AsyncMock()
        with self.assertRaises(PaymentFailed) as ctx:
            await self.orchestrator.pay_invoice(self.alice, 'lnbcrt10u1')
        self.assertIn('no route', str(ctx.exception))
        self.orchestrator.sync_chart.assert_not_awaited()


class TestMineListener(OrchestratorTestCase):
    def setUp(self):
        super().setUp()
        self.events.subscribe(self.orchestrator.mine_listener)

    async def test_refresh_after_mining(self):
        self.bob.status = Status.STOPPED
        await self.orchestrator.mine(3, self.backend)
        await self.events.join()

        self.delay.assert_awaited_once_with(CLightningService.settle_delay)
        refreshed = [c.args[0] for c in self.lnd.get_info.await_args_list]
        refreshed += [c.args[0]
                      for c in self.clightning.get_info.await_args_list]
        self.assertEqual([self.alice, self.carol], refreshed)
        self.assertIsNotNone(self.store.get('carol').channels)
        self.assertIsNone(self.store.get('bob'))

    async def test_mine_emits_event(self):
        listener = AsyncMock()
        self.events.subscribe(listener)
        await self.orchestrator.mine(2, self.backend)
        await self.events.join()
        event = listener.await_args.args[0]
        self.assertEqual(2, event.blocks)
        self.assertIs(self.backend, event.node)

    async def test_listener_failures_are_logged(self):
        self.lnd.get_info.side_effect = OSError('offline')
        with self.assertLogs('lnnetkit.lib.events', level='ERROR'):
            await self.orchestrator.mine(1, self.backend)
            await self.events.join()
