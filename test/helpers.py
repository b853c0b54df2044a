"""
Fixtures shared by the test modules.
"""
from unittest.mock import AsyncMock, Mock

from lnnetkit.lib.network_components import Status
from lnnetkit.lib.topology import create_network
from lnnetkit.lib.types import (
    Channel, ChannelPoint, NodeAddress, NodeBalances, NodeInfo, OPEN, OPENING
)

ALICE_PUBKEY = '02' + 'a' * 64
BOB_PUBKEY = '03' + 'b' * 64
CAROL_PUBKEY = '02' + 'c' * 64
FUNDING_TXID = 'f' * 60 + '1234'


def get_network(lnd_nodes=2, clightning_nodes=1, eclair_nodes=0,
                bitcoind_nodes=1, status=Status.STARTED):
    return create_network(
        1, 'test', lnd_nodes=lnd_nodes, clightning_nodes=clightning_nodes,
        eclair_nodes=eclair_nodes, bitcoind_nodes=bitcoind_nodes,
        status=status, path='/tmp/lnnetkit-test/1')


def get_info(pubkey, alias='', rpc_url=None):
    return NodeInfo(
        pubkey=pubkey,
        alias=alias,
        synced_to_chain=True,
        block_height=100,
        num_pending_channels=0,
        num_active_channels=0,
        num_inactive_channels=0,
        rpc_url=rpc_url or f'{pubkey}@127.0.0.1:9735',
    )


def get_channel(pubkey, txid=FUNDING_TXID, index=0, pending=False,
                capacity='250000'):
    return Channel(
        pending=pending,
        unique_id=f'{txid}:{index}'[-12:],
        channel_point=f'{txid}:{index}',
        pubkey=pubkey,
        capacity=capacity,
        local_balance=capacity,
        remote_balance='0',
        status=OPENING if pending else OPEN,
    )


def mock_rest_client(get=None, post=None, delete=None):
    """
    Returns a client whose methods answer with the results of the given
    functions, which receive the arguments of the call.
    """
    client = Mock()
    client.get = AsyncMock(side_effect=get)
    client.post = AsyncMock(side_effect=post)
    client.delete = AsyncMock(side_effect=delete)
    return client


def routes(responses):
    """
    Maps request paths to responses, a response may also be an exception.
    """
    def respond(path, *args, **kwargs):
        response = responses[path]
        if isinstance(response, Exception):
            raise response
        return response
    return respond


def mock_lightning_service(service, infos, channels=None):
    """
    Replaces the node api of a lightning service with mocks, the generic
    logic of the service stays in place.

    :param service: LightningService
    :param infos: dict: node name -> NodeInfo
    :param channels: dict: node name -> list of Channel
    """
    channels = channels if channels is not None else {}
    service.get_info = AsyncMock(side_effect=lambda node: infos[node.name])
    service.get_balances = AsyncMock(
        return_value=NodeBalances('0', '0', '0'))
    service.get_channels = AsyncMock(
        side_effect=lambda node: channels.get(node.name, []))
    service.get_new_address = AsyncMock(
        return_value=NodeAddress('bcrt1qdeposit'))
    service.get_peers = AsyncMock(return_value=[])
    service.connect_peer = AsyncMock()
    service._fund_channel = AsyncMock(
        return_value=ChannelPoint(FUNDING_TXID, 0))
    service.close_channel = AsyncMock()
    service.create_invoice = AsyncMock(return_value='lnbcrt10u1')
    service.pay_invoice = AsyncMock()
    return service
