import base64
import logging
import ssl
from urllib.parse import quote

from lnnetkit.lib.common import LND, MIN_FEE_SAT_PER_BYTE
from lnnetkit.lib.errors import PaymentFailed
from lnnetkit.lib.lightning.base import LightningService, parse_rpc_url
from lnnetkit.lib.lightning.rest import RestClient
from lnnetkit.lib.types import (
    Channel, ChannelPoint, NodeAddress, NodeBalances, NodeInfo, Peer,
    PayReceipt, unique_channel_id,
    OPEN, OPENING, CLOSING, FORCE_CLOSING, WAITING_TO_CLOSE
)

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

# lnd reports pending channels in separate lists per state
PENDING_CHANNEL_LISTS = {
    'pending_open_channels': OPENING,
    'pending_closing_channels': CLOSING,
    'pending_force_closing_channels': FORCE_CLOSING,
    'waiting_close_channels': WAITING_TO_CLOSE,
}


def b64_to_hex(value, reverse=False):
    raw = base64.b64decode(value)
    if reverse:
        raw = raw[::-1]
    return raw.hex()


def initiated_locally(initiator):
    """
    Interprets the initiator field of lnd channels, which is a bool for open
    channels and an enum for pending channels of newer versions. Older
    versions don't report it for pending channels.
    """
    if initiator is None:
        return True
    if isinstance(initiator, bool):
        return initiator
    return initiator != 'INITIATOR_REMOTE'


class LndService(LightningService):
    implementation = LND
    settle_delay = 1

    def create_client(self, node):
        with open(node.paths['admin_macaroon'], 'rb') as f:
            macaroon = f.read().hex()
        context = ssl.create_default_context(cafile=node.paths['tls_cert'])
        context.check_hostname = False
        return RestClient(
            f"https://127.0.0.1:{node.ports['rest']}/v1",
            headers={'Grpc-Metadata-macaroon': macaroon},
            ssl=context,
        )

    async def get_info(self, node):
        info = await self.client(self.cast(node)).get('getinfo')
        uris = info.get('uris') or []
        return NodeInfo(
            pubkey=info['identity_pubkey'],
            alias=info.get('alias', ''),
            synced_to_chain=bool(info.get('synced_to_chain')),
            block_height=int(info.get('block_height', 0)),
            num_pending_channels=int(info.get('num_pending_channels', 0)),
            num_active_channels=int(info.get('num_active_channels', 0)),
            num_inactive_channels=int(info.get('num_inactive_channels', 0)),
            rpc_url=uris[0] if uris else '',
        )

    async def get_balances(self, node):
        balance = await self.client(self.cast(node)).get('balance/blockchain')
        return NodeBalances(
            total=str(int(balance.get('total_balance', 0))),
            confirmed=str(int(balance.get('confirmed_balance', 0))),
            unconfirmed=str(int(balance.get('unconfirmed_balance', 0))),
        )

    async def get_new_address(self, node):
        # type 0 is a native segwit (p2wkh) address
        response = await self.client(self.cast(node)).get('newaddress?type=0')
        return NodeAddress(address=response['address'])

    async def get_channels(self, node):
        client = self.client(self.cast(node))
        open_channels = await client.get('channels')
        pending_channels = await client.get('channels/pending')

        channels = []
        for key, status in PENDING_CHANNEL_LISTS.items():
            for pending in pending_channels.get(key) or []:
                channel = pending.get('channel')
                if not channel:
                    continue
                if not initiated_locally(channel.get('initiator')):
                    continue
                channels.append(self._channel(
                    channel, channel['remote_node_pub'], status))

        for c in open_channels.get('channels') or []:
            if not c.get('initiator'):
                continue
            channels.append(self._channel(c, c['remote_pubkey'], OPEN))
        return channels

    def _channel(self, c, pubkey, status):
        channel_point = c['channel_point']
        funding_txid, _, output_index = channel_point.partition(':')
        return Channel(
            pending=status != OPEN,
            unique_id=unique_channel_id(funding_txid, output_index),
            channel_point=channel_point,
            pubkey=pubkey,
            capacity=str(int(c.get('capacity', 0))),
            local_balance=str(int(c.get('local_balance', 0))),
            remote_balance=str(int(c.get('remote_balance', 0))),
            status=status,
        )

    async def get_peers(self, node):
        response = await self.client(self.cast(node)).get('peers')
        return [Peer(pubkey=p['pub_key'], address=p.get('address', ''))
                for p in response.get('peers') or []]

    async def connect_peer(self, node, to_rpc_url):
        pubkey, host = parse_rpc_url(to_rpc_url)
        body = {'addr': {'pubkey': pubkey, 'host': host}, 'perm': False}
        await self.client(self.cast(node)).post('peers', body)

    async def _fund_channel(self, node, pubkey, amount):
        body = {
            'node_pubkey_string': pubkey,
            'local_funding_amount': str(amount),
            'sat_per_byte': str(MIN_FEE_SAT_PER_BYTE),
        }
        response = await self.client(self.cast(node)).post('channels', body)
        txid = response.get('funding_txid_str')
        if not txid:
            # the txid bytes are encoded in reversed byte order
            txid = b64_to_hex(response['funding_txid_bytes'], reverse=True)
        return ChannelPoint(txid=txid,
                            index=int(response.get('output_index', 0)))

    async def close_channel(self, node, channel_point):
        txid, _, output_index = channel_point.partition(':')
        # the close call streams updates until the channel is closed, the
        # first update tells that the closing transaction was broadcast
        return await self.client(self.cast(node)).delete(
            f'channels/{txid}/{output_index or 0}', first_line=True)

    async def create_invoice(self, node, amount, memo=None):
        body = {
            'value': str(int(amount)),
            'memo': memo or f'lnnetkit invoice for {node.name}',
        }
        response = await self.client(self.cast(node)).post('invoices', body)
        return response['payment_request']

    async def pay_invoice(self, node, invoice, amount=None):
        client = self.client(self.cast(node))
        body = {'payment_request': invoice}
        if amount:
            body['amt'] = str(int(amount))
        response = await client.post('channels/transactions', body)
        if response.get('payment_error'):
            raise PaymentFailed(response['payment_error'])

        decoded = await client.get(f'payreq/{quote(invoice)}')
        route = response.get('payment_route') or {}
        paid = amount or decoded.get('num_satoshis') or route.get('total_amt')
        return PayReceipt(
            preimage=b64_to_hex(response['payment_preimage']),
            amount=int(paid or 0),
            destination=decoded['destination'],
        )
