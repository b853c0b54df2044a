import logging
import time

from lnnetkit.lib.common import CLIGHTNING, MIN_FEE_PER_KW
from lnnetkit.lib.errors import PaymentFailed, RestError
from lnnetkit.lib.lightning.base import LightningService
from lnnetkit.lib.lightning.rest import RestClient
from lnnetkit.lib.types import (
    Channel, ChannelPoint, NodeAddress, NodeBalances, NodeInfo, Peer,
    PayReceipt, unique_channel_id,
    OPEN, OPENING, CLOSING, FORCE_CLOSING, WAITING_TO_CLOSE, CLOSED
)
from lnnetkit.lib.utils import msat_to_sats

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

CHANNEL_STATE_TO_STATUS = {
    'CHANNELD_AWAITING_LOCKIN': OPENING,
    'CHANNELD_NORMAL': OPEN,
    'CHANNELD_SHUTTING_DOWN': CLOSING,
    'CLOSINGD_SIGEXCHANGE': CLOSING,
    'CLOSINGD_COMPLETE': WAITING_TO_CLOSE,
    'AWAITING_UNILATERAL': FORCE_CLOSING,
    'FUNDING_SPEND_SEEN': WAITING_TO_CLOSE,
    'ONCHAIN': CLOSED,
    'CLOSED': CLOSED,
}

# error codes of the pay command, which are failures of the payment itself
PAY_ERROR_CODES = range(200, 220)


def _msat(value):
    if isinstance(value, str) and value.endswith('msat'):
        value = value[:-len('msat')]
    return int(value or 0)


class CLightningService(LightningService):
    implementation = CLIGHTNING
    settle_delay = 3

    def create_client(self, node):
        with open(node.paths['macaroon'], 'rb') as f:
            macaroon = f.read().hex()
        # c-lightning-REST uses a self-signed certificate
        return RestClient(
            f"https://127.0.0.1:{node.ports['rest']}/v1",
            headers={'macaroon': macaroon, 'encodingtype': 'hex'},
            ssl=False,
        )

    async def get_info(self, node):
        info = await self.client(self.cast(node)).get('getinfo')
        rpc_url = ''
        for binding in info.get('binding') or []:
            if binding.get('type') == 'ipv4':
                rpc_url = f"{info['id']}@{binding['address']}:" \
                          f"{binding['port']}"
        return NodeInfo(
            pubkey=info['id'],
            alias=info.get('alias', ''),
            synced_to_chain=not info.get('warning_bitcoind_sync') and
            not info.get('warning_lightningd_sync'),
            block_height=int(info.get('blockheight', 0)),
            num_pending_channels=int(info.get('num_pending_channels', 0)),
            num_active_channels=int(info.get('num_active_channels', 0)),
            num_inactive_channels=int(info.get('num_inactive_channels', 0)),
            rpc_url=rpc_url,
        )

    async def get_balances(self, node):
        balance = await self.client(self.cast(node)).get('getBalance')
        return NodeBalances(
            total=str(int(balance.get('totalBalance', 0))),
            confirmed=str(int(balance.get('confBalance', 0))),
            unconfirmed=str(int(balance.get('unconfBalance', 0))),
        )

    async def get_new_address(self, node):
        response = await self.client(self.cast(node)).get('newaddr')
        return NodeAddress(address=response['address'])

    async def get_channels(self, node):
        info = await self.get_info(node)
        channels = await self.client(node).get('channel/listChannels')

        result = []
        for c in channels:
            if not self._initiated_by(c, info.pubkey):
                continue
            status = CHANNEL_STATE_TO_STATUS.get(c.get('state'), OPENING)
            if status == CLOSED:
                continue
            total = _msat(c.get('msatoshi_total'))
            to_us = _msat(c.get('msatoshi_to_us'))
            result.append(Channel(
                pending=status != OPEN,
                unique_id=unique_channel_id(
                    c['funding_txid'], c.get('funding_outnum', 0)),
                channel_point=c['channel_id'],
                pubkey=c['id'],
                capacity=msat_to_sats(total),
                local_balance=msat_to_sats(to_us),
                remote_balance=msat_to_sats(total - to_us),
                status=status,
            ))
        return result

    @staticmethod
    def _initiated_by(channel, pubkey):
        if 'opener' in channel:
            return channel['opener'] == 'local'
        allocation = channel.get('funding_allocation_msat') or {}
        return _msat(allocation.get(pubkey, 0)) > 0

    async def get_peers(self, node):
        peers = await self.client(self.cast(node)).get('peer/listPeers')
        return [Peer(pubkey=p['id'], address=(p.get('netaddr') or [''])[0])
                for p in peers if p.get('connected')]

    async def connect_peer(self, node, to_rpc_url):
        await self.client(self.cast(node)).post(
            'peer/connect', {'id': to_rpc_url})

    async def _fund_channel(self, node, pubkey, amount):
        body = {
            'id': pubkey,
            'satoshis': str(amount),
            'feeRate': MIN_FEE_PER_KW,
        }
        response = await self.client(self.cast(node)).post(
            'channel/openChannel', body)
        # c-lightning doesn't return the output index
        return ChannelPoint(txid=response['txid'], index=0)

    async def close_channel(self, node, channel_point):
        return await self.client(self.cast(node)).delete(
            f'channel/closeChannel/{channel_point}')

    async def create_invoice(self, node, amount, memo=None):
        body = {
            'amount': int(amount) * 1000,
            'label': str(int(time.time() * 1000)),
            'description': memo or f'lnnetkit invoice for {node.name}',
        }
        response = await self.client(self.cast(node)).post(
            'invoice/genInvoice', body)
        return response['bolt11']

    async def pay_invoice(self, node, invoice, amount=None):
        client = self.client(self.cast(node))
        body = {'invoice': invoice}
        if amount:
            body['amount'] = int(amount) * 1000
        try:
            response = await client.post('pay', body)
        except RestError as e:
            if e.code in PAY_ERROR_CODES:
                raise PaymentFailed(str(e)) from e
            raise
        if response.get('status', 'complete') != 'complete':
            raise PaymentFailed(
                response.get('message') or f"Payment {response['status']}")

        paid = response.get('msatoshi') or response.get('amount_msat')
        if paid is None:
            decoded = await client.get(f'pay/decodePay/{invoice}')
            paid = decoded.get('msatoshi') or decoded.get('amount_msat') or 0
        return PayReceipt(
            preimage=response['payment_preimage'],
            amount=int(msat_to_sats(paid)),
            destination=response['destination'],
        )
