import logging
import re

import aiohttp

from lnnetkit.lib.common import ECLAIR, eclair_password, MIN_FEE_SAT_PER_BYTE
from lnnetkit.lib.errors import PaymentFailed
from lnnetkit.lib.lightning.base import LightningService
from lnnetkit.lib.lightning.rest import RestClient
from lnnetkit.lib.types import (
    Channel, ChannelPoint, NodeAddress, NodeBalances, NodeInfo, Peer,
    PayReceipt, unique_channel_id,
    OPEN, OPENING, CLOSING, WAITING_TO_CLOSE, CLOSED
)
from lnnetkit.lib.utils import msat_to_sats

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

CHANNEL_STATE_TO_STATUS = {
    'WAIT_FOR_INIT_INTERNAL': OPENING,
    'WAIT_FOR_OPEN_CHANNEL': OPENING,
    'WAIT_FOR_ACCEPT_CHANNEL': OPENING,
    'WAIT_FOR_FUNDING_INTERNAL': OPENING,
    'WAIT_FOR_FUNDING_CREATED': OPENING,
    'WAIT_FOR_FUNDING_SIGNED': OPENING,
    'WAIT_FOR_FUNDING_CONFIRMED': OPENING,
    'WAIT_FOR_FUNDING_LOCKED': OPENING,
    'NORMAL': OPEN,
    'OFFLINE': OPEN,
    'SYNCING': OPEN,
    'SHUTDOWN': CLOSING,
    'NEGOTIATING': CLOSING,
    'CLOSING': WAITING_TO_CLOSE,
    'CLOSED': CLOSED,
}

FUNDING_TXID_PATTERN = re.compile(r'fundingTxId=([0-9a-fA-F]{64})')
CHANNEL_ID_PATTERN = re.compile(r'created channel ([0-9a-fA-F]+)')


class EclairService(LightningService):
    implementation = ECLAIR
    settle_delay = 1

    def create_client(self, node):
        return RestClient(
            f"http://127.0.0.1:{node.ports['rest']}",
            auth=aiohttp.BasicAuth('', eclair_password),
            form=True,
        )

    async def get_info(self, node):
        client = self.client(self.cast(node))
        info = await client.post('getinfo')
        # eclair doesn't report channel counts, count them ourselves
        channels = await client.post('channels')
        statuses = [CHANNEL_STATE_TO_STATUS.get(c.get('state'), OPENING)
                    for c in channels]
        addresses = info.get('publicAddresses') or []
        return NodeInfo(
            pubkey=info['nodeId'],
            alias=info.get('alias', ''),
            synced_to_chain=True,
            block_height=int(info.get('blockHeight', 0)),
            num_pending_channels=sum(s == OPENING for s in statuses),
            num_active_channels=sum(s == OPEN for s in statuses),
            num_inactive_channels=sum(
                s in (CLOSING, WAITING_TO_CLOSE) for s in statuses),
            rpc_url=f"{info['nodeId']}@{addresses[0]}" if addresses else '',
        )

    async def get_balances(self, node):
        balance = await self.client(self.cast(node)).post('onchainbalance')
        confirmed = int(balance.get('confirmed', 0))
        unconfirmed = int(balance.get('unconfirmed', 0))
        return NodeBalances(
            total=str(confirmed + unconfirmed),
            confirmed=str(confirmed),
            unconfirmed=str(unconfirmed),
        )

    async def get_new_address(self, node):
        address = await self.client(self.cast(node)).post('getnewaddress')
        return NodeAddress(address=address)

    async def get_channels(self, node):
        channels = await self.client(self.cast(node)).post('channels')

        result = []
        for c in channels:
            commitments = c.get('data', {}).get('commitments', {})
            local_params = commitments.get('localParams', {})
            is_funder = local_params.get(
                'isFunder', local_params.get('isInitiator'))
            if not is_funder:
                continue
            status = CHANNEL_STATE_TO_STATUS.get(c.get('state'), OPENING)
            if status == CLOSED:
                continue
            commit_input = commitments.get('commitInput', {})
            funding_txid, _, output_index = \
                commit_input.get('outPoint', '').partition(':')
            spec = commitments.get('localCommit', {}).get('spec', {})
            result.append(Channel(
                pending=status != OPEN,
                unique_id=unique_channel_id(funding_txid, output_index or 0),
                channel_point=c['channelId'],
                pubkey=c['nodeId'],
                capacity=str(int(commit_input.get('amountSatoshis', 0))),
                local_balance=msat_to_sats(spec.get('toLocal', 0)),
                remote_balance=msat_to_sats(spec.get('toRemote', 0)),
                status=status,
            ))
        return result

    async def get_peers(self, node):
        peers = await self.client(self.cast(node)).post('peers')
        return [Peer(pubkey=p['nodeId'], address=p.get('address') or '')
                for p in peers if p.get('state') == 'CONNECTED']

    async def connect_peer(self, node, to_rpc_url):
        await self.client(self.cast(node)).post('connect', {'uri': to_rpc_url})

    async def _fund_channel(self, node, pubkey, amount):
        client = self.client(self.cast(node))
        body = {
            'nodeId': pubkey,
            'fundingSatoshis': amount,
            'fundingFeerateSatByte': MIN_FEE_SAT_PER_BYTE,
        }
        response = await client.post('open', body)

        # e.g. 'created channel <id> with fundingTxId=<txid> and fees=...'
        match = FUNDING_TXID_PATTERN.search(response)
        if match:
            return ChannelPoint(txid=match.group(1), index=0)

        # older versions only report the channel id
        channel_id = CHANNEL_ID_PATTERN.search(response)
        if not channel_id:
            raise ValueError(f"Unexpected response to open: '{response}'")
        channel = await client.post(
            'channel', {'channelId': channel_id.group(1)})
        out_point = channel.get('data', {}).get('commitments', {}) \
            .get('commitInput', {}).get('outPoint', '')
        txid, _, index = out_point.partition(':')
        return ChannelPoint(txid=txid, index=int(index or 0))

    async def close_channel(self, node, channel_point):
        return await self.client(self.cast(node)).post(
            'close', {'channelId': channel_point})

    async def create_invoice(self, node, amount, memo=None):
        body = {
            'amountMsat': int(amount) * 1000,
            'description': memo or f'lnnetkit invoice for {node.name}',
        }
        response = await self.client(self.cast(node)).post(
            'createinvoice', body)
        return response['serialized']

    async def pay_invoice(self, node, invoice, amount=None):
        client = self.client(self.cast(node))
        body = {'invoice': invoice, 'blocking': 'true'}
        if amount:
            body['amountMsat'] = int(amount) * 1000
        response = await client.post('payinvoice', body)

        if response.get('type') == 'payment-failed':
            failures = response.get('failures') or []
            reasons = [f.get('t') or str(f) for f in failures]
            raise PaymentFailed('; '.join(reasons) or 'Payment failed')

        paid = response.get('recipientAmount')
        destination = response.get('recipientNodeId')
        if paid is None or destination is None:
            decoded = await client.post('parseinvoice', {'invoice': invoice})
            if paid is None:
                paid = decoded.get('amount', 0)
            destination = destination or decoded['nodeId']
        return PayReceipt(
            preimage=response['paymentPreimage'],
            amount=int(msat_to_sats(paid)),
            destination=destination,
        )
