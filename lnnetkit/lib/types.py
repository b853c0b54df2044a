"""
Normalized records shared by all lightning implementations.

Amounts are decimal strings of satoshis, whatever unit a node reports in.
"""
from typing import NamedTuple

# channel status
OPENING = 'Opening'
OPEN = 'Open'
CLOSING = 'Closing'
FORCE_CLOSING = 'Force Closing'
WAITING_TO_CLOSE = 'Waiting to Close'
CLOSED = 'Closed'


class NodeInfo(NamedTuple):
    pubkey: str
    alias: str
    synced_to_chain: bool
    block_height: int
    num_pending_channels: int
    num_active_channels: int
    num_inactive_channels: int
    rpc_url: str


class NodeBalances(NamedTuple):
    total: str
    confirmed: str
    unconfirmed: str


class NodeAddress(NamedTuple):
    address: str


class Channel(NamedTuple):
    pending: bool
    unique_id: str
    channel_point: str
    pubkey: str
    capacity: str
    local_balance: str
    remote_balance: str
    status: str


class ChannelPoint(NamedTuple):
    txid: str
    index: int


class Peer(NamedTuple):
    pubkey: str
    address: str


class PayReceipt(NamedTuple):
    preimage: str
    amount: int
    destination: str


def unique_channel_id(funding_txid, output_index):
    """
    Short identifier of a channel, the tail of its funding outpoint.

    :param funding_txid: str
    :param output_index: int
    :return: str
    """
    return f'{funding_txid}:{output_index}'[-12:]
