"""
Control of the bitcoind backends of a regtest network.
"""
from decimal import Decimal
import json
import logging
import math

import aiohttp

from lnnetkit.lib.common import (
    bitcoin_credentials, COINBASE_MATURITY_DELAY, HALVING_INTERVAL,
    INITIAL_BLOCK_REWARD, WAIT_AFTER_MATURITY, WAIT_UNTIL_ONLINE_INTERVAL,
    WAIT_UNTIL_ONLINE_TIMEOUT
)
from lnnetkit.lib.errors import InsufficientFundsRecoveryFailed, RpcError
from lnnetkit.lib.utils import (
    decode_byte_string_to_dict_or_str, delay, wait_for
)

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

# error code of addnode, if the peer was added before
RPC_CLIENT_NODE_ALREADY_ADDED = -23


def block_reward(height):
    """
    Returns the coinbase reward of a block.

    The reward halves every HALVING_INTERVAL blocks (50 -> 25 -> 12.5 ...).

    :param height: int: block height
    :return: Decimal: reward in BTC
    """
    halvings = height // HALVING_INTERVAL
    return INITIAL_BLOCK_REWARD / 2 ** halvings


def blocks_to_mine(height, desired_coins):
    """
    Returns the number of blocks to mine in order to generate the desired
    number of coins, at least one block.

    :param height: int: the current block height
    :param desired_coins: Decimal: amount to increase the balance by in BTC
    :return: int
    """
    reward = block_reward(height)
    desired_coins = Decimal(desired_coins)
    if desired_coins < reward:
        return 1
    return math.floor(desired_coins / reward)


def _json_default(value):
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f'Object of type {type(value).__name__} is not JSON '
                    f'serializable')


class BitcoindRpc(object):
    """
    JSON-RPC client of a single bitcoind node.

    Every call uses a throwaway connection, long waits between calls would
    otherwise have bitcoind close it.
    """
    def __init__(self, port, host='127.0.0.1'):
        self.url = f'http://{host}:{port}/'
        self.auth = aiohttp.BasicAuth(
            bitcoin_credentials['user'], bitcoin_credentials['pass'])

    async def call(self, method, *params):
        payload = json.dumps({
            'jsonrpc': '1.0',
            'id': method,
            'method': method,
            'params': list(params),
        }, default=_json_default)
        logger.debug("BTC: %s %s", method, list(params))
        async with aiohttp.ClientSession(auth=self.auth) as session:
            async with session.post(
                    self.url, data=payload,
                    headers={'Content-Type': 'application/json'}) as resp:
                body = decode_byte_string_to_dict_or_str(await resp.text())

        # bitcoind answers errors with a status code != 200 and a json body
        if isinstance(body, dict):
            if body.get('error'):
                error = body['error']
                raise RpcError(error.get('message'), error.get('code'))
            return body.get('result')
        raise RpcError(body or f'HTTP {resp.status}')


class BitcoindService(object):
    """
    Bitcoind node abstraction, adds regtest specific funding logic.
    """
    def client(self, node):
        return BitcoindRpc(node.ports['rpc'])

    async def get_blockchain_info(self, node):
        return await self.client(node).call('getblockchaininfo')

    async def get_wallet_info(self, node):
        return await self.client(node).call('getwalletinfo')

    async def connect_peers(self, node):
        """
        Adds the node's peers, peers already added are skipped.
        """
        client = self.client(node)
        for peer in node.peer_names:
            try:
                await client.call('addnode', peer, 'add')
                logger.info("BTC: %s added peer %s.", node.name, peer)
            except RpcError as e:
                if e.code != RPC_CLIENT_NODE_ALREADY_ADDED:
                    raise
                logger.debug("BTC: %s already peered with %s.", node.name,
                             peer)

    async def mine(self, number_of_blocks, node):
        """
        Mines some blocks.

        :param number_of_blocks: int
        :param node: BitcoinNode
        :return: list of block hashes
        """
        logger.info("BTC: Mining %d blocks on %s.", number_of_blocks,
                    node.name)
        client = self.client(node)
        address = await client.call('getnewaddress')
        block_hashes = await client.call(
            'generatetoaddress', number_of_blocks, address)
        logger.debug("BTC: Mined to address %s.", address)
        return block_hashes

    async def send_funds(self, node, to_address, amount):
        """
        Sends funds to a given address, mines new coins if the wallet balance
        doesn't cover the amount.

        :param node: BitcoinNode
        :param to_address: str
        :param amount: Decimal: amount in BTC
        :return: str: txid
        """
        client = self.client(node)
        amount = Decimal(amount)

        blockchain_info = await self.get_blockchain_info(node)
        wallet_info = await client.call('getwalletinfo')
        height = blockchain_info['blocks']
        balance = Decimal(wallet_info['balance'])

        if balance > amount:
            return await client.call('sendtoaddress', to_address, amount)

        logger.info("BTC: %s balance of %s BTC doesn't cover %s BTC.",
                    node.name, balance, amount)
        height += await self.mine_until_maturity(node)
        await self.mine(blocks_to_mine(height, amount - balance), node)
        try:
            return await client.call('sendtoaddress', to_address, amount)
        except RpcError as e:
            raise InsufficientFundsRecoveryFailed(str(e)) from e

    async def mine_until_maturity(self, node):
        """
        Mines up to COINBASE_MATURITY_DELAY confirmations, if necessary, for
        fresh coins to be spendable.

        :param node: BitcoinNode
        :return: int: number of mined blocks
        """
        transactions = await self.client(node).call('listtransactions')
        # the transaction with the most confirmations is the one we would
        # like to spend from
        confirmations = max(
            [0] + [t['confirmations'] for t in transactions])
        needed = max(0, COINBASE_MATURITY_DELAY - confirmations)
        if needed > 0:
            await self.mine(needed, node)
            # give the other nodes some time to process the new blocks
            await delay(WAIT_AFTER_MATURITY)
        return needed

    async def wait_until_online(self, node,
                                interval=WAIT_UNTIL_ONLINE_INTERVAL,
                                timeout=WAIT_UNTIL_ONLINE_TIMEOUT):
        """
        Polls bitcoind until it answers rpc calls.
        """
        async def probe():
            return await self.get_blockchain_info(node)

        return await wait_for(probe, interval, timeout)
