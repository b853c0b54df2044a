import asyncio
import difflib
import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from time import monotonic

from lnnetkit.lib.common import SATS_PER_BTC
from lnnetkit.lib.errors import WaitTimeout, WrongAdapterForNode

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def format_dict(dictionary):
    """
    Formats dicts with indentation.

    :param dictionary: dict
    :return: str
    """
    return json.dumps(dictionary, indent=4, default=str)


def decode_byte_string_to_dict_or_str(out):
    """
    Takes the body of a response and converts it to a dict.

    :param out: str or bytes
    :return: dict or list if the body is json, else the stripped str
    """
    try:
        json_data = json.loads(out, parse_float=Decimal)
        return json_data
    except json.decoder.JSONDecodeError:
        if type(out) == str:
            return out.strip()
        if type(out) == bytes:
            return out.decode().strip()


def dict_comparison(dict1, dict2, show_diff=False):
    """
    Compares two dicts for equality by converting to key-sorted dicts.

    The difference can be plotted by giving an additional show_diff bool.
    :param dict1: dict
    :param dict2: dict
    :param show_diff: bool
    :return: bool
    """
    dict1 = json.dumps(dict1, sort_keys=True, indent=4)
    dict2 = json.dumps(dict2, sort_keys=True, indent=4)
    are_equal = dict1 == dict2

    # only if the two dicts are not the same, show difference
    if not are_equal and show_diff:
        d = difflib.Differ()
        # need to split into lines by newline character but keep newline
        # for better printing
        dict1_lines = [l + '\n' for l in dict1.split('\n')]
        dict2_lines = [l + '\n' for l in dict2.split('\n')]
        difference = d.compare(dict1_lines, dict2_lines)
        print('\nDicts are NOT equal:')
        print(''.join(difference))

    return are_equal


async def delay(seconds):
    await asyncio.sleep(seconds)


async def wait_for(probe, interval=0.5, timeout=5):
    """
    Awaits `probe` until it returns without raising.

    After every failure the probe is retried after `interval` seconds, as long
    as the remaining time budget is not negative. The final window is
    inclusive, with an interval of 0.5 and a timeout of 1 the probe is called
    four times before giving up. Probes which take long themselves end the
    retries early, once more than `timeout` plus one `interval` has passed.

    :param probe: coroutine function without arguments
    :param interval: float: seconds between attempts
    :param timeout: float: seconds until giving up
    :return: the result of the first successful probe
    :raises WaitTimeout: with the message of the last failure
    """
    deadline = monotonic() + timeout + interval
    remaining = timeout
    attempts = 0
    while True:
        attempts += 1
        try:
            return await probe()
        except WrongAdapterForNode:
            raise
        except Exception as e:
            if remaining < 0 or monotonic() >= deadline:
                logger.debug("Giving up after %d attempts: %s", attempts, e)
                raise WaitTimeout(str(e)) from e
            logger.debug("Attempt %d failed, retrying: %s", attempts, e)
        await delay(interval)
        remaining -= interval


def from_sats_numeric(sats):
    """
    Converts satoshis to bitcoin.

    :param sats: int or str
    :return: Decimal: amount in BTC
    """
    return Decimal(int(sats)) / SATS_PER_BTC


def msat_to_sats(msat):
    """
    Converts millisatoshis to a satoshi decimal string.

    Accepts plain numbers as well as strings with a 'msat' suffix.

    :param msat: int or str
    :return: str
    """
    if isinstance(msat, str) and msat.endswith('msat'):
        msat = msat[:-len('msat')]
    sats = Decimal(int(msat)) / 1000
    return str(sats.quantize(Decimal(1), rounding=ROUND_HALF_UP))
