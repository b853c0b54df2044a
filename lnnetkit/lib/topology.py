"""
Module for assembling regtest network topologies.

Creates node descriptors with non-conflicting ports and computes the file
paths of their credentials.
"""
from collections import defaultdict
import logging
import os
import socket
from typing import Dict, List, Optional

from lnnetkit.lib.common import (
    BASE_PORTS, BITCOIND, CLIGHTNING, ECLAIR, LATEST_VERSIONS, LND,
    networks_path, VOLUME_DIRS
)
from lnnetkit.lib.graph_testing import network_test
from lnnetkit.lib.network_components import (
    BitcoinNode, LightningNode, Network, Status
)

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

NODE_NAMES = [
    'alice', 'bob', 'carol', 'dave', 'erin', 'frank', 'grace', 'heidi',
    'ivan', 'judy', 'mike', 'niaj', 'olivia', 'oscar', 'peggy', 'rupert',
    'sybil', 'trent', 'victor', 'walter',
]

# highest port number which is probed for availability
MAX_PORT = 65535


def get_name(id):
    if id < len(NODE_NAMES):
        return NODE_NAMES[id]
    return f'node{id}'


def get_container_name(node):
    return f'lnnetkit-n{node.network_id}-{node.name}'


def node_path(network, implementation, name):
    """
    Returns the folder of a node's volume, e.g. <network>/volumes/lnd/alice.
    """
    return os.path.join(
        network.path, 'volumes', VOLUME_DIRS[implementation], name)


def get_lnd_file_paths(network, name):
    data_path = node_path(network, LND, name)
    macaroon_path = os.path.join(data_path, 'data', 'chain', 'bitcoin',
                                 'regtest')
    return {
        'tls_cert': os.path.join(data_path, 'tls.cert'),
        'admin_macaroon': os.path.join(macaroon_path, 'admin.macaroon'),
        'readonly_macaroon': os.path.join(macaroon_path, 'readonly.macaroon'),
    }


def get_clightning_file_paths(network, name):
    data_path = node_path(network, CLIGHTNING, name)
    return {
        'macaroon': os.path.join(data_path, 'rest-api', 'access.macaroon'),
    }


def _next_id(nodes):
    return max(n.id for n in nodes) + 1 if nodes else 0


def _ports(implementation, id):
    return {role: port + id
            for role, port in BASE_PORTS[implementation].items()}


def _create_lightning_node(network, implementation, version, status, paths):
    bitcoin = network.bitcoin_nodes
    if not bitcoin:
        raise ValueError(
            f"Network '{network.name}' needs a bitcoin node before adding "
            f"lightning nodes.")
    id = _next_id(network.lightning_nodes)
    name = get_name(id)
    return LightningNode(
        id, network.id, name, implementation,
        version or LATEST_VERSIONS[implementation],
        status=status,
        ports=_ports(implementation, id),
        # alternate between backend nodes
        backend_name=bitcoin[id % len(bitcoin)].name,
        paths=paths(network, name) if paths else {},
    )


def create_lnd_node(network, version=None, status=Status.STOPPED):
    return _create_lightning_node(
        network, LND, version, status, get_lnd_file_paths)


def create_clightning_node(network, version=None, status=Status.STOPPED):
    return _create_lightning_node(
        network, CLIGHTNING, version, status, get_clightning_file_paths)


def create_eclair_node(network, version=None, status=Status.STOPPED):
    return _create_lightning_node(network, ECLAIR, version, status, None)


def create_bitcoind_node(network, version=None, status=Status.STOPPED):
    bitcoin = network.bitcoin_nodes
    id = _next_id(bitcoin)
    return BitcoinNode(
        id, network.id, f'backend{id + 1}', BITCOIND,
        version or LATEST_VERSIONS[BITCOIND],
        status=status,
        ports=_ports(BITCOIND, id),
        # peer with the previous bitcoin node
        peer_names=[bitcoin[-1].name] if bitcoin else [],
    )


def create_network(id, name, lnd_nodes=0, clightning_nodes=0,
                   eclair_nodes=0, bitcoind_nodes=1, status=Status.STOPPED,
                   path=None):
    """
    Assembles a new network.

    :param id: int
    :param name: str
    :param lnd_nodes: int: number of LND nodes
    :param clightning_nodes: int: number of c-lightning nodes
    :param eclair_nodes: int: number of eclair nodes
    :param bitcoind_nodes: int: number of bitcoind backends
    :param status: Status: initial status of the network and its nodes
    :param path: str: folder of the network's runtime data, defaults to a
        folder named by the id under networks_path
    :return: Network
    """
    network = Network(
        id, name, path or os.path.join(networks_path, str(id)), status=status)

    for _ in range(bitcoind_nodes):
        network.bitcoin_nodes.append(
            create_bitcoind_node(network, status=status))
    for _ in range(lnd_nodes):
        network.lightning_nodes.append(create_lnd_node(network, status=status))
    for _ in range(clightning_nodes):
        network.lightning_nodes.append(
            create_clightning_node(network, status=status))
    for _ in range(eclair_nodes):
        network.lightning_nodes.append(
            create_eclair_node(network, status=status))

    # check sanity of the network
    network_test(network)

    logger.info("NET: Created network %s with nodes %s", name,
                [n.name for n in network.nodes])
    return network


def get_missing_images(network, pulled):
    """
    Returns the images needed to start a network which are not in the list of
    images already pulled.

    :param network: Network
    :param pulled: list of str: images already available
    :return: list of str: missing images without duplicates
    """
    pulled = set(pulled)
    missing = []
    for node in network.nodes:
        image = f"{node.implementation.lower().replace('-', '')}:" \
                f"{node.version}"
        if image not in pulled and image not in missing:
            missing.append(image)
    if missing:
        logger.debug("NET: Network '%s' is missing images %s", network.name,
                     missing)
    return missing


def is_port_available(port):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind(('', port))
        except OSError:
            return False
    return True


def detect_port(port):
    """
    Returns the first available port, starting with `port`.
    """
    for candidate in range(port, MAX_PORT + 1):
        if is_port_available(candidate):
            return candidate
        logger.debug("NET: Port %d is in use.", candidate)
    raise OSError(f'No available port found starting at {port}')


def get_open_port_range(requested_ports: List[int]) -> List[int]:
    """
    Checks a range of ports for availability and returns ports which are
    confirmed available.

    If port 10002 is in use, [10001, 10002, 10003] -> [10001, 10003, 10004].

    :param requested_ports: ports in ascending order
    :return: list of available ports in ascending order
    """
    open_ports = []
    for port in requested_ports:
        # the previous port may have been increased, so stay above it
        if open_ports and port <= open_ports[-1]:
            port = open_ports[-1] + 1
        open_ports.append(detect_port(port))
    return open_ports


def get_open_ports(network) -> Optional[Dict[str, Dict[str, int]]]:
    """
    Checks if the ports of the network's nodes are available on the host.

    Started nodes are skipped, as their ports are in use by themselves.

    :param network: Network
    :return: dict: node name -> role -> new port, None if all ports are
        available
    """
    groups = defaultdict(list)
    for node in network.nodes:
        if node.status != Status.STARTED:
            groups[node.implementation].append(node)

    ports = defaultdict(dict)
    for implementation, nodes in groups.items():
        nodes.sort(key=lambda n: n.id)
        for role in sorted(BASE_PORTS.get(implementation, {})):
            existing_ports = [n.ports[role] for n in nodes]
            open_ports = get_open_port_range(existing_ports)
            if open_ports != existing_ports:
                for node, port in zip(nodes, open_ports):
                    ports[node.name][role] = port

    return dict(ports) if ports else None


def apply_open_ports(network, ports):
    """
    Updates the nodes with the ports returned by :func:`get_open_ports`.
    """
    for name, roles in (ports or {}).items():
        node = network.node_by_name(name)
        logger.info("NET: Moving %s from ports %s to %s.", name, node.ports,
                    roles)
        node.ports.update(roles)
