"""
Module can be used to check if networks are assembled in a consistent way.
"""
from lnnetkit.lib.common import BASE_PORTS, BITCOIND


def network_test(network):
    """
    Tests if a network satisfies the topology invariants.

    :param network: Network
    """
    test_node_names_unique(network)
    test_allowed_node_implementations(network)
    test_backends_resolve(network)
    test_ports(network)


def test_node_names_unique(network):
    names = [n.name for n in network.nodes]
    assert len(names) == len(set(names)), \
        f'Node names are not unique: {names}'


def test_allowed_node_implementations(network):
    """
    Tests if the implementations of the nodes are supported.
    """
    for node in network.bitcoin_nodes:
        if node.implementation != BITCOIND:
            raise ValueError(
                f"Bitcoin node {node.name} should be '{BITCOIND}', is "
                f"'{node.implementation}'.")
    allowed = set(BASE_PORTS) - {BITCOIND}
    for node in network.lightning_nodes:
        if node.implementation not in allowed:
            raise ValueError(
                f"Error in implementation of {node.name}, should be one of "
                f"{sorted(allowed)}, is '{node.implementation}'.")


def test_backends_resolve(network):
    """
    Tests if every lightning node is backed by a bitcoin node of the network.
    """
    bitcoin_names = {n.name for n in network.bitcoin_nodes}
    for node in network.lightning_nodes:
        assert node.backend_name in bitcoin_names, \
            f'Backend {node.backend_name} of {node.name} not in network.'


def get_ports(network):
    """
    Extracts all ports from the network.

    :param network: Network
    :return: list of (node name, role, port)
    """
    ports = []
    for node in network.nodes:
        for role, port in node.ports.items():
            ports.append((node.name, role, port))
    return ports


def test_ports(network):
    ports = [p for _, _, p in get_ports(network)]
    assert len(ports) == len(set(ports)), \
        f'Ports are not unique: {get_ports(network)}'
