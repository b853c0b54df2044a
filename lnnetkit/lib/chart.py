"""
Graph of a network for the rendering layer.

The graph is a plain dict: nodes keyed by name and links keyed by id. Links of
channels are derived from the channels polled from the lightning nodes.
"""
import copy
import logging

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

GRID_SIZE = 20
NODE_WIDTH = 200
NODE_HEIGHT = 36
PORT_HEIGHT = 24

BACKEND_LINK = 'backend'
PEER_LINK = 'btcpeer'
OPEN_CHANNEL_LINK = 'open-channel'
PENDING_CHANNEL_LINK = 'pending-channel'


def snap(position, snap_to_grid=False):
    """
    Snaps a position to a grid of GRID_SIZE pixels.
    """
    if not snap_to_grid:
        return position
    return {
        'x': round(position['x'] / GRID_SIZE) * GRID_SIZE,
        'y': round(position['y'] / GRID_SIZE) * GRID_SIZE,
    }


def _link(id, from_node, from_port, to_node, to_port, properties):
    return {
        'id': id,
        'from': {'nodeId': from_node, 'portId': from_port},
        'to': {'nodeId': to_node, 'portId': to_port},
        'properties': properties,
    }


def init_chart_from_network(network):
    """
    Creates the initial graph of a network, without any channels.

    :param network: Network
    :return: dict
    """
    chart = {'offset': {'x': 0, 'y': 0}, 'nodes': {}, 'links': {}}

    for n in network.bitcoin_nodes:
        chart['nodes'][n.name] = {
            'id': n.name,
            'type': 'bitcoin',
            'position': {'x': n.id * 250 + 200, 'y': 400},
            'ports': {
                'backend': {'id': 'backend', 'type': 'input'},
                'peer-left': {'id': 'peer-left', 'type': 'left'},
                'peer-right': {'id': 'peer-right', 'type': 'right'},
            },
            'properties': {
                'status': n.status.name,
                'implementation': n.implementation,
            },
        }
        for peer in n.peer_names:
            link_id = f'{peer}-{n.name}'
            chart['links'][link_id] = _link(
                link_id, peer, 'peer-right', n.name, 'peer-left',
                {'type': PEER_LINK})

    for n in network.lightning_nodes:
        chart['nodes'][n.name] = {
            'id': n.name,
            'type': 'lightning',
            'position': {'x': n.id * 250 + 50, 'y': 200 if n.id % 2 else 100},
            'size': {'width': NODE_WIDTH, 'height': NODE_HEIGHT},
            'ports': {
                'empty-left': {'id': 'empty-left', 'type': 'left'},
                'empty-right': {'id': 'empty-right', 'type': 'right'},
                'backend': {'id': 'backend', 'type': 'output'},
            },
            'properties': {
                'status': n.status.name,
                'implementation': n.implementation,
            },
        }
        link_id = f'{n.name}-backend'
        chart['links'][link_id] = _link(
            link_id, n.name, 'backend', n.backend_name, 'backend',
            {'type': BACKEND_LINK})

    return chart


def _channel_port_count(node):
    return sum(1 for p in node['ports'].values() if p.get('channel'))


def update_chart_from_nodes(chart, nodes_data):
    """
    Syncs the channel links of a graph with the channels of the nodes.

    Links of nodes without channel data are kept, as well as links of
    channels which are still reported by a node while the remote end is
    unknown. The input graph isn't modified.

    :param chart: dict: the previous graph
    :param nodes_data: dict: node name -> NodeState
    :return: dict: the updated graph
    """
    chart = copy.deepcopy(chart)
    nodes = chart['nodes']
    links = chart['links']

    pubkeys = {data.info.pubkey: name for name, data in nodes_data.items()
               if data.info}
    unknown = {name for name, data in nodes_data.items()
               if data.channels is None}
    reported_ids = set()

    for from_name, data in nodes_data.items():
        if data.channels is None or from_name not in nodes:
            continue
        from_node = nodes[from_name]
        for channel in data.channels:
            reported_ids.add(channel.unique_id)
            to_name = pubkeys.get(channel.pubkey)
            if to_name not in nodes:
                logger.debug("NET: Remote node of channel %s unknown.",
                             channel.unique_id)
                continue
            to_node = nodes[to_name]
            link_id = channel.unique_id

            # the direction only depends on the position of the nodes
            from_x = from_node['position']['x']
            to_x = to_node['position']['x']
            direction = 'rtl' if from_x > to_x else 'ltr'
            links[link_id] = _link(
                link_id, from_name, link_id, to_name, link_id, {
                    'type': PENDING_CHANNEL_LINK if channel.pending
                    else OPEN_CHANNEL_LINK,
                    'status': channel.status,
                    'capacity': channel.capacity,
                    'direction': direction,
                })
            side = 'left' if direction == 'rtl' else 'right'
            opposite = 'right' if side == 'left' else 'left'
            from_node['ports'][link_id] = {
                'id': link_id, 'type': side, 'channel': True}
            to_node['ports'][link_id] = {
                'id': link_id, 'type': opposite, 'channel': True}

    # remove links of channels no node reports anymore
    for link_id in list(links):
        link = links[link_id]
        if link['properties']['type'] not in (OPEN_CHANNEL_LINK,
                                              PENDING_CHANNEL_LINK):
            continue
        if link_id in reported_ids or link['from']['nodeId'] in unknown:
            continue
        for end in ('from', 'to'):
            node = nodes.get(link[end]['nodeId'])
            if node:
                node['ports'].pop(link_id, None)
        del links[link_id]

    # resize the nodes to fit their channel ports
    for node in nodes.values():
        if node['type'] != 'lightning':
            continue
        size = node.get('size') or {'width': NODE_WIDTH}
        node['size'] = {
            'width': size['width'],
            'height': NODE_HEIGHT + PORT_HEIGHT * _channel_port_count(node),
        }

    return chart
