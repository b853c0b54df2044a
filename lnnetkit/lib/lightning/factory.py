"""
Selects the lightning service matching a node's implementation.

This is the only place which dispatches on the implementation of a node.
"""
from lnnetkit.lib.lightning.clightning import CLightningService
from lnnetkit.lib.lightning.eclair import EclairService
from lnnetkit.lib.lightning.lnd import LndService


class LightningFactory(object):
    def __init__(self, services=None):
        """
        :param services: list of LightningService instances, defaults to one
            instance of every supported implementation
        """
        if services is None:
            services = [LndService(), CLightningService(), EclairService()]
        self.services = {s.implementation: s for s in services}

    def get_service(self, node):
        try:
            return self.services[node.implementation]
        except KeyError:
            raise ValueError(
                f"Unsupported lightning implementation "
                f"'{node.implementation}' of {node.name}, should be one of "
                f"{sorted(self.services)}.") from None
