from lnnetkit.lib.lightning.base import LightningService, parse_rpc_url
from lnnetkit.lib.lightning.clightning import CLightningService
from lnnetkit.lib.lightning.eclair import EclairService
from lnnetkit.lib.lightning.factory import LightningFactory
from lnnetkit.lib.lightning.lnd import LndService
