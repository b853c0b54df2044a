import os
from decimal import Decimal

# define waiting periods (seconds)
WAIT_AFTER_MATURITY = 2
WAIT_UNTIL_ONLINE_INTERVAL = 3
WAIT_UNTIL_ONLINE_TIMEOUT = 30

# regtest chain parameters
BLOCKS_TIL_CONFIRMED = 6
COINBASE_MATURITY_DELAY = 100
HALVING_INTERVAL = 150
INITIAL_BLOCK_REWARD = Decimal(50)
SATS_PER_BTC = Decimal(100000000)

# fees used when funding channels, the minimum relay fee of bitcoind
MIN_FEE_SAT_PER_BYTE = 1
MIN_FEE_PER_KW = '253perkw'

# node implementations
BITCOIND = 'bitcoind'
LND = 'LND'
CLIGHTNING = 'c-lightning'
ECLAIR = 'eclair'

LATEST_VERSIONS = {
    BITCOIND: '0.19.0.1',
    LND: '0.8.2-beta',
    CLIGHTNING: '0.8.0',
    ECLAIR: '0.3.3',
}

# per implementation and role, a node's port is the base port plus its id
BASE_PORTS = {
    BITCOIND: {'rpc': 18443},
    LND: {'rest': 8081, 'grpc': 10001},
    CLIGHTNING: {'rest': 8181},
    ECLAIR: {'rest': 8281},
}

# folder names of the node volumes inside a network folder
VOLUME_DIRS = {
    BITCOIND: 'bitcoind',
    LND: 'lnd',
    CLIGHTNING: 'c-lightning',
    ECLAIR: 'eclair',
}

bitcoin_credentials = {
    'user': 'lnd',
    'pass': '123456',
}
eclair_password = 'eclairpw'

common_path = os.path.dirname(os.path.realpath(__file__))
root_path = os.path.join(common_path, '../../')

data_path = os.environ.get(
    'LNNETKIT_DATA_DIR', os.path.join(os.path.expanduser('~'), '.lnnetkit'))
networks_path = os.path.join(data_path, 'networks')

logger_config = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'file': {
            'format': '[%(asctime)s %(levelname)s %(name)s] %(message)s',
            'datefmt': '%Y-%m-%d %H:%M:%S'
        },
        'standard': {
            'format': '%(message)s',
        },
    },
    'handlers': {
        'default': {
            'level': 'INFO',
            'formatter': 'standard',
            'class': 'logging.StreamHandler',
            'stream': 'ext://sys.stdout',  # Default is stderr
        },
        'file': {
            'level': 'DEBUG',
            'formatter': 'file',
            'class': 'logging.FileHandler',
            'filename': os.path.join(root_path, 'lnnetkit.log'),
            'delay': True,
        },
    },
    'loggers': {
        '': {  # root logger
            'handlers': ['default', 'file'],
            'level': 'DEBUG',
            'propagate': True
        },
    }
}
