"""Constants and configuration for the dual-asset vault."""

from decimal import Decimal

# Reserve asset (CORE) amounts are wei, cross asset (BTC) amounts are satoshis.
WEI_PER_CORE = Decimal(10**18)
SATS_PER_BTC = Decimal(10**8)
SATS_TO_WEI = 10**10  # 1 sat expressed in 18-decimal units

TOTAL_BASIS_POINTS = 100_00
PRICE_SCALE = 10**18  # pricePerShare of 1.0
DEVIATION_SCALE = 100_00  # deviation factor at exactly the target ratio
UINT256_MAX = 2**256 - 1

SECONDS_PER_ROUND = 86_400  # rounds are daily

# Locktime redeem script template:
#   04 <locktime LE:4> b1 75 76 a9 14 <pubkey hash:20> 88 ac
MIN_SCRIPT_LENGTH = 32
SCRIPT_LOCKTIME_OFFSET = 1
SCRIPT_PUBKEY_HASH_OFFSET = 10
PUBKEY_HASH_LENGTH = 20

# Governance defaults (values of the original mainnet deployment).
DEFAULT_FEE_RATE_BP = 500
MAX_FEE_RATE_BP = 1000
DEFAULT_CROSS_REWARD_RATIO_BP = 5000
DEFAULT_TARGET_RATIO = 8000  # CORE staked per whole BTC staked
DEFAULT_RESERVE_RATIO_PERCENT = 50  # share of deposits expected to be delegated
FALLBACK_CROSS_REWARD_RATIO_BP = 5000

# Below these floors the rebalancer treats a leg as empty.
MIN_CROSS_STAKE_SATS = 1_000
MIN_RESERVE_DEPOSITS_WEI = 10**18

GRADE_SLOTS = 5
# (lower, upper, cross reward ratio bp); bounds in DEVIATION_SCALE units.
DEFAULT_GRADE_TABLE: tuple[tuple[int, int, int], ...] = (
    (0, 5_000, 8000),
    (5_000, 8_000, 6500),
    (8_000, 12_500, 5000),
    (12_500, 20_000, 3500),
    (20_000, UINT256_MAX, 2000),
)

# Prefix of the proof-of-ownership claim message. The recipient address is appended lowercased.
CLAIM_MESSAGE_PREFIX = "recipient: "

# Core chain system contracts.
STAKE_HUB_ADDRESS = "0x0000000000000000000000000000000000001010"
CORE_AGENT_ADDRESS = "0x0000000000000000000000000000000000001011"
BITCOIN_STAKE_ADDRESS = "0x0000000000000000000000000000000000001014"

# Order of the reward vector returned by StakeHub.claimReward.
REWARD_ASSET_TYPES = ("CORE", "HashRate", "BTC Staking")

# Minimal ABI for StakeHub: round counter and reward settlement.
STAKE_HUB_MIN_ABI: list[dict] = [
    {
        "type": "function",
        "name": "roundTag",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "claimReward",
        "stateMutability": "nonpayable",
        "inputs": [],
        "outputs": [{"name": "rewards", "type": "uint256[]"}],
    },
]

# Minimal ABI for BitcoinStake: verified BTC transactions and their delegation receipts.
BITCOIN_STAKE_MIN_ABI: list[dict] = [
    {
        "type": "function",
        "name": "btcTxMap",
        "stateMutability": "view",
        "inputs": [{"name": "txid", "type": "bytes32"}],
        "outputs": [
            {"name": "amount", "type": "uint64"},
            {"name": "outputIndex", "type": "uint32"},
            {"name": "blockTimestamp", "type": "uint64"},
            {"name": "lockTime", "type": "uint32"},
            {"name": "usedHeight", "type": "uint32"},
        ],
    },
    {
        "type": "function",
        "name": "receiptMap",
        "stateMutability": "view",
        "inputs": [{"name": "txid", "type": "bytes32"}],
        "outputs": [
            {"name": "candidate", "type": "address"},
            {"name": "delegator", "type": "address"},
            {"name": "round", "type": "uint256"},
        ],
    },
]

# Minimal ABI for CoreAgent: CORE delegation to validator candidates.
CORE_AGENT_MIN_ABI: list[dict] = [
    {
        "type": "function",
        "name": "delegateCoin",
        "stateMutability": "payable",
        "inputs": [{"name": "candidate", "type": "address"}],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "undelegateCoin",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "candidate", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "getCandidateListByDelegator",
        "stateMutability": "view",
        "inputs": [{"name": "delegator", "type": "address"}],
        "outputs": [{"name": "", "type": "address[]"}],
    },
    {
        "type": "function",
        "name": "getDelegator",
        "stateMutability": "view",
        "inputs": [
            {"name": "candidate", "type": "address"},
            {"name": "delegator", "type": "address"},
        ],
        "outputs": [
            {"name": "stakedAmount", "type": "uint256"},
            {"name": "realtimeAmount", "type": "uint256"},
            {"name": "transferredAmount", "type": "uint256"},
            {"name": "changeRound", "type": "uint256"},
        ],
    },
]

DEFAULT_RPC_URL_ENV = "CORE_RPC_URL"
LOG_LEVEL_ENV = "VAULTER_LOG_LEVEL"

# Cache configuration
CACHE_DIR_NAME = ".vaulter_core_cache"
CACHE_VERSION = "1"  # Increment to invalidate all caches
