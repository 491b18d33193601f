"""Default values shared across chainflow modules."""

# Native currency cost used when the bridge fee quote cannot be obtained.
DEFAULT_FALLBACK_FEE = "0.001"
NATIVE_DECIMALS = 18

DEFAULT_QUOTE_TIMEOUT = 5.0
DEFAULT_QUERY_TIMEOUT = 10.0

DEFAULT_POLL_INTERVAL = 3.0
DEFAULT_MAX_POLL_ATTEMPTS = 30
DEFAULT_MINT_GRACE_PERIOD = 3.0

# Pause between a confirmed permission and the action submission so that
# dependent reads (allowance, balances) observe the new state.
DEFAULT_SETTLE_DELAY = 0.1

DEFAULT_STACKS_API_URL = "http://localhost:3999"

DEFAULT_ASSET_DECIMALS = {
    "USDC": 6,
    "OFTUSDC": 18,
    "VAULT_SHARES": 18,
    "sBTC": 6,
}

# LayerZero endpoint ids for the source and destination chains.
DEFAULT_SOURCE_EID = 1
DEFAULT_DESTINATION_EID = 2
