# --- Provider Actions (DaisySMS handler API) ---
DAISY_ACTION_PRICES = "getPricesVerification"
DAISY_ACTION_RENT = "getNumber"
DAISY_ACTION_STATUS = "getStatus"
DAISY_ACTION_SET_STATUS = "setStatus"
DAISY_ACTION_BALANCE = "getBalance"

# setStatus code that cancels an activation
DAISY_STATUS_CANCEL = "8"

# --- Ledger RPC Functions ---
LEDGER_RPC_RESERVE = "wallet_create_hold"
LEDGER_RPC_COMMIT = "wallet_commit_hold"
LEDGER_RPC_REFUND = "wallet_refund_hold"
LEDGER_RPC_LEGACY_DEBIT = "debit_wallet_on_success"
LEDGER_RPC_BALANCE = "wallet_get_balance"
LEDGER_RPC_FIND_HOLD = "wallet_find_hold"

# --- Redis Key Prefixes ---
REDIS_RATE_LIMIT_PREFIX = "rate_limit"

# --- Poll Supervisor ---
# Backoff between checks of a watched rental, in seconds. The last value repeats.
POLL_BACKOFF_SECONDS = (3, 5, 8, 12)

# --- Expiry Sweeper ---
# Random spread applied to the sweep interval (+/- 10%).
SWEEP_JITTER = 0.1

# --- Money ---
CENTS_PER_UNIT = 100

# --- Front-end ---
SERVICES_PER_PAGE = 10
