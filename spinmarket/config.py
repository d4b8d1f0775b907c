"""Configuration management for the spin market session core."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# Log directory
LOGS_DIR = PROJECT_ROOT / "logs"

# Persisted state (stock table + player records) and fill log
STATE_PATH = os.getenv("STATE_PATH", "data/session_state.json")
TRADE_LOG_PATH = os.getenv("TRADE_LOG_PATH", "data/trades.jsonl")

# =============================================================================
# TICK SCHEDULE
# =============================================================================

# Market tick (price evolution) in seconds
MARKET_TICK_SECONDS = float(os.getenv("MARKET_TICK_SECONDS", "1.0"))

# Order-processing tick (fills + liquidity decay) in seconds
ORDER_TICK_SECONDS = float(os.getenv("ORDER_TICK_SECONDS", "0.5"))

# Randomized event scheduler bounds (seconds)
EVENT_MIN_INTERVAL = float(os.getenv("EVENT_MIN_INTERVAL", "20"))
EVENT_MAX_INTERVAL = float(os.getenv("EVENT_MAX_INTERVAL", "60"))

# Maximum concurrently active market events
MAX_ACTIVE_EVENTS = int(os.getenv("MAX_ACTIVE_EVENTS", "4"))

# =============================================================================
# PLAYERS
# =============================================================================

# Points granted to a newly created player
STARTING_POINTS = float(os.getenv("STARTING_POINTS", "1000"))

# Income paid to every connected player after each spin
BASE_INCOME = float(os.getenv("BASE_INCOME", "15"))

# Completed orders stay visible for this long before being purged
ORDER_RETENTION_SECONDS = float(os.getenv("ORDER_RETENTION_SECONDS", "30"))

# =============================================================================
# SPIN FLOW
# =============================================================================

# Ready-up countdowns
READY_COUNTDOWN_SECONDS = float(os.getenv("READY_COUNTDOWN_SECONDS", "30"))
ALL_READY_COUNTDOWN_SECONDS = float(os.getenv("ALL_READY_COUNTDOWN_SECONDS", "5"))

# Result display before boosts settle / chained spins launch
COOLDOWN_SECONDS = float(os.getenv("COOLDOWN_SECONDS", "3"))
CHAIN_COOLDOWN_SECONDS = float(os.getenv("CHAIN_COOLDOWN_SECONDS", "2"))
