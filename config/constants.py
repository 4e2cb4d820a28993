"""Constants used across the dispatch engine."""

import re
from enum import Enum


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """0 for critical, 3 for low."""
        return PRIORITY_ORDER.index(self)


# Highest first
PRIORITY_ORDER = [Priority.CRITICAL, Priority.HIGH, Priority.MEDIUM, Priority.LOW]


class Segment(str, Enum):
    VIP = "vip"
    ACTIVE = "active"
    REGULAR = "regular"
    INACTIVE = "inactive"


# Chunking order within a task: higher-value users first
SEGMENT_ORDER = [Segment.VIP, Segment.ACTIVE, Segment.REGULAR, Segment.INACTIVE]


class AlertType(str, Enum):
    PRICE_ABOVE = "price_above"
    PRICE_BELOW = "price_below"
    PERCENT_CHANGE = "percent_change"
    VOLUME_SPIKE = "volume_spike"


class AlertStatus(str, Enum):
    ACTIVE = "active"
    TRIGGERED = "triggered"
    PAUSED = "paused"
    EXPIRED = "expired"


class NotificationType(str, Enum):
    PRICE_ALERT = "price_alert"
    MARKET_UPDATE = "market_update"
    AI_ANALYSIS = "ai_analysis"
    ANNOUNCEMENT = "announcement"
    WELCOME = "welcome"


class MessageColor(str, Enum):
    BULLISH = "#00C853"
    BEARISH = "#FF1744"
    ALERT = "#FF6D00"
    INFO = "#2979FF"
    NEUTRAL = "#9E9E9E"
    TEXT = "#333333"
    MUTED = "#888888"


# Per-priority policy: weight divides the optimal batch size (heavier => smaller,
# faster chunks); max_delay_ms is the wait after which a task is overdue.
PRIORITY_POLICIES = {
    Priority.CRITICAL: {"weight": 4, "max_delay_ms": 0},
    Priority.HIGH: {"weight": 2, "max_delay_ms": 5_000},
    Priority.MEDIUM: {"weight": 1, "max_delay_ms": 30_000},
    Priority.LOW: {"weight": 1, "max_delay_ms": 300_000},
}

# Per-segment policy: priority for requests that set none, and a chunk size cap
SEGMENT_POLICIES = {
    Segment.VIP: {"priority": Priority.CRITICAL, "batch_size": 100},
    Segment.ACTIVE: {"priority": Priority.HIGH, "batch_size": 200},
    Segment.REGULAR: {"priority": Priority.MEDIUM, "batch_size": 500},
    Segment.INACTIVE: {"priority": Priority.LOW, "batch_size": 500},
}

# Delay between chunks of the same task (ms)
CHUNK_DELAY_MS = {
    Priority.CRITICAL: 50,
    Priority.HIGH: 100,
    Priority.MEDIUM: 200,
    Priority.LOW: 500,
}

# Multiplier applied to average latency when estimating queue delay
DELAY_ESTIMATE_FACTOR = {
    Priority.CRITICAL: 0.1,
    Priority.HIGH: 0.5,
    Priority.MEDIUM: 1.0,
    Priority.LOW: 2.0,
}

MIN_PACING_DELAY_MS = 50
RATE_WINDOW_MS = 60_000

# Segment classification by last activity (days)
ACTIVE_WITHIN_DAYS = 7
INACTIVE_AFTER_DAYS = 30

# Gateway hard limits (LINE Messaging API)
GATEWAY_MAX_RECIPIENTS = 500
MAX_TEXT_MESSAGE_LENGTH = 2000

# Flex message structural limits
MAX_FLEX_TEXT_LENGTH = 160
MAX_BUTTON_LABEL_LENGTH = 20
MAX_ALT_TEXT_LENGTH = 400
MAX_NESTING_DEPTH = 5
MAX_CAROUSEL_BUBBLES = 12
DEFAULT_ALT_TEXT = "New notification"

VALID_SIZES = {"xxs", "xs", "sm", "md", "lg", "xl", "xxl", "3xl", "4xl", "5xl"}
VALID_WEIGHTS = {"regular", "bold"}
VALID_ALIGNS = {"start", "end", "center"}
VALID_LAYOUTS = {"vertical", "horizontal", "baseline"}
VALID_BUTTON_STYLES = {"link", "primary", "secondary"}
VALID_BUTTON_HEIGHTS = {"sm", "md"}
VALID_BUBBLE_SIZES = {"nano", "micro", "kilo", "mega", "giga"}
VALID_SPACINGS = {"none", "xs", "sm", "md", "lg", "xl", "xxl"}
VALID_COMPONENT_TYPES = {"box", "text", "button", "separator", "image", "icon", "filler", "spacer"}
VALID_ACTION_TYPES = {"uri", "postback", "message"}

HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")
NEUTRAL_GRAY = "#808080"
NAMED_COLORS = {
    "red": "#FF0000",
    "green": "#008000",
    "blue": "#0000FF",
    "black": "#000000",
    "white": "#FFFFFF",
    "gray": "#808080",
    "grey": "#808080",
    "orange": "#FFA500",
    "yellow": "#FFFF00",
}
