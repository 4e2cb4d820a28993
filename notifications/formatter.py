"""Flex message templates for each notification type.

Values are coerced with ``safe_number`` before formatting so a missing or
broken figure renders as zero instead of leaking NaN/None into the message.
"""

from typing import Any
from zoneinfo import ZoneInfo
from config.constants import AlertType, MessageColor, NotificationType
from config.settings import settings
from notifications.types import FlexMessage, Message, TextMessage
from utils.formatting import format_large_number, format_percent, format_price, safe_number, truncate
from utils.time_utils import from_ms, now_ms

_WHITE = "#FFFFFF"
_HEADER_COLORS = {
    "critical": MessageColor.BEARISH,
    "high": MessageColor.ALERT,
    "normal": MessageColor.INFO,
}


def render(notification_type: NotificationType, data: dict[str, Any]) -> Message:
    """Render ``data`` with the template for ``notification_type``."""
    formatters = {
        NotificationType.PRICE_ALERT: format_price_alert,
        NotificationType.MARKET_UPDATE: format_market_summary,
        NotificationType.AI_ANALYSIS: format_ai_analysis,
        NotificationType.ANNOUNCEMENT: format_announcement,
        NotificationType.WELCOME: format_welcome,
    }
    return formatters[notification_type](data)


def _timestamp(ms: object) -> str:
    value = int(safe_number(ms, default=now_ms()))
    local = from_ms(value).astimezone(ZoneInfo(settings.timezone))  # type: ignore[union-attr]
    return local.strftime("%Y-%m-%d %H:%M")


def _text(text: str, **style: Any) -> dict[str, Any]:
    return {"type": "text", "text": text, **style}


def _row(label: str, value: str, color: str = MessageColor.TEXT) -> dict[str, Any]:
    return {
        "type": "box",
        "layout": "baseline",
        "spacing": "sm",
        "contents": [
            _text(label, color=MessageColor.MUTED, size="sm", flex=2),
            _text(value, color=color, size="sm", flex=3, weight="bold", wrap=True),
        ],
    }


def _link_footer(label: str, path: str) -> dict[str, Any] | None:
    if not settings.website_url:
        return None
    return {
        "type": "box",
        "layout": "vertical",
        "contents": [{
            "type": "button",
            "style": "primary",
            "height": "sm",
            "action": {
                "type": "uri",
                "label": label,
                "uri": f"{settings.website_url.rstrip('/')}{path}",
            },
        }],
    }


def _bubble(
    title: str,
    header_color: str,
    body: list[dict[str, Any]],
    footer: dict[str, Any] | None = None,
) -> dict[str, Any]:
    bubble = {
        "type": "bubble",
        "header": {
            "type": "box",
            "layout": "vertical",
            "backgroundColor": header_color,
            "paddingAll": "lg",
            "contents": [_text(title, weight="bold", color=_WHITE, size="md")],
        },
        "body": {"type": "box", "layout": "vertical", "spacing": "sm", "contents": body},
    }
    if footer:
        bubble["footer"] = footer
    return bubble


def _alert_condition(data: dict[str, Any]) -> str:
    alert_type = data.get("alert_type", AlertType.PRICE_ABOVE)
    if alert_type == AlertType.PRICE_ABOVE:
        return f"rose above {format_price(data.get('target_price'))}"
    if alert_type == AlertType.PRICE_BELOW:
        return f"fell below {format_price(data.get('target_price'))}"
    if alert_type == AlertType.PERCENT_CHANGE:
        return f"moved {format_percent(data.get('change_percent'))} in 24h"
    if alert_type == AlertType.VOLUME_SPIKE:
        return f"volume spiked to {format_large_number(data.get('volume'))}"
    return "alert condition met"


def format_price_alert(data: dict[str, Any]) -> FlexMessage:
    symbol = str(data.get("symbol") or "UNKNOWN")
    urgency = data.get("urgency", "normal")
    change = safe_number(data.get("change_percent"))
    condition = _alert_condition(data)

    body = [
        _text(symbol, weight="bold", size="xl", color=MessageColor.TEXT),
        _text(condition, size="md", color=MessageColor.MUTED, margin="sm", wrap=True),
        {"type": "separator", "margin": "lg"},
        _row("Price", format_price(data.get("current_price"))),
        _row(
            "24h change",
            format_percent(change),
            MessageColor.BULLISH if change >= 0 else MessageColor.BEARISH,
        ),
    ]
    if data.get("target_price") is not None:
        body.append(_row("Target", format_price(data.get("target_price"))))
    body.append(_text(_timestamp(data.get("triggered_at")), size="xs", color=MessageColor.MUTED, margin="md"))

    prefix = "🚨" if urgency == "critical" else "🔔"
    return FlexMessage(
        contents=_bubble(
            f"{prefix} Price Alert",
            _HEADER_COLORS.get(urgency, MessageColor.INFO),
            body,
            _link_footer("View chart", f"/currency/{symbol}"),
        ),
        alt_text=f"{symbol} price alert: {condition}",
    )


def format_price_alert_text(data: dict[str, Any]) -> TextMessage:
    """Plain-text alert used by the direct single-send path."""
    symbol = str(data.get("symbol") or "UNKNOWN")
    lines = [
        f"🔔 {symbol} {_alert_condition(data)}",
        f"Price: {format_price(data.get('current_price'))}",
        f"24h change: {format_percent(data.get('change_percent'))}",
        _timestamp(data.get("triggered_at")),
    ]
    return TextMessage("\n".join(lines))


def format_market_summary(data: dict[str, Any]) -> FlexMessage:
    body: list[dict[str, Any]] = [_text("Market overview", weight="bold", size="md", color=MessageColor.TEXT)]
    if data.get("total_market_cap") is not None:
        body.append(_row("Market cap", f"${format_large_number(data.get('total_market_cap'))}"))
    if data.get("btc_dominance") is not None:
        body.append(_row("BTC dominance", f"{safe_number(data.get('btc_dominance')):.1f}%"))
    if data.get("fear_greed_index") is not None:
        body.append(_row("Fear & Greed", str(int(safe_number(data.get("fear_greed_index"), 50)))))

    trending = data.get("trending") or []
    if trending:
        body.append({"type": "separator", "margin": "lg"})
        body.append(_text("Top movers", weight="bold", size="md", color=MessageColor.TEXT, margin="lg"))
        for coin in trending[:5]:
            change = safe_number(coin.get("change_percent"))
            body.append(_row(
                str(coin.get("symbol", "")),
                f"{format_price(coin.get('price'))} ({format_percent(change)})",
                MessageColor.BULLISH if change >= 0 else MessageColor.BEARISH,
            ))
    body.append(_text(_timestamp(data.get("timestamp")), size="xs", color=MessageColor.MUTED, margin="md"))

    return FlexMessage(
        contents=_bubble("📊 Market Summary", MessageColor.INFO, body, _link_footer("Open markets", "/market")),
        alt_text="Market summary",
    )


def format_ai_analysis(data: dict[str, Any]) -> FlexMessage:
    symbol = str(data.get("symbol") or "Market")
    trend = str(data.get("trend") or "neutral").lower()
    confidence = safe_number(data.get("confidence"))
    color = {
        "bullish": MessageColor.BULLISH,
        "bearish": MessageColor.BEARISH,
    }.get(trend, MessageColor.NEUTRAL)

    body = [
        _text(symbol, weight="bold", size="xl", color=MessageColor.TEXT),
        _row("Trend", trend.capitalize(), color),
        _row("Confidence", f"{confidence:.0f}%"),
    ]
    if data.get("summary"):
        body.append(_text(truncate(str(data["summary"])), wrap=True, size="sm", color=MessageColor.TEXT, margin="md"))
    for point in (data.get("key_points") or [])[:3]:
        body.append(_text(f"• {truncate(str(point))}", wrap=True, size="sm", color=MessageColor.MUTED))

    return FlexMessage(
        contents=_bubble("🤖 AI Analysis", MessageColor.INFO, body, _link_footer("Full report", f"/ai-analysis/{symbol}")),
        alt_text=f"{symbol} AI analysis: {trend}",
    )


def format_announcement(data: dict[str, Any] | str) -> Message:
    """Plain strings go out as text; dicts with a title render as a bubble."""
    if isinstance(data, str):
        return TextMessage(data)
    title = str(data.get("title") or "Announcement")
    message = str(data.get("message") or data.get("body") or "")
    if not data.get("rich", True):
        return TextMessage(f"📢 {title}\n\n{message}" if message else f"📢 {title}")
    body = [_text(title, weight="bold", size="lg", color=MessageColor.TEXT, wrap=True)]
    if message:
        body.append(_text(truncate(message), wrap=True, size="sm", color=MessageColor.TEXT, margin="md"))
    return FlexMessage(
        contents=_bubble("📢 Announcement", MessageColor.ALERT, body),
        alt_text=f"Announcement: {title}",
    )


def format_welcome(data: dict[str, Any]) -> FlexMessage:
    username = str(data.get("username") or "there")
    platform = str(data.get("platform") or "Market Notifier")
    body = [
        _text(f"Hi {username}!", weight="bold", size="xl", color=MessageColor.TEXT, align="center"),
        _text(
            "You will get price alerts, market summaries and analysis here.",
            wrap=True,
            size="md",
            color=MessageColor.MUTED,
            margin="lg",
            align="center",
        ),
    ]
    return FlexMessage(
        contents=_bubble(f"🎉 Welcome to {platform}", MessageColor.BULLISH, body, _link_footer("Get started", "/")),
        alt_text=f"Welcome to {platform}",
    )
