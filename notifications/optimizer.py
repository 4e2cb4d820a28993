"""Content optimizer: repair message payloads to fit the channel's limits.

Broken values are repaired rather than rejected. Only content that is still
invalid after repair raises ``ValidationError``.
"""

import re
from dataclasses import dataclass, field
from typing import Any
import structlog
from config.constants import (
    DEFAULT_ALT_TEXT,
    HEX_COLOR_RE,
    MAX_ALT_TEXT_LENGTH,
    MAX_BUTTON_LABEL_LENGTH,
    MAX_CAROUSEL_BUBBLES,
    MAX_FLEX_TEXT_LENGTH,
    MAX_NESTING_DEPTH,
    MAX_TEXT_MESSAGE_LENGTH,
    NAMED_COLORS,
    NEUTRAL_GRAY,
    VALID_ACTION_TYPES,
    VALID_ALIGNS,
    VALID_BUBBLE_SIZES,
    VALID_BUTTON_HEIGHTS,
    VALID_BUTTON_STYLES,
    VALID_COMPONENT_TYPES,
    VALID_LAYOUTS,
    VALID_SIZES,
    VALID_SPACINGS,
    VALID_WEIGHTS,
)
from notifications.errors import ValidationError
from notifications.types import FlexMessage, Message, TextMessage
from utils.formatting import truncate

log = structlog.get_logger(__name__)

# "$NaN", "NaN%", "undefined", "null" left behind by broken number formatting
PLACEHOLDER_RE = re.compile(r"(?<![\w.])(\$?)(?:-?NaN|-?Infinity|undefined|null)\b")

# String fields shown to the user, with their length limits
DISPLAY_FIELDS = {
    "text": MAX_FLEX_TEXT_LENGTH,
    "label": MAX_BUTTON_LABEL_LENGTH,
    "altText": MAX_ALT_TEXT_LENGTH,
    "displayText": MAX_FLEX_TEXT_LENGTH,
}

_BLOCKS = ("header", "hero", "body", "footer")
_MAX_REPAIR_PASSES = 5


def _enum_fields(component_type: str | None) -> dict[str, set[str]]:
    fields = {
        "weight": VALID_WEIGHTS,
        "align": VALID_ALIGNS,
        "margin": VALID_SPACINGS,
        "spacing": VALID_SPACINGS,
        "paddingAll": VALID_SPACINGS,
    }
    if component_type == "bubble":
        fields["size"] = VALID_BUBBLE_SIZES
    elif component_type == "image":
        fields["size"] = VALID_SIZES | {"full"}
    elif component_type in ("text", "icon"):
        fields["size"] = VALID_SIZES
    if component_type == "button":
        fields["style"] = VALID_BUTTON_STYLES
        fields["height"] = VALID_BUTTON_HEIGHTS
    return fields


def _is_color_key(key: str) -> bool:
    return key == "color" or key.endswith("Color")


def normalize_color(value: str) -> str:
    """Coerce a colour token to ``#RRGGBB``; unknown input becomes neutral gray."""
    token = value.strip()
    named = NAMED_COLORS.get(token.lower())
    if named:
        return named
    if not token.startswith("#"):
        token = f"#{token}"
    digits = token[1:]
    if re.fullmatch(r"[0-9A-Fa-f]{3}", digits):
        token = "#" + "".join(c * 2 for c in digits)
    elif re.fullmatch(r"[0-9A-Fa-f]{8}", digits):
        token = token[:7]
    if HEX_COLOR_RE.match(token):
        return token.upper()
    return NEUTRAL_GRAY


def fix_placeholders(text: str) -> str:
    """Rewrite numeric placeholder artifacts to zero values (``$NaN`` -> ``$0.00``)."""
    return PLACEHOLDER_RE.sub(r"\g<1>0.00", text)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)


class ContentOptimizer:
    """Repairs and validates text and flex messages."""

    def optimize(self, message: Message) -> Message:
        match message:
            case TextMessage(text=text):
                optimized = TextMessage(truncate(text, MAX_TEXT_MESSAGE_LENGTH))
            case FlexMessage(contents=contents, alt_text=alt_text):
                optimized = FlexMessage(
                    contents=self._repair_to_fixpoint(contents),
                    alt_text=self._repair_alt_text(alt_text),
                )
            case _:
                raise ValidationError([f"unsupported message type: {type(message).__name__}"])

        result = self.validate(optimized)
        if not result.is_valid:
            log.warning("content_unrepairable", errors=result.errors)
            raise ValidationError(result.errors)
        return optimized

    def validate(self, message: Message) -> ValidationResult:
        errors: list[str] = []
        match message:
            case TextMessage(text=text):
                if not text:
                    errors.append("text message is empty")
                elif len(text) > MAX_TEXT_MESSAGE_LENGTH:
                    errors.append(f"text exceeds {MAX_TEXT_MESSAGE_LENGTH} characters")
            case FlexMessage(contents=contents, alt_text=alt_text):
                if not alt_text:
                    errors.append("altText is required")
                elif len(alt_text) > MAX_ALT_TEXT_LENGTH:
                    errors.append(f"altText exceeds {MAX_ALT_TEXT_LENGTH} characters")
                self._validate_container(contents, errors)
            case _:
                errors.append(f"unsupported message type: {type(message).__name__}")
        return ValidationResult(is_valid=not errors, errors=errors)

    # -- repair --

    def _repair_alt_text(self, alt_text: str | None) -> str:
        if not alt_text or not alt_text.strip():
            return DEFAULT_ALT_TEXT
        for _ in range(_MAX_REPAIR_PASSES):
            repaired = truncate(fix_placeholders(alt_text), MAX_ALT_TEXT_LENGTH)
            if repaired == alt_text:
                break
            alt_text = repaired
        return alt_text

    def _repair_to_fixpoint(self, contents: dict[str, Any]) -> dict[str, Any]:
        current = contents
        for _ in range(_MAX_REPAIR_PASSES):
            repaired = self._repair(current)
            if repaired is None:
                repaired = {}
            if repaired == current:
                break
            current = repaired
        return current

    def _repair(self, node: Any) -> Any:
        """Return a repaired copy of ``node``, or None if it should be dropped."""
        if isinstance(node, list):
            items = [self._repair(item) for item in node]
            return [item for item in items if not _is_empty(item)]
        if not isinstance(node, dict):
            return node

        component_type = node.get("type")
        enums = _enum_fields(component_type)
        repaired: dict[str, Any] = {}
        for key, value in node.items():
            if isinstance(value, (dict, list)):
                value = self._repair(value)
            elif isinstance(value, str):
                if key in enums and value not in enums[key]:
                    continue
                if _is_color_key(key):
                    value = normalize_color(value)
                elif key in DISPLAY_FIELDS:
                    value = truncate(fix_placeholders(value), DISPLAY_FIELDS[key])
            if _is_empty(value):
                continue
            repaired[key] = value

        if component_type == "box" and repaired.get("layout") not in VALID_LAYOUTS:
            repaired["layout"] = "vertical"
        if component_type == "text" and not repaired.get("text") and not repaired.get("contents"):
            return None
        return repaired

    # -- validation --

    def _validate_container(self, contents: Any, errors: list[str]) -> None:
        if not isinstance(contents, dict):
            errors.append("contents must be an object")
            return
        container_type = contents.get("type")
        if container_type == "bubble":
            self._validate_bubble(contents, errors, "bubble")
        elif container_type == "carousel":
            bubbles = contents.get("contents")
            if not isinstance(bubbles, list) or not bubbles:
                errors.append("carousel needs at least one bubble")
                return
            if len(bubbles) > MAX_CAROUSEL_BUBBLES:
                errors.append(f"carousel exceeds {MAX_CAROUSEL_BUBBLES} bubbles")
            for i, bubble in enumerate(bubbles):
                if not isinstance(bubble, dict) or bubble.get("type") != "bubble":
                    errors.append(f"carousel.contents[{i}] is not a bubble")
                    continue
                self._validate_bubble(bubble, errors, f"carousel.contents[{i}]")
        else:
            errors.append(f"unsupported container type: {container_type}")

    def _validate_bubble(self, bubble: dict, errors: list[str], path: str) -> None:
        self._validate_fields(bubble, errors, path)
        blocks = [b for b in _BLOCKS if b in bubble]
        if not blocks:
            errors.append(f"{path} has no content blocks")
        for block in blocks:
            section = bubble[block]
            if not isinstance(section, dict):
                errors.append(f"{path}.{block} must be a component")
                continue
            self._validate_component(section, errors, 1, f"{path}.{block}")

    def _validate_component(self, component: Any, errors: list[str], depth: int, path: str) -> None:
        if depth > MAX_NESTING_DEPTH:
            errors.append(f"{path} exceeds nesting depth {MAX_NESTING_DEPTH}")
            return
        if not isinstance(component, dict):
            errors.append(f"{path} must be an object")
            return

        component_type = component.get("type")
        if component_type not in VALID_COMPONENT_TYPES:
            errors.append(f"{path} has unsupported type: {component_type}")
            return
        self._validate_fields(component, errors, path)

        if component_type == "box":
            if component.get("layout") not in VALID_LAYOUTS:
                errors.append(f"{path} has invalid layout: {component.get('layout')}")
            children = component.get("contents", [])
            if not isinstance(children, list):
                errors.append(f"{path}.contents must be a list")
                return
            for i, child in enumerate(children):
                self._validate_component(child, errors, depth + 1, f"{path}.contents[{i}]")
        elif component_type == "text":
            if not component.get("text") and not component.get("contents"):
                errors.append(f"{path} text is required")
        elif component_type == "button":
            self._validate_action(component.get("action"), errors, f"{path}.action", required=True)
        elif component_type == "image" and not component.get("url"):
            errors.append(f"{path} image url is required")

        if "action" in component and component_type != "button":
            self._validate_action(component["action"], errors, f"{path}.action", required=False)

    def _validate_action(self, action: Any, errors: list[str], path: str, required: bool) -> None:
        if action is None:
            if required:
                errors.append(f"{path} is required")
            return
        if not isinstance(action, dict):
            errors.append(f"{path} must be an object")
            return
        action_type = action.get("type")
        if action_type not in VALID_ACTION_TYPES:
            errors.append(f"{path} has unsupported type: {action_type}")
        if action_type == "uri" and not action.get("uri"):
            errors.append(f"{path} uri is required")
        self._validate_fields(action, errors, path)

    def _validate_fields(self, node: dict, errors: list[str], path: str) -> None:
        enums = _enum_fields(node.get("type"))
        for key, value in node.items():
            if not isinstance(value, str):
                continue
            if key in enums and value not in enums[key]:
                errors.append(f"{path} has invalid {key}: {value}")
            elif _is_color_key(key) and not HEX_COLOR_RE.match(value):
                errors.append(f"{path} has invalid {key}: {value}")
            elif key in DISPLAY_FIELDS:
                if len(value) > DISPLAY_FIELDS[key]:
                    errors.append(f"{path}.{key} exceeds {DISPLAY_FIELDS[key]} characters")
                if PLACEHOLDER_RE.search(value):
                    errors.append(f"{path}.{key} contains a numeric placeholder: {value}")
