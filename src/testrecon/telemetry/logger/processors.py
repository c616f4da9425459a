# src/testrecon/telemetry/logger/processors.py

"""
Custom structlog processors for testrecon.
"""

from structlog.typing import EventDict, WrappedLogger

LEVEL_EMOJIS: dict[str, str] = {
    "debug": "🐛",
    "info": "ℹ️",
    "warning": "⚠️",
    "error": "❌",
    "critical": "💥",
    "run": "🏃",
    "report": "📄",
    "correct": "🔁",
    "fatal": "💀",
}

# Keys that only steer processors and must not reach the renderer.
INTERNAL_KEYS = ("emoji_key",)


def add_emoji_processor(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Prefixes the event with an emoji for its level, or for an explicit `emoji_key`."""
    emoji_key = event_dict.get("emoji_key") or event_dict.get("level", method_name)
    emoji = LEVEL_EMOJIS.get(str(emoji_key).lower())
    event = event_dict.get("event")
    if emoji and isinstance(event, str) and not event.startswith(emoji):
        event_dict["event"] = f"{emoji} {event}"
    return event_dict


def remove_extra_keys_processor(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    for key in INTERNAL_KEYS:
        event_dict.pop(key, None)
    return event_dict

# 🔼⚙️
