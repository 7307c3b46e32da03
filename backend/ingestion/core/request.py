"""Request parsing for one pipeline run.

Loose inputs (form fields, CLI arguments) are normalised here into a
`ProcessRequest` before anything touches the network.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from ingestion.core.errors import InputValidationError
from recommender.schemas.stats import ALL_TIME_CONTROLS, LICHESS_MIN_DATE_UNIX_MS, Color, TimeControl

logger = logging.getLogger("openingrec.ingestion.request")


@dataclass(frozen=True, slots=True)
class ProcessRequest:
    username: str
    color: Color
    time_controls: tuple[TimeControl, ...]
    since_unix_ms: Optional[int] = None


def _parse_color(value: Any) -> Color:
    # Anything but an explicit "black" means white.
    if isinstance(value, str) and value.strip().lower() == Color.BLACK.value:
        return Color.BLACK
    return Color.WHITE


def _parse_time_controls(value: Any) -> tuple[TimeControl, ...]:
    if value is None:
        return ALL_TIME_CONTROLS

    items: Any = value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return ALL_TIME_CONTROLS
        try:
            items = json.loads(text)
        except json.JSONDecodeError:
            # Also accept "blitz,rapid".
            items = [part for part in text.split(",") if part.strip()]

    if not isinstance(items, (list, tuple, set, frozenset)) or len(items) == 0:
        logger.warning(f"Unparseable time controls {value!r}, using all")
        return ALL_TIME_CONTROLS

    allowed = {tc.value for tc in ALL_TIME_CONTROLS}
    selected: list[TimeControl] = []
    for item in items:
        name = str(item).strip().lower()
        if name in allowed and TimeControl(name) not in selected:
            selected.append(TimeControl(name))

    if not selected:
        raise InputValidationError("At least one time control must be selected")
    return tuple(selected)


def _parse_since(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise InputValidationError(f"Invalid since date: {value!r}")
    if isinstance(value, (int, float)):
        since = int(value)
    elif isinstance(value, datetime):
        when = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        since = int(when.timestamp() * 1000)
    else:
        text = str(value).strip()
        if text.isdigit():
            since = int(text)
        else:
            try:
                when = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError as e:
                raise InputValidationError(f"Invalid since date: {text!r}") from e
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            since = int(when.timestamp() * 1000)

    # Older games lack the clock data used to count plies.
    return max(since, LICHESS_MIN_DATE_UNIX_MS)


def parse_request(
    username: Any,
    color: Any = None,
    time_controls: Any = None,
    since: Any = None,
) -> ProcessRequest:
    if not isinstance(username, str) or not username.strip():
        raise InputValidationError("Username is required")

    return ProcessRequest(
        username=username.strip(),
        color=_parse_color(color),
        time_controls=_parse_time_controls(time_controls),
        since_unix_ms=_parse_since(since),
    )


def time_controls_param(time_controls: Sequence[TimeControl]) -> str:
    """Comma-joined form used by the Lichess `perfType` parameter."""
    return ",".join(TimeControl(tc).value for tc in time_controls)
