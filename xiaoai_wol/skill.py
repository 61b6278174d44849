"""Request and response handling for the voice-assistant skill endpoint."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum
from typing import Any

AUTH_SCHEME = "MIAI-HmacSHA256-V1"
WAKE_QUERY = "打开我的电脑"

GREETING_TEXT = "您好主人，我能为您做什么呢？"
STILL_THERE_TEXT = "主人，你还在吗？"
WAKING_TEXT = "好的主人，已经为您打开电脑了"
NOT_UNDERSTOOD_TEXT = "对不起主人，我不明白您的意思"
GOODBYE_TEXT = "再见主人，我在这里等你哦!"


class RequestType(IntEnum):
    LAUNCH = 0
    INTENT = 1
    END = 2


def _field(data: Mapping[str, Any], key: str, kind: type, default: Any) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if kind is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{key} must be an integer")
        if not -128 <= value <= 127:
            raise ValueError(f"{key} is out of range")
    elif not isinstance(value, kind):
        raise ValueError(f"{key} has the wrong type")
    return value


@dataclass
class SkillRequest:
    """The parts of a skill request the service acts on."""

    type: int = RequestType.LAUNCH
    query: str = ""
    no_response: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> SkillRequest:
        """Build a request from decoded JSON; raises ValueError on bad shapes."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("request body must be a JSON object")
        request = _field(data, "request", dict, {})
        intent = _field(request, "intent", dict, {})
        return cls(
            type=_field(request, "type", int, 0),
            query=_field(intent, "query", str, ""),
            no_response=_field(request, "no_response", bool, False),
        )


@dataclass
class SkillResponse:
    """A reply that is both spoken and displayed."""

    text: str = ""
    is_session_end: bool = False
    open_mic: bool = True
    not_understand: bool = False
    version: str = "1.0"

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "is_session_end": self.is_session_end,
            "response": {
                "not_understand": self.not_understand,
                "open_mic": self.open_mic,
                "to_speak": {"type": 0, "text": self.text},
                "to_display": {"type": 0, "text": self.text},
            },
        }


def is_authorized(auth_header: str | None, key: str) -> bool:
    """Tell whether an Authorization header carries the configured skill key."""
    return (auth_header or "").startswith(f"{AUTH_SCHEME} {key}::")


def respond(request: SkillRequest, wake: Callable[[], Any]) -> SkillResponse:
    """Answer a skill request, calling ``wake`` when asked to turn the computer on."""
    if request.type == RequestType.LAUNCH:
        return SkillResponse(text=GREETING_TEXT)
    if request.type == RequestType.INTENT:
        if request.no_response:
            return SkillResponse(text=STILL_THERE_TEXT)
        if request.query == WAKE_QUERY:
            wake()
            return SkillResponse(text=WAKING_TEXT, is_session_end=True, open_mic=False)
        return SkillResponse(text=NOT_UNDERSTOOD_TEXT)
    if request.type == RequestType.END:
        return SkillResponse(text=GOODBYE_TEXT, is_session_end=True, open_mic=False)
    return SkillResponse()


def _pretty_body(body: bytes) -> str:
    text = body.decode("utf-8", errors="replace")
    try:
        value = json.loads(text)
    except ValueError:
        return text
    return json.dumps(value, indent=2, ensure_ascii=False)


def format_debug_record(
    remote_addr: str,
    headers: Mapping[str, str] | Iterable[tuple[str, str]],
    body: bytes,
    now: datetime | None = None,
) -> str:
    """Describe a received request for the debug panel."""
    moment = now or datetime.now()
    pairs = headers.items() if hasattr(headers, "items") else headers
    lines = [
        f"Time: {moment:%Y-%m-%d %H:%M:%S}\n",
        f"From: {remote_addr}\n",
        "Headers:\n",
        *(f"- {name}: {value}\n" for name, value in pairs),
        "\nBody:\n",
        _pretty_body(body),
    ]
    return "".join(lines)