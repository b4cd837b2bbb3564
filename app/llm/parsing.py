import json

from pydantic import ValidationError

from app.llm.types import StyleSignal


class SignalParseError(ValueError):
    pass


def strip_code_fences(content: str) -> str:
    text = content.strip()
    if text.startswith("```json"):
        text = text[len("```json"):]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def parse_signal_content(content: str | None) -> StyleSignal:
    """Turn raw provider text into a normalized StyleSignal.

    Raises SignalParseError for empty content, invalid JSON, or a payload that is
    missing one of the required sections.
    """
    if not content or not content.strip():
        raise SignalParseError("empty response")
    try:
        data = json.loads(strip_code_fences(content))
    except json.JSONDecodeError as exc:
        raise SignalParseError(f"invalid json: {exc.msg}") from exc
    try:
        return StyleSignal.model_validate(data)
    except ValidationError as exc:
        raise SignalParseError(f"invalid signal: {exc.error_count()} error(s)") from exc
