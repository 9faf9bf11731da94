"""Recovery of JSON objects from chat-completion response envelopes.

Providers return the payload in different places and shapes: an already
parsed object, a content string (often wrapped in a ```json fence), a
list of text parts, or free text around a JSON block. The extractor
tries each shape in turn, repairs common syntax damage, and never raises
for malformed input. It returns ``{}`` and records why instead.
"""

import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from docai.errors import UnrecoverableParseError
from docai.extraction.business import looks_like_business
from docai.extraction.fusion import fuse
from docai.utils.logger import get_logger, truncate

logger = get_logger(__name__)

FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
BOM = "\ufeff"


@dataclass
class ExtractionOutcome:
    """Result of extracting one envelope.

    Attributes:
        data: Recovered JSON object, ``{}`` on failure.
        path: Which envelope shape produced ``data``.
        failures: Reasons recorded for every shape that failed to parse.
    """

    data: dict[str, Any] = field(default_factory=dict)
    path: str | None = None
    failures: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.data)


def extract_json_string(content: str) -> str:
    """Pick the JSON candidate out of free text.

    The last fenced block wins; otherwise the span from the first ``{``
    to the last ``}``; otherwise the stripped text itself.
    """
    text = content.strip()
    fenced = FENCED_JSON_RE.findall(text)
    if fenced:
        return fenced[-1]
    first, last = text.find("{"), text.rfind("}")
    if first >= 0 and last > first:
        return text[first : last + 1]
    return text


def repair_json(text: str) -> str:
    """Fix common LLM JSON damage outside of valid syntax.

    Strips a leading BOM, escapes raw CR/LF inside string literals and
    drops trailing commas before ``}`` or ``]``. Commas and newlines
    inside strings are left alone, so valid JSON comes back unchanged.
    """
    if text.startswith(BOM):
        text = text[1:]

    out: list[str] = []
    in_string = False
    escaped = False
    n = len(text)
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
                out.append(ch)
            elif ch == "\\":
                escaped = True
                out.append(ch)
            elif ch == '"':
                in_string = False
                out.append(ch)
            elif ch == "\n":
                out.append("\\n")
            elif ch == "\r":
                out.append("\\r")
            else:
                out.append(ch)
            continue

        if ch == '"':
            in_string = True
        elif ch == ",":
            j = i + 1
            while j < n and text[j].isspace():
                j += 1
            if j < n and text[j] in "}]":
                continue
        out.append(ch)
    return "".join(out)


def parse_json_object(text: str | None) -> dict[str, Any]:
    """Parse ``text`` as a JSON object, retrying once after :func:`repair_json`.

    Raises:
        UnrecoverableParseError: If neither attempt yields a JSON object.
    """
    if text is None or not text.strip():
        raise UnrecoverableParseError("empty JSON candidate")
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        try:
            parsed = json.loads(repair_json(text))
        except json.JSONDecodeError as exc:
            raise UnrecoverableParseError(
                f"JSON parse failed (len={len(text)}): {exc}"
            ) from exc
    if not isinstance(parsed, dict):
        raise UnrecoverableParseError(
            f"expected a JSON object, got {type(parsed).__name__}"
        )
    return parsed


def _join_parts(parts: Iterable[Any]) -> str:
    texts = []
    for part in parts:
        text = part.get("text") if isinstance(part, Mapping) else None
        if isinstance(text, str) and text.strip():
            texts.append(text)
    return "\n".join(texts)


def _as_mapping(envelope: Any) -> Any:
    """Turn SDK response objects into plain data when they support it."""
    dump = getattr(envelope, "model_dump", None)
    if callable(dump):
        return dump()
    return envelope


def _string_leaves(node: Any) -> Iterable[str]:
    if isinstance(node, str):
        yield node
    elif isinstance(node, Mapping):
        for value in node.values():
            yield from _string_leaves(value)
    elif isinstance(node, (list, tuple)):
        for item in node:
            yield from _string_leaves(item)


def _raw_text(envelope: Any) -> str:
    """Text to scan for an embedded JSON block when no known shape matched."""
    if isinstance(envelope, (Mapping, list, tuple)):
        return "\n".join(_string_leaves(envelope))
    return envelope if isinstance(envelope, str) else str(envelope)


def _stringify(envelope: Any) -> str:
    if isinstance(envelope, str):
        return envelope
    try:
        return json.dumps(envelope, default=str)
    except (TypeError, ValueError):
        return str(envelope)


class ResponseExtractor:
    """Best-effort JSON recovery from chat-completion envelopes."""

    def extract(self, envelope: Any) -> ExtractionOutcome:
        """Recover the JSON object carried by ``envelope``.

        Args:
            envelope: Response as a mapping, string, list of parts, or an
                object exposing ``model_dump``.

        Returns:
            The outcome; ``data`` is ``{}`` when nothing could be parsed.
        """
        outcome = ExtractionOutcome()
        envelope = _as_mapping(envelope)

        if looks_like_business(envelope):
            outcome.data, outcome.path = dict(envelope), "business"
            return outcome

        for path, candidate in self._candidates(envelope):
            if isinstance(candidate, Mapping):
                outcome.data, outcome.path = dict(candidate), path
                return outcome
            try:
                outcome.data = parse_json_object(extract_json_string(candidate))
                outcome.path = path
                return outcome
            except UnrecoverableParseError as exc:
                outcome.failures.append(f"{path}: {exc}")

        logger.warning(
            "response.extract failed failures=%s envelope=%s",
            outcome.failures,
            truncate(_stringify(envelope)),
        )
        return outcome

    def extract_dict(self, envelope: Any) -> dict[str, Any]:
        return self.extract(envelope).data

    def _candidates(self, envelope: Any) -> Iterable[tuple[str, Any]]:
        """Yield ``(path, candidate)`` pairs in priority order.

        Mapping candidates are returned as-is; string candidates are
        parsed by the caller.
        """
        if isinstance(envelope, Mapping):
            choices = envelope.get("choices")
            choice = choices[0] if isinstance(choices, list) and choices else None
            if isinstance(choice, Mapping):
                message = choice.get("message")
                if isinstance(message, Mapping):
                    if isinstance(message.get("parsed"), Mapping):
                        yield "message.parsed", message["parsed"]
                    content = message.get("content")
                    if isinstance(content, Mapping):
                        yield "message.content", content
                    elif isinstance(content, str):
                        yield "message.content", content
                    elif isinstance(content, list):
                        yield "message.parts", _join_parts(content)
                if isinstance(choice.get("parsed"), Mapping):
                    yield "choice.parsed", choice["parsed"]
            if isinstance(envelope.get("parsed"), Mapping):
                yield "parsed", envelope["parsed"]
        elif isinstance(envelope, list):
            joined = _join_parts(envelope)
            if joined:
                yield "parts", joined

        yield "raw", _raw_text(envelope)


def collapse_envelopes(
    envelopes: Iterable[Any], extractor: ResponseExtractor | None = None
) -> dict[str, Any]:
    """Extract each envelope and fuse the results into one tree.

    Non-mapping entries and envelopes that yield nothing are skipped
    with a warning.
    """
    extractor = extractor or ResponseExtractor()
    extracted = []
    for index, envelope in enumerate(envelopes):
        if not isinstance(envelope, Mapping):
            logger.warning("response.collapse skipping non-map entry index=%d", index)
            continue
        data = extractor.extract_dict(envelope)
        if not data:
            logger.warning("response.collapse nothing extracted index=%d", index)
            continue
        extracted.append(data)
    return fuse(extracted)
