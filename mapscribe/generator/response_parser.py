"""
Recovers the map payload from model output.

Models wrap JSON in prose or markdown fences despite instructions, so the parser
scans for the first balanced {...} block that decodes to an object and ignores
everything around it.
"""
import json
import logging
from typing import Any, Dict, Iterator, Optional

from pydantic import ValidationError

from ..shared.errors import ParseError
from ..shared.models import GenerationMetadata, ParsedPayload

logger = logging.getLogger(__name__)


def iter_balanced_blocks(text: str) -> Iterator[str]:
    """
    Yield every outermost balanced {...} block in text, left to right.

    Braces inside JSON string literals are ignored. Blocks nested inside a yielded
    block are never yielded on their own, so a broken payload is not mistaken for
    its inner "metadata" object. Blocks that open but never close are skipped.
    """
    start = text.find("{")
    while start != -1:
        end = _matching_brace(text, start)
        if end is None:
            start = text.find("{", start + 1)
            continue
        yield text[start:end + 1]
        start = text.find("{", end + 1)


def _matching_brace(text: str, start: int) -> Optional[int]:
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


class ResponseParser:
    """Parses raw completion text into a ParsedPayload."""

    def extract(self, raw_text: str) -> ParsedPayload:
        data = self._decode_first_object(raw_text or "")
        return self._to_payload(data)

    def _decode_first_object(self, raw_text: str) -> Dict[str, Any]:
        found_block = False
        last_error = None
        for block in iter_balanced_blocks(raw_text):
            found_block = True
            try:
                data = json.loads(block)
            except json.JSONDecodeError as e:
                logger.debug(f"Skipping undecodable block of {len(block)} chars: {e}")
                last_error = e
                continue
            if isinstance(data, dict):
                return data

        if not found_block:
            raise ParseError("No JSON object found in response")
        if last_error is not None:
            raise ParseError(f"Invalid JSON in response: {last_error}")
        raise ParseError("No JSON object found in response")

    def _to_payload(self, data: Dict[str, Any]) -> ParsedPayload:
        if "grid" not in data:
            raise ParseError("Missing required field: grid")

        metadata = data.get("metadata")
        if not isinstance(metadata, dict):
            raise ParseError("Missing required field: metadata")

        interpretation = metadata.get("interpretation")
        if not isinstance(interpretation, str):
            raise ParseError("Missing required field: metadata.interpretation (string)")

        features = metadata.get("features")
        if not isinstance(features, list):
            raise ParseError("Missing required field: metadata.features (list of strings)")
        if not all(isinstance(f, str) for f in features):
            raise ParseError("metadata.features must contain only strings")

        archetype = metadata.get("archetype")
        if archetype is not None and not isinstance(archetype, str):
            raise ParseError("metadata.archetype must be a string or null")

        try:
            parsed_metadata = GenerationMetadata(
                interpretation=interpretation,
                archetype=archetype.strip().lower() if archetype else None,
                features=tuple(features),
                room_count=self._optional_count(metadata, "roomCount", "room_count"),
                corridor_count=self._optional_count(metadata, "corridorCount", "corridor_count"),
            )
        except ValidationError as e:
            raise ParseError(f"Invalid metadata: {e}") from e

        return ParsedPayload(grid=data["grid"], metadata=parsed_metadata)

    @staticmethod
    def _optional_count(metadata: Dict[str, Any], *keys: str) -> Optional[int]:
        for key in keys:
            value = metadata.get(key)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
        return None
