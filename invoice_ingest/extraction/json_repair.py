"""Repair of truncated JSON returned by the OCR/extraction service.

Generative models stop emitting tokens when they hit their output limit, which
for documents with many invoices leaves the JSON cut off mid-structure. The
repair is structural only: it closes dangling strings, drops incomplete
trailing tokens and closes open containers innermost first. It never invents
data beyond ``null`` for a key whose value was cut off.
"""

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from invoice_ingest.extraction.schema import OCRResponse

logger = logging.getLogger(__name__)

_TRAILING_COMMA = re.compile(r",\s*$")
_CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)(?:```|$)")
_INVOICE_COUNT = re.compile(r'"invoiceCount"\s*:\s*(\d+)')
_STRUCTURAL = set('{}[]:,"')


class InvalidOCRResponseError(ValueError):
    """OCR output parsed as JSON but is not an invoices document."""


class TruncatedResponseError(ValueError):
    """OCR output could not be parsed even after repair.

    Attributes:
        claimed_count: ``invoiceCount`` announced by the response, if readable
        salvaged_count: Number of invoices recovered (0 when nothing parsed)
    """

    def __init__(self, claimed_count: int | None, salvaged_count: int = 0) -> None:
        self.claimed_count = claimed_count
        self.salvaged_count = salvaged_count
        claimed = claimed_count if claimed_count is not None else "unknown"
        super().__init__(
            "Failed to parse extraction response. The response appears to be truncated "
            f"or invalid JSON (claimed {claimed} invoices, salvaged {salvaged_count}). "
            "This often happens with documents containing too many invoices; "
            "try processing fewer invoices at once."
        )


class _Frame:
    """Open container on the scan stack."""

    __slots__ = ("kind", "expect")

    def __init__(self, kind: str) -> None:
        self.kind = kind
        # object: key -> colon -> value -> comma; array: value -> comma
        self.expect = "key" if kind == "{" else "value"

    def value_done(self) -> None:
        self.expect = "comma"


def repair_json(candidate: str) -> str:
    """Best-effort repair of a possibly truncated JSON document.

    Well-formed input is returned unchanged apart from surrounding whitespace.
    Never raises.

    Args:
        candidate: JSON text, possibly cut off mid-stream

    Returns:
        JSON text with dangling strings and open containers closed
    """
    text = candidate.strip()
    stack: list[_Frame] = []

    in_string = False
    string_start = -1
    string_is_key = False
    escape_next = False
    escape_start = -1
    token_start = -1

    def top() -> _Frame | None:
        return stack[-1] if stack else None

    for i, char in enumerate(text):
        if in_string:
            if escape_next:
                escape_next = False
            elif char == "\\":
                escape_next = True
                escape_start = i
            elif char == '"':
                in_string = False
                frame = top()
                if frame is not None:
                    if string_is_key:
                        frame.expect = "colon"
                    else:
                        frame.value_done()
            continue

        if token_start >= 0 and (char.isspace() or char in _STRUCTURAL):
            token_start = -1
            frame = top()
            if frame is not None:
                frame.value_done()

        if char.isspace():
            continue
        if char == '"':
            in_string = True
            string_start = i
            frame = top()
            string_is_key = frame is not None and frame.kind == "{" and frame.expect == "key"
        elif char in "{[":
            stack.append(_Frame(char))
        elif char in "}]":
            if stack:
                stack.pop()
            frame = top()
            if frame is not None:
                frame.value_done()
        elif char == ":":
            frame = top()
            if frame is not None:
                frame.expect = "value"
        elif char == ",":
            frame = top()
            if frame is not None:
                frame.expect = "key" if frame.kind == "{" else "value"
        elif token_start < 0:
            token_start = i

    if in_string:
        if string_is_key:
            # A half-written key carries no information.
            text = text[:string_start]
        else:
            if escape_next:
                text = text[:escape_start]
            elif escape_start > string_start and text[escape_start + 1 : escape_start + 2] == "u":
                if len(text) - escape_start < 6:
                    text = text[:escape_start]
            text += '"'
            frame = top()
            if frame is not None:
                frame.value_done()
    elif token_start >= 0:
        if _is_complete_literal(text[token_start:]):
            frame = top()
            if frame is not None:
                frame.value_done()
        else:
            text = text[:token_start]

    frame = top()
    if frame is not None and frame.kind == "{":
        if frame.expect == "colon":
            text += ":null"
        elif frame.expect == "value":
            text = text.rstrip() + "null"

    text = _TRAILING_COMMA.sub("", text.rstrip())

    for frame in reversed(stack):
        text += "}" if frame.kind == "{" else "]"

    return text


def _is_complete_literal(token: str) -> bool:
    try:
        json.loads(token)
    except ValueError:
        return False
    return True


def _strip_code_fence(text: str) -> str:
    """Remove a markdown code fence some models wrap around JSON."""
    match = _CODE_FENCE.search(text)
    if match and text.lstrip().startswith("```"):
        return match.group(1).strip()
    return text.strip()


def claimed_invoice_count(text: str) -> int | None:
    """Read the announced ``invoiceCount`` from raw response text, if present."""
    match = _INVOICE_COUNT.search(text)
    return int(match.group(1)) if match else None


def parse_ocr_response(text: str) -> OCRResponse:
    """Parse extraction service output into an OCRResponse.

    Tries a strict parse first and falls back to :func:`repair_json`.

    Args:
        text: Raw model output

    Returns:
        Parsed OCRResponse

    Raises:
        TruncatedResponseError: If the text cannot be parsed even after repair
        InvalidOCRResponseError: If the JSON is not an invoices document
    """
    cleaned = _strip_code_fence(text or "")

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning("Extraction response is not valid JSON, attempting repair")
        repaired = repair_json(cleaned)
        try:
            data = json.loads(repaired)
        except json.JSONDecodeError as e:
            raise TruncatedResponseError(claimed_invoice_count(cleaned)) from e

        claimed = claimed_invoice_count(cleaned)
        salvaged = len(data.get("invoices") or []) if isinstance(data, dict) else 0
        logger.warning(
            f"Repaired truncated extraction response: salvaged {salvaged} of "
            f"{claimed if claimed is not None else 'unknown'} invoices"
        )

    return _to_response(data)


def _to_response(data: Any) -> OCRResponse:
    if not isinstance(data, dict) or "documentType" not in data:
        raise InvalidOCRResponseError("Response missing required field: documentType")
    if not isinstance(data.get("invoices"), list):
        raise InvalidOCRResponseError("Response missing required field: invoices array")

    # A cut right after "{" repairs to an empty object with nothing to salvage.
    invoices = [inv for inv in data["invoices"] if isinstance(inv, dict) and inv]
    try:
        return OCRResponse.model_validate({**data, "invoices": invoices})
    except ValidationError as e:
        raise InvalidOCRResponseError(f"Response failed validation: {e}") from e
