"""Resilient extraction of trading decisions from free-form model output.

Models return "JSON-ish" text: wrapped in markdown fences, preceded by
prose, cut off mid-string when the token budget runs out, or with trailing
commas and smart quotes. ``DecisionParser.parse`` never raises; it returns a
``ParseResult``:

* ``ParsedOk`` - strict JSON that satisfies the decision schema.
* ``ParsedRecovered`` - usable after repair, regex fallback or sanitation.
* ``ParseFailed`` - not even an action could be found.

Pipeline, in order of preference:

1. strip markdown code fences;
2. slice from the first ``{`` to the last ``}`` (or to the end when the
   closing brace is missing);
3. strict ``json.loads``, then a structural repair pass;
4. optionally the ``json_repair`` library (premium pipeline);
5. regex extraction of ``action`` and ``quantity``.

Sanitation is applied to whatever comes out of steps 3-5.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any

from jsonschema import Draft202012Validator
from json_repair import repair_json

from models.decision import (
    ParsedOk,
    ParsedRecovered,
    ParseFailed,
    ParseResult,
    TradeAction,
    TradeDecision,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5
DEFAULT_REASON = "Décision de l'IA"
FALLBACK_REASON = "Décision récupérée via parsing de secours"
FAILURE_REASON = "Erreur lors de la prise de décision"

DECISION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "action": {"type": "string", "enum": ["BUY", "SELL", "HOLD"]},
        "quantity": {"type": "integer", "minimum": 0},
        "reason": {"type": "string"},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
    },
    "required": ["action", "quantity"],
}

_VALIDATOR = Draft202012Validator(DECISION_SCHEMA)

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")
_OPEN_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*")
_ACTION_RE = re.compile(r"""["']?action["']?\s*[:=]\s*["']?\s*(BUY|SELL|HOLD)\b""", re.IGNORECASE)
_QUANTITY_RE = re.compile(r"""["']?quantity["']?\s*[:=]\s*["']?\s*(-?\d+(?:\.\d+)?)""", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


class DecisionParser:
    """Turns raw completion text into a ``ParseResult``.

    ``use_repair_library`` enables the ``json_repair`` pass before the regex
    fallback; premium models tend to emit near-valid JSON that gets cut off.
    """

    def __init__(self, use_repair_library: bool = False) -> None:
        self._use_repair_library = use_repair_library

    def parse(self, raw: str | None) -> ParseResult:
        if not raw or not raw.strip():
            return ParseFailed(reason="Réponse vide du modèle")

        text = strip_code_fences(raw)
        candidate = extract_json_candidate(text)

        if candidate is not None:
            # Strict parse
            obj = _loads_object(candidate)
            if obj is not None:
                errors = sorted(e.message for e in _VALIDATOR.iter_errors(obj))
                decision = sanitize_decision(obj)
                if not errors:
                    return ParsedOk(decision=decision)
                return ParsedRecovered(
                    decision=decision,
                    warning=f"Sortie corrigée: {'; '.join(errors)}",
                )

            # Structural repair
            obj = _loads_object(repair_structure(candidate))
            if obj is not None:
                return ParsedRecovered(
                    decision=sanitize_decision(obj),
                    warning="JSON réparé (structure incomplète ou invalide)",
                )

            if self._use_repair_library:
                obj = _repair_with_library(candidate)
                if obj is not None:
                    return ParsedRecovered(
                        decision=sanitize_decision(obj),
                        warning="JSON réparé par json_repair",
                    )

        fallback = regex_fallback(text)
        if fallback is not None:
            logger.warning("Decision recovered via regex fallback: %.120s", raw)
            return ParsedRecovered(decision=fallback, warning="Action extraite par regex")

        logger.warning("No decision found in model output: %.200s", raw)
        return ParseFailed(reason="Aucune décision exploitable dans la réponse")


def resolve_parse_result(result: ParseResult, failure_reason: str = FAILURE_REASON) -> TradeDecision:
    """Collapse a ``ParseResult`` into a decision; failures become a safe HOLD."""
    if isinstance(result, ParseFailed):
        return TradeDecision.hold(f"{failure_reason}: {result.reason}")
    return result.decision


# ------------------------------------------------------------------
# Pipeline steps
# ------------------------------------------------------------------

def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or drop a dangling opening fence."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return _OPEN_FENCE_RE.sub("", text, count=1).strip()


def extract_json_candidate(text: str) -> str | None:
    """Slice from the first ``{`` to the last ``}``; to the end if the output was truncated."""
    start = text.find("{")
    if start < 0:
        return None
    end = text.rfind("}")
    if end < start:
        return text[start:]
    return text[start:end + 1]


def repair_structure(candidate: str) -> str:
    """Best-effort structural repair of a JSON object literal.

    Normalises smart quotes, closes an unterminated string, drops trailing
    commas and dangling keys, and appends missing closing brackets.
    """
    s = (
        candidate.replace("“", '"')
        .replace("”", '"')
        .replace("’", "'")
        .replace(" ", " ")
    )

    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in s:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]" and stack:
            stack.pop()

    if in_string:
        if escaped:
            s = s[:-1]
        s += '"'

    s = s.rstrip()
    # A key or value cut right after its separator cannot be completed.
    s = re.sub(r',\s*"[^"]*"\s*:?\s*$', "", s)
    s = re.sub(r'[,:]\s*$', "", s)
    s += "".join(reversed(stack))
    return _TRAILING_COMMA_RE.sub(r"\1", s)


def regex_fallback(text: str) -> TradeDecision | None:
    """Pull ``action``/``quantity`` out of text that could not be parsed as JSON."""
    action_match = _ACTION_RE.search(text)
    if not action_match:
        return None
    quantity_match = _QUANTITY_RE.search(text)
    return sanitize_decision(
        {
            "action": action_match.group(1),
            "quantity": quantity_match.group(1) if quantity_match else 0,
            "reason": FALLBACK_REASON,
            "confidence": DEFAULT_CONFIDENCE,
        }
    )


def sanitize_decision(obj: dict[str, Any]) -> TradeDecision:
    """Coerce a loosely-typed mapping into a valid ``TradeDecision``.

    Unknown actions become HOLD, quantity is floored to a non-negative int
    (and forced to 0 for HOLD), confidence is clamped to [0, 1] with 0.5 as
    the default.
    """
    raw_action = obj.get("action")
    try:
        action = TradeAction(str(raw_action).strip().upper())
    except ValueError:
        action = TradeAction.HOLD

    quantity = _to_number(obj.get("quantity"))
    quantity_int = max(0, math.floor(quantity)) if quantity is not None else 0
    if action is TradeAction.HOLD:
        quantity_int = 0

    confidence = _to_number(obj.get("confidence"))
    if confidence is None:
        confidence = DEFAULT_CONFIDENCE
    confidence = min(1.0, max(0.0, confidence))

    reason = obj.get("reason")
    if not isinstance(reason, str) or not reason.strip():
        reason = DEFAULT_REASON

    return TradeDecision(
        action=action,
        quantity=quantity_int,
        reason=reason.strip(),
        confidence=confidence,
    )


# ------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------

def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        obj = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return obj if isinstance(obj, dict) else None


def _repair_with_library(candidate: str) -> dict[str, Any] | None:
    try:
        obj = repair_json(candidate, return_objects=True)
    except (ValueError, RecursionError) as exc:
        logger.debug("json_repair failed: %s", exc)
        return None
    return obj if isinstance(obj, dict) and obj else None


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None
