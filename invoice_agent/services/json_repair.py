"""
Bounded repair ladder for model replies that should have been pure JSON.

The ladder is a finite state machine with a pure transition function, so the
"at most four attempts, then give up" contract can be tested without a model:

    DIRECT_PARSE       original reply, fences stripped, parsed as-is
    BLOCK_SCAN         first balanced {...} inside the original reply
    RESCUE_CALL        reply to the "convert to JSON" prompt, parsed as-is
    RESCUE_BLOCK_SCAN  first balanced {...} inside the rescue reply
    FAILED / DONE      terminal
"""

import json
import re
from enum import Enum

_FENCE = re.compile(r"```[a-zA-Z]*[ \t]*\r?\n?|```")


class RepairState(str, Enum):
    DIRECT_PARSE = "direct_parse"
    BLOCK_SCAN = "block_scan"
    RESCUE_CALL = "rescue_call"
    RESCUE_BLOCK_SCAN = "rescue_block_scan"
    FAILED = "failed"
    DONE = "done"


TERMINAL_STATES = frozenset({RepairState.FAILED, RepairState.DONE})


def strip_code_fences(text: str) -> str:
    """Drop ``` / ```json markers anywhere in the text and trim"""
    return _FENCE.sub("", text or "").strip()


def parse_direct(text: str) -> dict | None:
    """Parse fence-stripped text when it is a JSON object and nothing else"""
    cleaned = strip_code_fences(text)
    if not cleaned.startswith("{"):
        return None
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def find_balanced_object(text: str) -> str | None:
    """
    Return the first balanced {...} substring of text.

    Braces inside double-quoted strings do not count, and a backslash escapes
    the next character inside a string, so descriptions like "Widget {XL}"
    or "quote \\" {" never break the depth count.
    """
    if not text:
        return None

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
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
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from this brace; try the next opening brace
        start = text.find("{", start + 1)
    return None


def parse_block(text: str) -> dict | None:
    block = find_balanced_object(text or "")
    if block is None:
        return None
    try:
        parsed = json.loads(block)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


_NEXT_ON_FAILURE = {
    RepairState.DIRECT_PARSE: RepairState.BLOCK_SCAN,
    RepairState.BLOCK_SCAN: RepairState.RESCUE_CALL,
    RepairState.RESCUE_CALL: RepairState.RESCUE_BLOCK_SCAN,
    RepairState.RESCUE_BLOCK_SCAN: RepairState.FAILED,
}

_PARSERS = {
    RepairState.DIRECT_PARSE: parse_direct,
    RepairState.BLOCK_SCAN: parse_block,
    RepairState.RESCUE_CALL: parse_direct,
    RepairState.RESCUE_BLOCK_SCAN: parse_block,
}


def needs_rescue_reply(state: RepairState) -> bool:
    """States that consume the rescue reply rather than the original one"""
    return state in (RepairState.RESCUE_CALL, RepairState.RESCUE_BLOCK_SCAN)


def advance(state: RepairState, text: str) -> tuple[RepairState, dict | None]:
    """
    One attempt of the ladder.

    Args:
        state: current non-terminal state
        text: the original reply for DIRECT_PARSE/BLOCK_SCAN, the rescue reply otherwise

    Returns:
        (DONE, parsed object) on success, otherwise (next state, None)
    """
    if state in TERMINAL_STATES:
        raise ValueError(f"Cannot advance from terminal state {state.value}")
    parsed = _PARSERS[state](text)
    if parsed is not None:
        return RepairState.DONE, parsed
    return _NEXT_ON_FAILURE[state], None
