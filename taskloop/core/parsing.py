"""
TaskLoop Parsing - Best-effort decoding of task lists from model output.

Models are asked for a numbered list, but what comes back is not
guaranteed. The decoder never raises: anything it cannot read is
reported through ``ParseResult.diagnostic`` and yields no names.
"""

import json
import re
from dataclasses import dataclass, field
from typing import List, Optional

# "1. Task", "2) Task", "#. Task", "- Task", "* Task"
_ENUMERATED = re.compile(r"^\s*(?:(?:\d+|#)\s*[.):]|[-*•])\s*(?P<name>.*?)\s*$")


@dataclass
class ParseResult:
    """Names decoded from a model response, in response order."""

    names: List[str] = field(default_factory=list)
    diagnostic: Optional[str] = None

    @property
    def ok(self) -> bool:
        return bool(self.names)


def _parse_json_array(text: str) -> Optional[List[str]]:
    try:
        data = json.loads(text)
    except ValueError:
        return None
    if not isinstance(data, list):
        return None
    return [str(item).strip() for item in data if isinstance(item, (str, int, float)) and str(item).strip()]


def parse_task_list(response: str) -> ParseResult:
    """
    Decode a numbered (or bulleted) list of task names.

    Lines that carry no enumeration marker are skipped, as are entries that
    are empty after the marker. A bare JSON array of strings is accepted too.

    Example:
        >>> parse_task_list("1. Buy milk\\n2. Walk dog\\n").names
        ['Buy milk', 'Walk dog']
    """
    text = (response or "").strip()
    if not text:
        return ParseResult(diagnostic="model output was empty")

    if text.startswith("["):
        names = _parse_json_array(text)
        if names is not None:
            return ParseResult(names=names, diagnostic=None if names else "model returned an empty array")

    names: List[str] = []
    skipped = 0
    for line in text.splitlines():
        if not line.strip():
            continue
        match = _ENUMERATED.match(line)
        if not match:
            skipped += 1
            continue
        name = match.group("name")
        if name:
            names.append(name)

    diagnostic = None
    if not names:
        diagnostic = "no enumerated task lines found in model output"
    elif skipped:
        diagnostic = f"skipped {skipped} line(s) without an enumeration marker"
    return ParseResult(names=names, diagnostic=diagnostic)
