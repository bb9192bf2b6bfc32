from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Sequence

_COLOR_TAGS = re.compile(r"<color=[^>]+>|</color>")


@dataclass(frozen=True, slots=True)
class PopulationDelta:
    joined: list[str]
    left: list[str]


def compare_population(old: Sequence[str], new: Sequence[str]) -> PopulationDelta:
    """Names present only in `new` (joined) and only in `old` (left).

    Each side keeps the order of the list it came from; inputs are not mutated.
    """

    old_set = set(old)
    new_set = set(new)
    return PopulationDelta(
        joined=[name for name in new if name not in old_set],
        left=[name for name in old if name not in new_set],
    )


def strip_color_tags(text: str) -> str:
    return _COLOR_TAGS.sub("", text)


def clean_output(output: str | None, *, raw_hostname: bool = False) -> Any:
    """Decode a console reply that carries JSON (e.g. `serverinfo`).

    Literal `\\n` sequences are dropped and rich-text color tags removed unless
    `raw_hostname` is set. Falls back to the untouched output when the cleaned
    text is not JSON.
    """

    if not output:
        return None

    cleaned = output.replace("\\n", "").strip()
    if not raw_hostname:
        cleaned = strip_color_tags(cleaned)

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        return output
