"""Extraction of complete tagged regions from resolved model text."""

from __future__ import annotations

import logging

from .tag_buffer import CLOSE_TAGS, contains_known_tag, match_tag
from .types import Region, RegionKind

__all__ = ["RegionClassifier"]

LOGGER = logging.getLogger(__name__)


class RegionClassifier:
    """Turns resolved text into :class:`Region` values in close order.

    One classifier is used per turn so region indices keep increasing across
    successive drains of the same stream. Text outside any known tag is
    returned as ``leftover``; callers treat it as a no-op.
    """

    def __init__(self) -> None:
        self._next_index = 0

    @property
    def count(self) -> int:
        """Number of regions produced so far in this turn."""
        return self._next_index

    def reset(self) -> None:
        self._next_index = 0

    def extract_regions(self, resolved_text: str) -> tuple[list[Region], str]:
        regions: list[Region] = []
        leftover: list[str] = []
        text = resolved_text
        pos = 0

        while pos < len(text):
            lt = text.find("<", pos)
            if lt < 0:
                leftover.append(text[pos:])
                break
            match = match_tag(text, lt)
            if match.kind == "partial":
                leftover.append(text[pos:])
                break
            if match.kind != "open" or match.name is None:
                leftover.append(text[pos:match.end])
                pos = match.end
                continue

            close = CLOSE_TAGS[match.name]
            close_at = text.find(close, match.end)
            if close_at < 0:
                # Unterminated block; leave it for the buffer to finish.
                leftover.append(text[pos:])
                break

            leftover.append(text[pos:lt])
            region = self._build_region(RegionKind(match.name), text[match.end:close_at])
            if region is not None:
                regions.append(region)
            pos = close_at + len(close)

        return regions, "".join(leftover)

    def _build_region(self, kind: RegionKind, body: str) -> Region | None:
        if kind is not RegionKind.TOOL and not body.strip():
            LOGGER.debug("Skipping empty <%s> block", kind.value)
            return None
        violation = None
        nested = contains_known_tag(body)
        if nested is not None:
            violation = f"nested {nested} tag inside <{kind.value}> block"
        region = Region(kind=kind, text=body, index=self._next_index, violation=violation)
        self._next_index += 1
        return region
