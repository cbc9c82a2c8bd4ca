"""Catalog parsing pipeline.

Turns the free-for-dev markdown README into a typed catalog snapshot using
section, line and field heuristics. Parsing is best-effort: anything that
does not look like a service entry is skipped rather than rejected.
"""

import logging
import re
from collections import OrderedDict
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Pattern, Tuple

from observability.logging import log_performance

from .errors import ParseError
from .models import CatalogSnapshot, Category, ServiceRecord

logger = logging.getLogger(__name__)


class ParserState(str, Enum):
    """Where the forward pass currently is in the document."""
    SKIPPING_PREAMBLE = "skipping_preamble"
    IN_TABLE_OF_CONTENTS = "in_table_of_contents"
    IN_EXCLUDED_SECTION = "in_excluded_section"
    IN_CATEGORY = "in_category"


TABLE_OF_CONTENTS = "Table of Contents"
EXCLUDED_SECTIONS = frozenset({TABLE_OF_CONTENTS, "Contributing", "Credits", "License"})

HEADING_PATTERN = re.compile(r"^##\s+(.+?)\s*$")
BULLET_PATTERN = re.compile(r"^[*-]\s*\[")
LINK_PATTERN = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
DELIMITER_PATTERN = re.compile(r"\s+[—–]\s+")
LEADING_DASH_PATTERN = re.compile(r"^[-–—]\s*")

# Ordered keyword -> tag rules, matched as case-insensitive substrings.
TAG_RULES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("api",), "api"),
    (("free",), "free"),
    (("open source", "open-source"), "open-source"),
    (("cloud",), "cloud"),
    (("database", "db"), "database"),
    (("hosting",), "hosting"),
    (("monitoring",), "monitoring"),
    (("testing",), "testing"),
    (("email",), "email"),
    (("storage",), "storage"),
    (("serverless",), "serverless"),
    (("ci/cd", "cicd"), "cicd"),
)

# First match wins; order is significant.
LIMITATION_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"\d+[,\d]*\s*(?:requests?|calls?|invocations?|executions?|operations?)"
               r"(?:/(?:month|day|hour|min))?", re.IGNORECASE),
    re.compile(r"\d+[,\d]*\s*(?:MB|GB|TB|KB)", re.IGNORECASE),
    re.compile(r"\d+[,\d]*\s*(?:users?|projects?|apps?|sites?)", re.IGNORECASE),
    re.compile(r"limited to\s+[^.]+", re.IGNORECASE),
    re.compile(r"up to\s+[^.]+", re.IGNORECASE),
)


def extract_tags(text: str) -> Optional[Tuple[str, ...]]:
    """Infer tags from a source line; ``None`` when no rule matches."""
    lowered = text.lower()
    tags: List[str] = []
    for keywords, tag in TAG_RULES:
        if tag not in tags and any(keyword in lowered for keyword in keywords):
            tags.append(tag)
    return tuple(tags) if tags else None


def extract_limitations(text: str) -> Optional[str]:
    """Return the literal quota clause matched by the first applicable pattern."""
    for pattern in LIMITATION_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(0)
    return None


def parse_service_line(line: str, category: str) -> Optional[ServiceRecord]:
    """Parse one bullet line into a service record.

    Returns ``None`` for lines without a well-formed ``[name](url)`` link.
    """
    link = LINK_PATTERN.search(line)
    if not link:
        return None

    name = link.group(1).strip()
    url = link.group(2).strip()
    if not name or not url:
        return None

    remainder = line[link.end():].strip()
    parts = DELIMITER_PATTERN.split(remainder, maxsplit=1)
    description = LEADING_DASH_PATTERN.sub("", parts[0]).strip()
    free_tier = parts[1].strip() if len(parts) > 1 else description

    return ServiceRecord(
        name=name,
        url=url,
        description=description or free_tier,
        free_tier=free_tier or description,
        category=category,
        limitations=extract_limitations(free_tier),
        tags=extract_tags(line),
    )


class CatalogParser:
    """Single forward pass over the README lines, driven by a small state machine."""

    def __init__(self, excluded_sections: Optional[frozenset] = None):
        """Initialize parser.

        Args:
            excluded_sections: Heading titles whose bodies never form a category
        """
        self.excluded_sections = excluded_sections or EXCLUDED_SECTIONS

    def _heading_title(self, line: str) -> Optional[str]:
        """Return the title of a top-level (``##``) heading, else ``None``."""
        match = HEADING_PATTERN.match(line)
        return match.group(1) if match else None

    def _state_for_heading(self, title: str) -> ParserState:
        if title == TABLE_OF_CONTENTS:
            return ParserState.IN_TABLE_OF_CONTENTS
        if title in self.excluded_sections:
            return ParserState.IN_EXCLUDED_SECTION
        return ParserState.IN_CATEGORY

    @log_performance(threshold_ms=500)
    def parse(self, raw: str, last_updated: Optional[datetime] = None) -> CatalogSnapshot:
        """Parse raw markdown into a catalog snapshot.

        Raises:
            ParseError: If ``raw`` is empty or whitespace only.
        """
        if raw is None or not raw.strip():
            raise ParseError("No content to parse")

        grouped: Dict[str, List[ServiceRecord]] = OrderedDict()
        state = ParserState.SKIPPING_PREAMBLE
        current: Optional[str] = None
        skipped_lines = 0

        for raw_line in raw.splitlines():
            line = raw_line.strip()

            title = self._heading_title(line)
            if title is not None:
                state = self._state_for_heading(title)
                current = title if state is ParserState.IN_CATEGORY else None
                continue

            if state is not ParserState.IN_CATEGORY or not BULLET_PATTERN.match(line):
                continue

            service = parse_service_line(line, current)
            if service is None:
                skipped_lines += 1
                continue
            grouped.setdefault(current, []).append(service)

        # Repeated headings merge so category names stay unique; sections with
        # no services never reach ``grouped``.
        categories = [Category(name=name, services=tuple(services))
                      for name, services in grouped.items()]
        snapshot = CatalogSnapshot.from_categories(categories, last_updated=last_updated)

        logger.info(f"Parsed {len(snapshot.services)} services in {len(snapshot.categories)} categories")
        if skipped_lines:
            logger.debug(f"Skipped {skipped_lines} malformed service lines")
        return snapshot


def parse_catalog(raw: str) -> CatalogSnapshot:
    """Convenience function to parse markdown with a default parser."""
    return CatalogParser().parse(raw)
