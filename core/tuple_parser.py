"""
Tuple-delimited entity extraction parser.

This module parses the LLM's tuple-delimited extraction output into candidate
EntityData / RelationshipData records for one chunk.

Format:
    ("entity"<|>NAME<|>TYPE<|>DESCRIPTION)##
    ("relationship"<|>SOURCE<|>TARGET<|>DESCRIPTION<|>KEYWORDS<|>STRENGTH)##
    <|COMPLETE|>

Records are separated by the record delimiter; everything after the
completion delimiter of a turn is ignored.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from core.entity_models import EntityData, ExtractionResult, RelationshipData
from core.prompts import PROMPTS
from core.utils import (
    clean_str,
    is_float_regex,
    normalize_entity_name,
    split_string_by_multi_markers,
)

logger = logging.getLogger(__name__)

_RECORD_BODY = re.compile(r"\((.*)\)")


@dataclass
class ParseResult:
    """Result of tuple parsing."""
    extraction: ExtractionResult
    dropped_records: List[str] = field(default_factory=list)
    valid_count: int = 0

    @property
    def invalid_count(self) -> int:
        return len(self.dropped_records)


class TupleParser:
    """
    Parser for tuple-delimited entity extraction output.

    Malformed or unrecognized records are dropped and counted, never raised:
    one bad line from the model must not cost the rest of the chunk.

    Usage:
        parser = TupleParser(chunk_key="chunk-123")
        result = parser.parse_turns([first_pass, glean_1, glean_2])
        result.extraction.maybe_nodes  # {'"TIM COOK"': [EntityData, ...]}
    """

    def __init__(
        self,
        chunk_key: Optional[str] = None,
        tuple_delimiter: str = PROMPTS["DEFAULT_TUPLE_DELIMITER"],
        record_delimiter: str = PROMPTS["DEFAULT_RECORD_DELIMITER"],
        completion_delimiter: str = PROMPTS["DEFAULT_COMPLETION_DELIMITER"],
    ):
        self.chunk_key = chunk_key or ""
        self.tuple_delimiter = tuple_delimiter
        self.record_delimiter = record_delimiter
        self.completion_delimiter = completion_delimiter
        self._stats = {
            "entities_parsed": 0,
            "relationships_parsed": 0,
            "records_dropped": 0,
        }

    def parse(self, text: str) -> ParseResult:
        """Parse a single completion."""
        return self.parse_turns([text])

    def parse_turns(self, turns: Iterable[str]) -> ParseResult:
        """
        Parse the outputs of every extraction turn for one chunk.

        Each turn is cut at its completion delimiter, then all turns are split
        on the record delimiter and every record is parsed independently.
        """
        records: List[str] = []
        for turn in turns:
            if not turn:
                continue
            body = turn.split(self.completion_delimiter, 1)[0]
            records.extend(split_string_by_multi_markers(body, [self.record_delimiter]))

        result = ParseResult(extraction=ExtractionResult(chunk_key=self.chunk_key))

        for record in records:
            fields = self._parse_record(record)
            if fields is None:
                self._drop(result, record)
                continue

            entity = self._parse_entity_record(fields)
            if entity is not None:
                result.extraction.add_entity(entity)
                result.valid_count += 1
                self._stats["entities_parsed"] += 1
                continue

            relationship = self._parse_relationship_record(fields)
            if relationship is not None:
                result.extraction.add_relationship(relationship)
                result.valid_count += 1
                self._stats["relationships_parsed"] += 1
                continue

            self._drop(result, record)

        logger.debug(
            f"[{self.chunk_key}] Parsed {len(result.extraction.maybe_nodes)} entities, "
            f"{len(result.extraction.maybe_edges)} relationships, "
            f"dropped {result.invalid_count} records"
        )
        return result

    def _drop(self, result: ParseResult, record: str) -> None:
        result.dropped_records.append(record)
        self._stats["records_dropped"] += 1
        logger.debug(f"[{self.chunk_key}] Dropping unrecognized record: {record[:120]!r}")

    def _parse_record(self, record: str) -> Optional[List[str]]:
        """
        Extract the parenthesized body of a record and split it into fields.

        Example:
            Input: '("entity"<|>"Tim Cook"<|>"person"<|>"CEO of Apple")'
            Output: ['"entity"', '"Tim Cook"', '"person"', '"CEO of Apple"']

        Empty fields are kept so that positions stay stable.
        """
        match = _RECORD_BODY.search(record)
        if not match:
            return None
        return [part.strip() for part in match.group(1).split(self.tuple_delimiter)]

    def _parse_entity_record(self, fields: List[str]) -> Optional[EntityData]:
        if len(fields) < 4 or clean_str(fields[0]).lower() != "entity":
            return None

        entity_name = normalize_entity_name(fields[1])
        if not entity_name:
            return None

        entity_type = clean_str(fields[2]).upper() or "UNKNOWN"
        return EntityData(
            entity_name=entity_name,
            entity_type=entity_type,
            description=clean_str(fields[3]),
            source_id=self.chunk_key,
        )

    def _parse_relationship_record(self, fields: List[str]) -> Optional[RelationshipData]:
        if len(fields) < 5 or clean_str(fields[0]).lower() != "relationship":
            return None

        source = normalize_entity_name(fields[1])
        target = normalize_entity_name(fields[2])
        if not source or not target:
            return None

        last = clean_str(fields[-1])
        weight = float(last) if is_float_regex(last) else 1.0
        return RelationshipData(
            src_id=source,
            tgt_id=target,
            description=clean_str(fields[3]),
            keywords=clean_str(fields[4]),
            source_id=self.chunk_key,
            weight=weight,
        )

    def get_stats(self) -> dict:
        """
        Get parsing statistics.

        Returns:
            Dictionary with parsing stats
        """
        return self._stats.copy()
