"""
Entity and relationship extraction using the LLM, with iterative gleaning.
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from config.settings import LLMConfig
from core.chunking import TextChunk
from core.entity_models import ExtractionResult
from core.llm import BaseLLMClient
from core.prompts import PROMPTS, select_examples
from core.tuple_parser import TupleParser

logger = logging.getLogger(__name__)

ChunkLike = Union[TextChunk, Mapping[str, Any]]


def _chunk_content(chunk: ChunkLike) -> str:
    if isinstance(chunk, TextChunk):
        return chunk.content
    return chunk["content"]


class EntityExtractor:
    """Extracts candidate entities and relationships from chunks using the LLM."""

    def __init__(
        self,
        llm: BaseLLMClient,
        config: Optional[LLMConfig] = None,
        tuple_delimiter: str = PROMPTS["DEFAULT_TUPLE_DELIMITER"],
        record_delimiter: str = PROMPTS["DEFAULT_RECORD_DELIMITER"],
        completion_delimiter: str = PROMPTS["DEFAULT_COMPLETION_DELIMITER"],
    ):
        self.llm = llm
        self.config = config or LLMConfig()
        self.tuple_delimiter = tuple_delimiter
        self.record_delimiter = record_delimiter
        self.completion_delimiter = completion_delimiter
        self._stats = {"chunks_processed": 0, "entities": 0, "relationships": 0}

    @property
    def entity_types(self) -> List[str]:
        return self.config.entity_types or PROMPTS["DEFAULT_ENTITY_TYPES"]

    def _prompt_context(self) -> Dict[str, str]:
        return {
            "tuple_delimiter": self.tuple_delimiter,
            "record_delimiter": self.record_delimiter,
            "completion_delimiter": self.completion_delimiter,
            "entity_types": ",".join(self.entity_types),
            "language": self.config.language or PROMPTS["DEFAULT_LANGUAGE"],
        }

    def _get_extraction_prompt(self, text: str) -> str:
        context = self._prompt_context()
        examples = select_examples(
            PROMPTS["entity_extraction_examples"], self.config.example_number
        ).format(**context)
        return PROMPTS["entity_extraction"].format(
            examples=examples, input_text=text, **context
        )

    def _get_continue_prompt(self) -> str:
        """Generate continuation prompt for a gleaning pass."""
        return PROMPTS["entity_continue_extraction"]

    def _get_loop_check_prompt(self) -> str:
        """Generate loop check prompt (asks LLM if more entities exist)."""
        return PROMPTS["entity_if_loop_extraction"]

    @staticmethod
    def _is_yes(answer: str) -> bool:
        return (answer or "").strip().strip('"').strip("'").strip().lower() == "yes"

    async def extract_from_chunk_with_gleaning(
        self,
        chunk_key: str,
        text: str,
        max_gleanings: Optional[int] = None,
    ) -> ExtractionResult:
        """
        Extract entities with iterative gleaning.

        Process:
        1. Initial extraction pass
        2. For each gleaning iteration:
           - Resend the conversation with "what did you miss?"
           - Keep the new output
           - Unless this was the last allowed pass, ask whether entities are
             still missing and stop on anything but "yes"
        3. Parse every turn's output together

        Args:
            chunk_key: Chunk id, recorded as the candidates' source_id
            text: Chunk text to extract from
            max_gleanings: Override the configured gleaning count

        Returns:
            ExtractionResult with candidates keyed by name / ordered pair
        """
        gleanings = (
            max_gleanings
            if max_gleanings is not None
            else self.config.entity_extract_max_gleaning
        )

        initial_prompt = self._get_extraction_prompt(text)
        initial_response = await self.llm.complete(initial_prompt)
        turns: List[str] = [initial_response]
        conversation_history: List[Dict[str, str]] = [
            {"role": "user", "content": initial_prompt},
            {"role": "assistant", "content": initial_response},
        ]

        for gleaning_iteration in range(gleanings):
            continue_prompt = self._get_continue_prompt()
            glean_response = await self.llm.complete(
                continue_prompt, history=list(conversation_history)
            )
            conversation_history.append({"role": "user", "content": continue_prompt})
            conversation_history.append({"role": "assistant", "content": glean_response})
            turns.append(glean_response)

            if gleaning_iteration == gleanings - 1:
                break

            loop_answer = await self.llm.complete(
                self._get_loop_check_prompt(), history=list(conversation_history)
            )
            if not self._is_yes(loop_answer):
                logger.debug(
                    f"[{chunk_key}] Gleaning stopped after pass {gleaning_iteration + 2}"
                )
                break

        parser = TupleParser(
            chunk_key=chunk_key,
            tuple_delimiter=self.tuple_delimiter,
            record_delimiter=self.record_delimiter,
            completion_delimiter=self.completion_delimiter,
        )
        result = parser.parse_turns(turns).extraction

        self._stats["chunks_processed"] += 1
        self._stats["entities"] += len(result.maybe_nodes)
        self._stats["relationships"] += len(result.maybe_edges)
        logger.info(
            f"Processed {self._stats['chunks_processed']} chunks, "
            f"{self._stats['entities']} entities(duplicated), "
            f"{self._stats['relationships']} relations(duplicated)"
        )
        return result

    async def extract_from_chunks(
        self,
        chunks: Mapping[str, ChunkLike],
        max_gleanings: Optional[int] = None,
    ) -> ExtractionResult:
        """
        Extract from every chunk concurrently and group candidates across chunks.

        Any chunk failure cancels the remaining extractions and is re-raised,
        so the caller never commits a partially extracted batch.
        """
        logger.info(f"Starting extraction from {len(chunks)} chunks")
        sem = asyncio.Semaphore(max(1, self.config.llm_model_max_async))

        async def _sem_extract(chunk_key: str, chunk: ChunkLike) -> ExtractionResult:
            async with sem:
                return await self.extract_from_chunk_with_gleaning(
                    chunk_key, _chunk_content(chunk), max_gleanings=max_gleanings
                )

        extraction_tasks = [
            asyncio.create_task(_sem_extract(chunk_key, chunk))
            for chunk_key, chunk in chunks.items()
        ]

        try:
            results = await asyncio.gather(*extraction_tasks)
        except Exception as e:
            logger.error(f"Extraction failed, cancelling remaining chunks: {e}")
            for t in extraction_tasks:
                t.cancel()
            await asyncio.gather(*extraction_tasks, return_exceptions=True)
            raise

        combined = ExtractionResult()
        for result in results:
            combined.extend(result)

        logger.info(
            f"Extraction complete: {len(combined.maybe_nodes)} entities, "
            f"{len(combined.maybe_edges)} relationship pairs"
        )
        return combined

    def get_stats(self) -> dict:
        return self._stats.copy()
