"""
Document ingestion: chunk, extract, merge and persist.

Document and chunk identity is content-addressed, so re-inserting the same
text is a no-op. Full documents, text chunks and chunk vectors are written
only after extraction and merging succeeded for the whole batch; graph writes
already made by a failed batch are not rolled back.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Dict, List, Optional, Union

from config.settings import LLMConfig
from core.base import StorageBundle
from core.chunking import chunk_document
from core.entity_extraction import EntityExtractor
from core.entity_graph import GraphMergeEngine, UNKNOWN_ENTITY_TYPE
from core.entity_models import EntityData, RelationshipData
from core.exceptions import StorageError
from core.token_counter import TokenCounter
from core.utils import clean_str, compute_mdhash_id, normalize_entity_name, safe_float

logger = logging.getLogger(__name__)

STREAM_BUFFER_SIZE = 64 * 1024


@dataclass
class IngestResult:
    """Outcome of one insert call."""

    status: str
    document_ids: List[str] = field(default_factory=list)
    chunk_count: int = 0
    entity_count: int = 0
    relationship_count: int = 0

    @property
    def inserted(self) -> bool:
        return self.status == "inserted"


class DocumentProcessor:
    """Runs the insert / custom-graph / delete / stream operations over a StorageBundle."""

    def __init__(
        self,
        storages: StorageBundle,
        extractor: EntityExtractor,
        merge_engine: GraphMergeEngine,
        counter: TokenCounter,
        config: Optional[LLMConfig] = None,
    ):
        self.storages = storages
        self.extractor = extractor
        self.merge_engine = merge_engine
        self.counter = counter
        self.config = config or LLMConfig()

    async def _insert_done(self) -> None:
        await asyncio.gather(*[s.index_done_callback() for s in self.storages.all()])

    async def insert(self, docs: Union[str, List[str]]) -> IngestResult:
        """
        Ingest one or more documents.

        Soft no-ops (nothing written, status explains why):
        - no_new_documents: every document is already stored
        - no_new_chunks: every chunk is already stored
        - no_entities: extraction produced no entities or no relationships
        """
        if isinstance(docs, str):
            docs = [docs]

        try:
            new_docs = {
                compute_mdhash_id(c.strip(), prefix="doc-"): {"content": c.strip()}
                for c in docs
                if c and c.strip()
            }
            add_keys = await self.storages.full_docs.filter_keys(list(new_docs.keys()))
            new_docs = {k: v for k, v in new_docs.items() if k in add_keys}
            if not new_docs:
                logger.warning("All docs are already in the storage")
                return IngestResult(status="no_new_documents")
            logger.info(f"[New Docs] inserting {len(new_docs)} docs")

            inserting_chunks: Dict[str, Dict[str, Any]] = {}
            for doc_key, doc in new_docs.items():
                for chunk_id, chunk in chunk_document(
                    doc_key,
                    doc["content"],
                    self.counter,
                    overlap_token_size=self.config.chunk_overlap_token_size,
                    max_token_size=self.config.chunk_token_size,
                ).items():
                    inserting_chunks[chunk_id] = chunk.to_storage_payload()

            add_keys = await self.storages.text_chunks.filter_keys(list(inserting_chunks.keys()))
            inserting_chunks = {k: v for k, v in inserting_chunks.items() if k in add_keys}
            if not inserting_chunks:
                logger.warning("All chunks are already in the storage")
                return IngestResult(status="no_new_chunks", document_ids=list(new_docs.keys()))
            logger.info(f"[New Chunks] inserting {len(inserting_chunks)} chunks")

            logger.info("[Entity Extraction]...")
            extraction = await self.extractor.extract_from_chunks(inserting_chunks)
            merged = await self.merge_engine.merge_extraction(extraction)
            if merged is None:
                logger.warning("No new entities and relationships found")
                return IngestResult(
                    status="no_entities",
                    document_ids=list(new_docs.keys()),
                    chunk_count=len(inserting_chunks),
                )
            entities, relationships = merged

            await self.storages.chunks_vdb.upsert(
                {
                    chunk_id: {"content": chunk["content"], "full_doc_id": chunk["full_doc_id"]}
                    for chunk_id, chunk in inserting_chunks.items()
                }
            )
            await self.storages.full_docs.upsert(new_docs)
            await self.storages.text_chunks.upsert(inserting_chunks)

            return IngestResult(
                status="inserted",
                document_ids=list(new_docs.keys()),
                chunk_count=len(inserting_chunks),
                entity_count=len(entities),
                relationship_count=len(relationships),
            )
        finally:
            await self._insert_done()

    async def insert_custom_kg(self, custom_kg: Dict[str, Any]) -> IngestResult:
        """
        Write a caller-supplied graph directly, without extraction.

        Expected shape:
            {"chunks": [{"content", "source_id"}],
             "entities": [{"entity_name", "entity_type", "description", "source_id"}],
             "relationships": [{"src_id", "tgt_id", "description", "keywords",
                                "weight", "source_id"}]}

        Records overwrite existing nodes / edges with the same key.
        """
        try:
            all_chunks_data: Dict[str, Dict[str, Any]] = {}
            for order_index, chunk_data in enumerate(custom_kg.get("chunks", [])):
                chunk_content = clean_str(chunk_data.get("content", ""))
                if not chunk_content:
                    continue
                source_id = chunk_data.get("source_id") or "UNKNOWN"
                chunk_id = compute_mdhash_id(chunk_content, prefix="chunk-")
                all_chunks_data[chunk_id] = {
                    "content": chunk_content,
                    "source_id": source_id,
                    "tokens": self.counter.count(chunk_content),
                    "chunk_order_index": order_index,
                    "full_doc_id": source_id,
                }

            if all_chunks_data:
                await self.storages.chunks_vdb.upsert(
                    {
                        chunk_id: {"content": chunk["content"], "full_doc_id": chunk["full_doc_id"]}
                        for chunk_id, chunk in all_chunks_data.items()
                    }
                )
                await self.storages.text_chunks.upsert(all_chunks_data)

            all_entities_data: List[EntityData] = []
            for entity_data in custom_kg.get("entities", []):
                entity_name = normalize_entity_name(entity_data.get("entity_name", ""))
                if not entity_name:
                    logger.warning(f"Skipping custom entity without a name: {entity_data}")
                    continue
                entity = EntityData(
                    entity_name=entity_name,
                    entity_type=clean_str(entity_data.get("entity_type") or "").upper()
                    or UNKNOWN_ENTITY_TYPE,
                    description=entity_data.get("description") or "No description provided",
                    source_id=entity_data.get("source_id") or "UNKNOWN",
                )
                await self.storages.graph.upsert_node(entity_name, entity.to_node_data())
                all_entities_data.append(entity)

            all_relationships_data: List[RelationshipData] = []
            for relationship_data in custom_kg.get("relationships", []):
                src_id = normalize_entity_name(relationship_data.get("src_id", ""))
                tgt_id = normalize_entity_name(relationship_data.get("tgt_id", ""))
                if not src_id or not tgt_id:
                    logger.warning(f"Skipping custom relationship without endpoints: {relationship_data}")
                    continue
                relationship = RelationshipData(
                    src_id=src_id,
                    tgt_id=tgt_id,
                    description=relationship_data.get("description") or "",
                    keywords=relationship_data.get("keywords") or "",
                    source_id=relationship_data.get("source_id") or "UNKNOWN",
                    weight=safe_float(relationship_data.get("weight"), 1.0),
                )

                for need_insert_id in (src_id, tgt_id):
                    if not await self.storages.graph.has_node(need_insert_id):
                        await self.storages.graph.upsert_node(
                            need_insert_id,
                            {
                                "entity_type": UNKNOWN_ENTITY_TYPE,
                                "description": "UNKNOWN",
                                "source_id": relationship.source_id,
                            },
                        )

                await self.storages.graph.upsert_edge(src_id, tgt_id, relationship.to_edge_data())
                all_relationships_data.append(relationship)

            await self.merge_engine.upsert_vectors(all_entities_data, all_relationships_data)
            logger.info(
                f"Inserted custom graph: {len(all_entities_data)} entities, "
                f"{len(all_relationships_data)} relationships, {len(all_chunks_data)} chunks"
            )
            return IngestResult(
                status="inserted",
                chunk_count=len(all_chunks_data),
                entity_count=len(all_entities_data),
                relationship_count=len(all_relationships_data),
            )
        finally:
            await self._insert_done()

    async def delete_by_entity(self, entity_name: str) -> None:
        """
        Remove an entity node, its vector record and relation records naming it.

        Neighbors left without edges are kept.
        """
        entity_name = normalize_entity_name(entity_name)
        try:
            await self.storages.entities_vdb.delete_entity(entity_name)
            await self.storages.relationships_vdb.delete_relation(entity_name)
            await self.storages.graph.delete_node(entity_name)
            logger.info(
                f"Entity {entity_name} and its relationships have been deleted."
            )
        except Exception as e:
            logger.error(f"Error while deleting entity {entity_name}: {e}")
            raise StorageError(f"Failed to delete entity {entity_name}") from e
        await self._insert_done()

    async def process_stream(
        self,
        stream: AsyncIterable[str],
        max_concurrency: int = 5,
        buffer_size: int = STREAM_BUFFER_SIZE,
    ) -> List[IngestResult]:
        """
        Ingest an unbounded text stream.

        Text is buffered up to buffer_size characters and cut at the last
        sentence boundary; each piece is inserted as its own document. At most
        max_concurrency inserts run at once and reading the stream pauses until
        a slot frees.
        """
        sem = asyncio.Semaphore(max(1, max_concurrency))
        tasks: List[asyncio.Task] = []

        async def _insert_piece(piece: str) -> IngestResult:
            try:
                return await self.insert(piece)
            finally:
                sem.release()

        async def _admit(piece: str) -> None:
            if not piece.strip():
                return
            await sem.acquire()
            tasks.append(asyncio.create_task(_insert_piece(piece)))

        buffer = ""
        try:
            async for text in stream:
                buffer += text
                while len(buffer) >= buffer_size:
                    cut = buffer.rfind(".", 0, buffer_size)
                    cut = buffer_size if cut == -1 else cut + 1
                    piece, buffer = buffer[:cut], buffer[cut:]
                    await _admit(piece)
            await _admit(buffer)
            results = await asyncio.gather(*tasks)
        except BaseException:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        logger.info(f"Stream ingestion finished: {len(results)} pieces")
        return list(results)
