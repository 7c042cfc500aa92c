"""
Neo4j graph storage for the entity graph.

Nodes are `(:Entity {entity_id, entity_type, description, source_id})` keyed
by canonical entity name; relationships are undirected `[:RELATED]` edges
carrying weight, description, keywords and source_id. The synchronous neo4j
driver is used and every query runs on a worker thread.
"""

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple

from neo4j import Driver, GraphDatabase
from neo4j.exceptions import DriverError, ServiceUnavailable, SessionExpired

from core.base import BaseGraphStorage

logger = logging.getLogger(__name__)


class Neo4jGraphStorage(BaseGraphStorage):
    """Neo4j-backed BaseGraphStorage."""

    def __init__(
        self,
        uri: str,
        username: str,
        password: str,
        database: Optional[str] = None,
        max_connection_pool_size: int = 50,
        namespace: str = "chunk_entity_relation",
        max_workers: int = 8,
        driver: Optional[Driver] = None,
    ):
        self.namespace = namespace
        self.uri = uri
        self._auth = (username, password)
        self.database = database
        self.max_connection_pool_size = max_connection_pool_size
        self.driver: Optional[Driver] = driver
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="neo4j")
        self._constraint_ready = False

    def connect(self) -> None:
        """Establish connection to Neo4j database with exponential backoff."""
        max_attempts = 5
        delay = 1.0
        last_exc: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                logger.debug("Attempting to connect to Neo4j (attempt %s) at %s", attempt, self.uri)
                self.driver = GraphDatabase.driver(
                    self.uri,
                    auth=self._auth,
                    max_connection_pool_size=self.max_connection_pool_size,
                    connection_timeout=30.0,
                )
                self.driver.verify_connectivity()
                logger.info("Successfully connected to Neo4j database at %s", self.uri)
                return
            except (ServiceUnavailable, DriverError) as e:
                last_exc = e
                logger.warning("Neo4j connection attempt %s failed: %s", attempt, e)
                time.sleep(delay)
                delay = min(delay * 2, 8.0)

        logger.error("Failed to connect to Neo4j after %s attempts: %s", max_attempts, last_exc)
        raise last_exc

    def ensure_connected(self) -> None:
        if self.driver is None:
            self.connect()
        if not self._constraint_ready:
            with self.driver.session(database=self.database) as session:
                session.run(
                    "CREATE CONSTRAINT entity_id_unique IF NOT EXISTS "
                    "FOR (n:Entity) REQUIRE n.entity_id IS UNIQUE"
                )
            self._constraint_ready = True

    def _run_with_retry(
        self,
        work: Callable[[Any], Any],
        max_attempts: int = 3,
        initial_backoff: float = 0.5,
    ) -> Any:
        """Run work(session), reconnecting on transient failures."""
        attempts = 0
        backoff = initial_backoff
        while True:
            attempts += 1
            try:
                self.ensure_connected()
                with self.driver.session(database=self.database) as session:
                    return work(session)
            except (ServiceUnavailable, SessionExpired) as e:
                logger.warning(
                    "Neo4j unavailable on attempt %s/%s: %s", attempts, max_attempts, e
                )
                if self.driver is not None:
                    self.driver.close()
                    self.driver = None
                if attempts >= max_attempts:
                    logger.error("Neo4j: exceeded max attempts (%s)", max_attempts)
                    raise
                time.sleep(backoff)
                backoff = min(backoff * 2, 8.0)

    async def _query(self, cypher: str, **params: Any) -> List[Dict[str, Any]]:
        def _work(session):
            return [record.data() for record in session.run(cypher, **params)]

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._run_with_retry, _work)

    async def has_node(self, node_id: str) -> bool:
        rows = await self._query(
            "MATCH (n:Entity {entity_id: $id}) RETURN count(n) > 0 AS found", id=node_id
        )
        return bool(rows and rows[0]["found"])

    async def has_edge(self, source_node_id: str, target_node_id: str) -> bool:
        rows = await self._query(
            "MATCH (a:Entity {entity_id: $src})-[r:RELATED]-(b:Entity {entity_id: $tgt}) "
            "RETURN count(r) > 0 AS found",
            src=source_node_id,
            tgt=target_node_id,
        )
        return bool(rows and rows[0]["found"])

    async def get_node(self, node_id: str) -> Optional[Dict[str, Any]]:
        rows = await self._query(
            "MATCH (n:Entity {entity_id: $id}) RETURN properties(n) AS props", id=node_id
        )
        if not rows:
            return None
        props = dict(rows[0]["props"])
        props.pop("entity_id", None)
        return props

    async def get_edge(
        self, source_node_id: str, target_node_id: str
    ) -> Optional[Dict[str, Any]]:
        rows = await self._query(
            "MATCH (a:Entity {entity_id: $src})-[r:RELATED]-(b:Entity {entity_id: $tgt}) "
            "RETURN properties(r) AS props LIMIT 1",
            src=source_node_id,
            tgt=target_node_id,
        )
        if not rows:
            return None
        return dict(rows[0]["props"])

    async def node_degree(self, node_id: str) -> int:
        rows = await self._query(
            "MATCH (n:Entity {entity_id: $id}) "
            "OPTIONAL MATCH (n)-[r:RELATED]-() RETURN count(r) AS degree",
            id=node_id,
        )
        return int(rows[0]["degree"]) if rows else 0

    async def edge_degree(self, src_id: str, tgt_id: str) -> int:
        src_degree, tgt_degree = await asyncio.gather(
            self.node_degree(src_id), self.node_degree(tgt_id)
        )
        return src_degree + tgt_degree

    async def get_node_edges(self, source_node_id: str) -> Optional[List[Tuple[str, str]]]:
        if not await self.has_node(source_node_id):
            return None
        rows = await self._query(
            "MATCH (n:Entity {entity_id: $id})-[:RELATED]-(m:Entity) "
            "RETURN m.entity_id AS neighbor",
            id=source_node_id,
        )
        return [(source_node_id, row["neighbor"]) for row in rows]

    async def upsert_node(self, node_id: str, node_data: Dict[str, Any]) -> None:
        await self._query(
            "MERGE (n:Entity {entity_id: $id}) SET n += $props",
            id=node_id,
            props=node_data,
        )

    async def upsert_edge(
        self, source_node_id: str, target_node_id: str, edge_data: Dict[str, Any]
    ) -> None:
        await self._query(
            "MATCH (a:Entity {entity_id: $src}) "
            "MATCH (b:Entity {entity_id: $tgt}) "
            "MERGE (a)-[r:RELATED]-(b) "
            "SET r += $props",
            src=source_node_id,
            tgt=target_node_id,
            props=edge_data,
        )

    async def delete_node(self, node_id: str) -> None:
        await self._query("MATCH (n:Entity {entity_id: $id}) DETACH DELETE n", id=node_id)
        logger.info(f"Node {node_id} deleted from the graph")

    def close(self) -> None:
        """Close database connection."""
        if self.driver:
            self.driver.close()
            self.driver = None
            logger.info("Neo4j connection closed")
        self._executor.shutdown(wait=False)
