"""
pgvector Similarity Index
=========================

SimilarityIndex over PostgreSQL + pgvector.

Uses psycopg2 with a threaded connection pool; blocking calls are
pushed to a worker thread so the engine stays async.

Similarity is computed as 1 - cosine distance (the <=> operator).
"""

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import psycopg2
from psycopg2 import pool as pg_pool
from psycopg2.extras import Json, RealDictCursor

from ..config import DatabaseConfig
from ..errors import InvalidArgument
from .embedding_vector import EmbeddingVector
from .index import (
    BUSINESS_CONTEXT,
    FEATURE_REQUESTS,
    IndexRecord,
    NeighborHit,
    SimilarityIndex,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectionSpec:
    """Maps a logical collection onto a table."""
    table: str
    payload_columns: Tuple[str, ...]
    embedding_column: str = "embedding_vector"
    scope_column: Optional[str] = None
    json_columns: Tuple[str, ...] = ()
    # insert: new row per record; update: attach a vector to an existing row
    store_mode: str = "insert"


DEFAULT_COLLECTIONS: Dict[str, CollectionSpec] = {
    FEATURE_REQUESTS: CollectionSpec(
        table="feature_requests",
        payload_columns=(
            "title",
            "description",
            "requester_name",
            "requester_company",
            "submitted_at",
            "status",
        ),
        store_mode="update",
    ),
    BUSINESS_CONTEXT: CollectionSpec(
        table="business_context",
        payload_columns=("content", "chunk_index", "metadata"),
        scope_column="organization_id",
        json_columns=("metadata",),
    ),
}


class PgVectorIndex(SimilarityIndex):
    """
    SimilarityIndex backed by pgvector tables.

    The index never creates schema; tables are owned by the
    surrounding system's migrations.
    """

    def __init__(
        self,
        config: Optional[DatabaseConfig] = None,
        collections: Optional[Dict[str, CollectionSpec]] = None,
        connection_pool=None,
    ):
        self.config = config or DatabaseConfig()
        self.collections = collections or DEFAULT_COLLECTIONS
        self._pool = connection_pool

    def _get_pool(self):
        """Lazy init of the connection pool."""
        if self._pool is None:
            self._pool = pg_pool.ThreadedConnectionPool(
                self.config.pool_min_size,
                self.config.pool_max_size,
                **self.config.connection_dict,
            )
            logger.info(
                f"pgvector pool created: {self.config.host}:{self.config.port}/{self.config.name}"
            )
        return self._pool

    @contextmanager
    def _get_connection(self):
        """Get a connection from the pool (context manager)."""
        pool = self._get_pool()
        conn = pool.getconn()
        try:
            yield conn
        finally:
            pool.putconn(conn)

    def close(self):
        """Close the connection pool."""
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            logger.info("pgvector pool closed")

    def _spec(self, collection: str) -> CollectionSpec:
        spec = self.collections.get(collection)
        if spec is None:
            raise InvalidArgument(f"Unknown collection: {collection}")
        return spec

    # =========================================================================
    # QUERY
    # =========================================================================

    def _build_query(
        self,
        spec: CollectionSpec,
        vector: EmbeddingVector,
        threshold: Optional[float],
        limit: int,
        scope: Optional[str],
    ) -> Tuple[str, Dict[str, Any]]:
        columns = ", ".join(("id",) + spec.payload_columns)
        emb = spec.embedding_column
        params: Dict[str, Any] = {"vec": vector.to_pgvector(), "limit": limit}

        sql = (
            f"SELECT {columns}, 1 - ({emb} <=> %(vec)s::vector) AS similarity "
            f"FROM {spec.table} WHERE {emb} IS NOT NULL"
        )

        if spec.scope_column:
            if scope is None:
                sql += f" AND {spec.scope_column} IS NULL"
            else:
                sql += f" AND {spec.scope_column} = %(scope)s"
                params["scope"] = scope
        elif scope is not None:
            raise InvalidArgument(f"Collection '{spec.table}' is not tenant-scoped")

        if threshold is not None:
            sql += f" AND 1 - ({emb} <=> %(vec)s::vector) >= %(threshold)s"
            params["threshold"] = threshold

        sql += f" ORDER BY {emb} <=> %(vec)s::vector LIMIT %(limit)s"
        return sql, params

    def _query_sync(self, sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                return cur.fetchall()

    async def nearest_neighbors(
        self,
        collection: str,
        vector: EmbeddingVector,
        threshold: Optional[float] = None,
        limit: int = 10,
        scope: Optional[str] = None,
    ) -> List[NeighborHit]:
        spec = self._spec(collection)
        sql, params = self._build_query(spec, vector, threshold, limit, scope)

        rows = await asyncio.to_thread(self._query_sync, sql, params)

        hits = []
        for row in rows:
            row = dict(row)
            hit_id = str(row.pop("id"))
            similarity = float(row.pop("similarity"))
            hits.append(NeighborHit(id=hit_id, similarity=similarity, payload=row))

        logger.debug(f"pgvector query on '{collection}' returned {len(hits)} rows")
        return hits

    # =========================================================================
    # STORE
    # =========================================================================

    def _build_store(self, spec: CollectionSpec, record: IndexRecord) -> Tuple[str, tuple]:
        emb = spec.embedding_column

        if spec.store_mode == "update":
            if record.id is None:
                raise InvalidArgument(f"Storing into '{spec.table}' requires an existing id")
            sql = f"UPDATE {spec.table} SET {emb} = %s::vector WHERE id = %s RETURNING id"
            return sql, (record.vector.to_pgvector(), record.id)

        columns = [c for c in spec.payload_columns if c in record.payload]
        values = [
            Json(record.payload[c]) if c in spec.json_columns else record.payload[c]
            for c in columns
        ]
        columns.append(emb)
        values.append(record.vector.to_pgvector())
        placeholders = ["%s"] * (len(columns) - 1) + ["%s::vector"]

        if spec.scope_column:
            columns.append(spec.scope_column)
            values.append(record.scope)
            placeholders.append("%s")
        elif record.scope is not None:
            raise InvalidArgument(f"Collection '{spec.table}' is not tenant-scoped")

        if record.id is not None:
            columns.insert(0, "id")
            values.insert(0, record.id)
            placeholders.insert(0, "%s")

        sql = (
            f"INSERT INTO {spec.table} ({', '.join(columns)}) "
            f"VALUES ({', '.join(placeholders)}) RETURNING id"
        )
        return sql, tuple(values)

    def _store_sync(self, sql: str, params: tuple) -> Optional[str]:
        with self._get_connection() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(sql, params)
                    row = cur.fetchone()
                conn.commit()
            except psycopg2.Error:
                conn.rollback()
                raise
        return str(row[0]) if row else None

    async def store(self, collection: str, record: IndexRecord) -> str:
        spec = self._spec(collection)
        sql, params = self._build_store(spec, record)

        stored_id = await asyncio.to_thread(self._store_sync, sql, params)
        if stored_id is None:
            raise InvalidArgument(f"No row in '{spec.table}' with id {record.id}")

        record.id = stored_id
        return stored_id
