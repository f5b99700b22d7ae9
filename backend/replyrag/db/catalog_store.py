from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

from ..core.config import settings
from ..core.resources import registry
from ..schemas.catalog import CatalogItem, ContextProfile, RelevancePoolEntry
from ..schemas.reply import ProductRecommendation, ReplyDraft

CATALOG_RESOURCE = "catalog_store"


def encode_products(products: Sequence[ProductRecommendation]) -> str:
    return json.dumps([p.model_dump() for p in products], ensure_ascii=False)


def decode_products(raw: Optional[str]) -> List[ProductRecommendation]:
    if not raw:
        return []
    return [ProductRecommendation.model_validate(p) for p in json.loads(raw)]


def _encode_list(values: Sequence[str]) -> str:
    return json.dumps(list(values), ensure_ascii=False)


def _decode_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [str(v) for v in json.loads(raw)]


class CatalogStore:
    """
    SQLite persistence for catalog items, reply contexts, relevance pools
    and reply drafts.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self.init()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def init(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS catalog_items (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    brand TEXT,
                    category TEXT,
                    price REAL,
                    tags_json TEXT,
                    canonical_url TEXT,
                    description TEXT NOT NULL DEFAULT '',
                    eligible INTEGER NOT NULL DEFAULT 1,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS contexts (
                    context_id TEXT PRIMARY KEY,
                    title TEXT,
                    category_tags_json TEXT,
                    brand_tags_json TEXT,
                    price_range_min REAL,
                    price_range_max REAL,
                    tags_json TEXT,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS relevance_pool_entries (
                    context_id TEXT NOT NULL,
                    candidate_id TEXT NOT NULL,
                    relevance_score REAL NOT NULL,
                    matched_brand INTEGER NOT NULL DEFAULT 0,
                    matched_category INTEGER NOT NULL DEFAULT 0,
                    matched_price_range INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY(context_id, candidate_id)
                );

                CREATE INDEX IF NOT EXISTS idx_pool_context_score
                    ON relevance_pool_entries(context_id, relevance_score DESC);

                CREATE TABLE IF NOT EXISTS reply_drafts (
                    comment_id TEXT PRIMARY KEY,
                    context_id TEXT,
                    reply_text TEXT NOT NULL,
                    products_json TEXT,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                );
                """
            )
            conn.commit()

    # Catalog items

    def upsert_item(self, item: CatalogItem) -> CatalogItem:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO catalog_items(
                    id, name, brand, category, price, tags_json, canonical_url,
                    description, eligible, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    brand = excluded.brand,
                    category = excluded.category,
                    price = excluded.price,
                    tags_json = excluded.tags_json,
                    canonical_url = excluded.canonical_url,
                    description = excluded.description,
                    eligible = excluded.eligible,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    item.id,
                    item.name,
                    item.brand,
                    item.category,
                    item.price,
                    _encode_list(item.tags),
                    item.canonical_url,
                    item.description,
                    1 if item.eligible else 0,
                ),
            )
            conn.commit()
        return self.get_item(item.id)  # type: ignore[return-value]

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> CatalogItem:
        return CatalogItem(
            id=row["id"],
            name=row["name"],
            brand=row["brand"],
            category=row["category"],
            price=row["price"],
            tags=_decode_list(row["tags_json"]),
            canonical_url=row["canonical_url"],
            description=row["description"],
            eligible=bool(row["eligible"]),
            updated_at=row["updated_at"],
        )

    def get_item(self, item_id: str) -> Optional[CatalogItem]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM catalog_items WHERE id = ?",
                (item_id,),
            ).fetchone()
        return self._row_to_item(row) if row is not None else None

    def get_items(self, item_ids: Sequence[str]) -> List[CatalogItem]:
        """Items for `item_ids`, in the order given; unknown ids are skipped."""
        if not item_ids:
            return []
        placeholders = ",".join("?" for _ in item_ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM catalog_items WHERE id IN ({placeholders})",
                tuple(item_ids),
            ).fetchall()
        by_id = {row["id"]: self._row_to_item(row) for row in rows}
        return [by_id[i] for i in item_ids if i in by_id]

    def list_items(self, eligible_only: bool = False) -> List[CatalogItem]:
        query = "SELECT * FROM catalog_items"
        if eligible_only:
            query += " WHERE eligible = 1"
        query += " ORDER BY updated_at DESC, rowid DESC"
        with self._connect() as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_item(row) for row in rows]

    def query_eligible_items(
        self,
        categories: Optional[Sequence[str]] = None,
        brands: Optional[Sequence[str]] = None,
        price_min: Optional[float] = None,
        price_max: Optional[float] = None,
    ) -> List[CatalogItem]:
        """
        Eligible items matching every given structured filter (category and
        brand compared case-insensitively), most recently updated first.
        """
        clauses = ["eligible = 1"]
        params: List[object] = []
        if categories:
            clauses.append(
                f"LOWER(category) IN ({','.join('?' for _ in categories)})"
            )
            params.extend(c.lower() for c in categories)
        if brands:
            clauses.append(f"LOWER(brand) IN ({','.join('?' for _ in brands)})")
            params.extend(b.lower() for b in brands)
        if price_min is not None and price_max is not None:
            clauses.append("price IS NOT NULL AND price BETWEEN ? AND ?")
            params.extend([price_min, price_max])

        query = (
            "SELECT * FROM catalog_items WHERE "
            + " AND ".join(clauses)
            + " ORDER BY updated_at DESC, rowid DESC"
        )
        with self._connect() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_item(row) for row in rows]

    def delete_item(self, item_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM catalog_items WHERE id = ?", (item_id,))
            conn.commit()
        return cur.rowcount > 0

    # Contexts

    def upsert_context(self, context: ContextProfile) -> ContextProfile:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO contexts(
                    context_id, title, category_tags_json, brand_tags_json,
                    price_range_min, price_range_max, tags_json, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(context_id) DO UPDATE SET
                    title = excluded.title,
                    category_tags_json = excluded.category_tags_json,
                    brand_tags_json = excluded.brand_tags_json,
                    price_range_min = excluded.price_range_min,
                    price_range_max = excluded.price_range_max,
                    tags_json = excluded.tags_json,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    context.context_id,
                    context.title,
                    _encode_list(context.category_tags),
                    _encode_list(context.brand_tags),
                    context.price_range_min,
                    context.price_range_max,
                    _encode_list(context.tags),
                ),
            )
            conn.commit()
        return context

    @staticmethod
    def _row_to_context(row: sqlite3.Row) -> ContextProfile:
        return ContextProfile(
            context_id=row["context_id"],
            title=row["title"],
            category_tags=_decode_list(row["category_tags_json"]),
            brand_tags=_decode_list(row["brand_tags_json"]),
            price_range_min=row["price_range_min"],
            price_range_max=row["price_range_max"],
            tags=_decode_list(row["tags_json"]),
        )

    def get_context(self, context_id: str) -> Optional[ContextProfile]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM contexts WHERE context_id = ?",
                (context_id,),
            ).fetchone()
        return self._row_to_context(row) if row is not None else None

    def list_contexts(self) -> List[ContextProfile]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM contexts ORDER BY context_id ASC"
            ).fetchall()
        return [self._row_to_context(row) for row in rows]

    # Relevance pools

    def pool_size(self, context_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM relevance_pool_entries WHERE context_id = ?",
                (context_id,),
            ).fetchone()
        return int(row["n"])

    def replace_pool(self, context_id: str, entries: Sequence[RelevancePoolEntry]) -> None:
        """Delete-then-insert in one transaction."""
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM relevance_pool_entries WHERE context_id = ?",
                (context_id,),
            )
            conn.executemany(
                """
                INSERT INTO relevance_pool_entries(
                    context_id, candidate_id, relevance_score,
                    matched_brand, matched_category, matched_price_range
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        context_id,
                        e.candidate_id,
                        e.relevance_score,
                        int(e.matched_brand),
                        int(e.matched_category),
                        int(e.matched_price_range),
                    )
                    for e in entries
                ],
            )
            conn.commit()

    def delete_pool(self, context_id: str) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM relevance_pool_entries WHERE context_id = ?",
                (context_id,),
            )
            conn.commit()
        return cur.rowcount

    def get_pool(
        self,
        context_id: str,
        top_k: Optional[int] = None,
        min_score: float = 0.0,
    ) -> List[RelevancePoolEntry]:
        query = """
            SELECT * FROM relevance_pool_entries
            WHERE context_id = ? AND relevance_score >= ?
            ORDER BY relevance_score DESC, candidate_id ASC
        """
        params: List[object] = [context_id, min_score]
        if top_k is not None:
            query += " LIMIT ?"
            params.append(top_k)
        with self._connect() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [
            RelevancePoolEntry(
                context_id=row["context_id"],
                candidate_id=row["candidate_id"],
                relevance_score=row["relevance_score"],
                matched_brand=bool(row["matched_brand"]),
                matched_category=bool(row["matched_category"]),
                matched_price_range=bool(row["matched_price_range"]),
            )
            for row in rows
        ]

    # Reply drafts

    def save_draft(self, draft: ReplyDraft) -> ReplyDraft:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO reply_drafts(comment_id, context_id, reply_text, products_json, created_at)
                VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(comment_id) DO UPDATE SET
                    context_id = excluded.context_id,
                    reply_text = excluded.reply_text,
                    products_json = excluded.products_json,
                    created_at = CURRENT_TIMESTAMP
                """,
                (
                    draft.comment_id,
                    draft.context_id,
                    draft.reply_text,
                    encode_products(draft.products),
                ),
            )
            conn.commit()
        return self.get_draft(draft.comment_id)  # type: ignore[return-value]

    @staticmethod
    def _row_to_draft(row: sqlite3.Row) -> ReplyDraft:
        return ReplyDraft(
            comment_id=row["comment_id"],
            context_id=row["context_id"],
            reply_text=row["reply_text"],
            products=decode_products(row["products_json"]),
            created_at=row["created_at"],
        )

    def get_draft(self, comment_id: str) -> Optional[ReplyDraft]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM reply_drafts WHERE comment_id = ?",
                (comment_id,),
            ).fetchone()
        return self._row_to_draft(row) if row is not None else None

    def list_drafts(self, context_id: Optional[str] = None, limit: int = 100) -> List[ReplyDraft]:
        with self._connect() as conn:
            if context_id:
                rows = conn.execute(
                    """
                    SELECT * FROM reply_drafts
                    WHERE context_id = ?
                    ORDER BY created_at DESC
                    LIMIT ?
                    """,
                    (context_id, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM reply_drafts ORDER BY created_at DESC LIMIT ?",
                    (limit,),
                ).fetchall()
        return [self._row_to_draft(row) for row in rows]

    def counts(self) -> Dict[str, int]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM catalog_items) AS items,
                    (SELECT COUNT(*) FROM catalog_items WHERE eligible = 1) AS eligible_items,
                    (SELECT COUNT(*) FROM contexts) AS contexts,
                    (SELECT COUNT(DISTINCT context_id) FROM relevance_pool_entries) AS pools,
                    (SELECT COUNT(*) FROM relevance_pool_entries) AS pool_entries,
                    (SELECT COUNT(*) FROM reply_drafts) AS drafts
                """
            ).fetchone()
        return {key: int(row[key]) for key in row.keys()}


registry.register(
    CATALOG_RESOURCE,
    lambda: CatalogStore(settings.store.catalog_db_path),
)


def get_catalog_store() -> CatalogStore:
    return registry.get(CATALOG_RESOURCE)
