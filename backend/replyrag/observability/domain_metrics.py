from __future__ import annotations

from prometheus_client import Counter, Histogram

reply_requests_total = Counter(
    "replyrag_reply_requests_total",
    "Total comment reply generations",
    ["outcome"],
)

reply_latency_seconds = Histogram(
    "replyrag_reply_latency_seconds",
    "Latency of comment reply generation in seconds",
)

retrieval_tier_total = Counter(
    "replyrag_retrieval_tier_total",
    "Retrieval strategy that produced the final candidate set",
    ["source_type", "tier"],
)

retrieval_tier_failures_total = Counter(
    "replyrag_retrieval_tier_failures_total",
    "Retrieval strategies that raised and were skipped",
    ["tier"],
)

validator_products_dropped_total = Counter(
    "replyrag_validator_products_dropped_total",
    "Recommended products removed by output validation",
    ["reason"],
)

validator_links_stripped_total = Counter(
    "replyrag_validator_links_stripped_total",
    "Links removed from reply text by output validation",
)

ingest_documents_total = Counter(
    "replyrag_ingest_documents_total",
    "Documents processed by the ingest pipeline",
    ["source_type", "outcome"],
)

pool_computations_total = Counter(
    "replyrag_pool_computations_total",
    "Relevance pool computations",
    ["outcome"],
)
