import uuid
from typing import List, Optional
from uuid import UUID

import httpx

from frontdesk.logging_config import get_logger

logger = get_logger("knowledge_service")


class KnowledgeError(Exception):
    pass


def parse_embedding(data) -> List[float]:
    """Accept the embedding response shapes served by TEI-style and custom embedders."""
    if isinstance(data, list) and len(data) > 0:
        vector = data[0] if isinstance(data[0], list) else data
    elif isinstance(data, dict):
        vector = data.get("embedding") or data.get("embeddings")
        if isinstance(vector, list) and vector and isinstance(vector[0], list):
            vector = vector[0]
    else:
        vector = None
    if not vector or not all(isinstance(v, (int, float)) for v in vector):
        raise KnowledgeError("Malformed embedding response")
    return vector


def chunk_text(text: str, chunk_size: int = 1000, overlap: int = 200) -> List[str]:
    """Fixed-size character windows with overlap."""
    text = (text or "").strip()
    if not text:
        return []
    step = max(chunk_size - overlap, 1)
    return [text[start : start + chunk_size] for start in range(0, len(text), step)]


def format_knowledge_context(texts: List[str], max_chars: int) -> str:
    """Join passages with blank lines, stopping before the character budget is exceeded."""
    parts: List[str] = []
    used = 0
    for text in texts:
        text = (text or "").strip()
        if not text:
            continue
        cost = len(text) + (2 if parts else 0)
        if used + cost > max_chars:
            if not parts:
                parts.append(text[:max_chars])
            break
        parts.append(text)
        used += cost
    return "\n\n".join(parts)


class KnowledgeGateway:
    """Tenant-scoped semantic search over the knowledge collection in Qdrant."""

    def __init__(
        self,
        embedding_url: str,
        qdrant_url: str,
        collection: str,
        qdrant_api_key: Optional[str] = None,
        embedding_timeout: float = 5.0,
        search_timeout: float = 3.0,
        max_chars: int = 4000,
        score_threshold: Optional[float] = None,
    ):
        self.embedding_url = embedding_url
        self.qdrant_url = qdrant_url.rstrip("/")
        self.collection = collection
        self.qdrant_api_key = qdrant_api_key
        self.embedding_timeout = embedding_timeout
        self.search_timeout = search_timeout
        self.max_chars = max_chars
        self.score_threshold = score_threshold

    @classmethod
    def from_settings(cls, settings) -> "KnowledgeGateway":
        return cls(
            embedding_url=settings.embedding_url,
            qdrant_url=settings.qdrant_url,
            collection=settings.qdrant_collection,
            qdrant_api_key=settings.qdrant_api_key,
            embedding_timeout=settings.embedding_timeout_seconds,
            search_timeout=settings.search_timeout_seconds,
            max_chars=settings.knowledge_max_chars,
        )

    def get_embedding(self, text: str) -> List[float]:
        with httpx.Client(timeout=self.embedding_timeout) as client:
            response = client.post(self.embedding_url, json={"inputs": text})
            if response.status_code != 200:
                raise KnowledgeError(f"Embedding error: {response.status_code} - {response.text[:200]}")
            return parse_embedding(response.json())

    def search_points(self, business_id: UUID, vector: List[float], top_k: int) -> List[str]:
        headers = {"api-key": self.qdrant_api_key} if self.qdrant_api_key else {}
        body = {
            "vector": vector,
            "limit": top_k,
            "filter": {"must": [{"key": "business_id", "match": {"value": str(business_id)}}]},
            "with_payload": True,
        }
        if self.score_threshold is not None:
            body["score_threshold"] = self.score_threshold

        with httpx.Client(timeout=self.search_timeout) as client:
            response = client.post(
                f"{self.qdrant_url}/collections/{self.collection}/points/search",
                headers=headers,
                json=body,
            )
            if response.status_code != 200:
                raise KnowledgeError(f"Qdrant search error: {response.status_code} - {response.text[:200]}")
            data = response.json()

        texts = []
        for point in data.get("result") or []:
            payload = point.get("payload") or {}
            texts.append(payload.get("text") or payload.get("content") or "")
        return texts

    def search(self, business_id: UUID, query: str, top_k: int = 5) -> str:
        """Knowledge block for the prompt, or "" when nothing relevant could be retrieved."""
        if not query or not query.strip():
            return ""
        try:
            vector = self.get_embedding(query)
            texts = self.search_points(business_id, vector, top_k)
        except (httpx.HTTPError, KnowledgeError, ValueError, TypeError, AttributeError) as e:
            logger.warning(
                f"Knowledge search failed: {e}",
                extra={"context": {"business_id": str(business_id), "error": e.__class__.__name__}},
            )
            return ""

        context = format_knowledge_context(texts, self.max_chars)
        logger.info(
            f"Knowledge search: found {len(texts)} results for '{query[:30]}...'",
            extra={"context": {"business_id": str(business_id)}},
        )
        return context

    def index_document(self, business_id: UUID, doc_id: str, text: str) -> List[str]:
        """Chunk, embed and upsert a document into the tenant's slice of the collection. Returns point ids."""
        chunks = chunk_text(text)
        points = []
        for i, chunk in enumerate(chunks):
            point_id = str(uuid.uuid5(uuid.NAMESPACE_URL, f"{business_id}:{doc_id}:{i}"))
            points.append(
                {
                    "id": point_id,
                    "vector": self.get_embedding(chunk),
                    "payload": {"text": chunk, "doc_id": doc_id, "business_id": str(business_id)},
                }
            )
        if not points:
            return []

        headers = {"api-key": self.qdrant_api_key} if self.qdrant_api_key else {}
        with httpx.Client(timeout=30.0) as client:
            response = client.put(
                f"{self.qdrant_url}/collections/{self.collection}/points?wait=true",
                headers=headers,
                json={"points": points},
            )
            if response.status_code != 200:
                raise KnowledgeError(f"Qdrant upsert error: {response.status_code} - {response.text[:200]}")

        logger.info(
            f"Indexed {len(points)} chunks for document {doc_id}",
            extra={"context": {"business_id": str(business_id)}},
        )
        return [p["id"] for p in points]
