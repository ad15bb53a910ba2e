"""
Utility helper functions.
"""
from typing import Any, Dict, List

from ..models import Message
from ..services.retrieval_service import ScoredChunk


def dedupe_sources(chunks: List[ScoredChunk]) -> List[Dict]:
    """
    Deduplicate source files from retrieved chunks.

    For each unique filename, keeps the highest scoring chunk and includes
    a preview of the content that was used.
    Returns sources sorted by score (descending).

    Args:
        chunks: Retrieved chunks with their scores

    Returns:
        List of deduplicated sources with filename, score, and content preview

    Example:
        chunks scoring doc1.txt 0.9 and 0.85, doc2.txt 0.82 give
        [{"filename": "doc1.txt", "score": 0.9, ...}, {"filename": "doc2.txt", "score": 0.82, ...}]
    """
    source_map = {}

    for scored in chunks:
        filename = scored.chunk.filename
        score = float(scored.score)
        content = scored.chunk.chunk_text

        # Keep highest score for each filename along with its content
        if filename not in source_map or score > source_map[filename]["score"]:
            source_map[filename] = {
                "score": score,
                "content": content
            }

    sources = []
    for fname, data in sorted(source_map.items(), key=lambda x: x[1]["score"], reverse=True):
        preview = data["content"][:200].strip()
        if len(data["content"]) > 200:
            preview += "..."

        sources.append({
            "filename": fname,
            "score": round(data["score"], 3),
            "preview": preview
        })

    return sources


def serialize_message(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "role": message.role,
        "content": message.content,
        "created_at": message.created_at,
    }
