"""
File metadata service.
Extracts display-only entities and classification tags for an uploaded file.
Nothing in retrieval reads these; every failure falls back to a default.
"""
from typing import Dict, List

from ..errors import ModelError
from ..llm import CompletionGateway, Parsed, parse_json_reply
from ..logging_config import logger

ENTITY_KINDS = ("people", "organizations", "dates", "numbers", "locations", "other")
MAX_ENTITIES_PER_KIND = 10
ENTITY_INPUT_CHARS = 4000
CLASSIFY_INPUT_CHARS = 2000
MAX_TAGS = 3
DEFAULT_TAG = "reference"

CONTROLLED_TAGS = (
    "work", "personal", "task", "deal", "idea", "finance", "health",
    "meeting", "project", "research", "legal", "contract", "invoice",
    "report", "presentation", "notes", "documentation", "education",
    "travel", "reference",
)

ENTITY_PROMPT = """Extract entities from text. Return JSON only:
{
  "people": ["person names"],
  "organizations": ["company/org names"],
  "dates": ["dates in ISO format"],
  "numbers": ["important numbers with context"],
  "locations": ["places, addresses"],
  "other": ["other significant entities"]
}"""


def empty_entities() -> Dict[str, List[str]]:
    return {kind: [] for kind in ENTITY_KINDS}


class FileMetadataExtractor:
    def __init__(self, completion: CompletionGateway):
        self.completion = completion

    def extract_entities(self, text: str) -> Dict[str, List[str]]:
        turns = [
            {"role": "system", "content": ENTITY_PROMPT},
            {"role": "user", "content": text[:ENTITY_INPUT_CHARS]},
        ]
        try:
            reply = self.completion.complete(turns, max_tokens=300, temperature=0.1)
        except ModelError as e:
            logger.warning("Entity extraction failed", error=e.message)
            return empty_entities()

        parsed = parse_json_reply(reply)
        if not isinstance(parsed, Parsed) or not isinstance(parsed.value, dict):
            logger.warning("Entity extraction returned non-JSON reply")
            return empty_entities()

        entities = empty_entities()
        for kind in ENTITY_KINDS:
            values = parsed.value.get(kind)
            if isinstance(values, list):
                entities[kind] = [str(v) for v in values[:MAX_ENTITIES_PER_KIND]]
        return entities

    def classify(self, text: str, filename: str = "") -> List[str]:
        """Up to three tags from the controlled vocabulary; 'reference' otherwise."""
        turns = [
            {
                "role": "system",
                "content": (
                    f"Classify content into categories: {', '.join(CONTROLLED_TAGS)}. "
                    "Return comma-separated list."
                ),
            },
            {"role": "user", "content": f"Filename: {filename}\n\nContent: {text[:CLASSIFY_INPUT_CHARS]}"},
        ]
        try:
            reply = self.completion.complete(turns, max_tokens=50, temperature=0.1)
        except ModelError as e:
            logger.warning("Content classification failed", error=e.message)
            return [DEFAULT_TAG]

        tags = []
        for tag in (part.strip().lower() for part in reply.split(",")):
            if tag in CONTROLLED_TAGS and tag not in tags:
                tags.append(tag)
        return tags[:MAX_TAGS] or [DEFAULT_TAG]
