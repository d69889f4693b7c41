"""Knowledge base data model shared by the builder, the store and the retriever.

`KnowledgeDocument` is what the document builder produces, `StoredDocument`
adds the embedding and is what the vector store holds and persists, and
`SearchResult` pairs a stored document with its ranking score.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class DocumentType(str, Enum):
    """Kinds of knowledge documents."""
    PROJECT = "project"
    SKILL = "skill"
    EXPERIENCE = "experience"
    PERSONA = "persona"


@dataclass
class DocumentMetadata:
    """Display and citation data attached to a document.

    Attributes:
        title: Human-readable title shown in the context block.
        type: One of DocumentType values.
        category: Optional grouping (project category, skill category id, ...).
        tags: Optional ordered tags.
        source: Optional origin of the record (data file, repository, ...).
    """
    title: str
    type: DocumentType
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    source: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"title": self.title, "type": self.type.value}
        if self.category is not None:
            data["category"] = self.category
        if self.tags is not None:
            data["tags"] = list(self.tags)
        if self.source is not None:
            data["source"] = self.source
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentMetadata":
        tags = data.get("tags")
        return cls(
            title=str(data["title"]),
            type=DocumentType(data["type"]),
            category=data.get("category"),
            tags=[str(t) for t in tags] if tags is not None else None,
            source=data.get("source"),
        )


@dataclass
class KnowledgeDocument:
    """A self-contained unit of retrievable knowledge.

    `id` is stable across rebuilds and is the upsert identity.
    `content` is the exact string that gets embedded.
    """
    id: str
    content: str
    metadata: DocumentMetadata


@dataclass
class StoredDocument:
    """A KnowledgeDocument with its embedding attached."""
    id: str
    content: str
    metadata: DocumentMetadata
    embedding: List[float] = field(default_factory=list)

    @classmethod
    def from_knowledge(cls, document: KnowledgeDocument, embedding: List[float]) -> "StoredDocument":
        return cls(
            id=document.id,
            content=document.content,
            metadata=document.metadata,
            embedding=[float(v) for v in embedding],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "embedding": list(self.embedding),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredDocument":
        embedding = data["embedding"]
        if not isinstance(embedding, list):
            raise ValueError(f"Embedding for document {data.get('id')!r} is not a list")
        return cls(
            id=str(data["id"]),
            content=str(data["content"]),
            metadata=DocumentMetadata.from_dict(data["metadata"]),
            embedding=[float(v) for v in embedding],
        )


@dataclass
class SearchResult:
    """A ranked match. Larger score means more relevant; only the order is meaningful."""
    document: StoredDocument
    score: float
