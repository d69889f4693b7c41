"""
Document builder for the portfolio knowledge base.

Turns the structured portfolio records (projects, skill categories, experience
entries, persona facts, free-text knowledge sections, pricing, testimonials,
featured repositories and parsed project files) into a flat list of
self-contained KnowledgeDocuments.

Every record type has its own template that writes the fields out as readable
prose, so natural-language questions land close to the stored text. Skill
categories are additionally exploded into one document per skill so a
question about one skill does not compete against a whole category block.

Everything here is pure: the same source produces the same documents in the
same order, and no network or disk I/O happens outside load_knowledge_source().
"""

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..models.knowledge import DocumentMetadata, DocumentType, KnowledgeDocument
from .document_parser import ParsedFile

logger = logging.getLogger(__name__)


def load_knowledge_source(path: str) -> Dict[str, Any]:
    """Load the structured portfolio records from a JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def slugify(value: str) -> str:
    """Lower-case and replace whitespace runs with hyphens."""
    return re.sub(r"\s+", "-", value.strip().lower())


def _lines(*parts: Optional[str]) -> str:
    """Join the non-empty template lines."""
    return "\n".join(p for p in parts if p).strip()


def _bullets(items: Iterable[str], quote: bool = False) -> str:
    if quote:
        return "\n".join(f'- "{item}"' for item in items)
    return "\n".join(f"- {item}" for item in items)


def _joined(items: Optional[Sequence[str]]) -> str:
    return ", ".join(items or [])


# ── Projects ──

def build_project_documents(projects: List[Dict[str, Any]]) -> List[KnowledgeDocument]:
    """One document per project."""
    documents = []

    for project in projects:
        tech = list(project.get("tech") or [])
        year = project.get("year")
        content = _lines(
            f"Project: {project['title']}",
            f"Category: {project.get('category') or 'General'}",
            f"Technologies: {', '.join(tech)}",
            f"Description: {project.get('description', '')}",
            f"Details: {project['long_description']}" if project.get("long_description") else None,
            f"Key Metric: {project['metric']}" if project.get("metric") else None,
            f"Year: {year}" if year else None,
            f"Role: {project['role']}" if project.get("role") else None,
        )

        documents.append(KnowledgeDocument(
            id=f"project-{project['id']}",
            content=content,
            metadata=DocumentMetadata(
                title=project["title"],
                type=DocumentType.PROJECT,
                category=project.get("category"),
                tags=tech,
                source="projects",
            ),
        ))

    return documents


# ── Skills ──

def _format_skill_line(skill: Dict[str, Any]) -> str:
    line = f"{skill['name']}: {skill['proficiency']}% proficiency"
    if skill.get("details"):
        line += f" ({skill['details']})"
    return line


def build_skill_documents(skill_categories: List[Dict[str, Any]]) -> List[KnowledgeDocument]:
    """One document per skill category, then one per individual skill."""
    documents = []

    for category in skill_categories:
        skills = category.get("skills") or []
        content = _lines(
            f"Skill Category: {category['title']}",
            f"Description: {category.get('description', '')}",
        ) + "\n\nSkills:\n" + _bullets(_format_skill_line(s) for s in skills)

        documents.append(KnowledgeDocument(
            id=f"skills-{category['id']}",
            content=content.strip(),
            metadata=DocumentMetadata(
                title=category["title"],
                type=DocumentType.SKILL,
                category=category["id"],
                tags=[s["name"] for s in skills],
                source="skills",
            ),
        ))

    # Fine-grained documents for precise matching on a single skill
    for category in skill_categories:
        for skill in category.get("skills") or []:
            content = (
                f"Skill: {skill['name']}. Category: {category['title']}. "
                f"Proficiency: {skill['proficiency']}%. {skill.get('details') or ''}"
            ).strip()

            documents.append(KnowledgeDocument(
                id=f"skill-{category['id']}-{slugify(skill['name'])}",
                content=content,
                metadata=DocumentMetadata(
                    title=skill["name"],
                    type=DocumentType.SKILL,
                    category=category["id"],
                    tags=[skill["name"], category["title"]],
                    source="skills",
                ),
            ))

    return documents


# ── Experience ──

def build_experience_documents(experiences: List[Dict[str, Any]]) -> List[KnowledgeDocument]:
    documents = []

    for exp in experiences:
        content = _lines(
            f"Experience: {exp['title']} at {exp['organization']}",
            f"Period: {exp.get('period', '')}",
            f"Type: {exp.get('type', '')}",
            f"Description: {exp.get('description', '')}",
        )
        highlights = exp.get("highlights") or []
        if highlights:
            content += "\n\nHighlights:\n" + _bullets(highlights)

        documents.append(KnowledgeDocument(
            id=f"experience-{exp['id']}",
            content=content,
            metadata=DocumentMetadata(
                title=f"{exp['title']} at {exp['organization']}",
                type=DocumentType.EXPERIENCE,
                category=exp.get("type"),
                tags=[t for t in (exp.get("organization"), exp.get("type")) if t],
                source="experience",
            ),
        ))

    return documents


# ── Persona ──

def build_persona_documents(persona: Dict[str, Any]) -> List[KnowledgeDocument]:
    """Identity, expertise, approach and current-work documents.

    Each document is only produced when its part of the persona is present.
    """
    documents = []
    identity = persona.get("identity") or {}
    name = identity.get("preferred_name") or identity.get("full_name") or "the portfolio owner"

    if identity:
        personality = persona.get("personality") or {}
        content = _lines(
            f"About {name}:",
            f"Name: {identity.get('full_name', name)}",
            f"Role: {identity.get('role', '')}",
            f"Tagline: {identity['tagline']}" if identity.get("tagline") else None,
            f"Location: {identity['location']}" if identity.get("location") else None,
        )
        if personality:
            content += (
                f"\n\nPersonality Traits: {_joined(personality.get('traits'))}"
                f"\nCommunication Style: {_joined(personality.get('communication_style'))}"
            )
        documents.append(KnowledgeDocument(
            id="persona-identity",
            content=content,
            metadata=DocumentMetadata(
                title=f"About {name}",
                type=DocumentType.PERSONA,
                tags=["identity", "about", "bio"],
                source="persona",
            ),
        ))

    expertise = persona.get("expertise")
    if expertise:
        content = (
            f"{name}'s Areas of Expertise:\n\n"
            f"Primary Expertise: {_joined(expertise.get('primary'))}\n"
            f"Secondary Skills: {_joined(expertise.get('secondary'))}\n"
            f"Research Interests: {_joined(expertise.get('interests'))}"
        )
        documents.append(KnowledgeDocument(
            id="persona-expertise",
            content=content,
            metadata=DocumentMetadata(
                title="Expertise Areas",
                type=DocumentType.PERSONA,
                tags=["expertise", "skills", "interests"],
                source="persona",
            ),
        ))

    approach = persona.get("problem_solving_approach")
    if approach:
        documents.append(KnowledgeDocument(
            id="persona-approach",
            content=f"How {name} Approaches Problems:\n{approach.strip()}",
            metadata=DocumentMetadata(
                title="Problem-Solving Approach",
                type=DocumentType.PERSONA,
                tags=["methodology", "approach", "work style"],
                source="persona",
            ),
        ))

    current = persona.get("current_work")
    if current:
        content = (
            f"{name}'s Current Work and Ideas:\n\n"
            f"Current Projects: {_joined(current.get('projects'))}\n"
            f"Exploring Ideas: {_joined(current.get('ideas'))}"
        )
        documents.append(KnowledgeDocument(
            id="persona-current-work",
            content=content,
            metadata=DocumentMetadata(
                title="Current Work",
                type=DocumentType.PERSONA,
                tags=["current", "projects", "ideas"],
                source="persona",
            ),
        ))

    return documents


# ── Free-text knowledge sections ──

def build_section_documents(
    sections: List[Dict[str, Any]],
    prefix: str,
    source: str,
) -> List[KnowledgeDocument]:
    """One persona document per free-text section ("Title:\\ncontent")."""
    return [
        KnowledgeDocument(
            id=f"{prefix}-{section['id']}",
            content=f"{section['title']}:\n{section['content'].strip()}",
            metadata=DocumentMetadata(
                title=section["title"],
                type=DocumentType.PERSONA,
                tags=section["id"].split("-"),
                source=source,
            ),
        )
        for section in sections
    ]


def build_guidelines_document(guidelines: Dict[str, Any]) -> KnowledgeDocument:
    """Voice, phrasing and sensitive-topic guidance for the assistant."""
    sensitive = [f"{t['topic']}: {t['guidance']}" for t in guidelines.get("sensitive_topics") or []]
    content = "\n\n".join([
        "RAG Guidelines for AI Clone:",
        "Voice & Tone:\n" + _bullets(guidelines.get("voice_and_tone") or []),
        "Key Phrases to Use:\n" + _bullets(guidelines.get("key_phrases") or [], quote=True),
        "Decision Framework:\n" + _bullets(guidelines.get("decision_framework") or []),
        "Sensitive Topics:\n" + _bullets(sensitive),
    ])

    return KnowledgeDocument(
        id="profile-rag-guidelines",
        content=content.strip(),
        metadata=DocumentMetadata(
            title="RAG Guidelines",
            type=DocumentType.PERSONA,
            tags=["guidelines", "voice", "tone", "communication"],
            source="profile",
        ),
    )


# ── Pricing / estimates ──

def build_estimate_documents(estimates: Dict[str, Any]) -> List[KnowledgeDocument]:
    """Service types, add-on features grouped by project type, complexity levels.

    Pricing is grouped with professional knowledge under the skill type.
    """
    documents = []

    for service in estimates.get("project_types") or []:
        price = service["base_price"]
        weeks = service["base_weeks"]
        documents.append(KnowledgeDocument(
            id=f"estimate-type-{service['id']}",
            content=(
                f"Service Type: {service['name']}\n"
                f"Description: {service.get('description', '')}\n"
                f"Base Price: ${price['min']} - ${price['max']}\n"
                f"Timeline: {weeks['min']} - {weeks['max']} weeks"
            ),
            metadata=DocumentMetadata(
                title=f"{service['name']} Pricing",
                type=DocumentType.SKILL,
                category="pricing",
                source="estimates",
            ),
        ))

    # Group features by their primary project type; dict keeps first-seen order
    features_by_type: Dict[str, List[Dict[str, Any]]] = {}
    for feature in estimates.get("features") or []:
        applicable = feature.get("applicable_project_types") or []
        key = applicable[0] if applicable else "general"
        features_by_type.setdefault(key, []).append(feature)

    for project_type, features in features_by_type.items():
        feature_list = "\n".join(
            f"- {f['name']}: +${f['price_add']['min']}-{f['price_add']['max']} "
            f"(+{f['weeks_add']} weeks). {f.get('description', '')}".rstrip()
            for f in features
        )
        documents.append(KnowledgeDocument(
            id=f"estimate-features-{project_type}",
            content=f"Add-on Features for {project_type} Projects:\n\n{feature_list}",
            metadata=DocumentMetadata(
                title=f"{project_type} Features Pricing",
                type=DocumentType.SKILL,
                category="pricing",
                source="estimates",
            ),
        ))

    levels = estimates.get("complexity_levels") or []
    if levels:
        complexity_text = "\n".join(
            f"- {c['name']}: {c['multiplier']}x multiplier. {c.get('description', '')}".rstrip()
            for c in levels
        )
        documents.append(KnowledgeDocument(
            id="estimate-complexity",
            content=f"Project Complexity Levels & Pricing Multipliers:\n\n{complexity_text}",
            metadata=DocumentMetadata(
                title="Project Complexity Pricing",
                type=DocumentType.SKILL,
                category="pricing",
                source="estimates",
            ),
        ))

    return documents


# ── Testimonials ──

def build_testimonial_documents(testimonials: List[Dict[str, Any]]) -> List[KnowledgeDocument]:
    return [
        KnowledgeDocument(
            id=f"testimonial-{t['id']}",
            content=f"Testimonial from {t['name']} ({t['role']} at {t['company']}):\n\"{t['content']}\"",
            metadata=DocumentMetadata(
                title=f"Testimonial: {t['company']}",
                type=DocumentType.EXPERIENCE,
                category="reviews",
                source="testimonials",
            ),
        )
        for t in testimonials
    ]


# ── Featured repositories and project files ──

def build_repository_documents(repositories: List[Dict[str, Any]]) -> List[KnowledgeDocument]:
    return [
        KnowledgeDocument(
            id=f"github-{repo['id']}",
            content=f"GitHub Project: {repo['title']}\n\n{repo['summary'].strip()}",
            metadata=DocumentMetadata(
                title=repo["title"],
                type=DocumentType.PROJECT,
                category="github-major-project",
                tags=list(repo.get("tags") or []),
                source=f"GitHub Repository: {repo['id']}",
            ),
        )
        for repo in repositories
    ]


def build_project_file_documents(files: List[ParsedFile]) -> List[KnowledgeDocument]:
    return [
        KnowledgeDocument(
            id=f"project-doc-{re.sub(r'[^a-zA-Z0-9]', '-', f.filename).lower()}",
            content=f"Project Documentation: {f.title}\n\n{f.content}",
            metadata=DocumentMetadata(
                title=f.title,
                type=DocumentType.PROJECT,
                category="documentation",
                tags=["project", "documentation", f.file_type],
                source=f"project-docs/{f.filename}",
            ),
        )
        for f in files
    ]


# ── Main entry point ──

def _collapse_duplicate_ids(documents: List[KnowledgeDocument]) -> List[KnowledgeDocument]:
    """Last write wins for repeated ids; the first position is kept."""
    by_id: Dict[str, KnowledgeDocument] = {}
    for doc in documents:
        if doc.id in by_id:
            logger.warning(f"[DOC_BUILDER] Duplicate document id {doc.id!r}, keeping the last one")
        by_id[doc.id] = doc
    return list(by_id.values())


def build_knowledge_base(
    source: Dict[str, Any],
    project_files: Optional[List[ParsedFile]] = None,
) -> List[KnowledgeDocument]:
    """Build the complete document list from the structured source.

    Args:
        source: Structured records, as loaded by load_knowledge_source().
        project_files: Optional files parsed by document_parser.

    Returns:
        Documents in a fixed order: projects, skills, experience, persona,
        profile sections and guidelines, life sections, media sections,
        estimates, testimonials, repositories, project files.
    """
    profile = source.get("profile") or {}
    documents: List[KnowledgeDocument] = []

    documents += build_project_documents(source.get("projects") or [])
    documents += build_skill_documents(source.get("skill_categories") or [])
    documents += build_experience_documents(source.get("experiences") or [])
    documents += build_persona_documents(source.get("persona") or {})
    documents += build_section_documents(profile.get("sections") or [], "profile", "profile")
    if profile.get("rag_guidelines"):
        documents.append(build_guidelines_document(profile["rag_guidelines"]))
    documents += build_section_documents((source.get("life") or {}).get("sections") or [], "life", "life")
    documents += build_section_documents((source.get("media") or {}).get("sections") or [], "media", "media")
    documents += build_estimate_documents(source.get("estimates") or {})
    documents += build_testimonial_documents(source.get("testimonials") or [])
    documents += build_repository_documents(source.get("repositories") or [])
    documents += build_project_file_documents(project_files or [])

    documents = _collapse_duplicate_ids(documents)
    summary = summarize_documents(documents)
    logger.info(f"[DOC_BUILDER] Knowledge base built: {summary['total']} documents {summary['by_type']}")
    return documents


def summarize_documents(documents: List[KnowledgeDocument]) -> Dict[str, Any]:
    """Count documents in total and per type."""
    by_type: Dict[str, int] = {}
    for doc in documents:
        key = doc.metadata.type.value
        by_type[key] = by_type.get(key, 0) + 1
    return {"total": len(documents), "by_type": by_type}
