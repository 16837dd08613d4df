"""
Paper story service: enrichment, structured story generation and Storybook export.

Enrichment and generation are deterministic stand-ins built from the paper
itself and a fixed snippet catalogue; no external sources are contacted.
"""

import io
import re
import base64
import logging
import zipfile
from typing import Dict, List, Optional

from jinja2 import Environment, PackageLoader

from .errors import ValidationError
from .schemas import (
    Claim,
    ClaimEvidenceStory,
    ComparisonItem,
    ComparisonStory,
    EnrichmentSnippet,
    ExplainerStory,
    ExportBundle,
    ExportFile,
    GlossaryTerm,
    PaperSummary,
    Section,
    StoryOptions,
    TimelineEvent,
    TimelineStory,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_SNIPPETS = 6
DEFAULT_CLAIM_COUNT = 3

EXPLAINER_HEADINGS = ["Introduction", "Methodology", "Key Findings", "Implications"]

COMPONENT_NAMES = {
    "explainer": "Explainer",
    "claim_evidence": "ClaimEvidence",
    "timeline": "Timeline",
    "comparison": "Comparison",
}

EXPORT_FORMATS = {
    "mdx": ("story.mdx.j2", "stories/{slug}.stories.mdx"),
    "csf": ("story.csf.j2", "stories/{slug}.stories.tsx"),
}

SNIPPET_CATALOGUE = [
    EnrichmentSnippet(
        id="s1",
        title="Breakthrough in Genomic Analysis Methods",
        excerpt="Recent advances in machine learning have significantly improved the accuracy of genomic "
                "variant detection, showing 12% improvement over traditional methods.",
        source="nature.com",
        published_at="2024-11-15",
        included=True,
    ),
    EnrichmentSnippet(
        id="s2",
        title="Large-scale Genomic Data Processing",
        excerpt="New computational frameworks process millions of genomic samples efficiently, enabling "
                "population-scale studies.",
        source="science.org",
        published_at="2024-10-22",
        included=True,
    ),
    EnrichmentSnippet(
        id="s3",
        title="Clinical Applications of AI in Medicine",
        excerpt="AI-driven diagnostic tools are being validated in clinical settings, with promising results "
                "for early disease detection.",
        source="cell.com",
        published_at="2024-09-30",
        included=False,
    ),
    EnrichmentSnippet(
        id="s4",
        title="Ethical Considerations in Genomic Research",
        excerpt="Researchers discuss ethical frameworks for handling large-scale genetic data.",
        source="nejm.org",
        published_at="2024-08-14",
        included=True,
    ),
    EnrichmentSnippet(
        id="s5",
        title="Future Directions in Precision Medicine",
        excerpt="Emerging technologies promise personalized treatment based on individual genetic profiles.",
        source="thelancet.com",
        published_at="2024-07-03",
        included=False,
    ),
    EnrichmentSnippet(
        id="s6",
        title="Regulatory Framework for AI in Healthcare",
        excerpt="Agencies are drafting guidelines for approving and monitoring AI-based medical devices.",
        source="fda.gov",
        published_at="2024-06-18",
        included=True,
    ),
]

_env = Environment(
    loader=PackageLoader("storyshelf", "templates"),
    autoescape=False,
    keep_trailing_newline=True,
    trim_blocks=True,
    lstrip_blocks=True,
)


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in re.split(r"(?<=[.!?])\s+", text.strip()) if s.strip()]


def slugify(title: Optional[str]) -> str:
    slug = re.sub(r"[^a-zA-Z0-9]", "_", title or "").strip("_")
    return slug or "Paper"


# ─── Enrichment ───

def enrich(summary: str, doi: Optional[str] = None, url: Optional[str] = None,
           max_snippets: Optional[int] = None) -> List[EnrichmentSnippet]:
    """Return related-coverage snippets for a paper summary."""
    if not summary or not summary.strip():
        raise ValidationError("Missing required field: summary", ["summary"])
    limit = max_snippets or DEFAULT_MAX_SNIPPETS
    logger.info(f"Enriching paper (doi={doi}, url={url}) with up to {limit} snippets")
    return [s.model_copy() for s in SNIPPET_CATALOGUE[:limit]]


# ─── Story generation ───

def _chunk(items: List[str], n: int) -> List[List[str]]:
    n = max(1, min(n, len(items)))
    size, extra = divmod(len(items), n)
    chunks, start = [], 0
    for i in range(n):
        end = start + size + (1 if i < extra else 0)
        chunks.append(items[start:end])
        start = end
    return chunks


def _explainer(paper: PaperSummary, snippets, options: StoryOptions) -> ExplainerStory:
    sentences = split_sentences(paper.summary) or [paper.summary]
    chunks = _chunk(sentences, len(EXPLAINER_HEADINGS))
    sections = [Section(heading=h, body=" ".join(c)) for h, c in zip(EXPLAINER_HEADINGS, chunks)]
    return ExplainerStory(paper=paper, snippets=snippets, sections=sections)


def _claim_evidence(paper: PaperSummary, snippets, options: StoryOptions) -> ClaimEvidenceStory:
    sentences = split_sentences(paper.summary) or [paper.summary]
    count = options.claim_count or DEFAULT_CLAIM_COUNT
    claims = []
    for i, sentence in enumerate(sentences[:count]):
        evidence = None
        if snippets:
            snippet = snippets[i % len(snippets)]
            evidence = f"{snippet.title} ({snippet.source})"
        claims.append(Claim(
            id=f"c{i + 1}",
            text=sentence,
            evidence=evidence,
            confidence=round(max(0.5, 0.85 - 0.07 * i), 2),
        ))

    glossary = None
    if options.include_glossary is not False and paper.tags:
        glossary = [
            GlossaryTerm(term=tag, definition=f"A key concept in {paper.title or 'this paper'}")
            for tag in paper.tags
        ]
    return ClaimEvidenceStory(paper=paper, snippets=snippets, claims=claims, glossary=glossary)


def _timeline(paper: PaperSummary, snippets, options: StoryOptions) -> TimelineStory:
    dated = sorted(snippets, key=lambda s: s.published_at or "")
    events = [TimelineEvent(date=s.published_at, label=s.title, detail=s.excerpt) for s in dated]
    sentences = split_sentences(paper.summary)
    events.append(TimelineEvent(
        date="Current",
        label=paper.title or "Publication",
        detail=sentences[0] if sentences else paper.summary,
    ))
    return TimelineStory(paper=paper, snippets=snippets, events=events)


def _comparison(paper: PaperSummary, snippets, options: StoryOptions) -> ComparisonStory:
    axes = ["Approach", "Evidence", "Sources"]
    sentences = split_sentences(paper.summary)
    items = [
        ComparisonItem(name="Prior work", values={
            "Approach": "Established methods",
            "Evidence": f"{len(snippets)} related reports",
            "Sources": ", ".join(s.source for s in snippets) or "None",
        }),
        ComparisonItem(name=paper.title or "This paper", values={
            "Approach": sentences[0] if sentences else paper.summary,
            "Evidence": "Primary study",
            "Sources": paper.doi or paper.url or "Unpublished",
        }),
    ]
    return ComparisonStory(paper=paper, snippets=snippets, axes=axes, items=items)


_GENERATORS = {
    "explainer": _explainer,
    "claim_evidence": _claim_evidence,
    "timeline": _timeline,
    "comparison": _comparison,
}


def generate_story(story_type: str, paper: PaperSummary, snippets: List[EnrichmentSnippet],
                   options: Optional[StoryOptions] = None):
    """Build a structured story of the requested type from the included snippets."""
    generator = _GENERATORS.get(story_type)
    if generator is None:
        raise ValidationError(f"Unknown story type: {story_type}", ["storyType"])
    included = [s for s in snippets if s.included]
    return generator(paper, included, options or StoryOptions())


# ─── Export ───

def story_props(story) -> Dict[str, object]:
    """Component props for a story, in wire (camelCase) form."""
    data = story.to_json_dict()
    if story.story_type == "explainer":
        return {"sections": data["sections"]}
    if story.story_type == "claim_evidence":
        props = {"claims": data["claims"]}
        if data.get("glossary"):
            props["glossary"] = data["glossary"]
        return props
    if story.story_type == "timeline":
        return {"events": data["events"]}
    return {"axes": data["axes"], "items": data["items"]}


def _zip_data_url(files: List[ExportFile]) -> str:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for f in files:
            archive.writestr(f.path, f.content)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:application/zip;base64,{encoded}"


def export_story(story, formats: List[str]) -> ExportBundle:
    """Render Storybook files for a story and bundle them as a zip data URL."""
    unknown = [f for f in formats if f not in EXPORT_FORMATS]
    if unknown:
        raise ValidationError(f"Unsupported export formats: {', '.join(unknown)}", ["formats"])
    if not formats:
        raise ValidationError("At least one export format is required", ["formats"])

    component = COMPONENT_NAMES[story.story_type]
    slug = slugify(story.paper.title)
    context = {
        "story": story,
        "component": component,
        "slug": slug,
        "props": story_props(story),
        "excerpt": story.paper.summary[:200],
    }

    files = []
    for fmt in formats:
        template_name, path = EXPORT_FORMATS[fmt]
        files.append(ExportFile(path=path.format(slug=slug), content=_env.get_template(template_name).render(context)))
    files.append(ExportFile(
        path=f"src/components/{component}.tsx",
        content=_env.get_template(f"components/{component}.tsx.j2").render(context),
    ))

    logger.info(f"Exported {story.story_type} story as {formats} ({len(files)} files)")
    return ExportBundle(zip_url=_zip_data_url(files), files=files)
