"""
Pydantic models shared by the API, the orchestrator and the persisted stores.

Wire and storage formats use camelCase field names; Python code uses the
snake_case attribute names.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .config import DEFAULT_PAGE_COUNT, DEFAULT_TEXT_LENGTH, MAX_PAGE_COUNT, MIN_PAGE_COUNT
from .prompts import ContentType


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Proficiency(str, Enum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    EXPERT = "Expert"


class SourceType(str, Enum):
    ACADEMIC_PAPERS = "Academic Papers"
    NEWSLETTERS = "Existing Newsletters"


class GenerationRequest(CamelModel):
    """One validated generation request. Built fresh per call."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    topic: str = Field(min_length=1)
    proficiency_level: Proficiency
    source_type: SourceType
    content_type: ContentType = ContentType.SUMMARY
    page_count: int = Field(DEFAULT_PAGE_COUNT, ge=MIN_PAGE_COUNT, le=MAX_PAGE_COUNT)


# ─── Storybook / meme state ───

class StoryPage(CamelModel):
    """A page owned by the session's storybook or a library entry.

    At most one of `image_loading` and a set `image_url` holds at a time.
    """

    id: int
    title: str = ""
    content: str = ""
    image_description: Optional[str] = None
    image_url: Optional[str] = None
    image_loading: bool = False

    def mark_loading(self) -> "StoryPage":
        return self.model_copy(update={"image_url": None, "image_loading": True})

    def resolve_image(self, image_url: str) -> "StoryPage":
        return self.model_copy(update={"image_url": image_url, "image_loading": False})

    @property
    def image_prompt(self) -> str:
        return self.image_description or self.content


class MemeState(CamelModel):
    text: str = ""
    image_url: Optional[str] = None
    image_loading: bool = False


LibraryKind = Literal["storybook", "meme"]


class LibraryEntry(CamelModel):
    id: int
    topic: str
    summary: str = ""
    storybook: List[StoryPage] = Field(default_factory=list)
    kind: LibraryKind = "storybook"

    @property
    def is_meme(self) -> bool:
        return self.kind == "meme"


class SessionState(CamelModel):
    """The single in-progress project, persisted across reloads."""

    current_storybook: List[StoryPage] = Field(default_factory=list)
    current_topic: str = ""
    current_summary: str = ""
    current_step: int = Field(1, ge=1, le=6)
    current_text_length: str = DEFAULT_TEXT_LENGTH
    current_meme_data: MemeState = Field(default_factory=MemeState)
    proficiency: str = Proficiency.BEGINNER.value
    source: str = SourceType.ACADEMIC_PAPERS.value
    scroll_direction: str = "sidescroll"
    error_message: str = ""
    # Bumped whenever the session is cleared or its storybook replaced;
    # in-flight image results from an older generation are dropped.
    generation: int = 0


# ─── LLM output shapes ───

class StorybookPage(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: Optional[int] = None
    title: str
    content: str
    image_description: Optional[str] = None


class MemeOption(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str = Field(min_length=1)
    sarcasm_level: str = "low"


# ─── API request bodies ───

class GenerateContentRequest(CamelModel):
    topic: Optional[str] = None
    proficiency: Optional[str] = None
    source: Optional[str] = None
    type: str = ContentType.SUMMARY.value
    page_count: int = DEFAULT_PAGE_COUNT


class GenerateImageRequest(CamelModel):
    prompt: Optional[str] = None
    page_id: Optional[Union[int, str]] = None


# ─── Paper story variant ───

StoryType = Literal["explainer", "claim_evidence", "timeline", "comparison"]


class PaperSummary(CamelModel):
    id: str
    title: Optional[str] = None
    summary: str
    doi: Optional[str] = None
    url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class EnrichmentSnippet(CamelModel):
    id: str
    title: str
    excerpt: str
    source: str
    published_at: Optional[str] = None
    included: bool = True


class Claim(CamelModel):
    id: str
    text: str
    evidence: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0, le=1)


class Section(CamelModel):
    heading: str
    body: str


class GlossaryTerm(CamelModel):
    term: str
    definition: str


class TimelineEvent(CamelModel):
    date: Optional[str] = None
    label: str
    detail: str


class ComparisonItem(CamelModel):
    name: str
    values: Dict[str, str] = Field(default_factory=dict)


class StoryBase(CamelModel):
    paper: PaperSummary
    snippets: List[EnrichmentSnippet] = Field(default_factory=list)


class ExplainerStory(StoryBase):
    story_type: Literal["explainer"] = "explainer"
    sections: List[Section]


class ClaimEvidenceStory(StoryBase):
    story_type: Literal["claim_evidence"] = "claim_evidence"
    claims: List[Claim]
    glossary: Optional[List[GlossaryTerm]] = None


class TimelineStory(StoryBase):
    story_type: Literal["timeline"] = "timeline"
    events: List[TimelineEvent]


class ComparisonStory(StoryBase):
    story_type: Literal["comparison"] = "comparison"
    axes: List[str]
    items: List[ComparisonItem]


StorySchema = Annotated[
    Union[ExplainerStory, ClaimEvidenceStory, TimelineStory, ComparisonStory],
    Field(discriminator="story_type"),
]


class StoryOptions(CamelModel):
    claim_count: Optional[int] = Field(None, ge=1)
    include_figures: Optional[bool] = None
    include_glossary: Optional[bool] = None
    tone: Optional[Literal["neutral", "teaching"]] = None


class StoryConfig(CamelModel):
    story_type: StoryType
    options: StoryOptions = Field(default_factory=StoryOptions)


ProjectStep = Literal["new", "enrich", "configure", "preview", "export"]


class ProjectState(CamelModel):
    paper: Optional[PaperSummary] = None
    enrichment_snippets: List[EnrichmentSnippet] = Field(default_factory=list)
    config: Optional[StoryConfig] = None
    story: Optional[StorySchema] = None
    current_step: ProjectStep = "new"


class EnrichRequest(CamelModel):
    summary: str = Field(min_length=1)
    doi: Optional[str] = None
    url: Optional[str] = None
    max_snippets: Optional[int] = Field(None, ge=1)


class GenerateStoryRequest(CamelModel):
    story_type: StoryType
    paper: PaperSummary
    snippets: List[EnrichmentSnippet] = Field(default_factory=list)
    options: Optional[StoryOptions] = None


class ExportFile(CamelModel):
    path: str
    content: str


class ExportRequest(CamelModel):
    story: StorySchema
    formats: List[str] = Field(default_factory=lambda: ["mdx", "csf"])


class ExportBundle(CamelModel):
    zip_url: str
    files: List[ExportFile]
