"""
Client-side driver for the paper story flow: new -> enrich -> configure -> preview -> export.
"""

import uuid
import logging
from typing import List, Optional

from pydantic import TypeAdapter

from .errors import ValidationError
from .schemas import ExportBundle, PaperSummary, StoryConfig, StorySchema
from .storage import ProjectStore

logger = logging.getLogger(__name__)

_story_adapter = TypeAdapter(StorySchema)


class PaperFlow:
    def __init__(self, api, store: ProjectStore):
        self.api = api
        self.store = store

    @property
    def state(self):
        return self.store.state

    def start(self, summary: str, title: Optional[str] = None, doi: Optional[str] = None,
              url: Optional[str] = None, tags: Optional[List[str]] = None) -> PaperSummary:
        if not summary or not summary.strip():
            raise ValidationError("Missing required field: summary", ["summary"])
        paper = PaperSummary(id=uuid.uuid4().hex[:12], title=title, summary=summary.strip(),
                             doi=doi, url=url, tags=tags or [])
        self.store.reset()
        self.store.update(paper=paper, current_step="enrich")
        return paper

    async def enrich(self, max_snippets: int = 6):
        paper = self._require_paper()
        snippets = await self.api.enrich(paper.summary, paper.doi, paper.url, max_snippets)
        self.store.update(enrichment_snippets=snippets)
        return snippets

    def toggle_snippet(self, snippet_id: str):
        self.store.update(enrichment_snippets=[
            s.model_copy(update={"included": not s.included}) if s.id == snippet_id else s
            for s in self.state.enrichment_snippets
        ])

    def configure(self, config: StoryConfig):
        self._require_paper()
        self.store.update(config=config, current_step="configure")

    async def generate(self):
        paper = self._require_paper()
        config = self.state.config
        if config is None:
            raise ValidationError("Choose a story type before generating", ["storyType"])
        data = await self.api.generate_story(config.story_type, paper, self.state.enrichment_snippets,
                                             config.options)
        story = _story_adapter.validate_python(data)
        self.store.update(story=story, current_step="preview")
        return story

    async def export(self, formats: List[str]) -> ExportBundle:
        story = self.state.story
        if story is None:
            raise ValidationError("Generate a story before exporting", ["story"])
        bundle = await self.api.export(story.to_json_dict(), formats)
        self.store.update(current_step="export")
        logger.info(f"Exported {len(bundle.files)} files")
        return bundle

    def reset(self):
        self.store.reset()

    def _require_paper(self) -> PaperSummary:
        if self.state.paper is None:
            raise ValidationError("Start a project with a paper summary first", ["paper"])
        return self.state.paper
