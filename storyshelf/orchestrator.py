"""
Client-side generation flow: topic -> options -> summary -> storybook or meme -> bookshelf.

The orchestrator owns the step state machine and every call to the API. Text
stages are all-or-nothing and roll the flow back one step on failure. Image
requests fan out one per page through a bounded semaphore; each resolves only
its own page, and always to a URL (the failure placeholder if need be).
"""

import asyncio
import logging
from enum import IntEnum
from typing import Iterable, List, Optional, Tuple

from .config import IMAGE_CONCURRENCY, MEME_PRESET, SOURCE_TYPES, TEXT_LENGTH_PRESETS
from .errors import MalformedContentError, RateLimitedError, StoryshelfError
from .llm_service import FAILED_IMAGE_URL, is_failure_placeholder
from .prompts import ContentType, meme_image_prompt
from .sanitizer import clean_summary, parse_meme_options, parse_storybook, select_meme_caption
from .schemas import LibraryEntry, MemeState, Proficiency, SourceType, StoryPage
from .storage import LibraryStore, SessionStore

logger = logging.getLogger(__name__)

# Defaults used when regenerating captions for saved memes
SAVED_MEME_PROFICIENCY = Proficiency.BEGINNER.value
SAVED_MEME_SOURCE = SourceType.ACADEMIC_PAPERS.value

MEME_FALLBACK_CAPTION = "Couldn't generate a witty caption!"


class Step(IntEnum):
    TOPIC_ENTRY = 1
    OPTIONS_ENTRY = 2
    SUMMARY_LOADING = 3
    SUMMARY_READY = 4
    CONTENT_DISPLAY = 5
    LIBRARY_VIEW = 6


def _failure_message(error: StoryshelfError, fallback: str) -> str:
    if isinstance(error, RateLimitedError):
        return f"Rate limit exceeded. {error.message}"
    if isinstance(error, MalformedContentError):
        return "Failed to parse the generated content. The AI returned invalid data."
    return error.message or fallback


class GenerationOrchestrator:
    """Drives one client's session through the generation steps.

    One instance corresponds to one mount of the UI: the auto-repair guard
    and the in-flight bookkeeping live here, not in the persisted session.
    """

    def __init__(self, api, session: SessionStore, library: LibraryStore,
                 image_concurrency: int = IMAGE_CONCURRENCY):
        self.api = api
        self.session = session
        self.library = library
        self.viewing_book_id: Optional[int] = None
        self._semaphore = asyncio.Semaphore(image_concurrency)
        self._pending = set()
        self._auto_regenerated = False
        self._meme_in_flight = False

    # ─── State helpers ───

    @property
    def state(self):
        return self.session.state

    @property
    def step(self) -> Step:
        return Step(self.state.current_step)

    @property
    def error_message(self) -> str:
        return self.state.error_message

    @property
    def is_meme(self) -> bool:
        return self.state.current_text_length == MEME_PRESET

    @property
    def viewing_book(self) -> Optional[LibraryEntry]:
        if self.viewing_book_id is None:
            return None
        return self.library.get(self.viewing_book_id)

    @property
    def images_pending(self) -> bool:
        return bool(self._pending)

    def _goto(self, step: Step, error: str = ""):
        self.session.update(current_step=int(step), error_message=error)

    def _is_current(self, generation: int) -> bool:
        return generation == self.state.generation

    # ─── Steps 1-2 ───

    def set_topic(self, topic: str) -> bool:
        topic = (topic or "").strip()
        if not topic:
            self.session.update(error_message="Please enter a topic.")
            return False
        self.session.update(current_topic=topic)
        self._goto(Step.OPTIONS_ENTRY)
        return True

    def set_options(self, proficiency=None, source=None, text_length=None, scroll_direction=None):
        fields = {
            "proficiency": proficiency,
            "source": source,
            "current_text_length": text_length,
            "scroll_direction": scroll_direction,
        }
        self.session.update(**{k: v for k, v in fields.items() if v is not None})

    def options_complete(self) -> bool:
        s = self.state
        return bool(
            s.proficiency and s.source and s.scroll_direction
            and s.current_text_length in TEXT_LENGTH_PRESETS
            and s.source in SOURCE_TYPES
        )

    # ─── Step 3: summary ───

    async def generate_summary(self) -> bool:
        if self.step is not Step.OPTIONS_ENTRY:
            logger.warning(f"generate_summary called at step {self.step}")
            return False
        if not self.options_complete():
            self.session.update(error_message="Please select all options.")
            return False

        self._goto(Step.SUMMARY_LOADING)
        s = self.state
        try:
            raw = await self.api.generate_content(s.current_topic, s.proficiency, s.source,
                                                  ContentType.SUMMARY.value)
        except StoryshelfError as e:
            logger.error(f"Summary generation failed: {e.message}")
            self._goto(Step.OPTIONS_ENTRY, _failure_message(e, "Failed to generate summary"))
            return False

        summary = clean_summary(raw)
        if not summary:
            self._goto(Step.OPTIONS_ENTRY, "Failed to generate summary. Please try again.")
            return False

        self.session.update(current_summary=summary)
        self._goto(Step.SUMMARY_READY)
        return True

    # ─── Step 5: storybook or meme ───

    async def generate_content(self) -> bool:
        """Branch to meme or paginated storybook generation by the length preset."""
        if self.step is not Step.SUMMARY_READY:
            logger.warning(f"generate_content called at step {self.step}")
            return False
        if self.is_meme:
            self._goto(Step.CONTENT_DISPLAY)
            return await self.generate_meme()
        return await self.generate_storybook(TEXT_LENGTH_PRESETS[self.state.current_text_length])

    async def generate_storybook(self, page_count: int) -> bool:
        """Request the pages, then start one image request per page.

        Returns once the pages are in the session; images keep resolving in
        the background (see wait_for_images).
        """
        self._goto(Step.CONTENT_DISPLAY)
        self.session.set_meme(MemeState())
        self.session.set_storybook([])
        generation = self.state.generation
        s = self.state

        try:
            raw = await self.api.generate_content(s.current_topic, s.proficiency, s.source,
                                                  ContentType.STORYBOOK.value, page_count)
            parsed = parse_storybook(raw)
        except MalformedContentError as e:
            logger.error(f"Storybook parsing failed: {e.reason}\nRaw content: {e.raw_text}")
            self._goto(Step.SUMMARY_READY, "Failed to parse the generated story. The AI returned invalid data.")
            return False
        except StoryshelfError as e:
            logger.error(f"Storybook generation failed: {e.message}")
            self._goto(Step.SUMMARY_READY, _failure_message(e, "Failed to generate the story. Please try again."))
            return False

        if not self._is_current(generation):
            logger.info("Session replaced while storybook text was generating, dropping result")
            return False

        pages = [
            StoryPage(id=p.id, title=p.title, content=p.content,
                      image_description=p.image_description, image_loading=True)
            for p in parsed
        ]
        self.session.set_pages(pages)
        self._auto_regenerated = True
        self._fan_out_session(generation, [(p.id, p.image_prompt) for p in pages])
        return True

    async def generate_meme(self) -> bool:
        generation = self.state.generation
        self._meme_in_flight = True
        self.session.set_meme(MemeState(image_loading=True))
        s = self.state
        try:
            try:
                raw = await self.api.generate_content(s.current_topic, s.proficiency, s.source,
                                                      ContentType.MEME_TEXT.value)
                caption = select_meme_caption(parse_meme_options(raw))
            except StoryshelfError as e:
                logger.error(f"Meme generation failed: {e.message}")
                if self._is_current(generation):
                    self.session.set_meme(MemeState())
                    self._goto(Step.SUMMARY_READY, _failure_message(e, "Failed to generate meme. Please try again."))
                return False

            if not self._is_current(generation):
                return False
            caption = caption or MEME_FALLBACK_CAPTION
            self.session.set_meme(MemeState(text=caption, image_loading=True))

            image_url = await self._resolve_image(meme_image_prompt(s.current_topic), "meme")
            if not self._is_current(generation):
                return False
            self.session.set_meme(MemeState(text=caption, image_url=image_url))
            return True
        finally:
            self._meme_in_flight = False

    # ─── Image fan-out ───

    async def _resolve_image(self, prompt: str, page_id) -> str:
        """One bounded image request. Any failure resolves to the failure placeholder."""
        async with self._semaphore:
            try:
                return await self.api.generate_image(prompt, page_id)
            except StoryshelfError as e:
                logger.warning(f"Failed to generate image for page {page_id}: {e.message}")
                return FAILED_IMAGE_URL

    async def generate_page_image(self, page_id: int, prompt: str, generation: Optional[int] = None) -> bool:
        """Resolve one session page's image. Stale or orphaned results are dropped."""
        image_url = await self._resolve_image(prompt, page_id)
        if generation is not None and not self._is_current(generation):
            logger.debug(f"Dropping stale image for page {page_id}")
            return False
        return self.session.update_page_image(page_id, image_url)

    async def _library_page_image(self, book_id: int, page_id: int, prompt: str) -> bool:
        image_url = await self._resolve_image(prompt, page_id)
        return self.library.update_page(book_id, page_id, image_url=image_url, image_loading=False)

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def _fan_out_session(self, generation: int, items: Iterable[Tuple[int, str]]) -> List[asyncio.Task]:
        return [self._track(self.generate_page_image(page_id, prompt, generation)) for page_id, prompt in items]

    async def wait_for_images(self):
        """Wait until every image request started by this orchestrator settles."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    # ─── Mount / reload ───

    async def resume(self) -> List[int]:
        """Repair a restored session: regenerate missing images once per mount.

        Returns the ids of pages whose images were re-requested.
        """
        s = self.state
        if s.current_step == Step.SUMMARY_LOADING:
            self._goto(Step.OPTIONS_ENTRY, "Summary generation was interrupted. Please try again.")
            return []
        if s.current_step != Step.CONTENT_DISPLAY:
            return []

        if self.is_meme:
            meme = s.current_meme_data
            if not self._meme_in_flight and not meme.image_url and s.current_topic:
                logger.info(f"Auto-regenerating missing meme for topic: {s.current_topic}")
                await self.generate_meme()
            return []

        if self._auto_regenerated or not s.current_storybook:
            return []

        # Nothing is in flight on a fresh mount, so a stored loading flag is stale too
        needing = [
            p for p in s.current_storybook
            if p.image_loading or not p.image_url or is_failure_placeholder(p.image_url)
        ]
        if not needing:
            return []

        self._auto_regenerated = True
        ids = {p.id for p in needing}
        logger.info(f"Auto-regenerating images for {len(ids)} pages")
        self.session.set_pages([p.mark_loading() if p.id in ids else p for p in s.current_storybook])
        self._fan_out_session(s.generation, [(p.id, p.image_prompt) for p in needing])
        return sorted(ids)

    # ─── Save / reset ───

    def save(self) -> Optional[LibraryEntry]:
        """Copy the session into the bookshelf and clear it."""
        s = self.state
        if self.is_meme:
            meme = s.current_meme_data
            if not meme.text:
                return None
            entry = self.library.add(s.current_topic, f"Meme: {meme.text}", [
                StoryPage(id=1, title=f"{s.current_topic} Meme", content=meme.text, image_url=meme.image_url)
            ], kind="meme")
        else:
            if not s.current_storybook:
                return None
            pages = [p.model_copy(update={"image_loading": False}) for p in s.current_storybook]
            entry = self.library.add(s.current_topic, s.current_summary, pages)
        self.start_over()
        return entry

    def start_over(self):
        self.session.clear()
        self.viewing_book_id = None
        self._auto_regenerated = False

    # ─── Step 6: bookshelf ───

    def open_saved(self, book_id: int) -> bool:
        if self.step is not Step.TOPIC_ENTRY:
            logger.warning(f"open_saved called at step {self.step}")
            return False
        if self.library.get(book_id) is None:
            self.session.update(error_message="That book is no longer on the shelf.")
            return False
        self.viewing_book_id = book_id
        self._auto_regenerated = False
        self._goto(Step.LIBRARY_VIEW)
        return True

    def close_saved(self):
        self.viewing_book_id = None
        self._goto(Step.TOPIC_ENTRY)

    def delete_book(self, book_id: int):
        self.library.remove(book_id)
        if self.viewing_book_id == book_id or self.step is Step.LIBRARY_VIEW:
            self.close_saved()

    async def regenerate_book_images(self, book_id: int) -> bool:
        """Re-run the image fan-out over a saved book's existing pages."""
        book = self.library.get(book_id)
        if book is None:
            return False
        if book.is_meme:
            return await self.regenerate_meme_image(book_id)

        self.library.replace_storybook(book_id, [p.mark_loading() for p in book.storybook])
        tasks = [self._track(self._library_page_image(book_id, p.id, p.image_prompt)) for p in book.storybook]
        await asyncio.gather(*tasks)
        return True

    async def regenerate_meme_image(self, book_id: int) -> bool:
        book = self.library.get(book_id)
        if book is None or not book.is_meme or len(book.storybook) != 1:
            return False
        page = book.storybook[0]
        self.library.update_page(book_id, page.id, image_url=None, image_loading=True)
        return await self._library_page_image(book_id, page.id, meme_image_prompt(book.topic))

    async def regenerate_meme_text(self, book_id: int) -> bool:
        """Replace a saved meme's caption, keeping its image."""
        book = self.library.get(book_id)
        if book is None or not book.is_meme or len(book.storybook) != 1:
            return False
        try:
            raw = await self.api.generate_content(book.topic, SAVED_MEME_PROFICIENCY, SAVED_MEME_SOURCE,
                                                  ContentType.MEME_TEXT.value)
            caption = select_meme_caption(parse_meme_options(raw))
        except StoryshelfError as e:
            logger.error(f"Failed to regenerate meme text: {e.message}")
            self.session.update(error_message=_failure_message(e, "Failed to regenerate meme text."))
            return False
        return self.library.update_page(book_id, book.storybook[0].id,
                                        content=caption or MEME_FALLBACK_CAPTION,
                                        title=f"{book.topic} Meme")
