"""
Keeps one browser session's generation flow alive between Streamlit reruns.

Streamlit re-executes the script on every interaction, so the stores, the API
client and the orchestrator are built once and held on a SessionRunner in
st.session_state. Actions run on the runner's event loop, which lives on a
daemon thread; image requests started by one action keep resolving while the
script renders and reruns.
"""

import asyncio
import logging
import threading
from concurrent.futures import Future
from typing import Callable, Optional

from .api_client import StoryshelfApi
from .config import STORYSHELF_API_URL
from .orchestrator import GenerationOrchestrator
from .storage import LibraryStore, SessionStore

logger = logging.getLogger(__name__)


class SessionRunner:
    def __init__(self, storage, api=None, base_url: str = STORYSHELF_API_URL):
        self.session = SessionStore(storage)
        self.library = LibraryStore(storage)
        self._owns_api = api is None
        self.api = api if api is not None else StoryshelfApi(base_url)
        self.orchestrator = GenerationOrchestrator(self.api, self.session, self.library)

        self._active = set()
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._loop.run_forever, name="storyshelf-session", daemon=True)
        self._thread.start()

    def _schedule(self, action: Callable) -> Future:
        async def _run():
            result = action(self.orchestrator)
            if asyncio.iscoroutine(result):
                result = await result
            return result

        future = asyncio.run_coroutine_threadsafe(_run(), self._loop)
        self._active.add(future)
        future.add_done_callback(self._finished)
        return future

    def _finished(self, future: Future):
        if not future.cancelled() and future.exception() is not None:
            logger.error(f"Session action failed: {future.exception()!r}")
        self._active.discard(future)

    def call(self, action: Callable, timeout: Optional[float] = None):
        """Run `action(orchestrator)` on the session loop and return its result.

        Image requests the action starts are not waited for.
        """
        return self._schedule(action).result(timeout)

    def start(self, action: Callable) -> Future:
        """Run `action(orchestrator)` on the session loop without waiting for it."""
        return self._schedule(action)

    @property
    def busy(self) -> bool:
        """True while an action or any image request is still running."""
        return bool(self._active) or self.orchestrator.images_pending

    def wait_idle(self, timeout: Optional[float] = None):
        for future in list(self._active):
            future.result(timeout)
        self.call(lambda orch: orch.wait_for_images(), timeout)

    def close(self):
        if self._owns_api:
            self.call(lambda orch: self.api.aclose())
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)
        self._loop.close()
