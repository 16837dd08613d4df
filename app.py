"""
Storyshelf - Streamlit front end for the storybook generation flow.

Talks to the Storyshelf API (STORYSHELF_API_URL) and keeps the session and
bookshelf in JSON files under STORYSHELF_DATA_DIR.
"""

import time
import logging

import streamlit as st
from st_copy_to_clipboard import st_copy_to_clipboard

from storyshelf.config import (
    LOG_LEVEL,
    PROFICIENCY_LEVELS,
    SCROLL_DIRECTIONS,
    SOURCE_TYPES,
    STORYSHELF_DATA_DIR,
    TEXT_LENGTH_PRESETS,
)
from storyshelf.orchestrator import Step
from storyshelf.session_runner import SessionRunner
from storyshelf.storage import default_storage

logging.basicConfig(level=LOG_LEVEL)

SAVED_IMAGE_PLACEHOLDER = "https://placehold.co/600x400/333333/FFFFFF?text=Saved+-+No+Image"
POLL_SECONDS = 0.75


# =============================================================================
# Session runner
# =============================================================================

def get_runner() -> SessionRunner:
    """This browser session's runner, built and resumed on first use."""
    if "runner" not in st.session_state:
        runner = SessionRunner(default_storage(STORYSHELF_DATA_DIR))
        runner.start(lambda orch: orch.resume())
        st.session_state.runner = runner
    return st.session_state.runner


def run(action):
    """Run `action(orchestrator)` and wait for it; its images load in the background."""
    return get_runner().call(action)


def run_in_background(action):
    get_runner().start(action)


# =============================================================================
# UI Components
# =============================================================================

def render_page_image(image_url, loading, caption=None):
    if loading:
        st.info("Generating illustration...")
    elif image_url:
        st.image(image_url, caption=caption, use_container_width=True)
    else:
        st.image(SAVED_IMAGE_PLACEHOLDER, caption=caption, use_container_width=True)


def render_bookshelf(library):
    if not library.entries:
        return
    st.subheader("Bookshelf")
    cols = st.columns(min(len(library.entries), 5))
    for i, book in enumerate(reversed(library.entries)):
        with cols[i % len(cols)]:
            label = ("😂 " if book.is_meme else "📖 ") + book.topic
            if st.button(label, key=f"open_{book.id}", use_container_width=True):
                run(lambda orch: orch.open_saved(book.id))
                st.rerun()


def render_topic_step(state, library):
    st.header("What do you want to learn about?")
    topic = st.text_input("Topic", value=state.current_topic,
                          placeholder="e.g., Quantum Computing, Stoic Philosophy...")
    if st.button("Next", type="primary"):
        run(lambda orch: orch.set_topic(topic))
        st.rerun()
    render_bookshelf(library)


def render_options_step(state):
    st.header(f"Options for: {state.current_topic}")
    proficiency = st.selectbox("Proficiency Level", PROFICIENCY_LEVELS,
                               index=PROFICIENCY_LEVELS.index(state.proficiency)
                               if state.proficiency in PROFICIENCY_LEVELS else 0)
    source = st.selectbox("Source Type", list(SOURCE_TYPES), format_func=SOURCE_TYPES.get)
    lengths = list(TEXT_LENGTH_PRESETS)
    text_length = st.selectbox("Text Output Length", lengths,
                               index=lengths.index(state.current_text_length)
                               if state.current_text_length in lengths else 0)
    scroll = st.radio("Scroll Direction", list(SCROLL_DIRECTIONS), format_func=SCROLL_DIRECTIONS.get,
                      horizontal=True)

    if st.button("Generate Summary", type="primary"):
        run(lambda orch: orch.set_options(proficiency, source, text_length, scroll))
        run_in_background(lambda orch: orch.generate_summary())
        st.rerun()


def render_summary_step(state):
    st.header(f"Summary: {state.current_topic}")
    st.write(state.current_summary)
    st_copy_to_clipboard(state.current_summary, key="copy_summary")

    label = "Generate Meme" if TEXT_LENGTH_PRESETS.get(state.current_text_length) is None else \
        f"Generate {TEXT_LENGTH_PRESETS[state.current_text_length]}-page Storybook"
    if st.button(label, type="primary"):
        run_in_background(lambda orch: orch.generate_content())
        st.rerun()


def render_content_step(state, busy):
    if TEXT_LENGTH_PRESETS.get(state.current_text_length) is None:
        meme = state.current_meme_data
        st.header(f"Your Meme: {state.current_topic}")
        render_page_image(meme.image_url, meme.image_loading)
        if meme.text:
            st.subheader(meme.text)
        save_label = "Save Meme"
    else:
        st.header(state.current_topic)
        if not state.current_storybook:
            st.info("Writing your storybook...")
        if state.scroll_direction == "sidescroll" and state.current_storybook:
            columns = st.columns(len(state.current_storybook))
        else:
            columns = [st.container() for _ in state.current_storybook]
        for column, page in zip(columns, state.current_storybook):
            with column:
                render_page_image(page.image_url, page.image_loading)
                st.markdown(f"**{page.title}**")
                st.write(page.content)
        save_label = "Save to Bookshelf"

    col1, col2 = st.columns([1, 1])
    with col1:
        if st.button(save_label, type="primary", disabled=busy):
            run(lambda orch: orch.save())
            st.rerun()
    with col2:
        if st.button("Start Over"):
            run(lambda orch: orch.start_over())
            st.rerun()


def render_saved_book(runner):
    book = runner.orchestrator.viewing_book
    if book is None:
        run(lambda orch: orch.close_saved())
        st.rerun()
        return

    st.header(book.topic)
    if not book.is_meme:
        st.write(book.summary)
    for page in book.storybook:
        render_page_image(page.image_url, page.image_loading, caption=page.title)
        st.write(page.content)

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        if st.button("Regenerate Images", disabled=runner.busy):
            run_in_background(lambda orch: orch.regenerate_book_images(book.id))
            st.rerun()
    with col2:
        if book.is_meme and st.button("Regenerate Text", disabled=runner.busy):
            with st.spinner("Writing a new caption..."):
                run(lambda orch: orch.regenerate_meme_text(book.id))
            st.rerun()
    with col3:
        if st.button("Delete"):
            run(lambda orch: orch.delete_book(book.id))
            st.rerun()
    with col4:
        if st.button("Back"):
            run(lambda orch: orch.close_saved())
            st.rerun()


# =============================================================================
# Main
# =============================================================================

def main():
    st.set_page_config(page_title="Storyshelf", layout="wide")
    st.title("Storyshelf")

    runner = get_runner()
    state, library = runner.session.state, runner.library
    if state.error_message:
        st.error(state.error_message)

    step = Step(state.current_step)
    if step is Step.TOPIC_ENTRY:
        render_topic_step(state, library)
    elif step is Step.OPTIONS_ENTRY:
        render_options_step(state)
    elif step is Step.SUMMARY_LOADING:
        st.info("Summarizing...")
    elif step is Step.SUMMARY_READY:
        render_summary_step(state)
    elif step is Step.CONTENT_DISPLAY:
        render_content_step(state, runner.busy)
    else:
        render_saved_book(runner)

    # Pages resolve one by one while requests are in flight
    if runner.busy:
        time.sleep(POLL_SECONDS)
        st.rerun()


if __name__ == "__main__":
    main()
