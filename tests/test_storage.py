import json

from conftest import FakeClock

from storyshelf.config import LIBRARY_STORAGE_KEY, SESSION_STORAGE_KEY
from storyshelf.schemas import StoryPage
from storyshelf.storage import JsonFileStorage, LibraryStore, MemoryStorage, SessionStore, default_storage


def pages(*urls):
    return [StoryPage(id=i, title=f"P{i}", content="c", image_url=url) for i, url in enumerate(urls, start=1)]


class BrokenStorage:
    def get_item(self, name):
        raise OSError("disk gone")

    def set_item(self, name, value):
        raise OSError("disk gone")

    def remove_item(self, name):
        raise OSError("disk gone")


def test_session_round_trips_with_images():
    storage = MemoryStorage()
    session = SessionStore(storage)
    session.update(current_topic="Entropy", current_step=5)
    session.set_storybook(pages("https://img/1.png"))

    restored = SessionStore(storage).state
    assert restored.current_topic == "Entropy"
    assert restored.current_storybook[0].image_url == "https://img/1.png"
    assert "currentStorybook" in json.loads(storage.items[SESSION_STORAGE_KEY])


def test_session_generation_bumps_on_new_storybook_and_clear():
    session = SessionStore(MemoryStorage())
    session.set_storybook(pages(None))
    after_set = session.state.generation
    session.set_pages(pages("https://img/1.png"))
    assert session.state.generation == after_set
    session.clear()
    assert session.state.generation == after_set + 1
    assert session.state.current_storybook == []


def test_update_page_image_ignores_missing_page():
    session = SessionStore(MemoryStorage())
    session.set_storybook([StoryPage(id=1, image_loading=True)])

    assert not session.update_page_image(9, "https://img/9.png")
    assert session.update_page_image(1, "https://img/1.png")
    page = session.get_page(1)
    assert page.image_url == "https://img/1.png"
    assert not page.image_loading


def test_library_keeps_only_the_newest_entries():
    library = LibraryStore(MemoryStorage(), cap=10, clock=FakeClock())
    for i in range(11):
        library.add(f"Topic {i}", "summary", pages(None))

    assert len(library.entries) == 10
    assert library.entries[0].topic == "Topic 1"
    assert library.entries[-1].topic == "Topic 10"
    assert len({b.id for b in library.entries}) == 10


def test_library_persisted_copy_has_no_images():
    storage = MemoryStorage()
    library = LibraryStore(storage, clock=FakeClock())
    entry = library.add("Entropy", "summary", pages("data:image/png;base64,AAAA"))

    assert library.get(entry.id).storybook[0].image_url == "data:image/png;base64,AAAA"
    persisted = json.loads(storage.items[LIBRARY_STORAGE_KEY])
    assert "imageUrl" not in persisted["bookshelf"][0]["storybook"][0]
    assert "imageLoading" not in persisted["bookshelf"][0]["storybook"][0]

    restored = LibraryStore(storage).get(entry.id)
    assert restored.storybook[0].image_url is None
    assert restored.storybook[0].title == "P1"


def test_library_update_page_and_remove():
    library = LibraryStore(MemoryStorage(), clock=FakeClock())
    entry = library.add("Entropy", "summary", pages(None, None))

    assert library.update_page(entry.id, 2, image_url="https://img/2.png")
    assert not library.update_page(entry.id, 5, image_url="x")
    assert not library.update_page(12345, 1, image_url="x")
    assert library.get(entry.id).storybook[1].image_url == "https://img/2.png"

    library.remove(entry.id)
    assert library.get(entry.id) is None


def test_unreadable_library_is_discarded():
    storage = MemoryStorage()
    storage.set_item(LIBRARY_STORAGE_KEY, json.dumps({"bookshelf": [{"topic": "no id"}]}))

    assert LibraryStore(storage).entries == []
    assert LIBRARY_STORAGE_KEY not in storage.items


def test_missing_storage_makes_persistence_a_no_op():
    assert default_storage("") is None
    session = SessionStore(None)
    session.update(current_topic="Entropy")
    assert session.state.current_topic == "Entropy"

    library = LibraryStore(None, clock=FakeClock())
    library.add("Entropy", "s", pages(None))
    library.clear()
    assert library.entries == []


def test_failing_storage_is_swallowed():
    session = SessionStore(BrokenStorage())
    session.update(current_topic="Entropy")
    assert session.state.current_topic == "Entropy"


def test_json_file_storage(tmp_path):
    storage = default_storage(str(tmp_path / "data"))
    assert isinstance(storage, JsonFileStorage)

    SessionStore(storage).update(current_topic="Entropy")
    assert (tmp_path / "data" / f"{SESSION_STORAGE_KEY}.json").exists()
    assert SessionStore(storage).state.current_topic == "Entropy"

    storage.remove_item(SESSION_STORAGE_KEY)
    storage.remove_item(SESSION_STORAGE_KEY)
    assert SessionStore(storage).state.current_topic == ""


def test_library_kind_survives_reload():
    storage = MemoryStorage()
    library = LibraryStore(storage, clock=FakeClock())
    meme = library.add("Entropy", "Meme: it only goes up", pages("https://img/1.png"), kind="meme")
    book = library.add("Entropy", "Meme: a one-page story", pages(None))

    restored = LibraryStore(storage)
    assert restored.get(meme.id).is_meme
    assert not restored.get(book.id).is_meme
