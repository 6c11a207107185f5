import json

from web2epub.cache import ChapterCache, DirectoryStorage, MemoryStorage, cache_key, string_hash

URL = "https://novel.test/c/1"


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class BrokenStorage(MemoryStorage):
    def set(self, key, value):
        raise OSError("disk full")


def test_key_format_is_stable():
    assert cache_key(URL) == cache_key(URL)
    assert cache_key(URL).startswith("chapter-")
    assert len(cache_key(URL)) == len("chapter-") + 8
    assert string_hash("") == 0
    assert string_hash("a") == 97


def test_get_fresh_entry():
    cache = ChapterCache(MemoryStorage(), clock=Clock())
    cache.set(URL, "<p>x</p>", "One")
    entry = cache.get(URL)
    assert entry["content"] == "<p>x</p>"
    assert entry["title"] == "One"
    assert entry["timestamp"] == 1000.0
    assert cache.get("https://novel.test/c/2") is None


def test_expired_entry_is_dropped():
    clock = Clock()
    storage = MemoryStorage()
    cache = ChapterCache(storage, ttl_seconds=60, clock=clock)
    cache.set(URL, "<p>x</p>")
    clock.now += 61
    assert cache.get(URL) is None
    assert storage.items == {}


def test_clear():
    storage = MemoryStorage()
    cache = ChapterCache(storage, clock=Clock())
    cache.set(URL, "a")
    cache.set(URL + "?2", "b")
    assert cache.clear() == 2
    assert cache.get(URL) is None


def test_failed_write_is_swallowed_and_sweeps():
    clock = Clock()
    storage = BrokenStorage()
    storage.items["chapter-old"] = json.dumps({"content": "x", "timestamp": 0})
    storage.items["chapter-new"] = json.dumps({"content": "y", "timestamp": 990})
    cache = ChapterCache(storage, ttl_seconds=60, clock=clock)
    cache.set(URL, "<p>x</p>")
    assert "chapter-old" not in storage.items
    assert "chapter-new" in storage.items


def test_corrupt_entry_reads_as_miss():
    storage = MemoryStorage()
    storage.items[cache_key(URL)] = "{not json"
    assert ChapterCache(storage).get(URL) is None


def test_directory_storage(tmp_path):
    clock = Clock()
    cache = ChapterCache(DirectoryStorage(tmp_path / "cache"), clock=clock)
    cache.set(URL, "<p>é</p>", "Un")
    files = list((tmp_path / "cache").glob("chapter-*.json"))
    assert len(files) == 1
    assert ChapterCache(DirectoryStorage(tmp_path / "cache"), clock=clock).get(URL)["content"] == "<p>é</p>"
    assert cache.clear() == 1
    assert list((tmp_path / "cache").iterdir()) == []


def test_directory_storage_missing_root(tmp_path):
    storage = DirectoryStorage(tmp_path / "nope")
    assert list(storage.keys()) == []
    assert storage.get("chapter-x") is None
    storage.delete("chapter-x")


def test_undecodable_file_reads_as_miss_and_is_swept(tmp_path):
    root = tmp_path / "cache"
    root.mkdir()
    (root / f"{cache_key(URL)}.json").write_bytes(b"\xff\xfe\xfa not utf8")
    cache = ChapterCache(DirectoryStorage(root), clock=Clock())
    assert cache.get(URL) is None
    assert cache.sweep_expired() == 1
    assert list(root.iterdir()) == []


def test_failed_write_survives_unlistable_storage():
    class Unlistable(BrokenStorage):
        def keys(self):
            raise PermissionError("no listing")

    cache = ChapterCache(Unlistable(), clock=Clock())
    cache.set(URL, "<p>x</p>")
    assert cache.get(URL) is None
