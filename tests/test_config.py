import json

import pytest

from web2epub.config import GenerationConfig, default_cache_dir


def test_defaults():
    cfg = GenerationConfig()
    assert cfg.request_delay_ms == 200
    assert cfg.concurrent_downloads == 4
    assert cfg.max_retries == 2
    assert cfg.retry_delay_ms == 500
    assert cfg.timeout_ms == 30000
    assert cfg.data_source_type == "html"
    assert cfg.text_to_remove == ()


def test_from_dict_accepts_exported_camel_case_settings():
    cfg = GenerationConfig.from_dict({
        "tocUrl": "https://site.test/toc",
        "requestDelay": 50,
        "retryDelay": 900,
        "concurrentDownloads": 2,
        "chapterTitleSelector": None,
        "textToRemove": "Read at site.test, , Support us",
        "dataSourceType": "json",
        "includeTitleInContent": False,
    })
    assert cfg.toc_url == "https://site.test/toc"
    assert cfg.request_delay_ms == 50
    assert cfg.retry_delay_ms == 900
    assert cfg.concurrent_downloads == 2
    assert cfg.chapter_title_selector == ""
    assert cfg.text_to_remove == ("Read at site.test", "Support us")
    assert cfg.data_source_type == "json"
    assert cfg.include_title_in_content is False


def test_unknown_keys_are_ignored_with_warning(caplog):
    cfg = GenerationConfig.from_dict({"theme": "dark", "novel_title": "X"})
    assert cfg.novel_title == "X"
    assert "theme" in caplog.text


def test_none_selectors_become_empty_strings():
    cfg = GenerationConfig(next_page_link_selector=None, proxy_url=None)
    assert cfg.next_page_link_selector == ""
    assert cfg.proxy_url == ""


def test_bad_source_type_rejected():
    with pytest.raises(ValueError):
        GenerationConfig(data_source_type="xml")


def test_concurrency_floor():
    assert GenerationConfig(concurrent_downloads=0).concurrent_downloads == 1


def test_genre_list_and_merge():
    cfg = GenerationConfig(genres=" Fantasy, ,Action ")
    assert cfg.genre_list == ["Fantasy", "Action"]
    merged = cfg.merged_with(chapter_container_selector="#content")
    assert merged.chapter_container_selector == "#content"
    assert cfg.chapter_container_selector == "body"


def test_json_file_round_trip(tmp_path):
    path = tmp_path / "novel.json"
    path.write_text(json.dumps({"toc_url": "https://s.test/", "text_to_remove": ["a", "b"]}), "utf-8")
    cfg = GenerationConfig.from_json_file(path)
    assert cfg.text_to_remove == ("a", "b")
    assert cfg.to_dict()["text_to_remove"] == ["a", "b"]


def test_json_file_must_hold_object(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("[1, 2]", "utf-8")
    with pytest.raises(ValueError):
        GenerationConfig.from_json_file(path)


def test_cache_dir_env_override(monkeypatch, tmp_path):
    monkeypatch.setenv("WEB2EPUB_CACHE_DIR", str(tmp_path))
    assert default_cache_dir() == tmp_path
