import argparse
import json

import httpx
import pytest

from conftest import FakeSite, page
from web2epub import cli
from web2epub.config import GenerationConfig
from web2epub.fetcher import Fetcher
from web2epub.models import NovelDetails

TOC_URL = "https://novel.test/book"


def test_parse_range():
    assert cli.parse_range("3-7") == (3, 7)
    assert cli.parse_range("5") == (5, 5)
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_range("a-b")


def test_apply_details_only_fills_defaults():
    details = NovelDetails(novel_title="Scraped", author="Someone", synopsis="S", cover_url="https://c.test/x.jpg")
    filled = cli.apply_details(GenerationConfig(), details)
    assert (filled.novel_title, filled.author, filled.synopsis, filled.cover_image_url) == (
        "Scraped", "Someone", "S", "https://c.test/x.jpg")
    kept = cli.apply_details(GenerationConfig(novel_title="Mine", cover_image_base64="data:x"), details)
    assert kept.novel_title == "Mine"
    assert kept.cover_image_url == ""


def test_clear_cache(tmp_path, capsys):
    (tmp_path / "chapter-0000abcd.json").write_text("{}", "utf-8")
    assert cli.main(["clear-cache", "--cache-dir", str(tmp_path)]) == 0
    assert list(tmp_path.iterdir()) == []
    assert "removed 1" in capsys.readouterr().out


def test_bad_settings_file_exits_1(tmp_path, capsys):
    assert cli.main(["toc", str(tmp_path / "missing.json")]) == 1
    assert "[error]" in capsys.readouterr().out


def fake_site():
    return FakeSite({
        TOC_URL: page('<h1>The Long Road</h1><ol id="toc">'
                      '<li><a href="/c/1">One</a></li><li><a href="/c/2">Two</a></li><li><a href="/c/3">Three</a></li>'
                      '</ol>'),
        "https://novel.test/c/1": page('<div id="text"><p>first</p></div>'),
        "https://novel.test/c/2": page('<div id="text"><p>second</p></div>'),
    })


@pytest.fixture
def novel_site(monkeypatch):
    site = fake_site()
    monkeypatch.setattr(cli, "Fetcher", lambda proxy_url="": Fetcher(proxy_url, transport=httpx.MockTransport(site.handler)))
    return site


@pytest.fixture
def settings(tmp_path, novel_site):
    path = tmp_path / "novel.json"
    path.write_text(json.dumps({
        "tocUrl": TOC_URL, "tocLinkSelector": "#toc a", "chapterContainerSelector": "#text",
        "novelTitleSelector": "h1", "requestDelay": 0, "retryDelay": 0, "maxRetries": 0,
    }), "utf-8")
    return path


def test_toc_command(settings, capsys):
    assert cli.main(["toc", str(settings)]) == 0
    out = capsys.readouterr().out
    assert "0003  Three  https://novel.test/c/3" in out
    assert "[toc] 3 chapters" in out


def test_preview_command(settings, capsys):
    assert cli.main(["preview", str(settings), "--chapter", "2", "--text"]) == 0
    out = capsys.readouterr().out
    assert "# Two" in out
    assert "second" in out


def test_build_writes_books_and_status_files(settings, tmp_path, capsys):
    out_dir = tmp_path / "out"
    code = cli.main(["build", str(settings), "--out", str(out_dir), "--no-cache", "--format", "both"])
    assert code == 0
    book_dir = out_dir / "the-long-road"
    assert (book_dir / "the-long-road.epub").exists()
    text = (book_dir / "the-long-road.txt").read_text("utf-8")
    assert "first" in text and "second" in text
    meta = json.loads((book_dir / "metadata.json").read_text("utf-8"))
    assert meta["novel_title"] == "The Long Road"
    rows = [json.loads(line) for line in (book_dir / "chapters.jsonl").read_text("utf-8").splitlines()]
    assert [r["status"] for r in rows] == ["success", "success", "error"]
    assert rows[2]["error_kind"] == "not_found"
    assert rows[0]["content"] == "<p>first</p>"
    printed = capsys.readouterr().out
    assert "[warn] 003 Three" in printed


def test_build_chapter_range(settings, tmp_path):
    out_dir = tmp_path / "out"
    assert cli.main(["build", str(settings), "--out", str(out_dir), "--no-cache",
                     "--chapters", "1-1", "--format", "txt"]) == 0
    text = (out_dir / "the-long-road" / "the-long-road.txt").read_text("utf-8")
    assert "first" in text and "second" not in text


def test_build_titles_and_order(settings, tmp_path):
    out_dir = tmp_path / "out"
    assert cli.main(["build", str(settings), "--out", str(out_dir), "--no-cache", "--format", "txt",
                     "--title-pattern", "^(\\w+)$", "--title-replace", "Part \\1",
                     "--order", "chapter-2", "--chapters", "1-2"]) == 0
    book_dir = out_dir / "the-long-road"
    rows = [json.loads(line) for line in (book_dir / "chapters.jsonl").read_text("utf-8").splitlines()]
    assert [(r["id"], r["order"], r["title"]) for r in rows] == [("chapter-2", 1, "Part Two"), ("chapter-1", 2, "Part One")]
    text = (book_dir / "the-long-road.txt").read_text("utf-8")
    assert text.index("Part Two") < text.index("Part One")


def test_bad_title_pattern_exits_1(settings, tmp_path, capsys):
    assert cli.main(["build", str(settings), "--out", str(tmp_path / "out"), "--no-cache",
                     "--title-pattern", "("]) == 1
    assert "bad --title-pattern" in capsys.readouterr().out


def test_retry_failed_downloads_only_failed_chapters(settings, novel_site, tmp_path, capsys):
    out_dir = tmp_path / "out"
    args = ["build", str(settings), "--out", str(out_dir), "--no-cache", "--format", "txt"]
    assert cli.main(args) == 0
    book_dir = out_dir / "the-long-road"
    assert "third" not in (book_dir / "the-long-road.txt").read_text("utf-8")

    novel_site.pages["https://novel.test/c/3"] = page('<div id="text"><p>third</p></div>')
    assert cli.main(args + ["--retry-failed"]) == 0

    assert novel_site.count("https://novel.test/c/1") == 1
    assert novel_site.count("https://novel.test/c/3") == 2
    rows = [json.loads(line) for line in (book_dir / "chapters.jsonl").read_text("utf-8").splitlines()]
    assert [r["status"] for r in rows] == ["success", "success", "success"]
    text = (book_dir / "the-long-road.txt").read_text("utf-8")
    assert "first" in text and "second" in text and "third" in text
    assert "1 of 3 chapters failed last time" in capsys.readouterr().out


def test_retry_failed_needs_an_earlier_build(settings, tmp_path, capsys):
    assert cli.main(["build", str(settings), "--out", str(tmp_path / "out"), "--no-cache", "--retry-failed"]) == 1
    assert "could not read chapter statuses" in capsys.readouterr().out
