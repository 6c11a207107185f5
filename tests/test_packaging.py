import zipfile

from web2epub.config import GenerationConfig
from web2epub.models import BuildHandoff, Chapter, ChapterStatus, CoverImage, PackagedChapter
from web2epub.packaging import build_handoff, html_to_text, output_stem, render_txt, write_epub, write_txt


def handoff(**kw):
    chapters = [
        PackagedChapter("chapter-1", "One", "<p>First.</p><p>Line<br/>two</p>", 1),
        PackagedChapter("chapter-2", "Two", "<div><p>Second&#160;part.</p></div>", 2),
    ]
    kw.setdefault("genres", ["Fantasy", "Drama"])
    return BuildHandoff(title="The Long Road", author="A. Writer", chapters=chapters, **kw)


def test_build_handoff_keeps_successes_in_order():
    chapters = [
        Chapter("chapter-3", "c", "u3", 3, content="<p>3</p>", status=ChapterStatus.SUCCESS),
        Chapter("chapter-1", "a", "u1", 1, content="<p>1</p>", status=ChapterStatus.SUCCESS),
        Chapter("chapter-2", "b", "u2", 2, status=ChapterStatus.ERROR, error="boom"),
    ]
    cfg = GenerationConfig(novel_title="Book", author="Me", genres="Fantasy, Drama", publisher="Pub")
    out = build_handoff(chapters, cfg)
    assert [c.id for c in out.chapters] == ["chapter-1", "chapter-3"]
    assert out.genres == ["Fantasy", "Drama"]
    assert out.publisher == "Pub"
    assert out.cover is None


def test_html_to_text():
    assert html_to_text("<p>First.</p><p>Line<br/>two</p>") == "First.\n\nLine\ntwo"
    assert html_to_text("<div><p>a&#160;b</p></div>") == "a b"


def test_render_txt():
    text = render_txt(handoff())
    assert text == (
        "One\n\nFirst.\n\nLine\ntwo\n\n---\n\n"
        "Two\n\nSecond part.\n\n---\n\n"
    )
    assert render_txt(handoff(), include_title=False).startswith("First.")


def test_write_txt(tmp_path):
    path = write_txt(handoff(), tmp_path)
    assert path.name == "the-long-road.txt"
    assert "Second part." in path.read_text("utf-8")


def test_output_stem():
    assert output_stem("Réincarnation: Tome 1!") == "reincarnation-tome-1"
    assert output_stem("") == "novel"


def test_write_epub(tmp_path):
    cover = CoverImage(data=b"\x89PNG\r\n\x1a\nfake", media_type="image/png")
    path = write_epub(handoff(cover=cover, synopsis="A walk.", publisher="Pub"), tmp_path)
    assert path.name == "the-long-road.epub"
    with zipfile.ZipFile(path) as zf:
        names = zf.namelist()
        assert names[0] == "mimetype"
        assert any(n.endswith("chapter-1.xhtml") for n in names)
        assert any(n.endswith("chapter-2.xhtml") for n in names)
        assert any(n.endswith("cover.png") for n in names)
        opf = zf.read(next(n for n in names if n.endswith(".opf"))).decode("utf-8")
        body = zf.read(next(n for n in names if n.endswith("chapter-1.xhtml"))).decode("utf-8")
    assert "The Long Road" in opf
    assert "A. Writer" in opf
    assert "Fantasy" in opf and "Drama" in opf
    assert "urn:uuid:" in opf
    assert "<h1>One</h1>" in body
    assert "First." in body


def test_write_epub_without_titles(tmp_path):
    path = write_epub(handoff(), tmp_path, include_title_in_content=False)
    with zipfile.ZipFile(path) as zf:
        name = next(n for n in zf.namelist() if n.endswith("chapter-1.xhtml"))
        body = zf.read(name).decode("utf-8")
    assert "<h1>" not in body
