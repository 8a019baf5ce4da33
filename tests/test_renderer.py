"""Tests for mdview.renderer.

Tests cover:
- GitHub-flavoured markdown features (tables, strikethrough, task lists, autolinks)
- Syntax highlighting of fenced code
- Heading anchors
- Raw HTML is escaped
- Page wrapping and title escaping
- Rendering straight from a file
"""

from mdview.renderer import render_file, render_markdown, render_page


class TestRenderMarkdown:
    def test_heading_gets_anchor(self):
        out = render_markdown("# Hello World\n")
        assert '<h1 id="hello-world">Hello World</h1>' in out

    def test_paragraph(self):
        assert render_markdown("plain text\n").strip() == "<p>plain text</p>"

    def test_table(self):
        src = "| a | b |\n|---|---|\n| 1 | 2 |\n"
        out = render_markdown(src)
        assert "<table>" in out
        assert "<td>1</td>" in out

    def test_strikethrough(self):
        assert "<s>gone</s>" in render_markdown("~~gone~~\n")

    def test_task_list(self):
        out = render_markdown("- [x] done\n- [ ] todo\n")
        assert "task-list-item" in out
        assert 'type="checkbox"' in out

    def test_fenced_code_language_class(self):
        out = render_markdown("```python\nprint('hi')\n```\n")
        assert '<code class="language-python">' in out

    def test_fenced_code_is_highlighted(self):
        out = render_markdown("```python\ndef f():\n    return 1\n```\n")
        assert '<span class="k">def</span>' in out
        assert '<span class="nf">f</span>' in out

    def test_unknown_language_is_plain_escaped(self):
        out = render_markdown("```nosuchlang\n<b>x</b>\n```\n")
        assert '<code class="language-nosuchlang">' in out
        assert "&lt;b&gt;x&lt;/b&gt;" in out
        assert "<span" not in out

    def test_highlighted_code_is_escaped(self):
        out = render_markdown("```html\n<script>alert(1)</script>\n```\n")
        assert "<script>" not in out

    def test_bare_urls_become_links(self):
        out = render_markdown("see https://example.com now\n")
        assert '<a href="https://example.com">https://example.com</a>' in out

    def test_file_names_are_not_links(self):
        out = render_markdown("Edit README.md and notes.md\n")
        assert "<a" not in out

    def test_raw_html_is_escaped(self):
        out = render_markdown("<script>alert(1)</script>\n")
        assert "<script>" not in out
        assert "&lt;script&gt;" in out

    def test_empty_document(self):
        assert render_markdown("") == ""


class TestRenderPage:
    def test_wraps_body(self):
        page = render_page("<p>hi</p>", title="notes.md")
        assert page.startswith("<!DOCTYPE html>")
        assert '<article class="markdown-body">' in page
        assert "<p>hi</p>" in page

    def test_links_assets(self):
        page = render_page("", title="notes.md")
        assert 'href="/assets/mdview.css"' in page
        assert 'src="/assets/mdview.js"' in page

    def test_title_is_escaped(self):
        page = render_page("", title="<b>&.md")
        assert "<title>&lt;b&gt;&amp;.md</title>" in page


class TestRenderFile:
    def test_renders_file_contents(self, md_file):
        page = render_file(md_file)
        assert '<h1 id="notes">Notes</h1>' in page
        assert "<p>First draft.</p>" in page
        assert "<title>notes.md</title>" in page

    def test_reflects_latest_contents(self, md_file):
        md_file.write_text("# Second\n")
        page = render_file(md_file)
        assert "Second" in page
        assert "First draft." not in page

    def test_invalid_utf8_is_replaced(self, tmp_path):
        path = tmp_path / "bad.md"
        path.write_bytes(b"caf\xe9\n")
        page = render_file(path)
        assert "caf�" in page
