"""Markdown-to-HTML rendering for the preview page.

A pure text-in, HTML-out pipeline: GitHub-flavoured markdown via
markdown-it-py, wrapped in a page that pulls the theme and the live
reload client from ``/assets``.
"""

from __future__ import annotations

import html
from pathlib import Path

from markdown_it import MarkdownIt
from mdit_py_plugins.anchors import anchors_plugin
from mdit_py_plugins.tasklists import tasklists_plugin
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <meta name="color-scheme" content="light dark">
    <title>{title}</title>
    <link rel="stylesheet" href="/assets/mdview.css">
</head>
<body>
    <article class="markdown-body">
{body}
    </article>
    <script src="/assets/mdview.js"></script>
</body>
</html>
"""


# Token spans only; markdown-it supplies the surrounding <pre><code>
_FORMATTER = HtmlFormatter(nowrap=True)


def _highlight_code(code: str, lang: str, attrs: str) -> str:
    """Highlight a fenced block with Pygments.

    Returns an empty string for unknown or missing languages, which makes
    markdown-it fall back to plain escaped text.
    """
    if not lang:
        return ""
    try:
        lexer = get_lexer_by_name(lang)
    except ClassNotFound:
        return ""
    return highlight(code, lexer, _FORMATTER)


def _build_parser() -> MarkdownIt:
    md = MarkdownIt(
        "commonmark",
        {
            "html": False,
            "linkify": True,
            "typographer": False,
            "highlight": _highlight_code,
        },
    )
    md.enable(["table", "strikethrough", "linkify"])
    # Only scheme-prefixed URLs; "README.md" is not a link to a .md domain
    md.linkify.set({"fuzzy_link": False})
    md.use(tasklists_plugin)
    md.use(anchors_plugin, max_level=6)
    return md


_md = _build_parser()


def render_markdown(text: str) -> str:
    """Render markdown source to an HTML fragment.

    Raw HTML in the source is escaped, not passed through.
    """
    return _md.render(text)


def render_page(body_html: str, title: str) -> str:
    """Wrap a rendered fragment in the full preview page."""
    return _PAGE_TEMPLATE.format(title=html.escape(title), body=body_html)


def render_file(path: Path) -> str:
    """Read ``path`` and render it as a complete preview page.

    Undecodable bytes are replaced rather than failing the request.

    Raises:
        OSError: If the file cannot be read.
    """
    text = path.read_text(encoding="utf-8", errors="replace")
    return render_page(render_markdown(text), title=path.name)
