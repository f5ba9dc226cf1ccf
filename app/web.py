"""HTML rendering for the API index page."""

from __future__ import annotations

from html import escape
from textwrap import dedent

from .config import Settings


INDEX_TEMPLATE = dedent(
    """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>__APP_NAME__</title>
    <style>
        body {
            font-family: 'Inter', 'Segoe UI', system-ui, -apple-system, sans-serif;
            line-height: 1.6;
            max-width: 800px;
            margin: 0 auto;
            padding: 20px;
            color: #333;
        }
        h1, h2 {
            color: #007722;
        }
        h1 {
            border-bottom: 1px solid #ddd;
            padding-bottom: 10px;
        }
        code, pre {
            background: #f4f4f4;
            border-radius: 3px;
            font-family: monospace;
        }
        code {
            padding: 2px 5px;
        }
        pre {
            padding: 10px;
            overflow-x: auto;
        }
        .method {
            font-weight: bold;
            color: #e74c3c;
        }
        .url {
            color: #2980b9;
        }
    </style>
</head>
<body>
    <h1>__APP_NAME__</h1>
    <p>Mirrors a user's watched movies, TV shows and read books, keeping only
    the name, mark time, comment, rating and cover image of each entry. Cover
    images are cached locally under <code>__IMAGE_PREFIX__</code>.</p>

    <h2>Endpoints</h2>
    __ENDPOINTS__

    <h2>Examples</h2>
    <pre>GET __BASE_URL__/api/users/ahbei/movies?status=doing</pre>
    <pre>GET __BASE_URL__/api/users/ahbei?validate=true</pre>
    <pre>GET __BASE_URL__/api/fetch/ahbei</pre>

    <h2>Statuses</h2>
    <p><strong>done</strong>: watched / read</p>
    <p><strong>doing</strong>: watching / reading</p>
    <p><strong>mark</strong>: want to watch / want to read</p>
</body>
</html>
"""
)

ENDPOINTS: tuple[tuple[str, str, str], ...] = (
    ("GET", "/api/users", "List users with a stored snapshot"),
    ("GET", "/api/users/:uid", "Full snapshot; ?refresh=true rebuilds, ?validate=true repairs images"),
    ("GET", "/api/users/:uid/stats", "Counts per collection and status"),
    ("GET", "/api/users/:uid/movies", "Movies; filter with ?status=done|doing|mark"),
    ("GET", "/api/users/:uid/tvshows", "TV shows; filter with ?status=done|doing|mark"),
    ("GET", "/api/users/:uid/books", "Books; filter with ?status=done|doing|mark"),
    ("DELETE", "/api/users/:uid", "Remove the stored snapshot and page data"),
    ("GET", "/api/items/:type/:id", "Name, rating and cover of one subject"),
    ("POST", "/api/fetch/:uid", "Rebuild the snapshot from upstream"),
    ("GET", "/api/fetch/:uid", "Rebuild the snapshot from upstream (browser friendly)"),
    ("GET", "/api/cache/stats", "Image cache totals"),
    ("GET", "/api/cache/files", "Cached image files, newest first"),
    ("POST", "/api/cache/clean", "Delete cached images by name or age"),
)


def _render_endpoints() -> str:
    blocks = []
    for method, path, description in ENDPOINTS:
        blocks.append(
            '<div class="endpoint">'
            f'<p><span class="method">{method}</span> '
            f'<span class="url">{escape(path)}</span></p>'
            f"<p>{escape(description)}</p>"
            "</div>"
        )
    return "\n    ".join(blocks)


def render_index_page(settings: Settings, *, base_url: str = "") -> str:
    html = INDEX_TEMPLATE
    replacements = {
        "__APP_NAME__": escape(settings.app_name),
        "__IMAGE_PREFIX__": escape(settings.image_url_prefix),
        "__ENDPOINTS__": _render_endpoints(),
        "__BASE_URL__": escape(base_url),
    }
    for placeholder, value in replacements.items():
        html = html.replace(placeholder, value)
    return html
