import html
from dataclasses import dataclass
from typing import List
from urllib.parse import quote, urlencode

from gitviewer.git import Commit, TreeEntry


@dataclass
class PageContext:
    """Fields shared by every page: what the layout needs to draw navigation."""

    repo_name: str
    ref: str
    branches: List[str]


def _esc(value: object) -> str:
    return html.escape(str(value))


def _url(route: str, **params: str) -> str:
    query = urlencode({key: value for key, value in params.items() if value})
    return _esc(f"{route}?{query}" if query else route)


def pages_url(branch: str, path: str = "") -> str:
    return _esc(f"/pages/{quote(branch)}/{quote(path)}")


def parent_path(path: str) -> str:
    if "/" not in path:
        return ""
    return path.rsplit("/", 1)[0]


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KiB"
    return f"{size / (1024 * 1024):.1f} MiB"


def _ref_selector(ctx: PageContext) -> str:
    options = []
    refs = ctx.branches if ctx.ref in ctx.branches else [ctx.ref, *ctx.branches]
    for branch in refs:
        selected = " selected" if branch == ctx.ref else ""
        options.append(f'<option value="{_esc(branch)}"{selected}>{_esc(branch)}</option>')
    return f"""<form class="ref-form" method="get" action="/tree">
            <select name="ref" data-role="ref-select">{''.join(options)}</select>
            <button type="submit">Go</button>
        </form>"""


def _layout(ctx: PageContext, title: str, body: str) -> str:
    pages_links = "".join(
        f'<li><a href="{pages_url(branch)}">{_esc(branch)}</a></li>' for branch in ctx.branches
    )
    return f"""<!DOCTYPE html>
<html lang="en" data-theme="dark">
<head>
    <meta charset="utf-8">
    <title>{_esc(title)} · {_esc(ctx.repo_name)}</title>
    <link rel="stylesheet" href="/static/app.css">
    <script src="/static/app.js" defer></script>
</head>
<body>
<header>
    <a class="repo-name" href="/">{_esc(ctx.repo_name)}</a>
    <nav>
        <a href="/">Overview</a>
        <a href="{_url('/tree', ref=ctx.ref)}">Tree</a>
        <a href="{_url('/commits', ref=ctx.ref)}">Commits</a>
        <a href="{_url('/workflows', ref=ctx.ref)}">Workflows</a>
        <button type="button" data-toggle="collapse" data-target="pages-menu">Pages</button>
    </nav>
    {_ref_selector(ctx)}
    <button type="button" data-role="theme-toggle">Light mode</button>
</header>
<ul id="pages-menu" class="pages-menu" hidden>{pages_links}</ul>
<main>
{body}
</main>
</body>
</html>
"""


def _commit_rows(commits: List[Commit]) -> str:
    rows = []
    for commit in commits:
        diff_link = ""
        if commit.parents:
            # First parent, so merges diff against the branch they landed on.
            parent = commit.parents[0]
            diff_link = f'<a href="{_url("/diff", **{"from": parent, "to": commit.hash})}">diff</a>'
        rows.append(
            f"""<tr>
            <td><a href="{_url('/tree', ref=commit.hash)}"><code>{_esc(commit.hash)}</code></a></td>
            <td>{_esc(commit.date)}</td>
            <td>{_esc(commit.subject)}</td>
            <td>{diff_link}</td>
        </tr>"""
        )
    if not rows:
        return '<p class="empty">No commits.</p>'
    return f"""<table class="commits">
        <thead><tr><th>Commit</th><th>Date</th><th>Subject</th><th></th></tr></thead>
        <tbody>{''.join(rows)}</tbody>
    </table>"""


def render_index(ctx: PageContext, head_hash: str, commits: List[Commit]) -> str:
    branch_items = "".join(
        f"""<li>
            <a href="{_url('/tree', ref=branch)}">{_esc(branch)}</a>
            <a class="secondary" href="{pages_url(branch)}">pages</a>
        </li>"""
        for branch in ctx.branches
    )
    body = f"""<h1>{_esc(ctx.repo_name)}</h1>
<p>On <strong>{_esc(ctx.ref)}</strong> at <code>{_esc(head_hash)}</code></p>
<section>
    <h2>
        <button type="button" data-toggle="collapse" data-target="branch-list">Branches ({len(ctx.branches)})</button>
    </h2>
    <ul id="branch-list" class="branches">{branch_items}</ul>
</section>
<section>
    <h2>Recent commits</h2>
    {_commit_rows(commits)}
    <p><a href="{_url('/commits', ref=ctx.ref)}">Full log</a></p>
</section>"""
    return _layout(ctx, "Overview", body)


def render_tree(ctx: PageContext, path: str, entries: List[TreeEntry]) -> str:
    rows = []
    if path:
        rows.append(
            f'<tr><td colspan="3"><a href="{_url("/tree", ref=ctx.ref, path=parent_path(path))}">..</a></td></tr>'
        )
    for entry in entries:
        if entry.is_dir:
            link = _url("/tree", ref=ctx.ref, path=entry.path)
            label = f"{_esc(entry.name)}/"
            size = ""
        elif entry.type == "commit":
            # Submodule: nothing to browse in this repository.
            rows.append(f"<tr><td>{_esc(entry.name)} @ submodule</td><td>{_esc(entry.mode)}</td><td></td></tr>")
            continue
        else:
            link = _url("/blob", ref=ctx.ref, path=entry.path)
            label = _esc(entry.name)
            size = format_size(entry.size)
        rows.append(f'<tr><td><a href="{link}">{label}</a></td><td>{_esc(entry.mode)}</td><td>{size}</td></tr>')
    listing = f'<table class="tree"><tbody>{"".join(rows)}</tbody></table>'
    if not entries:
        listing += '<p class="empty">Empty directory.</p>'
    body = f"""<h1>{_esc(path or '/')}</h1>
<p class="meta">ref <code>{_esc(ctx.ref)}</code></p>
{listing}"""
    return _layout(ctx, path or "Tree", body)


def render_blob(ctx: PageContext, path: str, content: bytes, truncated: bool) -> str:
    raw_link = _url("/raw", ref=ctx.ref, path=path)
    if b"\x00" in content:
        preview = f'<p class="empty">Binary file. <a href="{raw_link}">Download raw</a>.</p>'
    else:
        preview = f'<pre class="blob">{_esc(content.decode("utf-8", errors="replace"))}</pre>'
    notice = ""
    if truncated:
        notice = f'<p class="notice">Preview truncated. <a href="{raw_link}">View the full file</a>.</p>'
    body = f"""<h1>{_esc(path)}</h1>
<p class="meta">
    ref <code>{_esc(ctx.ref)}</code> ·
    <a href="{_url('/tree', ref=ctx.ref, path=parent_path(path))}">parent directory</a> ·
    <a href="{raw_link}">raw</a>
</p>
{notice}
{preview}"""
    return _layout(ctx, path, body)


def render_commits(ctx: PageContext, commits: List[Commit]) -> str:
    body = f"""<h1>Commits on {_esc(ctx.ref)}</h1>
{_commit_rows(commits)}"""
    return _layout(ctx, "Commits", body)


def _diff_line(line: str) -> str:
    if line.startswith(("+++", "---", "diff ", "index ")):
        css_class = "diff-meta"
    elif line.startswith("@@"):
        css_class = "diff-hunk"
    elif line.startswith("+"):
        css_class = "diff-add"
    elif line.startswith("-"):
        css_class = "diff-del"
    else:
        return _esc(line)
    return f'<span class="{css_class}">{_esc(line)}</span>'


def render_diff(ctx: PageContext, from_ref: str, to_ref: str, patch: str) -> str:
    lines = "\n".join(_diff_line(line) for line in patch.splitlines())
    body = f"""<h1>Diff</h1>
<p class="meta"><code>{_esc(from_ref)}</code> → <code>{_esc(to_ref)}</code></p>
<pre class="diff">{lines}</pre>"""
    return _layout(ctx, f"{from_ref}..{to_ref}", body)


def render_workflows(ctx: PageContext, workflows: List[str]) -> str:
    items = "".join(
        f'<li><a href="{_url("/blob", ref=ctx.ref, path=path)}">{_esc(path.rsplit("/", 1)[-1])}</a></li>'
        for path in workflows
    )
    listing = f'<ul class="workflows">{items}</ul>' if workflows else '<p class="empty">No workflows found.</p>'
    body = f"""<h1>Workflows</h1>
<p class="meta"><code>.github/workflows</code> at <code>{_esc(ctx.ref)}</code></p>
{listing}"""
    return _layout(ctx, "Workflows", body)
