import argparse
import logging
import mimetypes
import time
from dataclasses import dataclass
from importlib.resources import files
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from aiohttp import web

from gitviewer import __version__
from gitviewer.config import (
    DEFAULT_COMMIT_LIMIT,
    DEFAULT_INDEX_DOCUMENT,
    DEFAULT_MAX_PREVIEW_BYTES,
    DEFAULT_PAGES_BRANCH,
    load_config,
    parse_port,
    resolve_pages_settings,
    resolve_server_bind,
    resolve_viewer_limits,
)
from gitviewer.git import GitCommandError, Repository
from gitviewer.pages import normalize_repo_path, resolve_pages_path
from gitviewer.render import (
    PageContext,
    render_blob,
    render_commits,
    render_diff,
    render_index,
    render_tree,
    render_workflows,
)

logger = logging.getLogger(__name__)

MAX_LINE_SIZE = 32 * 1024
OVERVIEW_COMMITS = 10

mimetypes.add_type("application/javascript", ".js")
mimetypes.add_type("text/css", ".css")
mimetypes.add_type("text/html", ".html")


@dataclass
class ViewerSettings:
    pages_branch: str = DEFAULT_PAGES_BRANCH
    index_document: str = DEFAULT_INDEX_DOCUMENT
    commit_limit: int = DEFAULT_COMMIT_LIMIT
    max_preview_bytes: int = DEFAULT_MAX_PREVIEW_BYTES


repository_key = web.AppKey("repository", Repository)
settings_key = web.AppKey("settings", ViewerSettings)


def content_type_for(path: str) -> str:
    content_type, _ = mimetypes.guess_type(path)
    if content_type is None:
        return "application/octet-stream"
    if content_type == "text/html":
        return "text/html; charset=utf-8"
    return content_type


def _static_dir() -> Path:
    return Path(str(files("gitviewer").joinpath("static")))


def _server_error(request: web.Request, message: str, exc: Exception) -> web.HTTPInternalServerError:
    logger.error("%s %s: %s", request.method, request.path, exc)
    return web.HTTPInternalServerError(text=message)


def _query_ref(request: web.Request, name: str, required: bool = False) -> str:
    value = request.query.get(name, "").strip()
    if required and not value:
        raise web.HTTPBadRequest(text=f"{name} query parameter is required")
    if value.startswith("-") or "\x00" in value:
        raise web.HTTPBadRequest(text=f"Invalid {name}: {value!r}")
    return value


def _query_path(request: web.Request) -> str:
    path = normalize_repo_path(request.query.get("path", ""))
    if "\x00" in path:
        raise web.HTTPBadRequest(text=f"Invalid path: {path!r}")
    return path


def _html(text: str) -> web.Response:
    return web.Response(text=text, content_type="text/html")


async def _page_context(repo: Repository, ref: str) -> PageContext:
    return PageContext(repo_name=repo.name, ref=ref, branches=await repo.branches())


async def _ref_or_head(repo: Repository, ref: str) -> str:
    if ref:
        return ref
    head_ref, _ = await repo.head()
    return head_ref


async def index_handler(request: web.Request) -> web.Response:
    repo = request.app[repository_key]
    try:
        head_ref, head_hash = await repo.head()
        ctx = await _page_context(repo, head_ref)
        commits = await repo.log(head_ref, OVERVIEW_COMMITS)
    except GitCommandError as exc:
        raise _server_error(request, "Failed to read HEAD", exc) from exc
    return _html(render_index(ctx, head_hash, commits))


async def tree_handler(request: web.Request) -> web.Response:
    repo = request.app[repository_key]
    ref = _query_ref(request, "ref")
    path = _query_path(request).rstrip("/")
    try:
        ref = await _ref_or_head(repo, ref)
        ctx = await _page_context(repo, ref)
        entries = await repo.ls_tree(ref, path)
    except GitCommandError as exc:
        raise _server_error(request, "Failed to read tree", exc) from exc
    return _html(render_tree(ctx, path, entries))


def _required_path(request: web.Request) -> str:
    path = _query_path(request)
    if not path:
        raise web.HTTPBadRequest(text="ref and path are required")
    return path


async def blob_handler(request: web.Request) -> web.Response:
    repo = request.app[repository_key]
    settings = request.app[settings_key]
    ref = _query_ref(request, "ref", required=True)
    path = _required_path(request)
    try:
        ctx = await _page_context(repo, ref)
    except GitCommandError as exc:
        raise _server_error(request, "Failed to load repository metadata", exc) from exc
    try:
        content = await repo.show_file(ref, path)
    except GitCommandError as exc:
        logger.info("%s %s: %s", request.method, request.path, exc)
        raise web.HTTPNotFound(text=f"File {path} not found at {ref}") from exc

    truncated = len(content) > settings.max_preview_bytes
    if truncated:
        content = content[: settings.max_preview_bytes]
    return _html(render_blob(ctx, path, content, truncated))


async def raw_handler(request: web.Request) -> web.Response:
    repo = request.app[repository_key]
    ref = _query_ref(request, "ref", required=True)
    path = _required_path(request)
    try:
        content = await repo.show_file(ref, path)
    except GitCommandError as exc:
        logger.info("%s %s: %s", request.method, request.path, exc)
        raise web.HTTPNotFound(text=f"File {path} not found at {ref}") from exc
    return web.Response(body=content, headers={"Content-Type": content_type_for(path)})


async def commits_handler(request: web.Request) -> web.Response:
    repo = request.app[repository_key]
    settings = request.app[settings_key]
    ref = _query_ref(request, "ref")
    try:
        ref = await _ref_or_head(repo, ref)
        ctx = await _page_context(repo, ref)
        commits = await repo.log(ref, settings.commit_limit)
    except GitCommandError as exc:
        raise _server_error(request, "Failed to read commits", exc) from exc
    return _html(render_commits(ctx, commits))


async def diff_handler(request: web.Request) -> web.Response:
    repo = request.app[repository_key]
    from_ref = _query_ref(request, "from", required=True)
    to_ref = _query_ref(request, "to", required=True)
    try:
        ctx = await _page_context(repo, to_ref)
        patch = await repo.diff(from_ref, to_ref)
    except GitCommandError as exc:
        raise _server_error(request, "Failed to compute diff", exc) from exc
    return _html(render_diff(ctx, from_ref, to_ref, patch))


async def workflows_handler(request: web.Request) -> web.Response:
    repo = request.app[repository_key]
    ref = _query_ref(request, "ref")
    try:
        ref = await _ref_or_head(repo, ref)
        ctx = await _page_context(repo, ref)
        workflows = await repo.workflows(ref)
    except GitCommandError as exc:
        raise _server_error(request, "Failed to list workflows", exc) from exc
    return _html(render_workflows(ctx, workflows))


async def pages_redirect_handler(request: web.Request) -> web.Response:
    raise web.HTTPFound("/pages/")


async def pages_handler(request: web.Request) -> web.Response:
    """Serve a file from any branch as a static site: /pages/{branch}/{path}."""
    repo = request.app[repository_key]
    settings = request.app[settings_key]
    tail = request.match_info.get("tail", "")
    try:
        target = await resolve_pages_path(
            tail,
            repo.has_branch,
            default_branch=settings.pages_branch,
            index_document=settings.index_document,
        )
    except GitCommandError as exc:
        raise _server_error(request, "Failed to check branch", exc) from exc
    if target is None:
        raise web.HTTPNotFound(
            text=f"No valid branch found in path and {settings.pages_branch} branch does not exist"
        )

    try:
        content = await repo.show_spec(target.spec)
    except GitCommandError as exc:
        logger.info("%s %s: %s", request.method, request.path, exc)
        raise web.HTTPNotFound(text=f"File not found in {target.branch}") from exc
    return web.Response(body=content, headers={"Content-Type": content_type_for(target.path)})


@web.middleware
async def request_logger(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    start = time.perf_counter()
    status = 500
    try:
        response = await handler(request)
        status = response.status
        return response
    except web.HTTPException as exc:
        status = exc.status
        raise
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info("%s %s %d %.1fms", request.method, request.path, status, elapsed_ms)


def create_app(repo: Repository, settings: Optional[ViewerSettings] = None) -> web.Application:
    app = web.Application(middlewares=[request_logger])
    app[repository_key] = repo
    app[settings_key] = settings or ViewerSettings()
    app.router.add_route("GET", "/", index_handler)
    app.router.add_route("GET", "/tree", tree_handler)
    app.router.add_route("GET", "/blob", blob_handler)
    app.router.add_route("GET", "/raw", raw_handler)
    app.router.add_route("GET", "/commits", commits_handler)
    app.router.add_route("GET", "/diff", diff_handler)
    app.router.add_route("GET", "/workflows", workflows_handler)
    app.router.add_route("GET", "/pages", pages_redirect_handler)
    app.router.add_route("GET", "/pages/{tail:.*}", pages_handler)
    app.router.add_static("/static", _static_dir())
    return app


async def init_app(repo_path: Path, settings: ViewerSettings) -> web.Application:
    repo = await Repository.open(repo_path)
    logger.info("Serving repository %s", repo.path)
    return create_app(repo, settings)


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="gitviewer",
        description="Serve a local git repository as a read-only web UI.",
    )
    parser.add_argument("repo", nargs="?", default=".", help="Path to the repository (default: current directory).")
    parser.add_argument("--bind", help="Bind address for the server.")
    parser.add_argument("--port", help="Port number for the server.")
    parser.add_argument("--config", type=Path, help="Path to a TOML configuration file.")
    parser.add_argument("--pages-branch", help="Branch served under /pages/ when the path names no branch.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every git invocation.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)
    if args.port is not None:
        try:
            args.port = parse_port(args.port)
        except RuntimeError as exc:
            parser.error(str(exc))
    return args


def log_formatter() -> logging.Formatter:
    formatter = logging.Formatter(
        "[%(asctime)s UTC] %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    formatter.converter = time.gmtime
    return formatter


def _configure_logging(verbose: bool) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(log_formatter())
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=[handler])


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    _configure_logging(args.verbose)
    try:
        config = load_config(args.config)
        bind, port = resolve_server_bind(config, bind_override=args.bind, port_override=args.port)
        pages_branch, index_document = resolve_pages_settings(config, branch_override=args.pages_branch)
        commit_limit, max_preview_bytes = resolve_viewer_limits(config)
        settings = ViewerSettings(
            pages_branch=pages_branch,
            index_document=index_document,
            commit_limit=commit_limit,
            max_preview_bytes=max_preview_bytes,
        )
        web.run_app(
            init_app(Path(args.repo), settings),
            host=bind,
            port=port,
            max_line_size=MAX_LINE_SIZE,
            access_log=None,
            handler_cancellation=True,
        )
    except RuntimeError as exc:
        raise SystemExit(f"gitviewer: {exc}") from exc


if __name__ == "__main__":
    main()
