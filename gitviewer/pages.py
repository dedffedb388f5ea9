"""Branch-aware path resolution for ``/pages/``.

A request tail such as ``release/v2/docs/index.html`` is an ambiguous join of
a branch name, which may itself contain slashes, and a path inside that
branch. The longest leading run of segments that names an existing branch
wins; when nothing matches, the whole tail is looked up in the default branch.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from gitviewer.config import DEFAULT_INDEX_DOCUMENT, DEFAULT_PAGES_BRANCH

BranchExists = Callable[[str], Awaitable[bool]]


@dataclass(frozen=True)
class PagesTarget:
    branch: str
    path: str

    @property
    def spec(self) -> str:
        return f"{self.branch}:{self.path}"


def normalize_repo_path(path: str) -> str:
    return path.replace("\\", "/").lstrip("/")


async def match_branch(
    tail: str,
    branch_exists: BranchExists,
    default_branch: str = DEFAULT_PAGES_BRANCH,
) -> Optional[tuple[str, str]]:
    """Split ``tail`` into ``(branch, sub_path)``.

    Returns ``None`` when no prefix names a branch and the default branch does
    not exist either. Errors raised by ``branch_exists`` propagate.
    """
    if not tail:
        tail = f"{default_branch}/"

    segments = [segment for segment in tail.rstrip("/").split("/") if segment]
    for i in range(len(segments), 0, -1):
        candidate = "/".join(segments[:i])
        if not await branch_exists(candidate):
            continue
        sub_path = "/".join(segments[i:])
        if sub_path and tail.endswith("/"):
            sub_path += "/"
        return candidate, sub_path

    if not await branch_exists(default_branch):
        return None
    return default_branch, tail


async def resolve_pages_path(
    tail: str,
    branch_exists: BranchExists,
    default_branch: str = DEFAULT_PAGES_BRANCH,
    index_document: str = DEFAULT_INDEX_DOCUMENT,
) -> Optional[PagesTarget]:
    """Resolve a ``/pages/`` tail to the branch and in-tree file to serve."""
    match = await match_branch(tail, branch_exists, default_branch)
    if match is None:
        return None
    branch, sub_path = match
    sub_path = normalize_repo_path(sub_path)
    if not sub_path or sub_path.endswith("/"):
        sub_path += index_document
    return PagesTarget(branch=branch, path=sub_path)
