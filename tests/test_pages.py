"""Tests for branch-aware /pages/ path resolution."""

from typing import List

import pytest

from gitviewer.pages import (
    BranchExists,
    PagesTarget,
    match_branch,
    normalize_repo_path,
    resolve_pages_path,
)


class FakeBranches:
    """In-memory branch set that records every existence query."""

    def __init__(self, *names: str) -> None:
        self.names = set(names)
        self.queries: List[str] = []

    async def __call__(self, name: str) -> bool:
        self.queries.append(name)
        return name in self.names


class TestMatchBranch:
    """Tests for match_branch()."""

    async def test__nested_branch__prefers_longest_prefix(self) -> None:
        """Both release and release/v2 exist; the longer name wins."""
        branches = FakeBranches("release", "release/v2")

        result = await match_branch("release/v2/docs/index.html", branches)

        assert result == ("release/v2", "docs/index.html")

    async def test__only_short_branch__takes_remaining_segments(self) -> None:
        """Without release/v2 the remaining segments become the sub-path."""
        branches = FakeBranches("release")

        result = await match_branch("release/v2/docs/index.html", branches)

        assert result == ("release", "v2/docs/index.html")

    async def test__candidates__queried_longest_first(self) -> None:
        """Prefixes are tried from the full path down to a single segment."""
        branches = FakeBranches("a")

        await match_branch("a/b/c", branches)

        assert branches.queries == ["a/b/c", "a/b", "a"]

    async def test__empty_tail__uses_default_branch_root(self) -> None:
        """The bare mount prefix maps to the root of the default branch."""
        branches = FakeBranches("gh-pages")

        result = await match_branch("", branches)

        assert result == ("gh-pages", "")

    async def test__no_prefix_matches__keeps_whole_tail(self) -> None:
        """Unmatched paths are looked up verbatim in the default branch."""
        branches = FakeBranches("main")

        result = await match_branch("unknown/path.html", branches, default_branch="main")

        assert result == ("main", "unknown/path.html")

    async def test__trailing_slash__preserved_on_sub_path(self) -> None:
        """A directory request keeps its trailing slash after the split."""
        branches = FakeBranches("main")

        result = await match_branch("main/assets/", branches)

        assert result == ("main", "assets/")

    async def test__branch_only_with_slash__empty_sub_path(self) -> None:
        """When the branch consumes every segment the sub-path stays empty."""
        branches = FakeBranches("feature/new-ui")

        result = await match_branch("feature/new-ui/", branches)

        assert result == ("feature/new-ui", "")

    async def test__repeated_slashes__ignored_between_segments(self) -> None:
        """Empty segments never form part of a branch candidate."""
        branches = FakeBranches("main")

        result = await match_branch("main//css/site.css", branches)

        assert result == ("main", "css/site.css")
        assert "main/" not in branches.queries

    async def test__default_branch_missing__returns_none(self) -> None:
        """No match and no default branch is a not-found outcome."""
        branches = FakeBranches("main")

        result = await match_branch("unknown/path.html", branches)

        assert result is None

    async def test__existence_check_error__propagates(self) -> None:
        """Failures of the existence check are not treated as "no match"."""

        async def broken(name: str) -> bool:
            raise RuntimeError("git exploded")

        with pytest.raises(RuntimeError, match="git exploded"):
            await match_branch("main/index.html", broken)


class TestResolvePagesPath:
    """Tests for resolve_pages_path()."""

    async def test__empty_tail__serves_default_index(self) -> None:
        """The bare mount prefix resolves to gh-pages:index.html."""
        target = await resolve_pages_path("", FakeBranches("gh-pages"))

        assert target == PagesTarget(branch="gh-pages", path="index.html")
        assert target.spec == "gh-pages:index.html"

    async def test__directory_path__appends_index_document(self) -> None:
        """Slash-terminated sub-paths get the index document appended."""
        target = await resolve_pages_path("main/assets/", FakeBranches("main"))

        assert target == PagesTarget(branch="main", path="assets/index.html")

    async def test__file_path__unchanged(self) -> None:
        """File sub-paths are served as given."""
        branches = FakeBranches("release", "release/v2")

        target = await resolve_pages_path("release/v2/docs/index.html", branches)

        assert target == PagesTarget(branch="release/v2", path="docs/index.html")

    async def test__custom_index_document__used_for_directories(self) -> None:
        """The index document name is configurable."""
        target = await resolve_pages_path(
            "main/",
            FakeBranches("main"),
            index_document="default.htm",
        )

        assert target == PagesTarget(branch="main", path="default.htm")

    async def test__fallback_tail__normalized(self) -> None:
        """Backslashes in an unmatched tail become forward slashes."""
        target = await resolve_pages_path("docs\\guide.html", FakeBranches("gh-pages"))

        assert target == PagesTarget(branch="gh-pages", path="docs/guide.html")

    async def test__no_branches__returns_none(self) -> None:
        """Nothing to serve when the default branch does not exist."""
        branches: BranchExists = FakeBranches()

        assert await resolve_pages_path("anything.html", branches) is None


class TestNormalizeRepoPath:
    """Tests for normalize_repo_path()."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("", ""),
            ("/docs/index.html", "docs/index.html"),
            ("docs\\index.html", "docs/index.html"),
            ("assets/", "assets/"),
        ],
    )
    def test__path__normalized(self, raw: str, expected: str) -> None:
        """Leading slashes are dropped and backslashes converted."""
        assert normalize_repo_path(raw) == expected
