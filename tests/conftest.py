"""Shared test fixtures."""

import os
import subprocess
from pathlib import Path
from typing import Dict, Union

import pytest

GIT_ENV = {
    **os.environ,
    "GIT_AUTHOR_NAME": "Test Author",
    "GIT_AUTHOR_EMAIL": "author@example.com",
    "GIT_COMMITTER_NAME": "Test Author",
    "GIT_COMMITTER_EMAIL": "author@example.com",
    "GIT_CONFIG_NOSYSTEM": "1",
}

BINARY_CONTENT = b"\x89PNG\r\n\x1a\n\x00\x00\x00binary"


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=repo,
        env=GIT_ENV,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout


def commit_files(repo: Path, files: Dict[str, Union[str, bytes]], message: str) -> None:
    for name, content in files.items():
        path = repo / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", message)


def start_orphan(repo: Path, branch: str) -> None:
    git(repo, "checkout", "-q", "--orphan", branch)
    git(repo, "rm", "-rfq", ".")


@pytest.fixture(scope="session")
def git_repo(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """Build a repository with main, gh-pages and feature/new-ui branches.

    main holds sources, docs and a workflow; gh-pages and feature/new-ui are
    orphan branches holding static sites. HEAD is left on main.
    """
    repo = tmp_path_factory.mktemp("sample-repo")
    git(repo, "init", "-q", "-b", "main")
    commit_files(
        repo,
        {
            "README.md": "# Sample\n",
            "src/app.py": "print('hello')\n",
            "docs/guide.md": "Guide\n",
            ".github/workflows/ci.yml": "name: CI\n",
            "logo.xyz123": BINARY_CONTENT,
        },
        "Initial commit",
    )
    commit_files(repo, {"README.md": "# Sample\n\nMore words.\n"}, "Update readme")

    start_orphan(repo, "gh-pages")
    commit_files(
        repo,
        {
            "index.html": "<h1>gh-pages home</h1>",
            "assets/site.css": "body { color: red; }",
            "assets/index.html": "<h1>assets index</h1>",
        },
        "Publish site",
    )

    start_orphan(repo, "feature/new-ui")
    commit_files(
        repo,
        {
            "index.html": "<h1>new ui</h1>",
            "docs/index.html": "<h1>new ui docs</h1>",
        },
        "New UI preview",
    )

    git(repo, "checkout", "-q", "main")
    return repo


@pytest.fixture
def outside_repo(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A directory that git will not treat as part of any repository."""
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path.parent))
    return tmp_path
