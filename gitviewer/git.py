import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

WORKFLOWS_DIR = ".github/workflows"


@dataclass
class CommandResult:
    returncode: int
    stdout: bytes
    stderr: str

    @property
    def text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")


@dataclass
class TreeEntry:
    name: str
    path: str
    mode: str
    type: str
    size: int

    @property
    def is_dir(self) -> bool:
        return self.type == "tree"


@dataclass
class Commit:
    hash: str
    parents: List[str]
    date: str
    subject: str


class GitCommandError(RuntimeError):
    def __init__(self, args: Sequence[str], returncode: Optional[int], stderr: str) -> None:
        self.git_args = list(args)
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or "no output"
        super().__init__(f"git {' '.join(self.git_args)} exited with {returncode}: {detail}")


async def run_command(*cmd: str, cwd: Optional[Path] = None) -> CommandResult:
    """Run a command asynchronously and capture its output.

    If the awaiting task is cancelled the child process is killed and reaped
    before the cancellation propagates.
    """
    printable_cmd = " ".join(cmd)
    logger.debug("$ %s", printable_cmd)
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd) if cwd else None,
    )
    try:
        stdout, stderr = await process.communicate()
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        logger.debug("cancelled: %s", printable_cmd)
        raise
    logger.debug("exit code: %s", process.returncode)
    return CommandResult(process.returncode, stdout, stderr.decode("utf-8", errors="replace"))


async def _git(repo_dir: Path, *args: str, check: bool = True) -> CommandResult:
    try:
        result = await run_command("git", *args, cwd=repo_dir)
    except (OSError, ValueError) as exc:
        # ValueError: an argument held a NUL byte.
        raise GitCommandError(args, None, str(exc)) from exc
    if check and result.returncode != 0:
        raise GitCommandError(args, result.returncode, result.stderr)
    return result


class Repository:
    """Read-only view of a git repository, backed by the ``git`` binary.

    Nothing is cached: every method queries the repository as it is now.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.name = path.name

    @classmethod
    async def open(cls, path: Path) -> "Repository":
        try:
            result = await _git(path.expanduser().resolve(), "rev-parse", "--show-toplevel")
        except GitCommandError as exc:
            raise RuntimeError(f"{path} is not a git repository (rev-parse --show-toplevel failed)") from exc
        return cls(Path(result.text.strip()))

    async def head(self) -> tuple[str, str]:
        """Return the current branch name (``HEAD`` when detached) and short hash."""
        ref_result = await _git(self.path, "symbolic-ref", "--quiet", "--short", "HEAD", check=False)
        ref = ref_result.text.strip() if ref_result.returncode == 0 else ""
        hash_result = await _git(self.path, "rev-parse", "--short", "HEAD")
        return ref or "HEAD", hash_result.text.strip()

    async def branches(self) -> List[str]:
        result = await _git(self.path, "for-each-ref", "--format=%(refname:short)", "refs/heads/")
        return [line.strip() for line in result.text.splitlines() if line.strip()]

    async def has_branch(self, name: str) -> bool:
        if not name or "\x00" in name:
            return False
        result = await _git(self.path, "show-ref", "--verify", "--quiet", f"refs/heads/{name}", check=False)
        if result.returncode == 0:
            return True
        if result.returncode == 1:
            return False
        raise GitCommandError(["show-ref", "--verify", "--quiet", f"refs/heads/{name}"], result.returncode, result.stderr)

    async def ls_tree(self, ref: str, path: str = "") -> List[TreeEntry]:
        """List the entries of the directory ``path`` at ``ref``, directories first."""
        args = ["ls-tree", "-z", "-l", ref]
        if path:
            args.extend(["--", path.rstrip("/") + "/"])
        result = await _git(self.path, *args)
        return parse_ls_tree(result.stdout)

    async def show_file(self, ref: str, path: str) -> bytes:
        return await self.show_spec(f"{ref}:{path}")

    async def show_spec(self, spec: str) -> bytes:
        """Return the raw content of a ``<ref>:<path>`` object."""
        result = await _git(self.path, "show", spec)
        return result.stdout

    async def log(self, ref: str, limit: int) -> List[Commit]:
        result = await _git(
            self.path,
            "log",
            "--date=short",
            f"-n{limit}",
            "--pretty=format:%h%x09%p%x09%ad%x09%s",
            ref,
            "--",
        )
        return parse_log(result.text)

    async def diff(self, from_ref: str, to_ref: str) -> str:
        result = await _git(self.path, "diff", "--stat", "--patch", from_ref, to_ref)
        return result.text or "No differences.\n"

    async def workflows(self, ref: str) -> List[str]:
        result = await _git(self.path, "ls-tree", "--name-only", "-z", ref, "--", f"{WORKFLOWS_DIR}/")
        return [record.strip() for record in result.text.split("\x00") if record.strip()]


def parse_ls_tree(raw: bytes) -> List[TreeEntry]:
    # Records: "<mode> <type> <object> <size>\t<path>", NUL-terminated.
    dirs: List[TreeEntry] = []
    files: List[TreeEntry] = []
    for record in raw.decode("utf-8", errors="replace").split("\x00"):
        meta, sep, path = record.partition("\t")
        if not sep:
            continue
        fields = meta.split()
        if len(fields) < 4:
            continue
        mode, entry_type, _, size_field = fields[:4]
        size = int(size_field) if size_field.isdigit() else 0
        entry = TreeEntry(name=path.rsplit("/", 1)[-1], path=path, mode=mode, type=entry_type, size=size)
        (dirs if entry.is_dir else files).append(entry)
    return dirs + files


def parse_log(raw: str) -> List[Commit]:
    commits = []
    for line in raw.splitlines():
        # "<hash>\t<parent hashes>\t<date>\t<subject>"; roots have no parents.
        parts = line.split("\t", 3)
        if len(parts) != 4:
            continue
        commits.append(Commit(hash=parts[0], parents=parts[1].split(), date=parts[2], subject=parts[3]))
    return commits
