# git.py
# Small wrapper around the Git CLI.
# Source control is an external collaborator: the engine only asks it for
# facts about the working copy (ref, sha, changed files) to describe the
# triggering event. Nothing else in the package shells out to git directly,
# except the `checkout` action which runs inside a runner.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stripped stdout.

    Raises:
        subprocess.CalledProcessError: git exited non-zero (not a repo, bad ref...)
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Full SHA of HEAD. Used as `github.sha` for local runs."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_ref(cwd: Optional[str | Path] = None) -> str:
    """
    Fully qualified ref of the current branch (``refs/heads/main``).

    A detached HEAD has no branch; the commit SHA is returned instead.
    """
    try:
        return _git(["symbolic-ref", "-q", "HEAD"], cwd=cwd)
    except subprocess.CalledProcessError:
        return head_sha(cwd=cwd)


def is_dirty(cwd: Optional[str | Path] = None) -> bool:
    """True when there are modified, staged or untracked files."""
    return _git(["status", "--porcelain"], cwd=cwd) != ""


def merge_base(with_ref: str = "origin/main", cwd: Optional[str | Path] = None) -> str:
    """Common ancestor of HEAD and `with_ref` (where the branch diverged)."""
    return _git(["merge-base", "HEAD", with_ref], cwd=cwd)


def changed_files(base: str, head: str = "HEAD", cwd: Optional[str | Path] = None) -> List[str]:
    """Paths (relative to the repo root) changed between two refs."""
    out = _git(["diff", "--name-only", f"{base}..{head}"], cwd=cwd)
    if not out:
        return []
    return out.splitlines()


def changed_since(compare_ref: str, cwd: Optional[str | Path] = None) -> List[str]:
    """
    Files changed on this branch relative to `compare_ref`, plus uncommitted
    and untracked files, so path filters see local work too.
    """
    files = set(changed_files(merge_base(compare_ref, cwd=cwd), "HEAD", cwd=cwd))
    if is_dirty(cwd=cwd):
        for args in (
            ["diff", "--name-only"],
            ["diff", "--name-only", "--cached"],
            ["ls-files", "--others", "--exclude-standard"],
        ):
            out = _git(args, cwd=cwd)
            if out:
                files.update(out.splitlines())
    return sorted(files)
