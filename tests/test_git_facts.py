"""Tests for the git facts used to describe a triggering event."""

import shutil
import subprocess

import pytest

from relayci.git_facts.git import changed_since, current_ref, head_sha

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def _git(repo, *args):
    subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True)


@pytest.fixture
def repo(tmp_path):
    _git(tmp_path, "init", "-q", "-b", "main")
    _git(tmp_path, "config", "user.email", "ci@example.invalid")
    _git(tmp_path, "config", "user.name", "ci")
    (tmp_path / "README").write_text("hello\n")
    _git(tmp_path, "add", "README")
    _git(tmp_path, "commit", "-q", "-m", "initial")
    return tmp_path


class TestGitFacts:
    def test_ref_and_sha(self, repo):
        assert current_ref(repo) == "refs/heads/main"
        assert len(head_sha(repo)) == 40

    def test_detached_head_reports_sha(self, repo):
        sha = head_sha(repo)
        _git(repo, "checkout", "-q", "--detach")
        assert current_ref(repo) == sha

    def test_changed_since_includes_local_work(self, repo):
        _git(repo, "checkout", "-q", "-b", "feature")
        (repo / "src.py").write_text("x = 1\n")
        _git(repo, "add", "src.py")
        _git(repo, "commit", "-q", "-m", "add src")
        (repo / "README").write_text("changed\n")
        (repo / "notes.txt").write_text("untracked\n")

        assert changed_since("main", cwd=repo) == ["README", "notes.txt", "src.py"]

    def test_not_a_repository(self, tmp_path):
        with pytest.raises(subprocess.CalledProcessError):
            head_sha(tmp_path)
