import os
import subprocess
from datetime import datetime

import pytest

from git_analyzer import CommitRecord, FileChangeEntry, ProgressReporter


def commit(commit_hash, author, email, date, files=(), message="change"):
    """Build a CommitRecord from an ISO timestamp and (path, added, deleted) rows"""
    return CommitRecord(
        hash=commit_hash,
        author=author,
        email=email,
        date=datetime.fromisoformat(date),
        message=message,
        files=tuple(
            FileChangeEntry(
                path=path,
                changes=added + deleted,
                insertions=added,
                deletions=deleted,
            )
            for path, added, deleted in files
        ),
    )


@pytest.fixture
def quiet_reporter():
    return ProgressReporter(quiet=True)


@pytest.fixture
def make_commit():
    return commit


@pytest.fixture
def sample_commits():
    """Three commits from one author on three consecutive days."""
    return [
        commit("aaa111", "John Doe", "john@x", "2024-01-01T10:00:00+00:00"),
        commit("bbb222", "John Doe", "john@x", "2024-01-02T10:00:00+00:00"),
        commit("ccc333", "John Doe", "john@x", "2024-01-03T10:00:00+00:00"),
    ]


@pytest.fixture
def file_commits():
    """
    Four commits where the most frequently changed file (a.ts) is not the
    one with the most changed lines (big.py).
    """
    return [
        commit(
            "c1", "Alice", "alice@example.com", "2024-01-01T00:00:00+00:00",
            files=[("a.ts", 10, 0), ("big.py", 500, 0)],
        ),
        commit(
            "c2", "Bob", "bob@example.com", "2024-01-02T12:00:00+00:00",
            files=[("a.ts", 5, 2)],
        ),
        commit(
            "c3", "Carol", "carol@example.com", "2024-01-03T00:00:00+00:00",
            files=[("a.ts", 1, 1), ("b.md", 3, 0)],
        ),
        commit(
            "c4", "Alice", "alice@example.com", "2024-01-04T08:00:00+00:00",
            files=[("a.ts", 2, 0)],
        ),
    ]


@pytest.fixture
def git_repo(tmp_path):
    """
    Four commits with pinned author dates, oldest first:
      1. Alice     2024-01-01T09:00+00:00  add app.py, lib.py
      2. Bob       2024-01-02T14:30+02:00  modify app.py
      3. Alice     2024-01-03T10:00+00:00  add logo.bin (binary), readme.md
      4. A. Smith  2024-01-03T18:00-05:00  modify app.py (same email as Alice)
    """
    repo = tmp_path / "repo"
    repo.mkdir()

    def run(*args, env=None):
        subprocess.run(
            ["git", "-C", str(repo)] + list(args),
            check=True,
            capture_output=True,
            env=env,
        )

    def commit_as(name, email, date, message):
        env = dict(
            os.environ,
            GIT_AUTHOR_NAME=name,
            GIT_AUTHOR_EMAIL=email,
            GIT_AUTHOR_DATE=date,
            GIT_COMMITTER_NAME=name,
            GIT_COMMITTER_EMAIL=email,
            GIT_COMMITTER_DATE=date,
        )
        run("add", ".")
        run("commit", "-m", message, env=env)

    run("init")
    run("symbolic-ref", "HEAD", "refs/heads/main")
    run("config", "user.email", "tester@test.com")
    run("config", "user.name", "Tester")
    run("config", "commit.gpgsign", "false")

    (repo / "app.py").write_text("print('hello')\n", encoding="utf-8")
    (repo / "lib.py").write_text("def helper(): pass\n", encoding="utf-8")
    commit_as("Alice", "alice@example.com", "2024-01-01T09:00:00+00:00", "initial")

    (repo / "app.py").write_text("print('hello')\nprint('world')\n", encoding="utf-8")
    commit_as("Bob", "bob@example.com", "2024-01-02T14:30:00+02:00", "update app")

    (repo / "logo.bin").write_bytes(b"\x00\x01\x02\xff\x00binary")
    (repo / "readme.md").write_text("# App\n\nUsage notes.\n", encoding="utf-8")
    commit_as("Alice", "alice@example.com", "2024-01-03T10:00:00+00:00", "add assets")

    (repo / "app.py").write_text("print('world')\n", encoding="utf-8")
    commit_as("A. Smith", "alice@example.com", "2024-01-03T18:00:00-05:00", "trim app")

    return str(repo)
