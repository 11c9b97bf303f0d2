import pytest
import json
import subprocess
from datetime import datetime, timezone

import jsonschema
from click.testing import CliRunner

from git_analyzer import (
    CommitAggregator,
    ConfigResolver,
    FileAggregator,
    InvalidOptionsError,
    ProgressReporter,
    RepositoryInfo,
    build_report,
    load_config_file,
    main,
    render_text,
    write_json_report,
)

FILE_STAT_SCHEMA = {
    "type": "object",
    "required": [
        "path", "change_count", "total_changes", "total_insertions",
        "total_deletions", "author_count", "authors", "first_seen", "last_modified",
    ],
    "properties": {
        "path": {"type": "string"},
        "change_count": {"type": "integer", "minimum": 1},
        "authors": {"type": "array", "items": {"type": "string"}},
    },
}

AUTHOR_SCHEMA = {
    "type": "object",
    "required": ["name", "email", "commit_count", "first_commit", "last_commit"],
    "properties": {"commit_count": {"type": "integer", "minimum": 1}},
}

REPORT_SCHEMA = {
    "type": "object",
    "required": [
        "generator_version", "schema_version", "generated_at",
        "repository", "analysis", "file_analysis",
    ],
    "properties": {
        "schema_version": {"const": "1.0.0"},
        "repository": {
            "type": "object",
            "required": ["path", "branch", "remotes", "total_commits"],
        },
        "analysis": {
            "type": "object",
            "required": [
                "total_commits", "date_range", "average_commits_per_day", "authors",
                "top_authors", "commits_by_day", "commits_by_hour", "commits_by_day_of_week",
            ],
            "properties": {
                "date_range": {
                    "type": "object",
                    "required": ["earliest", "latest", "span_days"],
                    "properties": {"span_days": {"type": "integer", "minimum": 1}},
                },
                "authors": {"type": "array", "items": AUTHOR_SCHEMA},
                "top_authors": {"type": "array", "items": AUTHOR_SCHEMA},
                "commits_by_hour": {
                    "type": "object",
                    "minProperties": 24,
                    "maxProperties": 24,
                },
                "commits_by_day_of_week": {
                    "type": "object",
                    "minProperties": 7,
                    "maxProperties": 7,
                },
            },
        },
        "file_analysis": {
            "oneOf": [
                {"type": "null"},
                {
                    "type": "object",
                    "required": [
                        "total_files", "total_changes", "total_insertions",
                        "total_deletions", "net_change", "hotspots", "largest_changes",
                        "churn_leaders", "collaboration_hotspots",
                    ],
                    "properties": {
                        "hotspots": {"type": "array", "items": FILE_STAT_SCHEMA},
                        "largest_changes": {"type": "array", "items": FILE_STAT_SCHEMA},
                        "churn_leaders": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "required": ["path", "change_count", "days_active", "churn_rate"],
                            },
                        },
                    },
                },
            ],
        },
    },
}


def run_cli(*args):
    return CliRunner().invoke(main, [str(a) for a in args])

# ============================================================================
# CLI: JSON OUTPUT
# ============================================================================

def test_cli_json_report_validates(git_repo):
    result = run_cli(git_repo, "--json")
    assert result.exit_code == 0, result.output

    report = json.loads(result.output)
    jsonschema.validate(report, REPORT_SCHEMA)

    assert report["repository"]["branch"] == "main"
    assert report["repository"]["total_commits"] == 4

    analysis = report["analysis"]
    assert analysis["total_commits"] == 4
    assert analysis["date_range"]["span_days"] == 3
    assert analysis["average_commits_per_day"] == 1.33
    assert analysis["top_authors"][0]["name"] == "A. Smith"
    assert analysis["commits_by_day_of_week"]["Monday"] == 1
    assert analysis["commits_by_day_of_week"]["Wednesday"] == 2

    files = report["file_analysis"]
    assert "files" not in files
    assert files["hotspots"][0]["path"] == "app.py"
    assert files["net_change"] == 5
    assert [c["path"] for c in files["collaboration_hotspots"]] == ["app.py"]

def test_cli_hour_clock_option(git_repo):
    local = json.loads(run_cli(git_repo, "--json").output)
    utc = json.loads(run_cli(git_repo, "--json", "--hour-clock", "utc").output)
    assert local["analysis"]["commits_by_hour"]["14"] == 1
    assert utc["analysis"]["commits_by_hour"]["14"] == 0
    assert utc["analysis"]["commits_by_hour"]["23"] == 1

def test_cli_top_limits_rankings(git_repo):
    report = json.loads(run_cli(git_repo, "--json", "--top", "1").output)
    assert len(report["analysis"]["top_authors"]) == 1
    assert len(report["file_analysis"]["hotspots"]) == 1
    assert len(report["analysis"]["authors"]) == 2

def test_cli_skip_files(git_repo):
    report = json.loads(run_cli(git_repo, "--json", "--skip-files").output)
    assert report["file_analysis"] is None
    jsonschema.validate(report, REPORT_SCHEMA)

def test_cli_filters(git_repo):
    report = json.loads(run_cli(git_repo, "--json", "-m", "2").output)
    assert report["analysis"]["total_commits"] == 2

    report = json.loads(run_cli(git_repo, "--json", "-a", "bob@example.com").output)
    assert [a["name"] for a in report["analysis"]["authors"]] == ["Bob"]

def test_cli_presets(git_repo):
    quick = json.loads(run_cli(git_repo, "--json", "--preset", "quick").output)
    assert quick["file_analysis"] is None

    full = json.loads(run_cli(git_repo, "--json", "--preset", "full").output)
    assert len(full["file_analysis"]["files"]) == 4

def test_cli_writes_output_file(git_repo, tmp_path):
    out = tmp_path / "reports" / "analysis.json"
    result = run_cli(git_repo, "--json", "-o", out)
    assert result.exit_code == 0
    assert json.loads(out.read_text(encoding="utf-8")) == json.loads(result.output)

# ============================================================================
# CLI: TEXT OUTPUT & MESSAGES
# ============================================================================

def test_cli_text_report(git_repo):
    result = run_cli(git_repo, "--no-color")
    assert result.exit_code == 0, result.output
    assert "GIT REPOSITORY ANALYSIS" in result.output
    assert "A. Smith" in result.output
    assert "Most Frequently Changed Files" in result.output
    assert "Collaboration Hotspots" in result.output

def test_cli_quiet_text_report(git_repo):
    result = run_cli(git_repo, "-q", "--no-color")
    assert result.exit_code == 0
    assert "Git Log Processing" not in result.output
    assert "GIT REPOSITORY ANALYSIS" in result.output

def test_cli_version():
    result = run_cli("--version")
    assert result.exit_code == 0
    assert "0.1.0" in result.output

def test_cli_invalid_repo(tmp_path, monkeypatch):
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))
    plain = tmp_path / "plain"
    plain.mkdir()
    result = run_cli(plain, "--no-color")
    assert result.exit_code == 1
    assert "Invalid git repository" in result.output

def test_cli_empty_repository(tmp_path):
    repo = tmp_path / "empty"
    repo.mkdir()
    subprocess.run(["git", "init", str(repo)], check=True, capture_output=True)
    result = run_cli(repo, "--no-color")
    assert result.exit_code == 0
    assert "Repository has no commits yet" in result.output

def test_cli_no_matching_commits(git_repo):
    result = run_cli(git_repo, "--no-color", "-a", "nobody@nowhere")
    assert result.exit_code == 0
    assert "No commits found matching the criteria" in result.output

def test_cli_invalid_top(git_repo):
    result = run_cli(git_repo, "--no-color", "--top", "0")
    assert result.exit_code == 1
    assert "Invalid options" in result.output

# ============================================================================
# CONFIGURATION
# ============================================================================

def test_cli_discovers_config_in_repository(git_repo):
    config = "max-count: 2\nskip-files: true\n"
    with open(f"{git_repo}/.git-analyzer.yaml", "w", encoding="utf-8") as f:
        f.write(config)

    report = json.loads(run_cli(git_repo, "--json").output)
    assert report["analysis"]["total_commits"] == 2
    assert report["file_analysis"] is None

def test_cli_explicit_config_overridden_by_flags(git_repo, tmp_path):
    config_file = tmp_path / "settings.json"
    config_file.write_text('{"top": 1, "max_count": 3}', encoding="utf-8")

    report = json.loads(run_cli(git_repo, "--json", "--config", config_file, "-m", "4").output)
    assert report["analysis"]["total_commits"] == 4
    assert len(report["analysis"]["top_authors"]) == 1

def test_cli_bad_config(git_repo, tmp_path):
    config_file = tmp_path / "bad.yaml"
    config_file.write_text("- just\n- a list\n", encoding="utf-8")
    result = run_cli(git_repo, "--no-color", "--config", config_file)
    assert result.exit_code == 1
    assert "Failed to load configuration" in result.output

def test_config_loading(tmp_path):
    # JSON
    f = tmp_path / "config.json"
    f.write_text('{"key": "value"}', encoding="utf-8")
    assert load_config_file(str(f))["key"] == "value"

    # YAML
    y = tmp_path / "config.yaml"
    y.write_text("key: value", encoding="utf-8")
    assert load_config_file(str(y))["key"] == "value"

    # Empty YAML
    empty = tmp_path / "empty.yml"
    empty.write_text("", encoding="utf-8")
    assert load_config_file(str(empty)) == {}

    # Missing file
    with pytest.raises(FileNotFoundError):
        load_config_file(str(tmp_path / "nonexistent.json"))

    # Unsupported extension
    bad = tmp_path / "config.txt"
    bad.touch()
    with pytest.raises(InvalidOptionsError):
        load_config_file(str(bad))

def test_config_resolver(tmp_path):
    repo = tmp_path / "repo"
    repo.mkdir()
    (repo / ".git-analyzer.yaml").write_text(
        "preset: quick\ntop: 5\nhour-clock: utc\n", encoding="utf-8"
    )

    # Auto-discovery and kebab-case keys
    cr = ConfigResolver({}, None, None, str(repo))
    assert cr.config_path.endswith(".git-analyzer.yaml")
    assert cr.get("hour_clock") == "utc"

    # Precedence: CLI > Config > Preset > default
    cr = ConfigResolver({"top": 3, "skip_files": None}, None, None, str(repo))
    assert cr.get("top") == 3
    assert cr.get("skip_files") is True
    assert cr.get("max_count") == 500
    assert cr.get("missing", "fallback") == "fallback"

    # An explicit preset wins over the config file's preset
    cr = ConfigResolver({}, None, "full", str(repo))
    assert cr.get("include_files") is True
    assert cr.get("top") == 5

def test_config_resolver_unknown_preset(tmp_path):
    config_file = tmp_path / "c.json"
    config_file.write_text('{"preset": "turbo"}', encoding="utf-8")
    with pytest.raises(InvalidOptionsError):
        ConfigResolver({}, str(config_file), None, str(tmp_path))

# ============================================================================
# REPORT RENDERING
# ============================================================================

@pytest.fixture
def report(file_commits):
    commit_agg = CommitAggregator()
    file_analysis = FileAggregator().analyze(file_commits)
    return build_report(
        RepositoryInfo(path="/work/project", current_branch="main", remotes=("origin",), total_commits=4),
        commit_agg.analyze(file_commits),
        commit_agg.commits_by_day_of_week(file_commits),
        file_analysis=file_analysis,
        churn_leaders=FileAggregator.files_by_churn_rate(
            file_analysis.files, reference_time=datetime(2024, 1, 11, tzinfo=timezone.utc)
        ),
        collaboration=FileAggregator.collaboration_hotspots(file_analysis.files),
        generated_at=datetime(2024, 2, 1, tzinfo=timezone.utc),
    )

def test_build_report(report):
    jsonschema.validate(report, REPORT_SCHEMA)
    assert report["generated_at"] == "2024-02-01T00:00:00+00:00"
    assert report["repository"]["remotes"] == ["origin"]
    assert list(report["analysis"]["commits_by_day_of_week"]) == [
        "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
    ]
    assert report["file_analysis"]["churn_leaders"][0] == {
        "path": "a.ts", "change_count": 4, "days_active": 10, "churn_rate": 0.4,
    }
    assert report["file_analysis"]["collaboration_hotspots"] == [
        {
            "path": "a.ts",
            "author_count": 3,
            "authors": ["alice@example.com", "bob@example.com", "carol@example.com"],
        }
    ]
    # Round-trips through the json module
    assert json.loads(json.dumps(report))["analysis"]["total_commits"] == 4

def test_render_text(report):
    text = render_text(report, use_colors=False)
    assert "GIT REPOSITORY ANALYSIS" in text
    assert "/work/project" in text
    assert "Alice" in text
    assert "0:00 (2 commits)" in text
    assert "Busiest Weekday: Monday (1 commits)" in text
    assert "+518" in text
    assert "a.ts" in text
    assert "\x1b[" not in text

def test_render_text_negative_net_change(report):
    report["file_analysis"]["net_change"] = -42
    assert "-42" in render_text(report, use_colors=False)

def test_render_text_without_file_analysis(report):
    report["file_analysis"] = None
    text = render_text(report, use_colors=True)
    assert "Code Hotspots" not in text
    assert "\x1b[" in text

def test_write_json_report(report, tmp_path):
    out = tmp_path / "nested" / "report.json"
    write_json_report(str(out), report)
    assert json.loads(out.read_text(encoding="utf-8")) == json.loads(json.dumps(report))

def test_progress_reporter(capsys):
    pr = ProgressReporter(quiet=False, verbose=True, use_colors=False)
    pr.stage_start("Stage 1", "Details")
    pr.info("Info")
    pr.warning("Warn")
    pr.success("Done")
    pr.stage_complete("Stage 1", {"Stat": 1})
    pr.error("Broken")

    captured = capsys.readouterr()
    assert "Stage 1" in captured.out
    assert "Warn" in captured.out
    assert "Stat: 1" in captured.out
    assert "Broken" in captured.err

def test_progress_reporter_quiet(capsys):
    pr = ProgressReporter(quiet=True)
    pr.stage_start("Stage 1")
    pr.info("Info")
    assert pr.create_progress_bar(10) is None
    pr.error("Still shown")

    captured = capsys.readouterr()
    assert captured.out == ""
    assert "Still shown" in captured.err
