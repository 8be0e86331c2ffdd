"""Tests for src.pipeline.config covering defaults, validation, and env/CLI resolution.

Run with coverage to validate configuration handling:
    pytest tests/test_config.py --maxfail=1 -v --cov=src.pipeline.config --cov-report=term-missing
"""

from dataclasses import FrozenInstanceError, replace

import pytest

from src.pipeline import config
from src.pipeline.errors import ConfigError


def _valid(**overrides):
    values = dict(
        github_token="tok",
        organizations=("acme",),
        search_string="old.host",
        replacement_string="new.host",
    )
    values.update(overrides)
    return config.RunConfig(**values)


def test_defaults_match_tool_conventions():
    cfg = _valid()
    assert ".json" in cfg.include_extensions
    assert "*.lock" in cfg.exclude_patterns
    assert cfg.include_archived is False
    assert cfg.repository_types == frozenset({"public", "private", "internal"})
    assert cfg.branch_prefix == "automated-string-replacement"
    assert cfg.pr_labels == ("automated", "maintenance")
    assert cfg.max_repos_per_org == 50
    assert cfg.dry_run is False


def test_run_config_is_immutable():
    cfg = _valid()
    with pytest.raises(FrozenInstanceError):
        cfg.search_string = "other"


def test_templates_render_every_placeholder():
    cfg = _valid(pr_title_template="{searchString}->{replacementString} ({searchString})")
    assert cfg.pr_title == "old.host->new.host (old.host)"
    assert "`old.host`" in cfg.pr_body
    assert cfg.commit_message == "Replace old.host with new.host"


def test_validate_accepts_valid_config():
    assert config.validate_config(_valid()) == []


def test_validate_rejects_identical_strings():
    errors = config.validate_config(_valid(replacement_string="old.host"))
    assert "Search and replacement strings cannot be the same" in errors


@pytest.mark.parametrize(
    "overrides,expected",
    [
        ({"github_token": ""}, "GitHub token is required"),
        ({"organizations": ()}, "At least one organization must be specified"),
        ({"search_string": ""}, "Search string is required"),
        ({"replacement_string": ""}, "Replacement string is required"),
        ({"repository_types": frozenset({"secret"})}, "Unknown repository types: secret"),
        ({"max_repos_per_org": -1}, "Max repos per org cannot be negative"),
        ({"max_workers": 0}, "Max workers must be at least 1"),
    ],
)
def test_validate_reports_each_problem(overrides, expected):
    assert expected in config.validate_config(_valid(**overrides))


def test_ensure_valid_config_raises_config_error():
    with pytest.raises(ConfigError) as excinfo:
        config.ensure_valid_config(_valid(github_token="", organizations=()))
    assert len(excinfo.value.errors) == 2


def test_split_list_and_parse_bool():
    assert config.split_list(" a, b ,,a ") == ("a", "b")
    assert config.split_list(None) == ()
    assert config.parse_bool("TRUE") is True
    assert config.parse_bool("no") is False
    assert config.parse_bool(None, default=True) is True


def test_load_config_from_env():
    env = {
        "GITHUB_TOKEN": "tok",
        "GITHUB_ORGANIZATIONS": "acme, beta,acme",
        "SEARCH_STRING": "old.host",
        "REPLACEMENT_STRING": "new.host",
        "DRY_RUN": "true",
        "MAX_REPOS_PER_ORG": "7",
        "EXCLUDE_PATTERNS": "vendor/,*.min.js",
        "REPOSITORY_TYPES": "Public",
        "PR_LABELS": "bot",
        "MAX_WORKERS": "2",
    }
    cfg = config.load_config_from_env(env, secrets_tokens=[])
    assert cfg.github_token == "tok"
    assert cfg.organizations == ("acme", "beta")
    assert cfg.dry_run is True
    assert cfg.max_repos_per_org == 7
    assert cfg.exclude_patterns == frozenset({"vendor/", "*.min.js"})
    assert cfg.repository_types == frozenset({"public"})
    assert cfg.pr_labels == ("bot",)
    assert cfg.max_workers == 2
    assert config.validate_config(cfg) == []


def test_load_config_falls_back_to_secrets_token():
    cfg = config.load_config_from_env({}, secrets_tokens=["s1", "s2"])
    assert cfg.github_token == "s1"
    assert cfg.tokens == ("s1", "s2")


def test_load_config_rejects_bad_integers():
    with pytest.raises(ConfigError):
        config.load_config_from_env({"MAX_REPOS_PER_ORG": "many"}, secrets_tokens=[])


def test_cli_flags_override_environment():
    env = {"GITHUB_TOKEN": "tok", "GITHUB_ORGANIZATIONS": "acme", "SEARCH_STRING": "a", "REPLACEMENT_STRING": "b"}
    args = config.parse_args([
        "--org", "beta",
        "--org", "gamma",
        "--search", "old.host",
        "--replace", "new.host",
        "--dry-run",
        "--max-workers", "3",
        "--label", "infra",
        "--branch-prefix", "swap-host",
        "--include-archived",
    ])
    cfg = config.resolve_config(args, env=env, secrets_tokens=[])
    assert cfg.organizations == ("beta", "gamma")
    assert cfg.search_string == "old.host"
    assert cfg.replacement_string == "new.host"
    assert cfg.dry_run is True
    assert cfg.max_workers == 3
    assert cfg.pr_labels == ("infra",)
    assert cfg.branch_prefix == "swap-host"
    assert cfg.include_archived is True


def test_cli_without_flags_keeps_environment():
    env = {"GITHUB_TOKEN": "tok", "GITHUB_ORGANIZATIONS": "acme", "DRY_RUN": "true"}
    cfg = config.resolve_config(config.parse_args([]), env=env, secrets_tokens=[])
    assert cfg == replace(config.load_config_from_env(env, secrets_tokens=[]))


@pytest.mark.parametrize(
    "argv,env,expected",
    [
        ([], {}, "INFO"),
        ([], {"LOG_LEVEL": "warn"}, "WARNING"),
        (["--log-level", "debug"], {"LOG_LEVEL": "ERROR"}, "DEBUG"),
        ([], {"LOG_LEVEL": "chatty"}, "INFO"),
    ],
)
def test_resolve_log_level(argv, env, expected):
    assert config.resolve_log_level(config.parse_args(argv), env) == expected
