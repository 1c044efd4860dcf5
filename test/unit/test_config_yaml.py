"""Unit tests for YAML configuration loading."""

import pytest

import config as config_module

_ENV_KEYS = [
    "DATABASE_URL",
    "LOG_LEVEL",
    "LOG_JSON",
    "USER_TIMEZONE",
    "OVERLOAD_THRESHOLD",
    "IMPROVEMENT_MARGIN",
    "ELIGIBLE_ROLES",
    "DEADLINE_INTERVAL_SECONDS",
    "BOTTLENECK_INTERVAL_SECONDS",
    "RECURRENCE_INTERVAL_SECONDS",
    "SCHEDULER_MAX_WORKERS",
    "ADVISORY_ENABLED",
    "ADVISORY_URL",
    "ADVISORY_TIMEOUT_SECONDS",
]


def _clear_env(monkeypatch, keys=_ENV_KEYS):
    """Clear environment variables for config tests."""
    for key in keys:
        monkeypatch.delenv(key, raising=False)


def _use_paths(monkeypatch, default, user=(), secrets=()):
    monkeypatch.setattr(config_module, "_DEFAULT_CONFIG_PATH", default)
    monkeypatch.setattr(config_module, "_USER_CONFIG_PATHS", list(user))
    monkeypatch.setattr(config_module, "_USER_SECRETS_PATHS", list(secrets))


def test_yaml_precedence(monkeypatch, tmp_path):
    """Environment variables override secrets, user, and default YAML."""
    defaults = tmp_path / "defaults.yml"
    user_cfg = tmp_path / "user.yml"
    secrets = tmp_path / "secrets.yml"

    defaults.write_text(
        "\n".join(
            [
                "workload:",
                "  overload_threshold: 30",
                "  improvement_margin: 5",
                "scheduler:",
                "  recurrence_interval_seconds: 120",
                "  max_workers: 2",
                "advisory:",
                "  url: http://default",
            ]
        ),
        encoding="utf-8",
    )
    user_cfg.write_text(
        "\n".join(
            [
                "workload:",
                "  overload_threshold: 35",
                "  improvement_margin: 6",
                "scheduler:",
                "  recurrence_interval_seconds: 90",
                "advisory:",
                "  url: http://user",
            ]
        ),
        encoding="utf-8",
    )
    secrets.write_text(
        "\n".join(
            [
                "workload:",
                "  improvement_margin: 7",
                "advisory:",
                "  url: http://secrets",
            ]
        ),
        encoding="utf-8",
    )

    _clear_env(monkeypatch)
    monkeypatch.setenv("OVERLOAD_THRESHOLD", "50")
    _use_paths(monkeypatch, defaults, [user_cfg], [secrets])

    settings = config_module.Settings()

    assert settings.workload.overload_threshold == 50
    assert settings.workload.improvement_margin == 7
    assert settings.scheduler.recurrence_interval_seconds == 90
    assert settings.scheduler.max_workers == 2
    assert settings.advisory.url == "http://secrets"


def test_missing_yaml_files(monkeypatch, tmp_path):
    """Missing YAML files fall back to environment settings and defaults."""
    _clear_env(monkeypatch)
    monkeypatch.setenv("DATABASE_URL", "sqlite:///env.db")
    monkeypatch.setenv("ELIGIBLE_ROLES", "[\"Nurse\", \"pharmacist\"]")
    monkeypatch.setenv("LOG_JSON", "no")
    _use_paths(
        monkeypatch,
        tmp_path / "missing-default.yml",
        [tmp_path / "missing-user.yml"],
        [tmp_path / "missing-secrets.yml"],
    )

    settings = config_module.Settings()

    assert settings.database.url == "sqlite:///env.db"
    assert settings.workload.eligible_roles == ["nurse", "pharmacist"]
    assert settings.log_json is False
    assert settings.workload.overload_threshold == 40.0
    assert settings.scheduler.deadline_window_hours == 24


def test_non_mapping_yaml_raises(monkeypatch, tmp_path):
    """Non-mapping YAML raises a validation error."""
    defaults = tmp_path / "defaults.yml"
    defaults.write_text("- just\n- a\n- list\n", encoding="utf-8")
    _use_paths(monkeypatch, defaults)

    with pytest.raises(ValueError, match="Config file must contain a mapping"):
        config_module.Settings()


def test_department_overrides(monkeypatch, tmp_path):
    """Per-department overrides replace only the fields they set."""
    defaults = tmp_path / "defaults.yml"
    defaults.write_text(
        "\n".join(
            [
                "workload:",
                "  overload_threshold: 40",
                "  improvement_margin: 10",
                "  department_overrides:",
                "    icu:",
                "      overload_threshold: 25",
            ]
        ),
        encoding="utf-8",
    )
    _clear_env(monkeypatch)
    _use_paths(monkeypatch, defaults)

    workload = config_module.Settings().workload

    assert workload.threshold_for("icu") == 25
    assert workload.margin_for("icu") == 10
    assert workload.threshold_for("ward-a") == 40


@pytest.mark.parametrize(
    "lines",
    [
        ["advisory:", "  enabled: true"],
        ["workload:", "  overload_threshold: -1"],
        ["workload:", "  eligible_roles: []"],
        ["scheduler:", "  max_workers: 0"],
        ["user:", "  timezone: Mars/Olympus"],
        ["log_level: chatty"],
    ],
)
def test_invalid_values_are_rejected(monkeypatch, tmp_path, lines):
    """Invalid configuration values fail validation."""
    defaults = tmp_path / "defaults.yml"
    defaults.write_text("\n".join(lines), encoding="utf-8")
    _clear_env(monkeypatch)
    _use_paths(monkeypatch, defaults)

    with pytest.raises(ValueError):
        config_module.Settings()
