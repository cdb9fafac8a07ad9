from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest
import yaml
from pydantic import ValidationError

from repo_fusion import settings as settings_module
from repo_fusion.config import ScanLimits
from repo_fusion.exceptions import ConfigError
from repo_fusion.settings import CONFIG_FILENAME, Settings, default_config_yaml, load_settings

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


@pytest.fixture(autouse=True)
def no_dotenv(mocker: MockerFixture) -> None:
    mocker.patch.object(settings_module, "ENV_FILE", "")


@pytest.mark.unit
def test_settings_defaults() -> None:
    s = Settings()

    assert s.root == Path(".")
    assert s.formats == ["txt", "md"]
    assert s.max_files == 10_000
    assert s.max_total_size_mb == 100
    assert s.max_file_size_kb == 1024
    assert s.allow_symlinks is False
    assert s.exclude_secrets is True
    assert s.max_symlink_audit_entries == 100
    assert s.output_directory == Path(".")


@pytest.mark.unit
@pytest.mark.parametrize(
    "bad",
    [
        {"unknown_key": 1},
        {"max_files": 0},
        {"max_total_size_mb": 0},
        {"formats": ["pdf"]},
        {"formats": []},
        {"max_workers": 65},
        {"log_level": "TRACE"},
    ],
)
def test_settings_rejects_invalid_values(bad: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        Settings(**bad)


@pytest.mark.unit
def test_scan_limits_and_output_paths(tmp_path: Path) -> None:
    s = Settings(root=tmp_path, max_line_length=80, exclude_secrets=False, formats=["md", "html"])

    assert s.scan_limits() == ScanLimits(max_line_length=80, exclude_secrets=False)
    assert s.output_paths() == {
        "md": tmp_path / "project-fusioned.md",
        "html": tmp_path / "project-fusioned.html",
    }


@pytest.mark.unit
def test_selected_extensions() -> None:
    s = Settings(extension_groups=["doc", "config"])

    assert s.selected_extensions() == {".adoc", ".md", ".rst", ".json", ".toml", ".xml", ".yaml", ".yml"}
    assert ".py" in Settings().selected_extensions()
    with pytest.raises(ConfigError, match="unknown extension group"):
        Settings(extension_groups=["nope"]).selected_extensions()


@pytest.mark.unit
def test_load_settings_without_file_uses_defaults(tmp_path: Path) -> None:
    s = load_settings(root=tmp_path)

    assert s.root == tmp_path
    assert s.max_files == 10_000


@pytest.mark.unit
def test_load_settings_reads_root_config_file(tmp_path: Path) -> None:
    (tmp_path / CONFIG_FILENAME).write_text("max_files: 50\nformats: [html]\n", encoding="utf-8")

    s = load_settings(root=tmp_path)

    assert s.max_files == 50
    assert s.formats == ["html"]


@pytest.mark.unit
def test_load_settings_explicit_file_and_relative_root(tmp_path: Path) -> None:
    cfg = tmp_path / "conf" / "fusion.yaml"
    cfg.parent.mkdir()
    cfg.write_text("root: ../project\nallow_symlinks: true\n", encoding="utf-8")

    s = load_settings(cfg)

    assert s.root == tmp_path / "conf" / ".." / "project"
    assert s.allow_symlinks is True


@pytest.mark.unit
def test_load_settings_overrides_win_and_none_is_ignored(tmp_path: Path) -> None:
    cfg = tmp_path / "c.yaml"
    cfg.write_text("max_files: 50\nmax_workers: 2\n", encoding="utf-8")

    s = load_settings(cfg, max_files=7, max_workers=None)

    assert s.max_files == 7
    assert s.max_workers == 2


@pytest.mark.unit
def test_load_settings_from_dotenv(tmp_path: Path, mocker: MockerFixture) -> None:
    cfg = tmp_path / "from-env.yaml"
    cfg.write_text("output_name: bundle\n", encoding="utf-8")
    env = tmp_path / ".env"
    env.write_text(f"REPO_FUSION_CONFIG={cfg}\n", encoding="utf-8")
    mocker.patch.object(settings_module, "ENV_FILE", str(env))

    assert load_settings().output_name == "bundle"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("max_files: [unclosed\n", "invalid YAML"),
        ("- just\n- a list\n", "top level must be a mapping"),
        ("max_files: -3\n", "max_files"),
        ("surprise: true\n", "surprise"),
    ],
)
def test_load_settings_reports_config_errors(tmp_path: Path, content: str, message: str) -> None:
    cfg = tmp_path / "bad.yaml"
    cfg.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError, match=message) as excinfo:
        load_settings(cfg)

    assert excinfo.value.code == "CONFIG_ERROR"
    assert str(cfg) in excinfo.value.message


@pytest.mark.unit
def test_load_settings_missing_explicit_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_settings(tmp_path / "absent.yaml")


@pytest.mark.unit
def test_default_config_yaml_round_trips() -> None:
    data = yaml.safe_load(default_config_yaml())

    assert Settings.model_validate(data) == Settings()
    assert data["max_files"] == 10_000
    assert "node_modules/" in data["ignore_patterns"]
