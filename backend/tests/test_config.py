"""Tests for configuration loading."""

import pytest

from learnflow.config import (
    Settings,
    load_known_models,
    load_prompt,
    load_task_profiles,
    model_family_of,
)
from learnflow.models.schemas import AITaskType

MODELS_YAML = """
known_models:
  - name: model-a
    supported_operations: [generateContent]
task_profiles:
  summary_quick:
    primary: model-a
    fallbacks: [model-b]
  quiz_generation:
    primary: model-b
"""


@pytest.fixture
def tmp_settings(tmp_path) -> Settings:
    config_dir = tmp_path / "config"
    (config_dir / "prompts" / "summarization").mkdir(parents=True)
    (config_dir / "models.yaml").write_text(MODELS_YAML, encoding="utf-8")
    (config_dir / "prompts" / "summarization" / "system.md").write_text("generic", encoding="utf-8")
    (config_dir / "prompts" / "summarization" / "system_gemini.md").write_text("gemini", encoding="utf-8")
    return Settings(_env_file=None, config_dir=config_dir, prompts_dir=tmp_path / "external")


class TestModelsConfig:
    """Tests for models.yaml loaders."""

    def test_task_profiles(self, tmp_settings):
        profiles = load_task_profiles(tmp_settings)

        assert profiles["summary_quick"].chain == ["model-a", "model-b"]
        assert profiles["quiz_generation"].fallbacks == []

    def test_known_models(self, tmp_settings):
        [model] = load_known_models(tmp_settings)
        assert model.name == "model-a"
        assert model.supports("generateContent")

    def test_builtin_profiles_cover_all_task_types(self, settings):
        profiles = load_task_profiles(settings)
        assert set(profiles) == {t.value for t in AITaskType}


class TestLoadPrompt:
    """Tests for prompt lookup order."""

    def test_model_specific_prompt(self, tmp_settings):
        assert load_prompt("summarization", "system", "gemini-2.5-flash", tmp_settings) == "gemini"

    def test_generic_fallback(self, tmp_settings):
        assert load_prompt("summarization", "system", "claude-sonnet-4-5", tmp_settings) == "generic"

    def test_external_prompts_win(self, tmp_settings):
        external = tmp_settings.prompts_dir / "summarization"
        external.mkdir(parents=True)
        (external / "system.md").write_text("external", encoding="utf-8")

        assert load_prompt("summarization", "system", settings=tmp_settings) == "external"

    def test_missing_prompt(self, tmp_settings):
        with pytest.raises(FileNotFoundError):
            load_prompt("summarization", "detailed", settings=tmp_settings)


class TestModelFamily:
    @pytest.mark.parametrize(
        "model,family",
        [("gemini-2.5-flash", "gemini"), ("claude-sonnet-4-5", "claude"), ("gemma3:12b", "gemma")],
    )
    def test_family(self, model, family):
        assert model_family_of(model) == family
