"""Tests for oracle routing (no network calls)."""

import asyncio

import pytest

from livingmemory.model_router import (
    ModelConfig, ModelRouter, ModelTier, OracleError, RoutedOracle,
)

CONFIG = """
models:
  cheap:
    provider: openai
    name: small-model
    base_url: http://localhost:9999/v1
  mid:
    provider: anthropic
    name: big-model
    max_tokens: 2048

task_routing:
  classify: cheap
  reflect_extra: premium

default_tier: mid
timeout_seconds: 5
temperature: 0.4
"""


@pytest.fixture
def no_keys(monkeypatch):
    for var in ("ANTHROPIC_API_KEY", "OPENAI_API_KEY", "OPENAI_BASE_URL"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def router(tmp_path, no_keys):
    path = tmp_path / "models.yaml"
    path.write_text(CONFIG)
    return ModelRouter(config_path=str(path))


class TestModelRouter:
    """Tests for config loading and task routing."""

    def test_loads_config(self, router):
        assert router.models[ModelTier.CHEAP].base_url == "http://localhost:9999/v1"
        assert router.models[ModelTier.MID].max_tokens == 2048
        assert router.timeout == 5.0
        assert router.default_temperature == 0.4

    def test_routes_by_task(self, router):
        assert router.select_model("classify").name == "small-model"
        # Built-in routing for tasks the file doesn't mention
        assert router.select_model("consolidate").name == "big-model"
        # Unknown task goes to the default tier
        assert router.select_model("something-else").name == "big-model"

    def test_unconfigured_tier_falls_back(self, router):
        assert router.select_model("reflect_extra").name == "small-model"

    def test_missing_config_uses_defaults(self, tmp_path, no_keys):
        router = ModelRouter(config_path=str(tmp_path / "missing.yaml"))
        assert router.models[ModelTier.CHEAP].provider == "anthropic"
        assert ModelTier.MID in router.models

    def test_no_models_configured(self, tmp_path, no_keys):
        path = tmp_path / "empty.yaml"
        path.write_text("models: {}\n")
        router = ModelRouter(config_path=str(path))
        with pytest.raises(OracleError):
            router.select_model("merge")

    def test_for_task_binds_task_and_temperature(self, router):
        oracle = router.for_task("classify", temperature=0.0)
        assert isinstance(oracle, RoutedOracle)
        assert oracle.task_type == "classify"
        assert oracle.temperature == 0.0

    def test_missing_api_key_is_an_oracle_error(self, router):
        with pytest.raises(OracleError):
            asyncio.run(router.generate("hello", task_type="consolidate"))
        with pytest.raises(OracleError):
            asyncio.run(router.generate("hello", task_type="classify"))

    def test_unknown_provider(self, router):
        router.models[ModelTier.MID] = ModelConfig(
            provider="carrier-pigeon", name="coo", tier=ModelTier.MID,
        )
        with pytest.raises(OracleError):
            asyncio.run(router.generate("hello", task_type="temporal"))

    def test_non_text_content_rejected(self, router, monkeypatch):
        async def fake_invoke(model, prompt, temperature=0.2):
            return None

        monkeypatch.setattr(router, "invoke", fake_invoke)
        with pytest.raises(OracleError):
            asyncio.run(router.generate("hello"))

    def test_routed_oracle_passes_temperature(self, router, monkeypatch):
        seen = {}

        async def fake_invoke(model, prompt, temperature=0.2):
            seen["model"] = model.name
            seen["temperature"] = temperature
            seen["prompt"] = prompt
            return "ok"

        monkeypatch.setattr(router, "invoke", fake_invoke)
        oracle = router.for_task("classify", temperature=0.0)

        assert asyncio.run(oracle.generate("which categories?")) == "ok"
        assert seen == {"model": "small-model", "temperature": 0.0,
                        "prompt": "which categories?"}

    def test_default_temperature(self, router, monkeypatch):
        seen = {}

        async def fake_invoke(model, prompt, temperature=0.2):
            seen["temperature"] = temperature
            return "ok"

        monkeypatch.setattr(router, "invoke", fake_invoke)
        asyncio.run(router.generate("hi", task_type="merge"))
        assert seen["temperature"] == 0.4
