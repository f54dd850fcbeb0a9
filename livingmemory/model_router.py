"""
Text oracle routing.

Every generative call in the engine goes through a TextOracle: an object with
an async generate(prompt) -> str. The production oracle is a ModelRouter that
sends each task type to a configured model tier:

    classify   -> cheap   (short, runs on every observation)
    merge      -> cheap   (runs once per touched category)
    consolidate-> mid     (weekly patterns + digest)
    temporal   -> mid     (compare / reflect)

No call is retried or escalated. A timeout or provider error becomes an
OracleError and the caller decides how to degrade.
"""

import asyncio
import os
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import anthropic
import openai
import yaml

logger = logging.getLogger(__name__)


class ModelTier(Enum):
    LOCAL = "local"        # Ollama
    CHEAP = "cheap"        # Haiku / small hosted model
    MID = "mid"            # Sonnet
    PREMIUM = "premium"    # Opus


@dataclass
class ModelConfig:
    provider: str    # "ollama", "anthropic", "openai"
    name: str        # Model identifier
    tier: ModelTier
    max_tokens: int = 1024
    base_url: str | None = None  # OpenAI-compatible endpoints (e.g. Groq)


class OracleError(Exception):
    """The oracle timed out, errored, or returned something that is not text."""
    pass


class TextOracle:
    """Interface for anything that turns a prompt into text."""

    async def generate(self, prompt: str) -> str:
        raise NotImplementedError


class RoutedOracle(TextOracle):
    """A ModelRouter bound to one task type and temperature."""

    def __init__(self, router: "ModelRouter", task_type: str,
                 temperature: float | None = None):
        self.router = router
        self.task_type = task_type
        self.temperature = temperature

    async def generate(self, prompt: str) -> str:
        return await self.router.generate(
            prompt, task_type=self.task_type, temperature=self.temperature
        )


class ModelRouter:
    """Sends each engine task to the model tier configured for it."""

    DEFAULT_ROUTING = {
        "classify": ModelTier.CHEAP,
        "merge": ModelTier.CHEAP,
        "consolidate": ModelTier.MID,
        "temporal": ModelTier.MID,
    }

    # Tried in order when a task's tier has no model
    FALLBACK_ORDER = [
        ModelTier.LOCAL, ModelTier.CHEAP, ModelTier.MID, ModelTier.PREMIUM
    ]

    # Used only when config/models.yaml is missing
    DEFAULT_MODELS = {
        ModelTier.CHEAP: {"provider": "anthropic", "name": "claude-3-5-haiku-20241022"},
        ModelTier.MID: {"provider": "anthropic", "name": "claude-sonnet-4-20250514",
                        "max_tokens": 2048},
    }

    def __init__(self, config_path: str = "config/models.yaml"):
        self.models: dict[ModelTier, ModelConfig] = {}
        self.task_routing: dict[str, ModelTier] = dict(self.DEFAULT_ROUTING)
        self.default_tier = ModelTier.CHEAP
        self.timeout = 60.0
        self.default_temperature = 0.2

        self._anthropic: anthropic.Anthropic | None = None
        self._openai: dict[str | None, openai.OpenAI] = {}  # keyed by base_url
        self._ollama_host = os.environ.get("OLLAMA_HOST", "http://localhost:11434")

        self._configure(self._read_config(Path(config_path)))
        self._connect_providers()

    @staticmethod
    def _read_config(path: Path) -> dict | None:
        if not path.exists():
            logger.warning(f"Model config not found at {path}, using built-in models")
            return None
        with open(path) as f:
            return yaml.safe_load(f) or {}

    def _configure(self, config: dict | None):
        model_defs = self.DEFAULT_MODELS if config is None else {
            ModelTier(tier): spec for tier, spec in (config.get("models") or {}).items()
        }
        for tier, spec in model_defs.items():
            self.models[tier] = ModelConfig(
                provider=spec["provider"],
                name=spec["name"],
                tier=tier,
                max_tokens=spec.get("max_tokens", 1024),
                base_url=spec.get("base_url"),
            )
        if config is None:
            return

        self.task_routing.update({
            task: ModelTier(tier) for task, tier in (config.get("task_routing") or {}).items()
        })
        self.default_tier = ModelTier(config.get("default_tier", self.default_tier.value))
        self.timeout = float(config.get("timeout_seconds", self.timeout))
        self.default_temperature = float(config.get("temperature", self.default_temperature))

    def _connect_providers(self):
        """Build SDK clients for whichever API keys are present."""
        if os.environ.get("ANTHROPIC_API_KEY"):
            self._anthropic = anthropic.Anthropic(timeout=self.timeout)

        openai_key = os.environ.get("OPENAI_API_KEY")
        if not openai_key:
            return
        for model in self.models.values():
            if model.provider == "openai" and model.base_url not in self._openai:
                self._openai[model.base_url] = openai.OpenAI(
                    api_key=openai_key,
                    base_url=model.base_url or os.environ.get("OPENAI_BASE_URL"),
                    timeout=self.timeout,
                )

    def select_model(self, task_type: str) -> ModelConfig:
        """The model for a task: its routed tier, else the first configured tier."""
        tier = self.task_routing.get(task_type, self.default_tier)
        if tier in self.models:
            return self.models[tier]
        for fallback in self.FALLBACK_ORDER:
            if fallback in self.models:
                logger.debug(f"No {tier.value} model for {task_type}, using {fallback.value}")
                return self.models[fallback]
        raise OracleError("No models configured")

    def for_task(self, task_type: str, temperature: float | None = None) -> RoutedOracle:
        """Bind this router to a task type, giving a plain TextOracle."""
        return RoutedOracle(self, task_type, temperature)

    async def generate(self, prompt: str, task_type: str = "merge",
                       temperature: float | None = None) -> str:
        """Run a single-prompt completion and return its text."""
        model = self.select_model(task_type)
        temp = self.default_temperature if temperature is None else temperature

        try:
            text = await asyncio.wait_for(
                self.invoke(model, prompt, temperature=temp),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise OracleError(f"{model.name} timed out after {self.timeout}s") from None
        except OracleError:
            raise
        except Exception as e:
            raise OracleError(f"{model.provider}/{model.name} failed: {e}") from e

        if not isinstance(text, str):
            raise OracleError(f"{model.name} returned non-text content")
        logger.debug(f"{task_type} -> {model.provider}/{model.name}: {len(text)} chars")
        return text

    async def invoke(self, model: ModelConfig, prompt: str,
                     temperature: float = 0.2) -> str:
        """Send one user prompt to a model. The SDK calls block, so they run in a thread."""
        handlers = {
            "anthropic": self._complete_anthropic,
            "ollama": self._complete_ollama,
            "openai": self._complete_openai,
        }
        handler = handlers.get(model.provider)
        if handler is None:
            raise OracleError(f"Unknown provider: {model.provider}")
        return await asyncio.to_thread(handler, model, prompt, temperature)

    def _complete_anthropic(self, model: ModelConfig, prompt: str,
                            temperature: float) -> str:
        if not self._anthropic:
            raise OracleError("Anthropic API key not configured")

        response = self._anthropic.messages.create(
            model=model.name,
            max_tokens=model.max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(b.text for b in response.content if b.type == "text")

    def _complete_ollama(self, model: ModelConfig, prompt: str,
                         temperature: float) -> str:
        # Optional extra: livingmemory[local]
        try:
            import ollama
        except ImportError:
            raise OracleError(
                "ollama package not installed (pip install livingmemory[local])"
            ) from None

        client = ollama.Client(host=model.base_url or self._ollama_host,
                               timeout=self.timeout)
        response = client.chat(
            model=model.name,
            messages=[{"role": "user", "content": prompt}],
            options={"temperature": temperature, "num_predict": model.max_tokens},
        )
        return response["message"]["content"]

    def _complete_openai(self, model: ModelConfig, prompt: str,
                         temperature: float) -> str:
        client = self._openai.get(model.base_url)
        if not client:
            raise OracleError("OpenAI API key not configured")

        response = client.chat.completions.create(
            model=model.name,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=model.max_tokens,
            temperature=temperature,
        )
        return response.choices[0].message.content or ""
