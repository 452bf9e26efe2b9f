"""
Catalog client for the routing API.

Fetches model, provider and per-model endpoint listings, and keeps the
pricing cache that the run client consults for cost computation.
"""

import logging
import time
from typing import Any, Optional
from urllib.parse import quote

import httpx
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from routebench.config import get_config
from routebench.errors import ApiError, BenchmarkError, NetworkError
from routebench.models import ModelInfo, ModelPricing
from routebench.utils import truncate_text

logger = logging.getLogger(__name__)


# Model-id namespace -> display label
PROVIDER_LABELS = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "google": "Google",
    "meta-llama": "Meta",
    "mistralai": "Mistral",
    "mistral": "Mistral",
    "together": "Together",
    "perplexity": "Perplexity",
    "fireworks": "Fireworks",
}

# Namespaces whose serving provider can be guessed when no endpoint list exists
PROVIDER_GUESSES = {
    **PROVIDER_LABELS,
    "x-ai": "xAI",
    "groq": "Groq",
    "cohere": "Cohere",
    "ai21": "AI21",
}

# Served when the catalog cannot be fetched
DEFAULT_MODELS = [
    ModelInfo(id="openai/gpt-4-turbo", name="GPT-4 Turbo", provider="OpenAI"),
    ModelInfo(id="anthropic/claude-3-opus", name="Claude 3 Opus", provider="Anthropic"),
    ModelInfo(id="google/gemini-pro", name="Gemini Pro", provider="Google"),
    ModelInfo(id="meta-llama/llama-3-70b", name="Llama 3 70B", provider="Meta"),
    ModelInfo(id="mistralai/mixtral-8x7b", name="Mixtral 8x7B", provider="Mistral"),
]

DEFAULT_PROVIDERS = [
    "auto",
    "OpenAI",
    "Anthropic",
    "Google",
    "Together",
    "Replicate",
    "Perplexity",
    "Fireworks",
]


def model_namespace(model_id: str) -> str:
    """Segment of a model id before its first '/', lower-cased."""
    return model_id.split("/")[0].lower()


def infer_provider_label(model_id: str, fallback: Optional[str] = None) -> str:
    """Display label of the provider namespace of a model id."""
    prefix = model_namespace(model_id)
    if prefix in PROVIDER_LABELS:
        return PROVIDER_LABELS[prefix]
    return fallback or prefix or "Unknown"


def guess_providers(model_id: str) -> list[str]:
    """Best-effort serving providers for a model id."""
    label = PROVIDER_GUESSES.get(model_namespace(model_id))
    return [label] if label else []


def extract_items(payload: Any, *keys: str) -> list:
    """Accept a bare array or an array wrapped under one of the keys."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                return value
            if isinstance(value, dict):
                nested = extract_items(value, *keys)
                if nested:
                    return nested
    return []


def _price(value: Any, per_token: bool) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if per_token and isinstance(value, str):
        # Router quotes are strings in USD per single token
        try:
            return float(value) * 1000
        except ValueError:
            return None
    return None


def parse_pricing(raw: Any) -> Optional[ModelPricing]:
    """
    Normalize a catalog pricing object to USD per 1000 tokens.

    Numeric input/output (or prompt/completion) values are taken as per-1k
    prices. String prompt/completion values are per-token quotes.
    """
    if not isinstance(raw, dict):
        return None

    input_price = _price(raw.get("input"), per_token=False)
    if input_price is None:
        input_price = _price(raw.get("prompt"), per_token=True)

    output_price = _price(raw.get("output"), per_token=False)
    if output_price is None:
        output_price = _price(raw.get("completion"), per_token=True)

    pricing = ModelPricing(input=input_price, output=output_price)
    return None if pricing.is_empty else pricing


def parse_model(raw: dict) -> ModelInfo:
    """Build a ModelInfo from one catalog entry."""
    model_id = raw.get("id") or ""
    context_length = raw.get("context_length") or raw.get("contextLength")
    return ModelInfo(
        id=model_id,
        name=raw.get("name") or model_id,
        provider=infer_provider_label(model_id, raw.get("provider")),
        context_length=context_length if isinstance(context_length, int) else None,
        pricing=parse_pricing(raw.get("pricing")),
    )


def _unique(values) -> list[str]:
    seen = []
    for value in values:
        if value and isinstance(value, str) and value not in seen:
            seen.append(value)
    return seen


class MetadataClient:
    """
    Client for model, provider and endpoint catalogs.

    A successful list_models() call replaces the in-memory pricing cache.
    The cache lives as long as the client; invalidate() drops it, for
    example after the credential changes.

    Each list_* call makes exactly one request and leaves retrying a
    NetworkError to the caller. The default-dataset helpers are such
    callers and retry it before falling back.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        validation_timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the metadata client.

        Args:
            api_key: Routing API credential
            base_url: API root, e.g. https://openrouter.ai/api/v1
            timeout: Timeout for catalog requests in seconds
            validation_timeout: Timeout for credential validation in seconds
            retry_attempts: Attempts per default-dataset fetch on NetworkError
            transport: Optional httpx transport (used by tests)
        """
        config = get_config()

        self.api_key = api_key or config.api.api_key
        self.base_url = base_url or config.api.base_url
        self.timeout = timeout or config.timeouts.metadata
        self.validation_timeout = validation_timeout or config.timeouts.validation
        self.retry_attempts = retry_attempts or config.api.catalog_attempts
        self.retry_sleep = time.sleep

        self._http = httpx.Client(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Accept": "application/json",
                "User-Agent": config.api.user_agent,
            },
            transport=transport,
        )
        self._models: list[ModelInfo] = []

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "MetadataClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _retrying(self) -> Retrying:
        """Retry policy of the default-dataset helpers; only NetworkError is retried."""
        return Retrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=4),
            retry=retry_if_exception_type(NetworkError),
            reraise=True,
            sleep=self.retry_sleep,
        )

    def _get_json(self, path: str, label: str) -> Any:
        try:
            response = self._http.get(path, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{label} request timed out") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{label} request failed: {e}") from e

        if response.status_code != 200:
            body = truncate_text(response.text)
            raise ApiError(
                f"{label} API Error: {response.status_code} "
                f"{response.reason_phrase}{' - ' + body if body else ''}",
                status_code=response.status_code,
                body=body,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ApiError(
                f"Failed to parse {label.lower()} response: {e}",
                status_code=response.status_code,
            ) from e

    def list_models(self) -> list[ModelInfo]:
        """
        Fetch the model catalog and refresh the pricing cache.

        Returns:
            Catalog entries in API order
        """
        payload = self._get_json("/models", "Models")
        models = [
            parse_model(item)
            for item in extract_items(payload, "data", "models")
            if isinstance(item, dict)
        ]
        self._models = models
        logger.info("Loaded %d models from catalog", len(models))
        return models

    def list_providers(self) -> list[str]:
        """Fetch provider names, de-duplicated in API order."""
        payload = self._get_json("/providers", "Providers")
        items = extract_items(payload, "data", "providers")
        return _unique(
            p.get("id") or p.get("name") or p.get("provider")
            for p in items
            if isinstance(p, dict)
        )

    def list_model_endpoints(self, model_id: str) -> list[str]:
        """Fetch the providers serving one model, de-duplicated."""
        path = f"/models/{quote(model_id, safe='')}/endpoints"
        payload = self._get_json(path, "Endpoints")
        items = extract_items(payload, "data", "endpoints")
        return _unique(
            e.get("provider") or e.get("provider_name") or e.get("name") or e.get("id")
            for e in items
            if isinstance(e, dict)
        )

    def validate_credential(self) -> bool:
        """Any 200 from the model catalog means the credential is valid."""
        try:
            response = self._http.get("/models", timeout=self.validation_timeout)
        except httpx.HTTPError as e:
            logger.warning("Credential validation failed: %s", e)
            return False
        return response.status_code == 200

    # Pricing cache

    @property
    def cached_models(self) -> list[ModelInfo]:
        return list(self._models)

    def invalidate(self) -> None:
        """Drop cached catalog data."""
        self._models = []

    def get_pricing(self, model_id: str) -> Optional[ModelPricing]:
        """
        Cached pricing for a model id.

        Exact id match first, then case-insensitive id or name match.
        """
        if not self._models:
            return None

        for model in self._models:
            if model.id == model_id and model.pricing is not None:
                return model.pricing

        lower = model_id.lower()
        for model in self._models:
            if model.id.lower() == lower or model.name.lower() == lower:
                return model.pricing
        return None

    # Default-dataset fallbacks

    def models_or_default(self) -> list[ModelInfo]:
        """Catalog models (retried on NetworkError), or DEFAULT_MODELS when unavailable."""
        try:
            models = self._retrying()(self.list_models)
        except BenchmarkError as e:
            logger.warning("Using default model list: %s", e)
            return list(DEFAULT_MODELS)
        return models or list(DEFAULT_MODELS)

    def providers_or_default(self) -> list[str]:
        """'auto' plus catalog providers, or DEFAULT_PROVIDERS on failure."""
        try:
            providers = self._retrying()(self.list_providers)
        except BenchmarkError as e:
            logger.warning("Using default provider list: %s", e)
            return list(DEFAULT_PROVIDERS)
        return ["auto", *providers]

    def provider_choices(self, model_id: str) -> list[str]:
        """'auto' plus the providers serving a model, guessed if unknown."""
        try:
            specific = self.list_model_endpoints(model_id)
        except BenchmarkError as e:
            logger.warning("Endpoint lookup failed for %s: %s", model_id, e)
            specific = []
        if not specific:
            specific = guess_providers(model_id)
        return ["auto", *specific]
