from __future__ import annotations

from app.services.reset_policy import PRO

# Models available on the free plan; pro can use anything.
FREE_MODELS: tuple[str, ...] = (
    "provider-8/gemini-2.0-flash",
    "provider-5/gemini-2.5-flash-lite",
    "provider-6/qwen3-32b",
    "provider-2/deepseek-v3",
    "provider-2/deepseek-v3.1",
    "provider-8/llama-4-scout",
)

# Flat cost of every free-plan operation, whatever the model.
FREE_FLAT_COST = 15

PRO_MODEL_COSTS: dict[str, int] = {
    "provider-8/gemini-2.0-flash": 10,
    "provider-5/gemini-2.5-flash-lite": 8,
    "provider-6/qwen3-32b": 12,
    "provider-2/deepseek-v3": 15,
    "provider-2/deepseek-v3.1": 16,
    "provider-8/llama-4-scout": 12,
    "provider-5/gpt-5-nano": 20,
    "provider-5/gpt-4o-mini": 18,
    "provider-5/gpt-4.1-nano": 16,
    "provider-5/gpt-4.1-mini": 17,
    "provider-3/llama-3.2-3b": 10,
    "provider-2/qwen3-1.7b": 8,
    "provider-1/llama-4-maverick-17b-128e-instruct": 22,
}
PRO_DEFAULT_COST = 10

AUTO_MODEL = "auto"
DEFAULT_MODEL = FREE_MODELS[0]


def resolve_model(model_id: str | None) -> str:
    """Map an empty or ``auto`` selection onto the default model."""
    if not model_id or model_id.strip().lower() == AUTO_MODEL:
        return DEFAULT_MODEL
    return model_id.strip()


def can_access_model(plan: str, model_id: str) -> bool:
    if plan == PRO:
        return True
    return model_id in FREE_MODELS


def operation_cost(plan: str, model_id: str | None = None) -> int:
    if plan != PRO:
        return FREE_FLAT_COST
    return PRO_MODEL_COSTS.get(model_id or "", PRO_DEFAULT_COST)


def available_models(plan: str) -> list[str]:
    if plan == PRO:
        return sorted(set(FREE_MODELS) | set(PRO_MODEL_COSTS))
    return list(FREE_MODELS)


__all__ = [
    "FREE_MODELS",
    "FREE_FLAT_COST",
    "PRO_MODEL_COSTS",
    "PRO_DEFAULT_COST",
    "DEFAULT_MODEL",
    "resolve_model",
    "can_access_model",
    "operation_cost",
    "available_models",
]
