"""
Providers package for vendor transcoding.

Each provider converts between the canonical Messages dialect (the format
gateway clients speak) and one vendor's native dialect.

Supported vendors:
- nvidia (OpenAI-compatible chat completions)
- openai (OpenAI chat completions)
"""

from .base import BaseProvider, load_json_object
from .nvidia import NvidiaProvider
from .openai_compat import OpenAICompatibleProvider

PROVIDER_NVIDIA = "nvidia"
PROVIDER_OPENAI = "openai"

_PROVIDERS: dict[str, type[BaseProvider]] = {
    PROVIDER_NVIDIA: NvidiaProvider,
    PROVIDER_OPENAI: OpenAICompatibleProvider,
}


def get_provider(name: str, **kwargs) -> BaseProvider:
    """
    Factory function to get a provider instance by vendor name.

    Args:
        name: One of "nvidia", "openai", or any name when api_base is given
        **kwargs: Passed to the provider constructor (api_key, api_base)

    Returns:
        Provider instance
    """
    provider_cls = _PROVIDERS.get(name)
    if provider_cls is not None:
        return provider_cls(**kwargs)
    # Any other OpenAI-compatible vendor only needs an endpoint.
    if kwargs.get("api_base"):
        return OpenAICompatibleProvider(name=name, **kwargs)
    raise ValueError(f"Unknown provider: {name}")


__all__ = [
    "BaseProvider",
    "OpenAICompatibleProvider",
    "NvidiaProvider",
    "get_provider",
    "load_json_object",
    "PROVIDER_NVIDIA",
    "PROVIDER_OPENAI",
]
