"""NVIDIA NIM provider (OpenAI-compatible chat completions)."""

from .openai_compat import OpenAICompatibleProvider


class NvidiaProvider(OpenAICompatibleProvider):
    name = "nvidia"
    default_api_base = "https://integrate.api.nvidia.com/v1"
