"""Clients for the text and vision generation models."""

import base64
import io
import os
from abc import ABC, abstractmethod
from typing import Optional

import requests
from openai import OpenAI, OpenAIError
from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import GenerationFailed
from .logging_utils import get_logger

logger = get_logger(__name__)


def prepare_image(image_bytes: bytes, max_dim: int = 768, quality: int = 85) -> str:
    """
    Auto-orient, shrink and re-encode an image as base64 JPEG.

    Smaller inputs make multimodal inference much faster. Falls back to the
    original bytes when the image cannot be decoded.
    """
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img = ImageOps.exif_transpose(img)
        img.thumbnail((max_dim, max_dim), Image.LANCZOS)
        if img.mode != "RGB":
            img = img.convert("RGB")
        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=quality)
        return base64.b64encode(buf.getvalue()).decode("utf-8")
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        logger.warning("Image preprocessing failed, using original bytes: %s", exc)
        return base64.b64encode(image_bytes).decode("utf-8")


class BaseGenerator(ABC):
    """A generation capability: text in, text out; or image in, text out."""

    def __init__(self, text_model: str, image_model: str, timeout: float = 180.0, temperature: float = 0.2):
        self.text_model = text_model
        self.image_model = image_model
        self.timeout = timeout
        self.temperature = temperature

    @abstractmethod
    def _complete(self, prompt: str) -> str:
        """Run the text model on a full prompt."""

    @abstractmethod
    def _describe(self, prompt: str, image_b64: str) -> str:
        """Run the vision model on a prompt plus one base64 image."""

    def generate(self, prompt: str, text: str = "") -> str:
        """Generate from instructions plus the document text appended below them."""
        full_prompt = f"{prompt}\n{text}" if text else prompt
        logger.debug("[Generate] model=%s prompt_chars=%d", self.text_model, len(full_prompt))
        return self._checked(self._complete, full_prompt)

    def generate_from_image(self, prompt: str, image_bytes: bytes) -> str:
        """Describe an image according to ``prompt``."""
        image_b64 = prepare_image(image_bytes)
        logger.debug("[Describe Image] model=%s base64_len=%d", self.image_model, len(image_b64))
        return self._checked(self._describe, prompt, image_b64)

    def _checked(self, fn, *args) -> str:
        try:
            output = fn(*args)
        except GenerationFailed:
            raise
        except (requests.RequestException, OpenAIError, KeyError, ValueError) as exc:
            logger.error("Generation call failed: %s", exc)
            raise GenerationFailed(f"Generation failed: {exc}") from exc

        if not output or not output.strip():
            raise GenerationFailed("Generation returned an empty response")
        return output.strip()


class OllamaGenerator(BaseGenerator):
    """Text and vision generation through an Ollama server."""

    def __init__(
        self,
        text_model: str = "llama3.2:1b",
        image_model: str = "llava:7b",
        host: Optional[str] = None,
        timeout: float = 180.0,
        temperature: float = 0.2,
        image_fallback_model: Optional[str] = "moondream",
    ):
        super().__init__(text_model, image_model, timeout, temperature)
        self.host = (host or os.environ.get("OLLAMA_HOST", "http://ollama:11434")).rstrip("/")
        self.image_fallback_model = image_fallback_model

    def _post(self, payload: dict) -> str:
        response = requests.post(f"{self.host}/api/generate", json=payload, timeout=self.timeout)
        response.raise_for_status()
        return response.json().get("response", "")

    def _complete(self, prompt: str) -> str:
        return self._post({
            "model": self.text_model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": self.temperature},
        })

    def _describe(self, prompt: str, image_b64: str) -> str:
        payload = {
            "prompt": prompt,
            "images": [image_b64],
            "stream": False,
            "options": {"temperature": self.temperature, "num_predict": 120},
        }
        try:
            output = self._post({"model": self.image_model, **payload})
            if output and output.strip():
                return output
            error: Exception = GenerationFailed(f"{self.image_model} returned an empty response")
        except (requests.RequestException, ValueError) as exc:
            error = exc

        fallback = self.image_fallback_model
        if not fallback or fallback == self.image_model:
            raise error

        # A lighter vision model often answers where the main one times out
        logger.warning("Vision model %s failed (%s), trying %s", self.image_model, error, fallback)
        payload["options"]["num_predict"] = 160
        return self._post({"model": fallback, **payload})


class OpenAIGenerator(BaseGenerator):
    """Text and vision generation through the OpenAI chat completions API."""

    def __init__(
        self,
        text_model: str = "gpt-4o-mini",
        image_model: str = "gpt-4o-mini",
        openai_api_key: Optional[str] = None,
        timeout: float = 180.0,
        temperature: float = 0.2,
    ):
        super().__init__(text_model, image_model, timeout, temperature)
        api_key = openai_api_key or os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ValueError(
                "OpenAI API key required. Set OPENAI_API_KEY environment variable "
                "or pass openai_api_key parameter."
            )
        self.client = OpenAI(api_key=api_key, timeout=timeout)

    def _complete(self, prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.text_model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.temperature,
        )
        return response.choices[0].message.content or ""

    def _describe(self, prompt: str, image_b64: str) -> str:
        response = self.client.chat.completions.create(
            model=self.image_model,
            messages=[{
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{image_b64}"}},
                ],
            }],
            temperature=self.temperature,
        )
        return response.choices[0].message.content or ""


def create_generator(provider: str = "ollama", **kwargs) -> BaseGenerator:
    """
    Factory function to create generation clients.

    Args:
        provider: 'ollama' or 'openai'
        **kwargs: Provider-specific arguments
    """
    provider = provider.lower()
    if provider == "ollama":
        return OllamaGenerator(**kwargs)
    elif provider == "openai":
        kwargs.pop("host", None)
        kwargs.pop("image_fallback_model", None)
        return OpenAIGenerator(**kwargs)
    raise ValueError(f"Unknown generation provider: {provider}. Supported: 'ollama', 'openai'")
