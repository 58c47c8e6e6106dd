"""Chat backends for the agent, with vendor access through LiteLLM."""

import enum
import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class FinishReason(str, enum.Enum):
    STOP = "stop"
    LENGTH = "length"
    OTHER = "other"

    @classmethod
    def from_raw(cls, raw: str | None) -> "FinishReason":
        if not raw:
            return cls.OTHER
        lowered = str(raw).lower()
        if "length" in lowered or "max_tokens" in lowered:
            return cls.LENGTH
        if "stop" in lowered:
            return cls.STOP
        return cls.OTHER


@dataclass(frozen=True)
class ChatResponse:
    text: str | None
    finish_reason: FinishReason = FinishReason.OTHER


class Backend:
    """Contract for a chat-capable model vendor."""

    identity = "backend"
    display_name = "Backend"
    default_model = ""

    def is_configured(self) -> bool:
        return True

    def missing_config_message(self) -> str:
        return f"{self.display_name} is not configured."

    def list_models(self) -> list[str]:
        return []

    def chat(self, messages: list[dict], model: str) -> ChatResponse | None:
        raise NotImplementedError

    def normalize_response(self, text: str) -> str:
        return text


_ROLES = ("system", "user", "assistant")


def _payload(messages: list[dict]) -> list[dict]:
    """Drop empty turns and map unknown roles to ``user``."""
    out = []
    for message in messages:
        content = message.get("content")
        if not content or not content.strip():
            continue
        role = str(message.get("role", "user")).lower()
        out.append({"role": role if role in _ROLES else "user", "content": content})
    return out


class LiteLLMBackend(Backend):
    """Backend that calls ``litellm.completion`` for one provider prefix."""

    def __init__(
        self,
        identity: str,
        display_name: str,
        provider: str,
        env_var: str,
        default_model: str,
    ):
        self.identity = identity
        self.display_name = display_name
        self.provider = provider
        self.env_var = env_var
        self.default_model = default_model
        self.last_error: str | None = None

    def _api_key(self) -> str | None:
        key = os.environ.get(self.env_var, "")
        return key if key.strip() else None

    def is_configured(self) -> bool:
        return self._api_key() is not None

    def missing_config_message(self) -> str:
        return f"{self.env_var} is not set."

    def model_string(self, model: str) -> str:
        if model.startswith(f"{self.provider}/"):
            return model
        return f"{self.provider}/{model}"

    def list_models(self) -> list[str]:
        if not self.is_configured():
            return []
        import litellm

        names = litellm.models_by_provider.get(self.provider, ())
        prefix = f"{self.provider}/"
        return sorted({name.removeprefix(prefix) for name in names})

    def chat(self, messages: list[dict], model: str) -> ChatResponse | None:
        api_key = self._api_key()
        if api_key is None:
            return None
        import litellm

        litellm.suppress_debug_info = True
        self.last_error = None
        try:
            response = litellm.completion(
                model=self.model_string(model),
                messages=_payload(messages),
                api_key=api_key,
            )
        except Exception as e:
            # Transport and vendor errors surface as "no response" to the loop.
            self.last_error = str(e)
            logger.warning("%s call failed: %s", self.display_name, e)
            return None

        choice = response.choices[0]
        return ChatResponse(
            text=choice.message.content,
            finish_reason=FinishReason.from_raw(choice.finish_reason),
        )


class GeminiBackend(LiteLLMBackend):
    def __init__(self):
        super().__init__(
            "gemini", "Gemini", "gemini", "GEMINI_API_KEY", "gemini-1.5-flash"
        )

    def normalize_response(self, text: str) -> str:
        lines = []
        for line in text.split("\n"):
            if line.startswith("Assistant:"):
                line = line[len("Assistant:") :].strip()
            lines.append(line)
        return "\n".join(lines)


def default_backends() -> list[Backend]:
    return [
        LiteLLMBackend("openai", "ChatGPT", "openai", "OPENAI_API_KEY", "gpt-4o-mini"),
        LiteLLMBackend(
            "anthropic",
            "Claude",
            "anthropic",
            "ANTHROPIC_API_KEY",
            "claude-3-5-haiku-latest",
        ),
        GeminiBackend(),
    ]
