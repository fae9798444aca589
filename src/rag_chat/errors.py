"""Error taxonomy for the chat pipeline."""

from __future__ import annotations


class ChatError(Exception):
    """Base exception; `status_code` is used when raised before streaming starts."""

    status_code = 500

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class UnsupportedModelError(ChatError):
    """No tokenizer codec is registered for the requested model id."""

    status_code = 400

    def __init__(self, model_id: str) -> None:
        self.model_id = model_id
        super().__init__(f"No tokenizer registered for model: {model_id}")


class RetrievalUnavailableError(ChatError):
    """Vector index unreachable, or it returned malformed matches."""

    status_code = 503


class SummarizationFailure(ChatError):
    status_code = 502


class GenerationStreamError(ChatError):
    """The generation oracle failed while producing the answer stream."""

    status_code = 502
