"""Model-keyed tokenizer with request-scoped codec acquisition."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Protocol

import tiktoken

from rag_chat.errors import UnsupportedModelError

logger = logging.getLogger(__name__)


class Codec(Protocol):
    """Text to token-id mapping for one model family/version."""

    def encode(self, text: str) -> Sequence[int]:
        """Encode text into token ids."""


CodecFactory = Callable[[str], Codec]


def tiktoken_codec(model_id: str) -> Codec:
    """Resolve the exact codec the OpenAI model itself uses."""
    try:
        return tiktoken.encoding_for_model(model_id)
    except KeyError as exc:
        raise UnsupportedModelError(model_id) from exc


class Tokenizer:
    """Counts and encodes text under a single codec.

    Instances are handed out by `TokenizerRegistry.open` and become unusable
    once the owning scope exits.
    """

    def __init__(self, model_id: str, codec: Codec) -> None:
        self.model_id = model_id
        self._codec: Codec | None = codec

    @property
    def closed(self) -> bool:
        return self._codec is None

    def encode(self, text: str) -> list[int]:
        if self._codec is None:
            raise RuntimeError(f"Tokenizer for {self.model_id} has been released")
        # tiktoken refuses special-token text by default; user content is plain text here.
        if isinstance(self._codec, tiktoken.Encoding):
            return self._codec.encode(text, disallowed_special=())
        return list(self._codec.encode(text))

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self.encode(text))

    def close(self) -> None:
        self._codec = None


class TokenizerRegistry:
    """Maps model ids to codec factories.

    Explicitly registered factories win; otherwise `default_factory` is asked
    and is expected to raise `UnsupportedModelError` for unknown ids.
    """

    def __init__(
        self,
        factories: dict[str, CodecFactory] | None = None,
        *,
        default_factory: CodecFactory | None = tiktoken_codec,
    ) -> None:
        self._factories: dict[str, CodecFactory] = dict(factories or {})
        self._default_factory = default_factory
        self._lock = threading.Lock()
        self._active = 0

    @property
    def active(self) -> int:
        """Number of tokenizers currently checked out."""
        return self._active

    def register(self, model_id: str, factory: CodecFactory) -> None:
        self._factories[model_id] = factory

    def resolve(self, model_id: str) -> Codec:
        factory = self._factories.get(model_id)
        if factory is not None:
            return factory(model_id)
        if self._default_factory is None:
            raise UnsupportedModelError(model_id)
        return self._default_factory(model_id)

    @contextmanager
    def open(self, model_id: str) -> Iterator[Tokenizer]:
        """Acquire a tokenizer for the duration of a `with` block."""
        codec = self.resolve(model_id)
        tokenizer = Tokenizer(model_id, codec)
        with self._lock:
            self._active += 1
        try:
            yield tokenizer
        finally:
            tokenizer.close()
            with self._lock:
                self._active -= 1
            logger.debug("Released tokenizer for %s", model_id)
