"""Prompt templates and rendering."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from langchain_core.prompts import PromptTemplate

from rag_chat.types import Message

QA_TEMPLATE = """
{system_prompt}

Answer the question using only the sources below. If the sources do not contain
the answer, say that you do not know instead of guessing. Reference the source
URLs you relied on at the end of the answer.

SOURCES:
{summaries}

SOURCE URLS:
{urls}

CONVERSATION HISTORY:
{conversation_history}

QUESTION: {question}
FINAL ANSWER:
""".strip()

SUMMARIZE_TEMPLATE = """
Condense the text below. Keep every fact that helps answer the inquiry, drop
everything unrelated, and do not add information that is not in the text.

INQUIRY: {inquiry}

TEXT:
{document}

CONDENSED TEXT:
""".strip()

DEFAULT_TEMPLATES = {"qa": QA_TEMPLATE, "summarize": SUMMARIZE_TEMPLATE}


class TemplateStore:
    """Named prompt templates rendered with LangChain's `PromptTemplate`."""

    def __init__(self, templates: dict[str, str] | None = None) -> None:
        self._templates = {
            name: PromptTemplate.from_template(text)
            for name, text in (templates or DEFAULT_TEMPLATES).items()
        }

    def render(self, name: str, variables: dict[str, Any]) -> str:
        template = self._templates.get(name)
        if template is None:
            raise KeyError(f"Unknown prompt template: {name}")
        return template.format(**variables)


def flatten_turns(turns: Sequence[Message]) -> str:
    return "\n".join(f"{turn.role}: {turn.content}" for turn in turns)


class PromptComposer:
    """Renders the final instruction text sent to the generation oracle."""

    def __init__(self, store: TemplateStore | None = None) -> None:
        self.store = store or TemplateStore()

    def compose(
        self,
        *,
        context: str,
        question: str,
        turns: Sequence[Message] = (),
        source_ids: Sequence[str] = (),
        system_prompt: str = "",
    ) -> str:
        return self.store.render(
            "qa",
            {
                "system_prompt": system_prompt,
                "summaries": context,
                "question": question,
                "conversation_history": flatten_turns(turns),
                "urls": "\n".join(source_ids),
            },
        ).strip()

    def compose_summary(self, *, document: str, inquiry: str) -> str:
        return self.store.render("summarize", {"document": document, "inquiry": inquiry})
