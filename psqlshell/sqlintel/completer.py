"""prompt_toolkit completer backed by the SQL intel service."""

from __future__ import annotations

from typing import Iterable

from prompt_toolkit.completion import CompleteEvent, Completer, Completion
from prompt_toolkit.document import Document

from .service import SqlIntelService


class SqlCompleter(Completer):
    """Adapter that feeds line-editor buffers through ``SqlIntelService``."""

    def __init__(self, service: SqlIntelService) -> None:
        self._service = service

    def get_completions(self, document: Document, complete_event: CompleteEvent) -> Iterable[Completion]:
        if document.cursor_position == 0:
            return
        result = self._service.suggest(document.text, document.cursor_position)
        for candidate in result.candidates:
            yield Completion(
                candidate.text,
                start_position=-result.replace_length,
                display_meta=candidate.detail or candidate.kind.value,
            )


__all__ = ["SqlCompleter"]
