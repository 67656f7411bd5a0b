"""Tiny terminal UI helpers (prompt_toolkit-based).

Kept apart from the service so the prompt can be driven headlessly in tests
through a pipe input.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggest, Suggestion
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.styles import Style
from prompt_toolkit.validation import ValidationError, Validator

MAX_CATEGORY_LEN = 64


def validate_category_name(text: str) -> str | None:
    """Return an error message for an unusable name, else ``None``."""

    name = text.strip()
    if not name:
        return "Category must not be empty."
    if len(name) > MAX_CATEGORY_LEN:
        return f"Category must be at most {MAX_CATEGORY_LEN} characters."
    if not name.isprintable():
        return "Category must not contain control characters."
    return None


class _PrefixSuggest(AutoSuggest):
    def __init__(self, vocab: Sequence[str]) -> None:
        self._vocab = list(vocab)

    def get_suggestion(self, buffer, document):
        text = document.text
        if not text:
            return None
        match = _best_prefix_match(self._vocab, text)
        return Suggestion(match[len(text) :]) if match else None


def _best_prefix_match(vocab: Sequence[str], text: str) -> str | None:
    if not text:
        return None
    lower = text.lower()
    for w in vocab:
        wl = w.lower()
        if wl == lower:
            return None
        if wl.startswith(lower):
            return w
    return None


def _session(session: PromptSession | None, kb: KeyBindings) -> PromptSession:
    if session is None:
        return PromptSession(key_bindings=kb)
    return PromptSession(
        input=getattr(session, "input", None),
        output=getattr(session, "output", None),
        key_bindings=kb,
    )


def select_category(
    categories: Sequence[str] | Iterable[str],
    *,
    default: str = "",
    message: str = "Category (Tab to complete, Enter to accept, Esc to cancel): ",
    session: PromptSession | None = None,
) -> str | None:
    """Prompt for a category, completing against ``categories``.

    Enter accepts the highlighted completion or the greyed prefix suggestion.
    A name not in ``categories`` is returned as typed; a known name is
    returned with its canonical casing. Esc cancels and returns ``None``.
    """

    words = list(dict.fromkeys(c for c in categories if c))
    canonical = {w.lower(): w for w in words}
    completer = WordCompleter(words, ignore_case=True, match_middle=True, sentence=False)

    kb = KeyBindings()

    @kb.add("escape", eager=True)
    def _(event) -> None:  # pragma: no cover - exercised indirectly
        event.app.exit(result=None)

    @kb.add("tab", eager=True)
    def _(event) -> None:  # pragma: no cover
        b = event.app.current_buffer
        cand = _best_prefix_match(words, b.document.text)
        if cand:
            b.insert_text(cand[len(b.document.text) :])
        elif b.complete_state is None:
            b.start_completion(select_first=True)
        else:
            b.complete_next()

    @kb.add("enter", eager=True)
    def _(event) -> None:  # pragma: no cover
        b = event.app.current_buffer
        cs = b.complete_state
        if cs is not None and cs.current_completion is not None:
            b.apply_completion(cs.current_completion)
        else:
            cand = _best_prefix_match(words, b.document.text)
            if cand:
                b.insert_text(cand[len(b.document.text) :])
        b.validate_and_handle()

    class _NameValidator(Validator):
        def validate(self, document) -> None:
            problem = validate_category_name(document.text)
            if problem:
                raise ValidationError(message=problem)

    prompt_kwargs: dict[str, Any] = {
        "message": message,
        "completer": completer,
        "default": default,
        "key_bindings": kb,
        "auto_suggest": _PrefixSuggest(words),
        "style": Style.from_dict({"auto-suggestion": "fg:#888888"}),
        "validator": _NameValidator(),
        "validate_while_typing": False,
    }
    result = _session(session, kb).prompt(**prompt_kwargs)
    if result is None:
        return None
    name = result.strip()
    return canonical.get(name.lower(), name)


__all__ = ["MAX_CATEGORY_LEN", "select_category", "validate_category_name"]
