from __future__ import annotations

from typing import Dict


class RunContext:
    """Id counters scoped to one pipeline invocation.

    Every call to the engine builds its own context, so two notes processed
    back-to-back (or concurrently) never share or reuse ids.
    """

    def __init__(self, note_id: str):
        self.note_id = note_id
        self._section_counter = 0
        self._suggestion_counters: Dict[str, int] = {}

    @property
    def note_prefix(self) -> str:
        return self.note_id or "note"

    def reset(self) -> None:
        self._section_counter = 0
        self._suggestion_counters = {}

    def next_section_id(self) -> str:
        self._section_counter += 1
        return f"sec_{self.note_prefix}_{self._section_counter}"

    def next_suggestion_id(self, prefix: str = "") -> str:
        n = self._suggestion_counters.get(prefix, 0) + 1
        self._suggestion_counters[prefix] = n
        if prefix:
            return f"sug_{prefix}_{self.note_prefix}_{n}"
        return f"sug_{self.note_prefix}_{n}"
