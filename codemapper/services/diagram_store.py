"""Diagram store: diagram key -> Mermaid source, seeded with the Overview diagram."""

from __future__ import annotations

from typing import Iterator, Mapping

OVERVIEW_DIAGRAM_KEY = "System Overview"

# Module key for files that sit at the project root (no directory component).
ROOT_MODULE_KEY = "root"

INITIAL_OVERVIEW_MERMAID = """C4Context
    title System Context & Containers (Overview)

    System_Boundary(system, "Software System") {
        Container(web_app, "Web Application", "React/Browser", "Delivers the static content and SPA")
        Container(api, "API Service", "Server", "Provides functionality via JSON/HTTPS")
        ContainerDb(database, "Database", "SQL/NoSQL", "Stores system data")
    }

    Rel(web_app, api, "Uses", "JSON/HTTPS")
    Rel(api, database, "Reads/Writes")
"""


class DiagramSet:
    """Merge-only diagram map. The Overview key is always present and never removed.

    Values change only through merge(); an empty or missing fragment leaves the prior text.
    """

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._diagrams: dict[str, str] = {OVERVIEW_DIAGRAM_KEY: INITIAL_OVERVIEW_MERMAID}
        if initial:
            for key, source in initial.items():
                if isinstance(key, str) and key and isinstance(source, str) and source.strip():
                    self._diagrams[key] = source

    @property
    def overview(self) -> str:
        return self._diagrams[OVERVIEW_DIAGRAM_KEY]

    def get(self, key: str) -> str | None:
        return self._diagrams.get(key)

    def __getitem__(self, key: str) -> str:
        return self._diagrams[key]

    def __contains__(self, key: object) -> bool:
        return key in self._diagrams

    def __len__(self) -> int:
        return len(self._diagrams)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def keys(self) -> list[str]:
        """Overview first, then module keys alphabetically."""
        modules = sorted(k for k in self._diagrams if k != OVERVIEW_DIAGRAM_KEY)
        return [OVERVIEW_DIAGRAM_KEY, *modules]

    def merge(self, overview: str | None, module_key: str, module: str | None) -> list[str]:
        """Apply one batch's fragments; return the keys whose text changed.

        The module key is created on first non-empty fragment. Empty fragments are ignored.
        """
        changed: list[str] = []
        if overview and overview.strip() and overview != self._diagrams[OVERVIEW_DIAGRAM_KEY]:
            self._diagrams[OVERVIEW_DIAGRAM_KEY] = overview
            changed.append(OVERVIEW_DIAGRAM_KEY)
        if module_key and module_key != OVERVIEW_DIAGRAM_KEY and module and module.strip():
            if self._diagrams.get(module_key) != module:
                self._diagrams[module_key] = module
                changed.append(module_key)
        return changed

    def as_dict(self) -> dict[str, str]:
        return {key: self._diagrams[key] for key in self.keys()}

    def __eq__(self, other: object) -> bool:
        if isinstance(other, DiagramSet):
            return self._diagrams == other._diagrams
        return NotImplemented

    def __repr__(self) -> str:
        return f"DiagramSet(keys={self.keys()!r})"
