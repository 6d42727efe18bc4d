"""Generation adapter: build the batch prompt, make one LLM call, split the reply into diagram fragments."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from codemapper.clients import llm_client
from codemapper.config import ProviderConfig
from codemapper.prompts import prompts as _prompts

logger = logging.getLogger(__name__)

GenerateFn = Callable[[str, str, ProviderConfig], Awaitable[str]]

# Default per-file character cap in the prompt.
MAX_FILE_CONTENT_CHARS = 20_000

# Marker lines, tolerant of spacing, case, and the number of '=' on each side.
_MARKER_RE = re.compile(
    r"^[ \t]*=+[ \t]*(OVERVIEW|MODULE)[ \t]+DIAGRAM[ \t]*=+[ \t]*$",
    re.IGNORECASE | re.MULTILINE,
)
_OPEN_FENCE_RE = re.compile(r"^\s*```[A-Za-z0-9_-]*[ \t]*\n?")
_CLOSE_FENCE_RE = re.compile(r"\n?[ \t]*```\s*$")


@dataclass(frozen=True)
class FileInput:
    name: str
    content: str


@dataclass(frozen=True)
class C4UpdateResult:
    """Diagrams after one batch. A diagram the reply did not cover keeps its prior text (module may stay None)."""

    overview_diagram: str
    module_diagram: str | None
    module_name: str
    overview_updated: bool = False
    module_updated: bool = False


def clean_output(text: str) -> str:
    """Strip markdown code-fence wrapping (```mermaid / ```) and outer whitespace.

    When the text opens with a fence, everything after its closing fence is dropped
    (models like to append an explanation).
    """
    text = (text or "").strip()
    opened = _OPEN_FENCE_RE.match(text)
    if opened:
        text = text[opened.end():]
        closing = text.find("```")
        if closing != -1:
            text = text[:closing]
    else:
        text = _CLOSE_FENCE_RE.sub("", text, count=1)
    return text.strip()


def split_sections(content: str) -> dict[str, str]:
    """Return {"overview": text, "module": text} for each marker present (first occurrence wins).

    A section runs from the end of its marker line to the next marker or the end of the text.
    """
    matches = list(_MARKER_RE.finditer(content or ""))
    sections: dict[str, str] = {}
    for i, match in enumerate(matches):
        name = match.group(1).lower()
        if name in sections:
            continue
        end = matches[i + 1].start() if i + 1 < len(matches) else len(content)
        sections[name] = clean_output(content[match.end():end])
    return sections


def parse_c4_update(
    content: str,
    current_overview: str,
    current_module: str | None,
    module_name: str,
) -> C4UpdateResult:
    """Parse a model reply. Missing or empty sections fall back to the current diagram (never blanked)."""
    sections = split_sections(content)
    overview = sections.get("overview") or ""
    module = sections.get("module") or ""
    if not sections:
        logger.warning("LLM reply has no section markers; diagrams for '%s' left unchanged", module_name)
    elif not module:
        logger.warning("LLM reply has no module section; module diagram '%s' left unchanged", module_name)
    return C4UpdateResult(
        overview_diagram=overview or current_overview,
        module_diagram=module or current_module,
        module_name=module_name,
        overview_updated=bool(overview),
        module_updated=bool(module),
    )


async def generate_c4_update(
    current_overview: str,
    current_module: str | None,
    files: Sequence[FileInput],
    project_tree: str,
    module_name: str,
    *,
    provider_config: ProviderConfig,
    generate: GenerateFn | None = None,
    max_file_chars: int = MAX_FILE_CONTENT_CHARS,
) -> C4UpdateResult:
    """Issue exactly one generation call for a batch and parse it.

    Args:
        current_overview: Overview diagram before the batch.
        current_module: Module diagram before the batch, None on first encounter.
        files: Batch file names and texts.
        project_tree: ASCII tree of the whole project.
        module_name: Module key of the batch.
        provider_config: Provider selection for the call.
        generate: Generation callable; defaults to llm_client.generate.
        max_file_chars: Per-file content cap.

    Raises:
        LLMClientError (or whatever generate raises): the batch fails as a whole.
    """
    messages = _prompts.build_c4_update_messages(
        current_overview,
        current_module,
        module_name,
        [(f.name, f.content) for f in files],
        project_tree,
        max_file_chars,
    )
    call = generate or llm_client.generate
    content = await call(messages[0]["content"], messages[1]["content"], provider_config)
    return parse_c4_update(content, current_overview, current_module, module_name)
