"""Prompt templates for incremental C4 diagram updates. One system prompt, one user prompt per batch."""

from __future__ import annotations

from typing import Sequence

# Section markers the model must emit; the generation adapter splits the response on them.
OVERVIEW_MARKER = "=== OVERVIEW DIAGRAM ==="
MODULE_MARKER = "=== MODULE DIAGRAM ==="

# Used when a module is seen for the first time.
EMPTY_MODULE_PLACEHOLDER = "(none yet: create a new C4Component diagram for this module)"

C4_UPDATE_SYSTEM_PROMPT = f"""You are an expert Software Architect specializing in C4 Model architecture diagrams using Mermaid JS syntax.

We are incrementally building two diagrams for a codebase, one batch of files at a time:
1) The OVERVIEW diagram (C4Context / C4Container): system-level containers, databases, external systems and how they talk to each other.
2) A MODULE diagram (C4Component) for the directory the current batch comes from.

TASK:
1. Analyze the provided BATCH OF FILES. All of them come from the same directory (module).
2. Identify significant Components, Controllers, Services, Repositories, or External System interactions in ALL provided files.
3. Update the MODULE diagram with the components found in these files and their relationships (Rel) based on imports, dependency injection, or API calls.
4. Update the OVERVIEW diagram only with container-level facts (new containers, data stores, external systems, protocols).
5. Maintain existing nodes in both diagrams. Do not remove them unless they are clearly erroneous based on these new files.

OUTPUT FORMAT:
Reply with exactly two sections, each starting with its marker on its own line:
{OVERVIEW_MARKER}
<full updated Mermaid code of the overview diagram>
{MODULE_MARKER}
<full updated Mermaid code of the module diagram>

Return raw Mermaid code inside each section. Do not wrap it in markdown code blocks. Do not add explanations."""

C4_UPDATE_USER_PROMPT_TEMPLATE = """Project directory structure (to help you understand where the files fit in):

<structure>
{project_tree}
</structure>

Current OVERVIEW diagram:

<overview>
{current_overview}
</overview>

Current MODULE diagram for '{module_name}':

<module>
{current_module}
</module>

I am providing you with a BATCH of {file_count} new files from module '{module_name}'.

FILES CONTENT:
{files_block}"""


def format_files_block(files: Sequence[tuple[str, str]], max_chars_per_file: int) -> str:
    """Render (name, content) pairs with start/end markers, cutting each content at max_chars_per_file."""
    blocks = []
    for name, content in files:
        body = content[:max_chars_per_file] if max_chars_per_file > 0 else content
        blocks.append(f"--- FILE START: {name} ---\n{body}\n--- FILE END ---")
    return "\n\n".join(blocks)


def build_c4_update_messages(
    current_overview: str,
    current_module: str | None,
    module_name: str,
    files: Sequence[tuple[str, str]],
    project_tree: str,
    max_chars_per_file: int,
) -> list[dict[str, str]]:
    """Build system + user messages for one batch update.

    Args:
        current_overview: Overview diagram text before this batch.
        current_module: Module diagram text, or None on first encounter.
        module_name: Module key (batch directory or 'root').
        files: (relative path, file text) for every file in the batch.
        project_tree: ASCII tree of the whole project (not just the batch).
        max_chars_per_file: Per-file content cap.

    Returns:
        List of dicts with role and content for chat completion.
    """
    user = C4_UPDATE_USER_PROMPT_TEMPLATE.format(
        project_tree=project_tree or "(no files)",
        current_overview=current_overview,
        module_name=module_name,
        current_module=current_module or EMPTY_MODULE_PLACEHOLDER,
        file_count=len(files),
        files_block=format_files_block(files, max_chars_per_file),
    )
    return [
        {"role": "system", "content": C4_UPDATE_SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]
