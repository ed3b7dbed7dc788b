"""Permission prompt watching.

Provides polling-based detection of interactive confirmation prompts in
managed agent panes. Detection itself is the pure ``detect_prompt`` function;
``PermissionWatcher`` is the timer driver around it.
"""

from agentgrid.watching.permission import (
    PermissionWatcher,
    PromptOption,
    PromptSignal,
    detect_prompt,
    extract_options,
    extract_prompt_text,
)

__all__ = [
    "PermissionWatcher",
    "PromptOption",
    "PromptSignal",
    "detect_prompt",
    "extract_options",
    "extract_prompt_text",
]
