"""Agent event stream formatting.

Turns the line-delimited JSON events a worker prints on stdout into the
human-readable transcript shown on the fleet board:

    [14:02:11] THINKING: Reading the research report first...
    [14:02:12] TOOL: Read → /srv/factory/apps/LensCycle/research/report.md
    [14:09:40] RESULT: Agent finished ($0.4821)

Lines that are not JSON objects are telemetry noise and produce nothing.
"""

import json
from typing import Any, Dict, List, Optional


MAX_TEXT_LENGTH = 300
MAX_COMMAND_LENGTH = 100

# Tool name -> (input field, wrap in quotes)
_TOOL_DETAIL_FIELDS = {
    "Read": ("file_path", False),
    "Write": ("file_path", False),
    "Edit": ("file_path", False),
    "Glob": ("pattern", False),
    "Grep": ("pattern", True),
    "Task": ("description", False),
}


def truncate(text: str, limit: int) -> str:
    """Trim text longer than limit characters, marking the cut with '...'."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def parse_event_line(line: str) -> Optional[Dict[str, Any]]:
    """Parse one stdout line into an event dict.

    Returns:
        The decoded object, or None for blank, non-JSON or non-object lines.
    """
    line = line.strip()
    if not line:
        return None
    try:
        event = json.loads(line)
    except json.JSONDecodeError:
        return None
    return event if isinstance(event, dict) else None


def format_tool_detail(name: str, tool_input: Any) -> str:
    """Summarize a tool invocation's input for the transcript.

    Args:
        name: Tool name from the tool_use block.
        tool_input: The block's input object.

    Returns:
        "→ <detail>" or an empty string when there is nothing to show.
    """
    if not isinstance(tool_input, dict):
        return ""

    if name == "Bash":
        command = tool_input.get("command") or ""
        if not isinstance(command, str):
            return ""
        return f"→ {truncate(command, MAX_COMMAND_LENGTH)}"

    field_spec = _TOOL_DETAIL_FIELDS.get(name)
    if field_spec is None:
        return ""
    field_name, quoted = field_spec
    value = tool_input.get(field_name)
    if not value or not isinstance(value, str):
        return ""
    return f'→ "{value}"' if quoted else f"→ {value}"


def format_agent_event(event: Dict[str, Any], timestamp: str) -> List[str]:
    """Render one worker event as zero or more transcript lines.

    Recognized shapes:
        {"type": "assistant", "message": {"content": [...]}}
            text blocks → THINKING lines, tool_use blocks → TOOL lines
        {"type": "result", "cost_usd": 0.12}
            → RESULT line

    Args:
        event: Decoded event object.
        timestamp: Wall-clock prefix, e.g. "14:02:11".

    Returns:
        Transcript lines without trailing newlines.
    """
    event_type = event.get("type")
    lines: List[str] = []

    if event_type == "assistant":
        message = event.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, list):
            return lines
        for block in content:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text" and block.get("text"):
                text = truncate(str(block["text"]), MAX_TEXT_LENGTH)
                lines.append(f"[{timestamp}] THINKING: {text}")
            elif block.get("type") == "tool_use":
                name = str(block.get("name") or "unknown")
                detail = format_tool_detail(name, block.get("input") or {})
                summary = f"{name} {detail}" if detail else name
                lines.append(f"[{timestamp}] TOOL: {summary}")

    elif event_type == "result":
        cost = event.get("cost_usd", event.get("total_cost_usd"))
        cost_text = ""
        if isinstance(cost, (int, float)) and not isinstance(cost, bool) and cost:
            cost_text = f" (${cost:.4f})"
        lines.append(f"[{timestamp}] RESULT: Agent finished{cost_text}")

    return lines
