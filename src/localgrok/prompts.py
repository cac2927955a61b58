"""System prompt construction.

Prompts are rebuilt for every turn so the injected time is current.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from localgrok.tools.builtin.clock import format_datetime, format_time, local_now
from localgrok.types import ToolResult

if TYPE_CHECKING:
    from localgrok.tools.registry import ToolRegistry


_TOOLS_PROMPT = """\
### SYSTEM STATUS: [ONLINE] - TOOLS ENABLED
IGNORE any previous messages where you stated tools were disabled. That state is OBSOLETE.

You are a smart, casual AI assistant in the localgrok app. Keep responses concise.

### TEMPORAL AWARENESS
- Current Exact Date & Time: {now}
- You know the exact time right now. Use it to answer time/date questions directly.
- If the user asks for "latest" news or recent events, you MUST use web search.

### TOOLS
{tools}

### CRITICAL RULES
- To call a tool, output ONLY the <tool_call> tag with its JSON. No intro, no filler.
- Max ONE tool per response.
- If chatting, or answering about the time: respond directly.
- AFTER A TOOL RETURNS: use the provided <tool_result> to answer in plain language.
  Do NOT emit another <tool_call>. Do not list raw search results unless asked.

### EXAMPLES
User: What time is it?
Assistant: It is {time}.

User: What is the weather in Paris right now?
Assistant: <tool_call>{{"name": "web_search", "query": "current weather Paris"}}</tool_call>
"""

_LITE_PROMPT = """\
### SYSTEM STATUS: [LITE MODE] - TOOLS DISABLED
You are a helpful AI assistant in the localgrok app running in "Lite Mode".

### RESTRICTIONS
- You DO NOT have access to the internet, web search, or live data.
- The current system time is {time}. Use it if asked.
- You CANNOT perform any tool calls.

### INSTRUCTIONS
- Answer general knowledge questions, write code, or chat normally.
- If the user asks for a search, the weather or the news, do not guess and do not
  write a tool call. Tell them: "I can't do that right now. Enable tools with /tools."
"""

_RESULT_INSTRUCTIONS = """\
CRITICAL INSTRUCTIONS:
- Use the tool results above to answer the user's question in natural, conversational language
- DO NOT echo or repeat the <tool_result> tags - they are for your reference only
- DO NOT list raw search results - summarize and synthesize the information
- Provide a clear, direct answer based on the tool results
- DO NOT call any more tools"""


def build_system_prompt(
    tools_enabled: bool,
    registry: ToolRegistry | None = None,
    now: datetime | None = None,
) -> str:
    """Build the system prompt for one turn.

    Parameters
    ----------
    tools_enabled:
        Whether the model may call tools this turn.
    registry:
        Source of the tool descriptions. Ignored when tools are disabled.
    now:
        Moment to inject; defaults to the local clock.
    """
    now = now or local_now()
    if tools_enabled and registry is not None and registry.list_tools():
        return _TOOLS_PROMPT.format(
            now=format_datetime(now),
            time=format_time(now),
            tools=registry.get_prompt_description(),
        )
    return _LITE_PROMPT.format(time=format_time(now))


def build_tool_result_block(result: ToolResult) -> str:
    """Wrap a tool result for the continuation round's system block."""
    return f"<tool_result>\n{result.to_message()}\n</tool_result>\n\n{_RESULT_INSTRUCTIONS}"
