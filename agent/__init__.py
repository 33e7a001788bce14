"""Agent layer: turn routing, tool-call loop and response aggregation."""

from .core import ChatAgent, create_agent
from .tools import TOOLS, get_tool_schemas
from .prompts import get_system_prompt
