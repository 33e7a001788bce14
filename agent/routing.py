"""
Turn routing policy.

Picks exactly one execution mode per user message from the message text and
the session's attachment state. The decision is a pure function; it is
recomputed on every turn and never stored.

Priority (first match wins):
1. Python-only keywords (regression, histogram, heatmap, ...) -> PYTHON_ANALYSIS
   (provider code execution; the only mode that embeds the encoded CSV)
2. JSON records loaded and no code intent          -> RECORD_TOOLS
3. CSV loaded earlier in the session (not a fresh drop) -> TABULAR_TOOLS
4. Code-intent keywords                            -> CODE_EXECUTION
5. Anything else                                   -> SEARCH (streamed, grounded)
"""

import re
from dataclasses import dataclass
from enum import Enum

# Requests the fixed tool catalogs cannot satisfy
PYTHON_ONLY_KEYWORDS = re.compile(
    r"\b(regression|scatter|histogram|seaborn|matplotlib|numpy|time.?series|heatmap"
    r"|box.?plot|violin|distribut|linear.?model|logistic|forecast|trend.?line)\w*",
    re.IGNORECASE,
)

CODE_KEYWORDS = re.compile(
    r"\b(plot|chart|graph|analyz|statistic|regression|correlat|histogram|visualiz"
    r"|calculat|compute|run code|write code|execute|pandas|numpy|matplotlib|csv|data)\w*",
    re.IGNORECASE,
)


class TurnMode(str, Enum):
    PYTHON_ANALYSIS = "python_analysis"
    RECORD_TOOLS = "record_tools"
    TABULAR_TOOLS = "tabular_tools"
    CODE_EXECUTION = "code_execution"
    SEARCH = "search"

    @property
    def uses_tools(self) -> bool:
        return self in (TurnMode.RECORD_TOOLS, TurnMode.TABULAR_TOOLS)


@dataclass(frozen=True)
class RoutingInputs:
    """Everything the routing policy looks at.

    Attributes:
        text: The user's message text.
        has_tabular: A CSV context is active.
        has_records: A JSON record context is active.
        fresh_tabular: The CSV context was attached with this very message.
        has_tabular_source: Raw CSV text is available for the encoded transport.
    """
    text: str
    has_tabular: bool = False
    has_records: bool = False
    fresh_tabular: bool = False
    has_tabular_source: bool = False

    @classmethod
    def from_state(cls, text: str, attachments) -> "RoutingInputs":
        """Build inputs from an ``AttachmentState``."""
        tabular = attachments.tabular
        return cls(
            text=text or "",
            has_tabular=tabular is not None,
            has_records=attachments.records is not None,
            fresh_tabular=attachments.fresh_tabular,
            has_tabular_source=bool(tabular is not None and tabular.source_text),
        )


@dataclass(frozen=True)
class RoutingDecision:
    mode: TurnMode
    encode_data: bool = False
    matched: tuple = ()


def _matches(pattern: re.Pattern, text: str) -> list[str]:
    return [m.group(0).lower() for m in pattern.finditer(text)]


def route(inputs: RoutingInputs) -> RoutingDecision:
    """Select the execution mode for one turn."""
    text = inputs.text or ""
    python_only = _matches(PYTHON_ONLY_KEYWORDS, text)
    code_hits = _matches(CODE_KEYWORDS, text)
    # With CSV rows loaded the tabular catalog covers generic "plot"/"data" asks
    want_code = bool(code_hits) and not inputs.has_tabular

    if python_only:
        return RoutingDecision(
            mode=TurnMode.PYTHON_ANALYSIS,
            encode_data=inputs.has_tabular and inputs.has_tabular_source,
            matched=tuple(python_only),
        )
    if inputs.has_records and not want_code:
        return RoutingDecision(mode=TurnMode.RECORD_TOOLS)
    if inputs.has_tabular and not inputs.fresh_tabular:
        return RoutingDecision(mode=TurnMode.TABULAR_TOOLS)
    if want_code:
        return RoutingDecision(mode=TurnMode.CODE_EXECUTION, matched=tuple(code_hits))
    return RoutingDecision(mode=TurnMode.SEARCH)
