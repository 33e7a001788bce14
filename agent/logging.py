"""
Logging configuration for datachat.

Two destinations, one tier:
  - File: always DEBUG level, one file per process start
  - Console: DEBUG if --verbose, WARNING+ otherwise
  - Format: "timestamp | level | name | session_id | message"
  - Config console_format options:
    - "simple" - (default) bare messages for DEBUG/INFO, [LEVEL] prefix for WARNING+
    - "full" - same structured format as the file handler
    - "clean"  - no console output at all (file logging still active)

A second file receives one line per model call with token counts.

Log files are stored in ~/.datachat/logs/ (see config.get_data_dir).
"""

import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional

import config

LOGGER_NAME = "datachat"

# Module-level state (shared across re-inits)
_session_filter: Optional["_SessionFilter"] = None
_current_log_file: Optional[Path] = None
_token_log_file: Optional[Path] = None


def get_log_dir() -> Path:
    """Return the log directory under the configured data directory."""
    return config.get_data_dir() / "logs"


class _SessionFilter(logging.Filter):
    """Injects session_id into every log record."""

    def __init__(self) -> None:
        super().__init__()
        self.session_id = ""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = self.session_id or "-"
        return True


class _ConsoleFormatter(logging.Formatter):
    """Console formatter: shows [LEVEL] prefix only for WARNING and above.

    DEBUG/INFO messages print bare (e.g. ``  [Route] tabular_tools``).
    WARNING/ERROR messages include the level (e.g. ``  [WARNING] ...``).
    """

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            return f"  [{record.levelname}] {record.getMessage()}"
        return f"  {record.getMessage()}"


def setup_token_log(session_timestamp: str) -> Path:
    """Create the per-API-call token usage log file.

    Args:
        session_timestamp: Timestamp string (e.g. '20260210_211534') shared
            with the main agent log for easy correlation.

    Returns:
        Path to the token log file.
    """
    global _token_log_file
    log_dir = get_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    path = log_dir / f"token_{session_timestamp}.log"
    _token_log_file = path
    with open(path, "w", encoding="utf-8") as f:
        f.write("# timestamp | agent | tool_context | in out think | cum_in cum_out cum_think | calls\n")
    return path


def log_token_usage(
    agent_name: str,
    input_tokens: int,
    output_tokens: int,
    thinking_tokens: int,
    cumulative_input: int,
    cumulative_output: int,
    cumulative_thinking: int,
    api_calls: int,
    tool_context: str = "send_turn",
    token_log_path: Optional[Path] = None,
) -> None:
    """Append one line to the token usage log.

    Args:
        agent_name: Label of the caller (e.g. 'ChatAgent[tabular_tools]').
        input_tokens: Tokens consumed in this API call (prompt).
        output_tokens: Tokens produced in this API call.
        thinking_tokens: Thinking tokens in this API call.
        cumulative_input: Running total of input tokens.
        cumulative_output: Running total of output tokens.
        cumulative_thinking: Running total of thinking tokens.
        api_calls: Running total of API calls.
        tool_context: What triggered this API call (tool names, 'initial_message', etc.).
        token_log_path: Explicit path to the token log file. If None, falls back
            to the module-global ``_token_log_file``.
    """
    target = token_log_path or _token_log_file
    if target is None:
        return
    ctx = tool_context[:60] if tool_context else "unknown"
    ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    line = (
        f"{ts} | {agent_name} | {ctx} | "
        f"in:{input_tokens} out:{output_tokens} think:{thinking_tokens} | "
        f"cum_in:{cumulative_input} cum_out:{cumulative_output} cum_think:{cumulative_thinking} | "
        f"calls:{api_calls}\n"
    )
    try:
        with open(target, "a", encoding="utf-8") as f:
            f.write(line)
    except OSError:
        pass  # Don't let token logging break the turn


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Configure logging for the agent.

    Args:
        verbose: If True, show DEBUG level on console; otherwise WARNING only

    Returns:
        Configured logger instance
    """
    global _session_filter, _current_log_file
    log_dir = get_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # Capture everything, filter at handler level
    logger.propagate = False

    # Clear existing handlers (in case of re-init)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    # Session filter: reuse existing instance to preserve session_id across re-inits
    if _session_filter is None:
        _session_filter = _SessionFilter()
    logger.addFilter(_session_filter)

    # File handler - one log file per process start
    session_timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"agent_{session_timestamp}.log"
    _current_log_file = log_file
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_format = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(session_id)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler.setFormatter(file_format)
    logger.addHandler(file_handler)

    console_format = config.get("console_format", "simple")
    if console_format != "clean":
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
        if console_format == "full":
            console_handler.setFormatter(file_format)
        else:
            console_handler.setFormatter(_ConsoleFormatter())
        logger.addHandler(console_handler)

    # Token usage log (shares the same timestamp suffix)
    setup_token_log(session_timestamp)

    logger.info("=" * 60)
    logger.info(f"Process started at {datetime.now().isoformat()}")
    logger.info(f"Log file: {log_file}")

    return logger


def get_logger() -> logging.Logger:
    """Get the agent logger instance.

    Returns:
        The datachat logger (creates with defaults if not configured)
    """
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        return setup_logging(verbose=False)
    return logger


def set_session_id(session_id: str) -> None:
    """Set the chat session ID included in all subsequent log lines."""
    global _session_filter
    if _session_filter is None:
        # Logger not set up yet; create filter so it's ready when logging starts
        _session_filter = _SessionFilter()
    _session_filter.session_id = session_id


def log_error(
    message: str,
    exc: Optional[Exception] = None,
    context: Optional[dict] = None,
) -> None:
    """Log an error with full details including stack trace.

    Args:
        message: Error description
        exc: Optional exception to include stack trace from
        context: Optional dict of additional context (tool name, args, etc.)
    """
    logger = get_logger()

    lines = [message]

    if context:
        lines.append("Context:")
        for key, value in context.items():
            lines.append(f"  {key}: {value}")

    if exc:
        lines.append(f"Exception type: {type(exc).__name__}")
        lines.append(f"Exception message: {exc}")
        lines.append("Stack trace:")
        lines.append(traceback.format_exc())

    logger.error("\n".join(lines))


def log_tool_call(tool_name: str, tool_args: dict) -> None:
    """Log a tool call for debugging."""
    get_logger().debug(f"Tool call: {tool_name}({tool_args})")


def log_tool_result(tool_name: str, result: dict, success: bool) -> None:
    """Log a tool result.

    Args:
        tool_name: Name of the tool
        result: Serialized result dict from the tool
        success: Whether the tool succeeded
    """
    logger = get_logger()
    if success:
        logger.debug(f"Tool result: {tool_name} -> success")
    else:
        error_msg = result.get("error", "Unknown error")
        logger.warning(f"Tool result: {tool_name} -> error: {error_msg}")


def log_turn_event(event: str, mode: str, details: Optional[str] = None) -> None:
    """Log a turn lifecycle event (routed, finished, failed, cancelled).

    Args:
        event: Event type
        mode: Execution mode value for the turn
        details: Optional additional details
    """
    msg = f"Turn {event}: {mode}"
    if details:
        msg += f" - {details}"
    get_logger().info(msg)


def get_token_log_path() -> Optional[Path]:
    """Return the path to the current token log file (or None)."""
    return _token_log_file


def get_current_log_path() -> Path:
    """Return the path to the current process's log file."""
    if _current_log_file is not None:
        return _current_log_file
    log_dir = get_log_dir()
    logs = sorted(log_dir.glob("agent_*.log"))
    if logs:
        return logs[-1]
    return log_dir / f"agent_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"


def get_recent_errors(days: int = 7, limit: int = 50) -> list[dict]:
    """Retrieve recent errors from log files.

    Args:
        days: How many days back to search
        limit: Maximum number of errors to return

    Returns:
        List of error entries with timestamp, level, session_id, message, details
    """
    errors = []
    cutoff = datetime.now().timestamp() - days * 86400
    log_files = sorted(get_log_dir().glob("agent_*.log"), reverse=True)

    for log_file in log_files:
        if log_file.stat().st_mtime < cutoff:
            break

        try:
            with open(log_file, "r", encoding="utf-8") as f:
                current_error = None
                for line in f:
                    if "| ERROR" in line or "| WARNING" in line:
                        if current_error:
                            errors.append(current_error)
                        # Format: timestamp | level | name | session_id | message
                        parts = line.split(" | ", 4)
                        if len(parts) >= 5:
                            current_error = {
                                "timestamp": parts[0].strip(),
                                "level": parts[1].strip(),
                                "session_id": parts[3].strip(),
                                "message": parts[4].strip(),
                                "details": [],
                            }
                    elif current_error and line.startswith("  "):
                        current_error["details"].append(line.rstrip())

                if current_error:
                    errors.append(current_error)

        except OSError:
            continue

        if len(errors) >= limit:
            break

    return errors[:limit]


def print_recent_errors(days: int = 7, limit: int = 10) -> None:
    """Print recent errors to console for review."""
    errors = get_recent_errors(days=days, limit=limit)
    print(f"Current log: {get_current_log_path()}")

    if not errors:
        print(f"No errors found in the last {days} days.")
        return

    print(f"Recent errors (last {days} days, showing up to {limit}):")
    print("-" * 60)

    for i, error in enumerate(errors, 1):
        print(f"\n{i}. [{error['timestamp']}] {error['level']}")
        print(f"   {error['message']}")
        if error["details"]:
            for detail in error["details"][:5]:
                print(f"   {detail}")
            if len(error["details"]) > 5:
                print(f"   ... and {len(error['details']) - 5} more lines")

    print("-" * 60)
    print(f"Full logs available at: {get_log_dir()}")
