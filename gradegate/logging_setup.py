"""Centralized logfire configuration for GradeGate.

Configures logfire exactly once per process so entry points (the CLI, a
worker, a web handler) can all call ``configure_logging()`` safely.

Usage:
    from gradegate.logging_setup import configure_logging
    configure_logging()

    import logfire
    logfire.info("Pipeline started")
"""

import sys
import threading

import logfire

_configured = False
_config_lock = threading.Lock()


def configure_logging(enable_console: bool = False, verbose: bool = False) -> None:
    """Configure logfire if not already configured.

    Nothing is sent to the hosted service unless a logfire token is present
    in the environment.

    Args:
        enable_console: Whether to print log records to the console.
        verbose: Include debug records in console output.
    """
    global _configured

    if _configured:
        return

    with _config_lock:
        if _configured:
            return
        console: logfire.ConsoleOptions | bool = False
        if enable_console:
            console = logfire.ConsoleOptions(min_log_level="debug" if verbose else "info")
        try:
            logfire.configure(
                service_name="gradegate",
                send_to_logfire="if-token-present",
                console=console,
            )
            _configured = True
        except Exception as e:
            # logfire is not usable yet, so report on stderr
            print(f"Failed to configure logfire: {e}", file=sys.stderr)


def is_configured() -> bool:
    """Check if logfire has been configured."""
    return _configured
