import sys

from loguru import logger


def setup_logging(level: str = "INFO", backtrace: bool = False, diagnose: bool = False) -> None:
    """
    Route loguru output to stderr with the engine's log format.

    Args:
        level (str, optional): Minimum level written to stderr. Defaults to "INFO".
        backtrace (bool, optional): Whether to extend tracebacks beyond the catch point. Defaults to False.
        diagnose (bool, optional): Whether to show variable values in tracebacks. Defaults to False.
    """
    logger.remove()
    logger.add(
        sink=sys.stderr,
        level=level.upper(),
        backtrace=backtrace,
        diagnose=diagnose,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name} | {message}",
    )
