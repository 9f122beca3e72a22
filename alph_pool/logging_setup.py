import coloredlogs, logging

APP_LOGGER = "Pool-Payouts"

# Loggers of the payout components, they follow the configured level
COMPONENT_LOGGERS = (
    "RoundLedger",
    "ChainVerifier",
    "RewardAllocator",
    "ScanLoop",
    "Store",
    "Notifications",
    "WebAPI",
)

# Third party loggers and the highest level they may log below
LIBRARY_FLOORS = {
    "aiosqlite": logging.INFO,
    "asyncio": logging.INFO,
    "aiohttp.access": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}

LOG_FORMAT = "%(asctime)s %(name)s[%(process)d] %(levelname)s %(message)s"


def resolve_level(log_level) -> str:
    """VERBOSE=true style booleans map to DEBUG/INFO, unknown names to INFO."""
    if isinstance(log_level, bool):
        return "DEBUG" if log_level else "INFO"
    name = str(log_level).upper()
    if name not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        logging.getLogger(APP_LOGGER).warning(
            "Invalid log level '%s', using INFO", log_level
        )
        return "INFO"
    return name


def setup_logging(log_level="INFO"):
    """
    Install coloredlogs and set the payout component loggers to log_level.

    Library loggers are held at their floor so a DEBUG run shows payout
    decisions without sqlite and access log noise.

    Returns:
        The application logger
    """
    level_name = resolve_level(log_level)
    level = getattr(logging, level_name)

    logging.getLogger().setLevel(level)
    coloredlogs.install(level=level_name, fmt=LOG_FORMAT, milliseconds=True)

    for name in (APP_LOGGER,) + COMPONENT_LOGGERS:
        logging.getLogger(name).setLevel(level)

    for name, floor in LIBRARY_FLOORS.items():
        logging.getLogger(name).setLevel(max(level, floor))

    return logging.getLogger(APP_LOGGER)
