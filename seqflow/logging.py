import logging

# Job actions are aligned by the scheduler, so keep the prefix short.
log_formatter = logging.Formatter("[seqflow] %(message)s")
log_handler = logging.StreamHandler()
log_handler.setFormatter(log_formatter)

logger = logging.getLogger("seqflow")
logger.setLevel(logging.INFO)
logger.addHandler(log_handler)

log_levels = {
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def set_log_level(level_name: str) -> None:
    """
    Set the level of the seqflow logger by name, e.g. from `--log-level`.
    """
    try:
        logger.setLevel(log_levels[level_name.upper()])
    except KeyError:
        raise ValueError(
            f"Unknown log level: {level_name}. Use one of: {', '.join(log_levels)}"
        )
