import logging
from typing import Optional


def set_logging_level(
    level: int,
    service_name: Optional[str] = None,
    environment: Optional[str] = None,
) -> None:
    """Set logging level for all statute loggers.

    Args:
        level: The logging level to set
        service_name: Name of the service (e.g., "ingest")
        environment: Environment name (e.g., "localhost", "dev", "prod")
    """
    loggers = [logging.getLogger(name) for name in logging.root.manager.loggerDict]
    for logger in loggers:
        if logger.name.startswith("statute") or logger.name == "__main__":
            logger.setLevel(level)

    logging.basicConfig(format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # Suppress noisy loggers
    for noisy in ("urllib3", "httpx", "httpcore", "azure"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

    if service_name or environment:
        logging.getLogger("statute").info(
            f"Logging configured for {service_name or 'statute'} ({environment or 'default'})",
            extra={"service_name": service_name, "environment": environment},
        )
