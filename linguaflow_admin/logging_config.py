import logging

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'


def configure_logging(level: str = 'INFO') -> None:
    """Idempotent logging setup shared by the app factory and scripts."""
    root = logging.getLogger()
    if root.handlers:
        return
    numeric_level = getattr(logging, str(level or 'INFO').upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)
