import logging

from privtalk.configs.settings import LOG_LEVEL


def setup_logging():
    """Configure root logging once for the API process"""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
