"""
config.py
~~~~~~~~~

Environment-driven settings and logging setup.

All values are read from environment variables at call time so tests and
deployments can override them without touching code.
"""

import os
import logging


def data_dir() -> str:
    """Directory holding the MNIST IDX files."""
    return os.getenv('MNIST_DATA_DIR', 'data')


def model_dir() -> str:
    """Directory holding the SQLite model database."""
    return os.getenv('MODEL_DIR', 'models')


def is_production() -> bool:
    return os.getenv('FLASK_ENV') == 'production'


def server_port() -> int:
    return int(os.getenv('PORT', 8000))


def default_architecture() -> dict:
    """
    Default network shape used when a request does not specify one.

    Returns:
        dict with hidden_layer_count, hidden_node_count, output_node_count
    """
    return {
        'hidden_layer_count': int(os.getenv('HIDDEN_LAYER_COUNT', 2)),
        'hidden_node_count': int(os.getenv('HIDDEN_NODE_COUNT', 16)),
        'output_node_count': int(os.getenv('OUTPUT_NODE_COUNT', 10)),
    }


def configure_logging() -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep our own logs
    - In development: Show more detailed logs for debugging
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if is_production():
        logging.getLogger('werkzeug').setLevel(logging.WARNING)
        # Keep our logs at INFO level for visibility in production
        logging.getLogger('feedforward').setLevel(logging.INFO)
