"""
Logging configuration for the sync server and CLI tools.
"""

import logging.config
import os


def get_logging_config():
    log_level = os.environ.get('LOG_LEVEL', 'INFO').upper()
    log_format = os.environ.get('LOG_FORMAT', 'simple')
    if log_format not in ('simple', 'detailed', 'json'):
        log_format = 'simple'

    return {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'simple': {
                'format': '%(asctime)s %(levelname)-8s %(name)s: %(message)s',
                'datefmt': '%Y-%m-%d %H:%M:%S',
            },
            'detailed': {
                'format': '%(asctime)s %(levelname)-8s %(name)s [%(threadName)s] %(module)s:%(lineno)d %(message)s',
            },
            'json': {
                'format': '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
                          '"thread": "%(threadName)s", "message": "%(message)s"}',
            },
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'level': log_level,
                'formatter': log_format,
                'stream': 'ext://sys.stdout',
            },
        },
        'loggers': {
            # requests/urllib3 log full URLs at DEBUG
            'urllib3': {'level': 'WARNING'},
            'werkzeug': {'level': 'WARNING'},
        },
        'root': {
            'level': log_level,
            'handlers': ['console'],
        },
    }


def configure_logging():
    logging.config.dictConfig(get_logging_config())
