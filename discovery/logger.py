'''
Logger centralisé du service de découverte.

Loguru est configuré une seule fois ici : une sortie console colorée et,
si LOG_TO_FILES est actif, des fichiers rotatifs par niveau.
'''

import os
import sys

from loguru import logger

from discovery.config import settings

LOG_FORMAT_CONSOLE = (
    "<white>{time:YYYY-MM-DD HH:mm:ss.SSS}</white> | "
    "<level>{level: <8}</level> | "
    "<light-black>{name}:{function}:{line}</light-black> - "
    "<level><b>{message}</b></level>"
)
LOG_FORMAT_FILE = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
    "{level: <8} | "
    "{name}:{function}:{line} - "
    "{message}"
)

# Un seul handler console, pas de doublon avec celui par défaut
logger.remove()

logger.add(
    sys.stderr,
    level=settings.LOG_LEVEL,
    format=LOG_FORMAT_CONSOLE,
    colorize=True,
    backtrace=True,
    diagnose=False,
)


def _add_file_sink(filename: str, level: str, levels=None, **extra):
    """Ajoute un fichier rotatif (journalier, 30 jours, zip)."""
    logger.add(
        os.path.join(settings.LOG_DIR, filename),
        level=level,
        format=LOG_FORMAT_FILE,
        rotation="00:00",
        retention="30 days",
        compression="zip",
        encoding="utf-8",
        filter=(lambda record: record["level"].name in levels) if levels else None,
        **extra,
    )


if settings.LOG_TO_FILES:
    os.makedirs(settings.LOG_DIR, exist_ok=True)
    _add_file_sink("debug.log", "DEBUG", levels=("DEBUG",))
    _add_file_sink("info.log", "INFO", levels=("INFO", "WARNING"))
    # Trace complète pour les erreurs
    _add_file_sink("error.log", "ERROR", backtrace=True, diagnose=True)
