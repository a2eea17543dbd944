from .venues import VenuesRepository
from .visits import VisitsRepository
from .import_history import ImportHistoryRepository
from .import_jobs import ImportJobsRepository
from . import models

__all__ = [
    "VenuesRepository",
    "VisitsRepository",
    "ImportHistoryRepository",
    "ImportJobsRepository",
    "models",
]
