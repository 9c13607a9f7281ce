# Services package - business logic and external integrations
from app.services.storage import ResultStorage
from app.services.job_store import JobStore
from app.services.admission import AdmissionController, Admission
from app.services.generation import GenerationService

__all__ = [
    "ResultStorage",
    "JobStore",
    "AdmissionController",
    "Admission",
    "GenerationService",
]
