from examhall.services.analytics import ReportService
from examhall.services.catalog import TestCatalog
from examhall.services.lifecycle import AttemptLifecycle, compute_remaining_time

__all__ = ["AttemptLifecycle", "ReportService", "TestCatalog", "compute_remaining_time"]
