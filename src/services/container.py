"""Wires the services around one DataStore."""

from dataclasses import dataclass
from typing import Optional

from database import DataStore, InfoLineCache

from .approval import ApprovalService
from .columns import ColumnService
from .completion import CompletionService
from .data_entry import DataEntryService
from .deadlines import DeadlineChecker
from .notifications import EmailHook, NotificationService
from .reports import ReportService
from .statistics import StatisticsService
from .transitions import StatusTransitionService


@dataclass
class Services:
    store: DataStore
    cache: InfoLineCache
    notifications: NotificationService
    transitions: StatusTransitionService
    completion: CompletionService
    data_entry: DataEntryService
    approval: ApprovalService
    deadlines: DeadlineChecker
    statistics: StatisticsService
    reports: ReportService
    columns: ColumnService


def build_services(
    store: DataStore,
    cache: Optional[InfoLineCache] = None,
    retention_days: int = 90,
    frontend_url: str = "https://infoline.edu.az",
    email_hook: Optional[EmailHook] = None,
) -> Services:
    cache = cache or InfoLineCache()
    notifications = NotificationService(store, retention_days=retention_days, email_hook=email_hook)
    transitions = StatusTransitionService(store, notifications=notifications, cache=cache)
    completion = CompletionService(store, cache=cache)

    return Services(
        store=store,
        cache=cache,
        notifications=notifications,
        transitions=transitions,
        completion=completion,
        data_entry=DataEntryService(store, transitions, notifications=notifications, cache=cache),
        approval=ApprovalService(store, transitions, completion=completion, notifications=notifications, cache=cache),
        deadlines=DeadlineChecker(store, notifications, cache=cache, frontend_url=frontend_url),
        statistics=StatisticsService(store),
        reports=ReportService(store),
        columns=ColumnService(store, cache=cache),
    )
