from __future__ import annotations

import datetime

import pytest

from oneclick.platform import (
    FieldType,
    InMemoryWorkItemForm,
    InMemoryWorkItemService,
    Iteration,
    NotificationProvider,
    RuleContext,
    StaticIdentityService,
    StaticIterationService,
)
from oneclick.schemas.rule import IdentityRef

FIXED_NOW = datetime.datetime(2023, 1, 15, 10, 30, tzinfo=datetime.timezone.utc)


class RecordingNotifier(NotificationProvider):
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def notify(self, to: str, subject: str, message: str):
        self.sent.append((to, subject, message))
        return None


@pytest.fixture
def form() -> InMemoryWorkItemForm:
    return InMemoryWorkItemForm(
        fields={
            "System.Title": "Crash on start",
            "System.State": "New",
            "System.AssignedTo": "",
            "System.Tags": "",
            "System.IterationPath": "Fabrikam",
        },
        field_types={
            "Microsoft.VSTS.Scheduling.DueDate": FieldType.DATETIME,
            "Microsoft.VSTS.Common.Priority": FieldType.INTEGER,
        },
        work_item_id=42,
    )


@pytest.fixture
def context(form: InMemoryWorkItemForm) -> RuleContext:
    return RuleContext(
        form=form,
        identity=StaticIdentityService(IdentityRef(id="u1", display_name="Jamie Reyes", unique_name="jamie@fabrikam.com")),
        iterations=StaticIterationService(
            [
                Iteration(id="it-1", name="Sprint 3", path="Fabrikam\\Sprint 3", time_frame="current"),
                Iteration(id="it-2", name="Sprint 4", path="Fabrikam\\Sprint 4", time_frame="future"),
            ]
        ),
        work_items=InMemoryWorkItemService(),
        notifier=RecordingNotifier(),
        project_id="Fabrikam",
        team_id="Fabrikam Team",
        work_item_type="Bug",
        clock=lambda: FIXED_NOW,
    )
