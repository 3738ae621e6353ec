"""Custom metrics for the Library Ledger."""

import logfire

loan_circulation = logfire.metric_counter(
    "library.loans.circulation", description="Loan ledger events (borrow/return/rejections)"
)

catalog_changes = logfire.metric_counter(
    "library.catalog.changes", description="Catalog administration events"
)


def record_circulation_event(event_type: str, outcome: str = "ok"):
    """Record a ledger event such as a borrow, a return or a rejected borrow."""
    loan_circulation.add(1, {"event_type": event_type, "outcome": outcome})


def record_catalog_change(event_type: str):
    catalog_changes.add(1, {"event_type": event_type})
