"""
Reporting gateway contract.

The gateway owns authentication and transport; this package only hands it
a fully assembled ReportRequest.  Implementations raise RemoteError (or
NotFoundError for a missing subject) on any non-success outcome.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from src.query.expression import ReportRequest, ReportResponse


@runtime_checkable
class ReportingGateway(Protocol):
    def run_report(self, request: ReportRequest, *, timeout: float | None = None) -> ReportResponse: ...

    def get_metadata(self, subject_id: str, *, timeout: float | None = None) -> dict[str, Any]: ...
