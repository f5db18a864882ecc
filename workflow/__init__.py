"""Medication therapy review workflow orchestrator."""

from workflow.errors import (
    ErrorCategory,
    GatewayError,
    GatewayTimeoutError,
    ReviewConflictError,
    ReviewNotFoundError,
    SessionError,
)
from workflow.gateway import HttpPersistenceGateway, PersistenceGateway
from workflow.orchestrator import ReviewWorkflow, open_workflow
from workflow.session import ReviewSession
from workflow.steps import MTR_STEPS, StepCapability, StepDefinition, StepRegistry

__all__ = [
    "ReviewWorkflow",
    "open_workflow",
    "ReviewSession",
    "PersistenceGateway",
    "HttpPersistenceGateway",
    "StepCapability",
    "StepDefinition",
    "StepRegistry",
    "MTR_STEPS",
    "ErrorCategory",
    "SessionError",
    "GatewayError",
    "GatewayTimeoutError",
    "ReviewConflictError",
    "ReviewNotFoundError",
]
