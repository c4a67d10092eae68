"""Approval workflows for applications, logbooks, internships and companies."""

from app.workflows.applications import APPLICATION_MACHINE, ApplicationWorkflow
from app.workflows.companies import COMPANY_MACHINE, CompanyWorkflow
from app.workflows.internships import INTERNSHIP_MACHINE, InternshipWorkflow
from app.workflows.logbooks import LOGBOOK_MACHINE, LogbookWorkflow
from app.workflows.machine import StateMachine, Transition
from app.workflows.reports import ReportWorkflow

__all__ = [
    "APPLICATION_MACHINE",
    "COMPANY_MACHINE",
    "INTERNSHIP_MACHINE",
    "LOGBOOK_MACHINE",
    "ApplicationWorkflow",
    "CompanyWorkflow",
    "InternshipWorkflow",
    "LogbookWorkflow",
    "ReportWorkflow",
    "StateMachine",
    "Transition",
]
