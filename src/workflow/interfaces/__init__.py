"""
Workflow Interfaces Layer
=========================

Interface adapters (controllers) for the workflow module.

Contains:
- Controllers: FastAPI route handlers

This is the outermost layer - handles HTTP requests/responses and
delegates to application services.
"""

from src.workflow.interfaces.controllers import router as workflow_router

__all__ = ["workflow_router"]
