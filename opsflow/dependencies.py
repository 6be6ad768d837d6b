from fastapi import Depends
from sqlalchemy.orm import Session

from opsflow.audit import AuditLogger, LoggingAuditLogger
from opsflow.core.security import AuthenticatedUser, get_current_active_user
from opsflow.database import get_db
from opsflow.repository import (
    PostgreSQLDirectoryRepository,
    PostgreSQLWorkflowInstanceRepository,
    PostgreSQLWorkflowTemplateRepository,
)
from opsflow.services import WorkflowService


def get_audit_logger(
        current_user: AuthenticatedUser = Depends(get_current_active_user),
) -> AuditLogger:
    return LoggingAuditLogger(org_id=current_user.org_id, actor_user_id=current_user.user_id)


def get_workflow_service(
        db: Session = Depends(get_db),
        audit_logger: AuditLogger = Depends(get_audit_logger),
) -> WorkflowService:
    return WorkflowService(
        template_repo=PostgreSQLWorkflowTemplateRepository(db),
        instance_repo=PostgreSQLWorkflowInstanceRepository(db),
        directory_repo=PostgreSQLDirectoryRepository(db),
        audit_logger=audit_logger,
    )
