"""
FastAPI Partner MDM API Server

Provides REST API endpoints for partner registration, the approval
workflow, SAP integration, change requests and audits.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Security
from fastapi.security import APIKeyHeader
from sqlalchemy.orm import Session

from api.models import (
    AuditCreateRequest,
    AuditJobDetailResponse,
    BulkChangeRequestCreate,
    BulkChangeRequestResponse,
    ChangeRequestCreate,
    ChangeRequestListResponse,
    ChangeRequestResponse,
    ErrorResponse,
    HealthResponse,
    PartnerCreateRequest,
    PartnerDetailsResponse,
    PartnerListResponse,
    PartnerResponse,
    RejectStageRequest,
    SyncSummaryResponse,
)
from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    RequestLoggingMiddleware,
)
from config_manager import ConfigManager, ConfigurationError, configure_logging, get_config
from database.connection import close_db, get_db, get_db_provider, init_db
from database.models import PartnerStatus
from database.repositories import PartnerRepository
from partners.audit import AuditService
from partners.change_requests import ChangeRequestService
from partners.registry_client import CnpjRegistryClient
from partners.reverse_sync import SapSyncService
from partners.scheduler import create_scheduler
from partners.service import PartnerService
from partners.workflow import Actor, ApprovalWorkflow

logger = logging.getLogger(__name__)

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
CONFIG_PATH = os.getenv("CONFIG_PATH")
AUTO_CREATE_TABLES = os.getenv("AUTO_CREATE_TABLES", "true").lower() in ("1", "true", "yes")
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() in ("1", "true", "yes")

# Global state
_startup_time: Optional[datetime] = None
_scheduler = None

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Validation error"},
    401: {"model": ErrorResponse, "description": "Missing API key or user"},
    403: {"model": ErrorResponse, "description": "Not allowed"},
    404: {"model": ErrorResponse, "description": "Not found"},
}


# ============================================
# DEPENDENCIES
# ============================================

def get_config_instance() -> ConfigManager:
    """Dependency to get the config instance."""
    return get_config(CONFIG_PATH)


def verify_api_key(
    api_key: Optional[str] = Security(api_key_header),
    config: ConfigManager = Depends(get_config_instance),
) -> str:
    """Verify API key for protected endpoints.

    If no API key is configured, authentication is disabled.
    """
    expected = config.api.api_key
    if not expected:
        return "dev-mode"

    if not api_key:
        raise HTTPException(status_code=401, detail="Missing API key. Provide X-API-Key header.")

    if api_key != expected:
        raise HTTPException(status_code=403, detail="Invalid API key")

    return api_key


def get_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
    x_user_responsibilities: Optional[str] = Header(default=None),
) -> Actor:
    """Acting user from the X-User-* headers set by the gateway."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    responsibilities = [
        item.strip() for item in (x_user_responsibilities or "").split(",") if item.strip()
    ]
    return Actor(
        id=x_user_id.strip(),
        email=(x_user_email or "").strip(),
        name=(x_user_name or "").strip() or None,
        responsibilities=responsibilities,
    )


def get_registry_client(config: ConfigManager = Depends(get_config_instance)) -> CnpjRegistryClient:
    return CnpjRegistryClient(config.registry)


def get_partner_service(
    db: Session = Depends(get_db),
    registry: CnpjRegistryClient = Depends(get_registry_client),
) -> PartnerService:
    return PartnerService(db, registry)


def get_workflow(
    db: Session = Depends(get_db),
    config: ConfigManager = Depends(get_config_instance),
) -> ApprovalWorkflow:
    return ApprovalWorkflow(db, config.sap)


def get_change_request_service(db: Session = Depends(get_db)) -> ChangeRequestService:
    return ChangeRequestService(db)


def get_audit_service(
    db: Session = Depends(get_db),
    registry: CnpjRegistryClient = Depends(get_registry_client),
    config: ConfigManager = Depends(get_config_instance),
) -> AuditService:
    return AuditService(db, registry, config.audit)


def get_sync_service(
    db: Session = Depends(get_db),
    config: ConfigManager = Depends(get_config_instance),
) -> SapSyncService:
    return SapSyncService(db, config.sap)


# Create FastAPI application
app = FastAPI(
    title="Partner MDM API",
    description="Business partner master data: approval workflow, SAP integration and audits",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Setup middleware
setup_cors(app, get_config(CONFIG_PATH).api.cors_origins)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)


@app.on_event("startup")
async def startup():
    """Initialize configuration, database and the reverse sync scheduler."""
    global _startup_time, _scheduler

    logger.info("Starting Partner MDM API...")

    try:
        config = get_config(CONFIG_PATH)
        configure_logging(config.logging)

        provider = init_db(config.database)
        if AUTO_CREATE_TABLES:
            provider.create_tables()

        if SCHEDULER_ENABLED and config.sap.enabled and config.sap.is_configured:
            _scheduler = create_scheduler(provider, config.sap)
            _scheduler.start()
            logger.info(f"SAP reverse sync scheduled ({config.sap.cron_expression})")
        else:
            logger.info("SAP reverse sync scheduler not started")

        _startup_time = datetime.now(timezone.utc)
        logger.info("API ready")

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise
    except Exception as e:
        logger.error(f"Startup error: {e}")
        raise


@app.on_event("shutdown")
async def shutdown():
    """Stop the scheduler and release database connections."""
    global _scheduler
    logger.info("Shutting down Partner MDM API...")
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
    close_db()


# ============================================
# PARTNERS
# ============================================

@app.post(
    "/api/v1/partners",
    response_model=PartnerResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    summary="Register a partner",
)
def create_partner(
    request: PartnerCreateRequest,
    service: PartnerService = Depends(get_partner_service),
    api_key: str = Depends(verify_api_key),
):
    partner = service.create_partner(request.model_dump())
    return PartnerResponse.model_validate(partner)


@app.get(
    "/api/v1/partners",
    response_model=PartnerListResponse,
    summary="List partners",
)
def list_partners(
    status: Optional[PartnerStatus] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    api_key: str = Depends(verify_api_key),
):
    items, total = PartnerRepository(db).list(status, limit, offset)
    return PartnerListResponse(
        items=[PartnerResponse.model_validate(item) for item in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@app.get(
    "/api/v1/partners/{partner_id}",
    response_model=PartnerDetailsResponse,
    responses=ERROR_RESPONSES,
    summary="Partner details with registration progress",
)
def get_partner_details(
    partner_id: str,
    service: PartnerService = Depends(get_partner_service),
    api_key: str = Depends(verify_api_key),
):
    details = service.get_details(partner_id)
    return PartnerDetailsResponse.model_validate(details, from_attributes=True)


# ============================================
# APPROVAL WORKFLOW
# ============================================

@app.post(
    "/api/v1/partners/{partner_id}/submit",
    response_model=PartnerResponse,
    responses=ERROR_RESPONSES,
    summary="Submit a partner for review",
)
def submit_partner(
    partner_id: str,
    workflow: ApprovalWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_actor),
    api_key: str = Depends(verify_api_key),
):
    return PartnerResponse.model_validate(workflow.submit(partner_id, actor))


@app.post(
    "/api/v1/partners/{partner_id}/stages/{stage}/approve",
    response_model=PartnerResponse,
    responses=ERROR_RESPONSES,
    summary="Approve the current review stage",
)
def approve_stage(
    partner_id: str,
    stage: str,
    workflow: ApprovalWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_actor),
    api_key: str = Depends(verify_api_key),
):
    return PartnerResponse.model_validate(workflow.approve_stage(partner_id, stage, actor))


@app.post(
    "/api/v1/partners/{partner_id}/stages/{stage}/reject",
    response_model=PartnerResponse,
    responses=ERROR_RESPONSES,
    summary="Reject the current review stage",
)
def reject_stage(
    partner_id: str,
    stage: str,
    request: Optional[RejectStageRequest] = None,
    workflow: ApprovalWorkflow = Depends(get_workflow),
    actor: Actor = Depends(get_actor),
    api_key: str = Depends(verify_api_key),
):
    reason = request.reason if request else None
    return PartnerResponse.model_validate(workflow.reject_stage(partner_id, stage, actor, reason))


@app.post(
    "/api/v1/partners/{partner_id}/approve",
    response_model=PartnerResponse,
    responses=ERROR_RESPONSES,
    summary="Integrate a finalized partner with SAP",
)
def approve_partner(
    partner_id: str,
    workflow: ApprovalWorkflow = Depends(get_workflow),
    api_key: str = Depends(verify_api_key),
):
    return PartnerResponse.model_validate(workflow.approve(partner_id))


@app.post(
    "/api/v1/partners/{partner_id}/sap/retry",
    response_model=PartnerResponse,
    responses=ERROR_RESPONSES,
    summary="Retry the SAP segments that are not yet successful",
)
def retry_sap_integration(
    partner_id: str,
    workflow: ApprovalWorkflow = Depends(get_workflow),
    api_key: str = Depends(verify_api_key),
):
    return PartnerResponse.model_validate(workflow.retry_sap_integration(partner_id))


@app.post(
    "/api/v1/partners/{partner_id}/sap/segments/{segment}",
    response_model=PartnerResponse,
    responses=ERROR_RESPONSES,
    summary="Send a single SAP segment again",
)
def trigger_segment(
    partner_id: str,
    segment: str,
    workflow: ApprovalWorkflow = Depends(get_workflow),
    api_key: str = Depends(verify_api_key),
):
    return PartnerResponse.model_validate(workflow.trigger_segment(partner_id, segment))


# ============================================
# CHANGE REQUESTS
# ============================================

@app.post(
    "/api/v1/partners/change-requests/bulk",
    response_model=BulkChangeRequestResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    summary="Request the same changes for several partners",
)
def create_bulk_change_requests(
    request: BulkChangeRequestCreate,
    service: ChangeRequestService = Depends(get_change_request_service),
    actor: Actor = Depends(get_actor),
    api_key: str = Depends(verify_api_key),
):
    result = service.create_bulk_change_requests(
        request.partner_ids,
        [item.to_service() for item in request.fields],
        request.motivo,
        origin=request.origin,
        requested_by=actor.id,
        metadata=request.metadata,
    )
    return BulkChangeRequestResponse.model_validate(result, from_attributes=True)


@app.post(
    "/api/v1/partners/{partner_id}/change-requests",
    response_model=ChangeRequestResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    summary="Request changes to a partner",
)
def create_change_request(
    partner_id: str,
    request: ChangeRequestCreate,
    service: ChangeRequestService = Depends(get_change_request_service),
    actor: Actor = Depends(get_actor),
    api_key: str = Depends(verify_api_key),
):
    created = service.create_change_request(
        partner_id,
        [item.to_service() for item in request.fields],
        request.motivo,
        origin=request.origin,
        requested_by=actor.id,
        metadata=request.metadata,
    )
    return ChangeRequestResponse.model_validate(created)


@app.get(
    "/api/v1/partners/{partner_id}/change-requests",
    response_model=ChangeRequestListResponse,
    responses=ERROR_RESPONSES,
    summary="List change requests of a partner",
)
def list_change_requests(
    partner_id: str,
    status: Optional[str] = Query(default=None),
    request_type: Optional[str] = Query(default=None, alias="type"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    service: ChangeRequestService = Depends(get_change_request_service),
    api_key: str = Depends(verify_api_key),
):
    result = service.list_change_requests(partner_id, status, request_type, page, page_size)
    return ChangeRequestListResponse.model_validate(result, from_attributes=True)


# ============================================
# AUDITS
# ============================================

@app.post(
    "/api/v1/audits",
    response_model=AuditJobDetailResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
    summary="Audit one or more partners",
)
def request_audit(
    request: AuditCreateRequest,
    service: AuditService = Depends(get_audit_service),
    actor: Actor = Depends(get_actor),
    api_key: str = Depends(verify_api_key),
):
    job, logs = service.request_audit(request.partner_ids, actor.id)
    return AuditJobDetailResponse.model_validate({'job': job, 'logs': logs}, from_attributes=True)


@app.get(
    "/api/v1/audits/{job_id}",
    response_model=AuditJobDetailResponse,
    responses=ERROR_RESPONSES,
    summary="Audit job with its logs",
)
def get_audit_job(
    job_id: str,
    service: AuditService = Depends(get_audit_service),
    api_key: str = Depends(verify_api_key),
):
    job, logs = service.get_audit_job(job_id)
    return AuditJobDetailResponse.model_validate({'job': job, 'logs': logs}, from_attributes=True)


# ============================================
# LOOKUPS
# ============================================

@app.get(
    "/api/v1/lookups/cnpj/{cnpj}",
    response_model=Dict[str, Any],
    responses={**ERROR_RESPONSES, 502: {"model": ErrorResponse, "description": "Registry unavailable"}},
    summary="Registry data for an unregistered CNPJ",
)
def lookup_cnpj(
    cnpj: str,
    service: PartnerService = Depends(get_partner_service),
    api_key: str = Depends(verify_api_key),
):
    return service.lookup_cnpj(cnpj)


@app.get(
    "/api/v1/lookups/cpf/{cpf}",
    response_model=Dict[str, Any],
    responses=ERROR_RESPONSES,
    summary="Validate an unregistered CPF",
)
def lookup_cpf(
    cpf: str,
    service: PartnerService = Depends(get_partner_service),
    api_key: str = Depends(verify_api_key),
):
    return service.lookup_cpf(cpf)


# ============================================
# SAP REVERSE SYNC
# ============================================

@app.post(
    "/api/v1/sync/sap",
    response_model=SyncSummaryResponse,
    responses={502: {"model": ErrorResponse, "description": "SAP unavailable"}},
    summary="Pull partner updates from SAP now",
)
def sync_from_sap(
    service: SapSyncService = Depends(get_sync_service),
    api_key: str = Depends(verify_api_key),
):
    summary = service.sync_partners()
    return SyncSummaryResponse(**summary.to_dict())


# ============================================
# HEALTH
# ============================================

@app.get(
    "/api/v1/health",
    response_model=HealthResponse,
    summary="Health check",
)
def health_check(config: ConfigManager = Depends(get_config_instance)):
    """Return health status. Always returns HTTP 200."""
    uptime_seconds = None
    if _startup_time:
        uptime_seconds = int((datetime.now(timezone.utc) - _startup_time).total_seconds())

    try:
        provider = get_db_provider()
        database_ok = provider.initialized and provider.health_check()
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return HealthResponse(
            status="error",
            database=False,
            sap_sync_enabled=config.sap.enabled,
            sap_configured=config.sap.is_configured,
            uptime_seconds=uptime_seconds,
            error_message=str(e),
        )

    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        database=database_ok,
        sap_sync_enabled=config.sap.enabled,
        sap_configured=config.sap.is_configured,
        scheduler_running=bool(_scheduler is not None and _scheduler.running),
        uptime_seconds=uptime_seconds,
    )


# Root redirect to docs
@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to API documentation."""
    from fastapi.responses import RedirectResponse

    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
