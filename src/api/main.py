"""
HS Code Verifier API - code resolution, restriction lists and sync control.
"""

from fastapi import FastAPI, HTTPException, Depends, BackgroundTasks, status
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime, timezone

from .schemas import (
    VerifyRequest,
    VerifyResponse,
    HealthResponse,
    ChangeCounts,
    DatabaseStats,
    StatsResponse,
    StatusListInfo,
    StatusListsResponse,
    StatusUpdateRequest,
    StatusUpdateResponse,
    SyncStartResponse,
    SyncStatusResponse,
    ServiceInfoResponse,
)
from .deps import Services, get_services, require_admin_token, require_sync_token
from ..core.config import VERSION, ALLOWED_ORIGINS, debug_enabled
from ..core.dao import StorageUnavailable
from ..core.resolver import resolve
from ..core.schema import MatchKind, MatchResult, Restriction, StatusList
from ..core.sync import read_metadata
from util.logging import logger, sanitize_payload

ENDPOINTS = [
    "GET /health - Service health",
    "POST /verify - Verify an HS code (accepts 1234, 1234 56, 1234-56-78)",
    "GET /stats - Code table statistics",
    "GET /sanctions - Sanctions and SANEPID lists",
    "POST /sanctions/update - Replace a restriction list (token required)",
    "POST /api/sync - Start a delta sync in the background (token required)",
    "GET /api/sync/status - Last sync status",
]

# Initialize the FastAPI application
app = FastAPI(
    title="HS Code Verifier API",
    version=VERSION,
    description="HS code verification against the synchronized nomenclature table",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials="*" not in ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_verify_response(result: MatchResult) -> VerifyResponse:
    return VerifyResponse(
        code=result.code,
        query=result.query,
        original_code=result.original_code,
        description=result.description,
        match_kind=result.kind.value,
        found=result.found,
        is_valid=result.is_valid,
        exact_match=result.exact_match,
        is_general_code=result.is_general_code,
        is_single_subcode=result.is_single_subcode,
        is_extended_from_prefix=result.is_extended_from_prefix,
        matched_prefix=result.matched_prefix,
        subcodes=list(result.subcodes),
        subcode_count=result.subcode_count,
        sanctioned=result.sanctioned,
        sanepid=result.sanepid,
        special_status=None if result.restriction is Restriction.NONE else result.restriction.value,
        special_message=result.restriction_message,
    )


def _list_info(status_list: StatusList) -> StatusListInfo:
    return StatusListInfo(
        codes=sorted(status_list.prefixes),
        count=status_list.count,
        last_updated=status_list.last_updated,
        updated_by=status_list.updated_by,
    )


@app.get("/", response_model=ServiceInfoResponse)
def service_info():
    """Service description and endpoint list."""
    return ServiceInfoResponse(
        name=f"HS Code Verifier API v{VERSION}",
        version=VERSION,
        description="HS code verification against the synchronized nomenclature table",
        endpoints=ENDPOINTS,
        timestamp=_now(),
    )


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(services: Services = Depends(get_services)):
    """Check system health."""
    db_health = services.store.health_check()
    table = services.cache.get()
    metadata = read_metadata(services.store) if db_health else None

    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        total_records=len(table),
        last_sync=metadata.last_sync if metadata else None,
    )


@app.post("/verify", response_model=VerifyResponse)
def verify_code(request: VerifyRequest, services: Services = Depends(get_services)):
    """Resolve a code against the cached table and attach restriction flags."""
    table = services.cache.get()
    result = resolve(
        request.code,
        table,
        services.registry.sanctions(),
        services.registry.sanepid(),
    )

    if result.kind is MatchKind.INVALID_INPUT:
        raise HTTPException(status_code=400, detail=result.error)

    return _to_verify_response(result)


@app.get("/stats", response_model=StatsResponse)
def stats_endpoint(services: Services = Depends(get_services)):
    """Code table and restriction list statistics."""
    table = services.cache.get()
    metadata = read_metadata(services.store)
    sanctions = services.registry.sanctions()
    sanepid = services.registry.sanepid()

    database = DatabaseStats(total_records=len(table), cache_age_sec=services.cache.age)
    if metadata:
        database.last_sync = metadata.last_sync
        database.sync_type = metadata.sync_type
        database.changes = ChangeCounts(**metadata.changes.to_dict())

    return StatsResponse(
        version=VERSION,
        database=database,
        sanctions_count=sanctions.count,
        sanepid_count=sanepid.count,
        sanctions_last_updated=sanctions.last_updated,
        sanepid_last_updated=sanepid.last_updated,
    )


@app.get("/sanctions", response_model=StatusListsResponse)
def list_status_codes(services: Services = Depends(get_services)):
    """Current sanctions and SANEPID lists."""
    return StatusListsResponse(
        sanctions=_list_info(services.registry.sanctions()),
        sanepid=_list_info(services.registry.sanepid()),
    )


@app.post("/sanctions/update", response_model=StatusUpdateResponse, dependencies=[Depends(require_admin_token)])
def update_status_codes(request: StatusUpdateRequest, services: Services = Depends(get_services)):
    """Replace one restriction list wholesale."""
    updated_by = (request.metadata or {}).get("updatedBy") or "api"

    try:
        result = services.registry.replace(request.type, request.codes, updated_by=str(updated_by))
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Storage unavailable: {e}")

    if request.metadata:
        logger.log_operation("api.status_update", "success", {"type": result.list_type, "metadata": sanitize_payload(request.metadata)})

    return StatusUpdateResponse(
        success=True,
        type=result.list_type,
        submitted=result.submitted,
        accepted=result.accepted,
        rejected=result.rejected,
        last_updated=result.last_updated,
        version=VERSION,
    )


@app.post("/api/sync", response_model=SyncStartResponse, dependencies=[Depends(require_sync_token)])
def start_sync(background_tasks: BackgroundTasks, services: Services = Depends(get_services)):
    """Start a delta sync in the background. One run at a time."""
    try:
        started = services.sync_runner.try_start()
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=f"Storage unavailable: {e}")

    if not started:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Sync already running")

    background_tasks.add_task(services.sync_runner.run_claimed)
    return SyncStartResponse(
        success=True,
        message="Delta sync started in the background",
        timestamp=_now(),
    )


@app.get("/api/sync/status", response_model=SyncStatusResponse)
def sync_status(services: Services = Depends(get_services)):
    """Last sync metadata and whether a run is in progress."""
    metadata = read_metadata(services.store)
    last_report = services.sync_runner.last_report

    response = SyncStatusResponse(
        status="ok",
        running=services.sync_runner.running,
        last_run=last_report.to_dict() if last_report else None,
        timestamp=_now(),
    )
    if metadata:
        response.last_sync = metadata.last_sync
        response.sync_type = metadata.sync_type
        response.total_records = metadata.total_records
        response.changes = ChangeCounts(**metadata.changes.to_dict())
        response.failed_pages = metadata.failed_pages
        response.error = metadata.error

    return response
