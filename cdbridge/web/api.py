"""
Setup and installation mapping API routes.
"""
import hmac
from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, Request, Query
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from ..config import Settings
from ..errors import EventValidationError, MappingNotFound, SetupIntentNotFound, SetupIntentExpired
from ..setup.models import SetupRequest, SetupStartResponse
from ..setup.resolver import InstallationResolver
from ..storage.models import InstallationMapping
from ..webhook.models import GitProvider


class MappingResponse(BaseModel):
    """Response model for installation mapping."""
    provider: str
    installation_id: int
    organization_id: int
    organization_label: str
    endpoint: str
    auth_token: str
    webhook_secret: str
    default_environment: str
    enabled: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class MappingListResponse(BaseModel):
    mappings: List[MappingResponse]


class DeleteMappingRequest(BaseModel):
    """Request model for mapping revocation."""
    provider: GitProvider = GitProvider.GITHUB
    installation_id: int
    organization_id: int = 0


def mask_value(value: str) -> str:
    """Show only the ends of a credential."""
    value = (value or "").strip()
    if not value:
        return ""
    if len(value) <= 8:
        return "****"
    return f"{value[:4]}...{value[-4:]}"


def to_mapping_response(mapping: InstallationMapping) -> MappingResponse:
    return MappingResponse(
        provider=mapping.provider,
        installation_id=mapping.installation_id,
        organization_id=mapping.organization_id,
        organization_label=mapping.organization_label,
        endpoint=mapping.endpoint,
        auth_token=mask_value(mapping.auth_token),
        webhook_secret=mask_value(mapping.webhook_secret),
        default_environment=mapping.default_environment,
        enabled=mapping.enabled,
        created_at=mapping.created_at.isoformat() if mapping.created_at else None,
        updated_at=mapping.updated_at.isoformat() if mapping.updated_at else None,
    )


def create_api_router(resolver: InstallationResolver, settings: Settings) -> APIRouter:
    """Create API router with dependencies."""

    router = APIRouter()

    def require_setup_token(request: Request):
        """Accept the setup token as a Bearer header or setup_token query parameter."""
        expected = settings.setup_token.strip()
        if not expected:
            return

        auth = request.headers.get("Authorization", "").strip()
        candidates = [request.query_params.get("setup_token", "").strip()]
        if auth.lower().startswith("bearer "):
            candidates.append(auth[7:].strip())

        for candidate in candidates:
            if candidate and hmac.compare_digest(candidate, expected):
                return
        raise HTTPException(status_code=401, detail="Unauthorized")

    # Setup handshake

    @router.post(
        "/api/setup/start",
        response_model=SetupStartResponse,
        dependencies=[Depends(require_setup_token)],
    )
    async def start_setup(payload: SetupRequest):
        """Create a setup intent and return its state and redirect URL."""
        try:
            intent, redirect_url = await resolver.start_setup(payload)
        except EventValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))

        return SetupStartResponse(state=intent.state, redirect_url=redirect_url)

    @router.get("/setup/start", dependencies=[Depends(require_setup_token)])
    async def start_setup_redirect(
        provider: GitProvider = Query(GitProvider.GITHUB),
        organization_id: int = Query(0),
        organization: str = Query(""),
        endpoint: str = Query(""),
        auth_token: str = Query(""),
        webhook_secret: str = Query(""),
        default_environment: str = Query(""),
    ):
        """Create a setup intent from query parameters and redirect to the install flow."""
        payload = SetupRequest(
            provider=provider,
            organization_id=organization_id,
            organization_label=organization,
            endpoint=endpoint.strip() or settings.ddash_endpoint,
            auth_token=auth_token.strip() or settings.ddash_auth_token,
            webhook_secret=webhook_secret.strip() or settings.ddash_webhook_secret,
            default_environment=default_environment.strip() or settings.default_environment,
        )
        try:
            _, redirect_url = await resolver.start_setup(payload)
        except EventValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))

        return RedirectResponse(redirect_url, status_code=302)

    @router.get(settings.setup_callback_path, response_model=MappingResponse)
    async def setup_callback(request: Request):
        """Bind the installation/project id from the redirect to the pending intent and its provider."""
        params = request.query_params
        state = params.get("state", "").strip()
        raw_id = next(
            (
                params.get(key, "").strip()
                for key in ("installation_id", "installationId", "project_id")
                if params.get(key, "").strip()
            ),
            "",
        )
        if not state or not raw_id:
            raise HTTPException(status_code=400, detail="missing state or installation_id")
        try:
            installation_id = int(raw_id)
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid installation_id")

        try:
            mapping = await resolver.complete_setup(state, installation_id)
        except EventValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except SetupIntentNotFound:
            raise HTTPException(status_code=404, detail="unknown setup state")
        except SetupIntentExpired:
            raise HTTPException(status_code=410, detail="setup state expired")

        return to_mapping_response(mapping)

    # Mapping endpoints

    @router.get(
        "/api/mappings",
        response_model=MappingListResponse,
        dependencies=[Depends(require_setup_token)],
    )
    async def list_mappings(
        org_id: Optional[int] = Query(None),
        provider: Optional[GitProvider] = Query(None),
    ):
        """List installation mappings."""
        mappings = await resolver.list_mappings(org_id, provider)
        return MappingListResponse(mappings=[to_mapping_response(m) for m in mappings])

    @router.post("/api/mappings/delete", dependencies=[Depends(require_setup_token)])
    async def delete_mapping(payload: DeleteMappingRequest):
        """Revoke an installation mapping."""
        if payload.installation_id <= 0:
            raise HTTPException(status_code=400, detail="invalid installation_id")
        try:
            await resolver.revoke(payload.provider, payload.installation_id, payload.organization_id)
        except MappingNotFound:
            raise HTTPException(status_code=404, detail="mapping not found")

        return {"deleted": True}

    return router
