from __future__ import annotations

from typing import Any, Iterable

from fastapi import APIRouter, Body, Depends, Request

from dealerhub.apps.api.deps import (
    Principal,
    get_container,
    query_dict,
    request_id_of,
    require_role,
)
from dealerhub.apps.api.errors import raise_for_result
from dealerhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from dealerhub.apps.api.response import success_response
from dealerhub.core.errors import NotFoundError, ValidationFailedError
from dealerhub.services.auth.roles import (
    ADMIN_ONLY,
    ANY_STAFF,
    CRM_STAFF,
    MARKETING_STAFF,
    SALES_STAFF,
    SERVICE_STAFF,
    WRITERS,
)
from dealerhub.services.container import ServiceContainer
from dealerhub.services.resources import CampaignService, InventoryService, LeadService


# collection name -> (url segment, roles allowed to write)
RESOURCE_ROUTES: dict[str, tuple[str, frozenset[str]]] = {
    "inventory": ("inventory", SALES_STAFF),
    "leads": ("leads", CRM_STAFF),
    "customers": ("customers", CRM_STAFF),
    "reviews": ("reviews", MARKETING_STAFF),
    "campaigns": ("campaigns", MARKETING_STAFF),
    "content_pages": ("content-pages", MARKETING_STAFF),
    "redirects": ("redirects", MARKETING_STAFF),
    "service_tickets": ("service-tickets", SERVICE_STAFF),
    "teams": ("teams", ADMIN_ONLY),
    "finance_offers": ("finance-offers", SALES_STAFF),
    "tasks": ("tasks", WRITERS),
}


def _body_object(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationFailedError("Request body must be a JSON object", details={"path": "body"})
    return payload


def _add_extra_routes(router: APIRouter, name: str, writers: Iterable[str]) -> None:
    # Resource-specific operations; registered before /{record_id} so fixed segments win.
    writers = tuple(writers)

    if name == "inventory":

        @router.get("/stats")
        def inventory_stats(
            request: Request,
            principal: Principal = Depends(require_role(*ANY_STAFF)),
            container: ServiceContainer = Depends(get_container),
        ) -> dict:
            service: InventoryService = container.resource("inventory")  # type: ignore[assignment]
            return success_response(request=request, data=service.stats(principal.tenant_id))

        @router.post("/{record_id}/feature")
        def feature_unit(
            record_id: str,
            request: Request,
            payload: Any = Body(default=None),
            principal: Principal = Depends(require_role(*writers)),
            container: ServiceContainer = Depends(get_container),
        ) -> dict:
            service: InventoryService = container.resource("inventory")  # type: ignore[assignment]
            featured = payload.get("featured", True) if isinstance(payload, dict) else True
            result = service.set_featured(record_id, featured, principal.tenant_id, principal.subject)
            return success_response(request=request, data=raise_for_result(result))

    if name == "campaigns":

        @router.get("/performance")
        def campaign_performance(
            request: Request,
            principal: Principal = Depends(require_role(*ANY_STAFF)),
            container: ServiceContainer = Depends(get_container),
        ) -> dict:
            service: CampaignService = container.resource("campaigns")  # type: ignore[assignment]
            return success_response(request=request, data={"items": service.performance(principal.tenant_id)})

        @router.get("/by-slug/{slug}")
        def campaign_by_slug(
            slug: str,
            request: Request,
            principal: Principal = Depends(require_role(*ANY_STAFF)),
            container: ServiceContainer = Depends(get_container),
        ) -> dict:
            service: CampaignService = container.resource("campaigns")  # type: ignore[assignment]
            campaign = service.find_by_slug(slug, principal.tenant_id)
            if campaign is None:
                raise NotFoundError(f"campaigns {slug} not found", details={"path": "slug"})
            return success_response(request=request, data=campaign)

        @router.post("/{record_id}/attribution")
        def campaign_attribution(
            record_id: str,
            request: Request,
            payload: dict[str, Any] = Body(...),
            principal: Principal = Depends(require_role(*CRM_STAFF)),
            container: ServiceContainer = Depends(get_container),
        ) -> dict:
            lead_id = _body_object(payload).get("leadId")
            if not lead_id:
                raise ValidationFailedError("leadId is required", details={"path": "leadId", "fields": ["leadId"]})
            service: CampaignService = container.resource("campaigns")  # type: ignore[assignment]
            result = service.touch_lead_attribution(lead_id, record_id, principal.tenant_id, principal.subject)
            return success_response(request=request, data=raise_for_result(result))


def build_resource_router(name: str, segment: str, writers: Iterable[str]) -> APIRouter:
    """CRUD router for one tenant-scoped collection."""
    writers = tuple(writers)
    router = APIRouter(prefix=f"/{segment}", tags=[segment], responses=DEFAULT_ERROR_RESPONSES)
    _add_extra_routes(router, name, writers)

    @router.get("")
    def list_records(
        request: Request,
        principal: Principal = Depends(require_role(*ANY_STAFF)),
        container: ServiceContainer = Depends(get_container),
    ) -> dict:
        page = container.resource(name).list(query_dict(request), principal.tenant_id)
        return success_response(request=request, data=page.as_dict())

    @router.get("/{record_id}")
    def get_record(
        record_id: str,
        request: Request,
        principal: Principal = Depends(require_role(*ANY_STAFF)),
        container: ServiceContainer = Depends(get_container),
    ) -> dict:
        record = container.resource(name).find_by_id(record_id, principal.tenant_id)
        if record is None:
            raise NotFoundError(f"{name} {record_id} not found", details={"path": "id"})
        return success_response(request=request, data=record)

    @router.post("", status_code=201)
    def create_record(
        request: Request,
        payload: Any = Body(...),
        principal: Principal = Depends(require_role(*writers)),
        container: ServiceContainer = Depends(get_container),
    ) -> dict:
        result = container.resource(name).create(
            _body_object(payload), principal.tenant_id, principal.subject, request_id=request_id_of(request)
        )
        return success_response(request=request, data=raise_for_result(result))

    @router.patch("/{record_id}")
    @router.put("/{record_id}")
    def update_record(
        record_id: str,
        request: Request,
        payload: Any = Body(...),
        principal: Principal = Depends(require_role(*writers)),
        container: ServiceContainer = Depends(get_container),
    ) -> dict:
        result = container.resource(name).update(
            record_id, _body_object(payload), principal.tenant_id, principal.subject, request_id=request_id_of(request)
        )
        return success_response(request=request, data=raise_for_result(result))

    @router.delete("/{record_id}")
    def delete_record(
        record_id: str,
        request: Request,
        principal: Principal = Depends(require_role(*writers)),
        container: ServiceContainer = Depends(get_container),
    ) -> dict:
        result = container.resource(name).remove(
            record_id, principal.tenant_id, principal.subject, request_id=request_id_of(request)
        )
        return success_response(request=request, data=raise_for_result(result))

    @router.post("/{record_id}/status")
    def change_status(
        record_id: str,
        request: Request,
        payload: Any = Body(...),
        principal: Principal = Depends(require_role(*writers)),
        container: ServiceContainer = Depends(get_container),
    ) -> dict:
        body = _body_object(payload)
        service = container.resource(name)
        if isinstance(service, LeadService):
            result = service.set_status(record_id, body.get("status"), principal.tenant_id, principal.subject)
        else:
            extra = {key: value for key, value in body.items() if key != "status"}
            result = service.transition(
                record_id,
                body.get("status"),
                principal.tenant_id,
                principal.subject,
                extra=extra,
                request_id=request_id_of(request),
            )
        return success_response(request=request, data=raise_for_result(result))

    return router


def build_resource_routers() -> list[APIRouter]:
    return [build_resource_router(name, segment, writers) for name, (segment, writers) in RESOURCE_ROUTES.items()]
