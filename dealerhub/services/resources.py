"""Domain resources expressed as tenant-scoped collections.

Each resource is a ``ResourceSpec`` plus, where the domain needs it, a thin
service subclass adding resource-specific operations.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

from dealerhub.domain.results import MutationResult, NotFound, ValidationFailed
from dealerhub.services.collection import ResourceSpec, TenantScopedCollection
from dealerhub.services.sanitize import clamp_number, coerce_bool, escape_output
from dealerhub.services.security import mask_sensitive_fields


_SLUG_INVALID = re.compile(r"[^a-z0-9]+")


def slugify(value: Any) -> str:
    return _SLUG_INVALID.sub("-", str(value or "").strip().lower()).strip("-")


# -- inventory --------------------------------------------------------------


def _validate_inventory(record: dict[str, Any], _previous: dict[str, Any] | None) -> ValidationFailed | None:
    price = record.get("price")
    if price is not None and clamp_number(price, None) is None:
        return ValidationFailed(message="price must be a number", fields=["price"])
    return None


INVENTORY = ResourceSpec(
    name="inventory",
    label="Inventory unit",
    required_fields=("stockNumber", "name"),
    unique_fields=("stockNumber",),
    filter_fields=("condition", "category", "subcategory", "location", "featured"),
    search_fields=("stockNumber", "name", "category", "subcategory", "location"),
    sort_fields=("createdAt", "price", "msrp", "daysOnLot", "name"),
    bool_fields=("featured",),
    number_fields=("price", "msrp", "daysOnLot"),
    defaults={"featured": False, "images": []},
    validate=_validate_inventory,
)


class InventoryService(TenantScopedCollection):
    def set_featured(self, record_id: str, featured: Any, tenant_id: Any, actor: str | None = None) -> MutationResult:
        return self.update(record_id, {"featured": coerce_bool(featured, True)}, tenant_id, actor)

    def stats(self, tenant_id: Any) -> dict[str, Any]:
        units = self._scoped(self._tenant(tenant_id))
        by_condition: dict[str, int] = {}
        total_price = 0.0
        for unit in units:
            condition = str(unit.get("condition") or "unknown")
            by_condition[condition] = by_condition.get(condition, 0) + 1
            total_price += float(clamp_number(unit.get("price"), 0) or 0)
        average = total_price / len(units) if units else 0.0
        return escape_output({"totalUnits": len(units), "byCondition": by_condition, "averagePrice": average})


# -- leads ------------------------------------------------------------------

LEAD_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "new": ("contacted", "qualified", "lost"),
    "contacted": ("qualified", "lost", "won"),
    "qualified": ("won", "lost"),
    "won": (),
    "lost": (),
}


def _normalize_lead(record: dict[str, Any], previous: dict[str, Any] | None) -> dict[str, Any]:
    if previous is None and not record.get("subject"):
        record["subject"] = "General inquiry"
    return record


LEADS = ResourceSpec(
    name="leads",
    label="Lead",
    required_fields=("name", "email", "message"),
    filter_fields=("status", "assignedTo", "utmCampaign"),
    search_fields=("name", "email", "subject", "message"),
    sort_fields=("createdAt", "name", "updatedAt"),
    transitions=LEAD_TRANSITIONS,
    initial_status="new",
    normalize=_normalize_lead,
)


class LeadService(TenantScopedCollection):
    def __init__(self, *args: Any, mask_fields: list[str] | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.mask_fields = mask_fields or []

    def list(self, query: Mapping[str, Any] | None, tenant_id: Any):  # type: ignore[override]
        page = super().list(query, tenant_id)
        if coerce_bool((query or {}).get("maskPII"), False):
            masked = [mask_sensitive_fields(item, self.mask_fields) for item in page.items]
            return type(page)(items=masked, total=page.total, limit=page.limit, offset=page.offset)
        return page

    def set_status(self, record_id: str, status: Any, tenant_id: Any, actor: str | None = None) -> MutationResult:
        return self.transition(
            record_id, status, tenant_id, actor, extra={"lastContactedAt": self.clock().isoformat()}
        )


# -- customers --------------------------------------------------------------

CONTACT_METHODS = ("email", "phone", "text")


def _normalize_customer(record: dict[str, Any], _previous: dict[str, Any] | None) -> dict[str, Any]:
    if record.get("preferredContactMethod") not in (None, *CONTACT_METHODS):
        record.pop("preferredContactMethod")
    return record


def _validate_customer(record: dict[str, Any], _previous: dict[str, Any] | None) -> ValidationFailed | None:
    if not record.get("email") and not record.get("phone"):
        return ValidationFailed(message="Either email or phone is required", fields=["email", "phone"])
    return None


CUSTOMERS = ResourceSpec(
    name="customers",
    label="Customer",
    required_fields=("firstName", "lastName"),
    filter_fields=("marketingOptIn", "preferredContactMethod"),
    search_fields=("firstName", "lastName", "email", "phone"),
    sort_fields=("createdAt", "lastName", "firstName"),
    bool_fields=("marketingOptIn",),
    defaults={"marketingOptIn": False},
    normalize=_normalize_customer,
    validate=_validate_customer,
)


# -- reviews ----------------------------------------------------------------


def _validate_review(record: dict[str, Any], _previous: dict[str, Any] | None) -> ValidationFailed | None:
    rating = clamp_number(record.get("rating"), None)
    if rating is None or not 1 <= rating <= 5:
        return ValidationFailed(message="rating must be between 1 and 5", fields=["rating"])
    return None


REVIEWS = ResourceSpec(
    name="reviews",
    label="Review",
    required_fields=("customerName", "rating", "comment"),
    filter_fields=("rating", "source"),
    search_fields=("customerName", "comment"),
    sort_fields=("createdAt", "rating"),
    number_fields=("rating",),
    validate=_validate_review,
)


# -- campaigns --------------------------------------------------------------


def _normalize_campaign(record: dict[str, Any], _previous: dict[str, Any] | None) -> dict[str, Any]:
    if record.get("slug"):
        record["slug"] = str(record["slug"]).strip().lower()
    return record


CAMPAIGNS = ResourceSpec(
    name="campaigns",
    label="Campaign",
    required_fields=("name", "slug", "channel"),
    unique_fields=("slug",),
    filter_fields=("channel",),
    search_fields=("name", "slug"),
    sort_fields=("createdAt", "name", "startAt"),
    normalize=_normalize_campaign,
)


class CampaignService(TenantScopedCollection):
    def __init__(self, *args: Any, leads: LeadService, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.leads = leads

    def find_by_slug(self, slug: Any, tenant_id: Any) -> dict[str, Any] | None:
        normalized = str(slug or "").strip().lower()
        if not normalized:
            return None
        for campaign in self._scoped(self._tenant(tenant_id)):
            if campaign.get("slug") == normalized:
                return escape_output(campaign)
        return None

    def touch_lead_attribution(
        self, lead_id: str, campaign_id: str, tenant_id: Any, actor: str | None = None
    ) -> MutationResult:
        # Two independent writes: the campaign must exist in this tenant before the lead is touched.
        if self.find_raw(campaign_id, tenant_id) is None:
            return NotFound(resource=self.name, id=campaign_id)
        lead = self.leads.find_raw(lead_id, tenant_id)
        if lead is None:
            return NotFound(resource=self.leads.name, id=lead_id)
        return self.leads.update(
            lead_id,
            {
                "firstTouchCampaignId": lead.get("firstTouchCampaignId") or campaign_id,
                "lastTouchCampaignId": campaign_id,
            },
            tenant_id,
            actor,
        )

    def performance(self, tenant_id: Any) -> list[dict[str, Any]]:
        tenant = self._tenant(tenant_id)
        leads = self.leads._scoped(tenant)
        results = []
        for campaign in self._scoped(tenant):
            attributed = [
                lead
                for lead in leads
                if campaign["id"] in (lead.get("firstTouchCampaignId"), lead.get("lastTouchCampaignId"))
                or (lead.get("utmCampaign") or "").strip().lower() == campaign.get("slug")
            ]
            won = [lead for lead in attributed if lead.get("status") == "won"]
            results.append(
                {
                    **campaign,
                    "metrics": {
                        "leads": len(attributed),
                        "won": len(won),
                        "conversionRate": round(len(won) / len(attributed), 4) if attributed else 0.0,
                    },
                }
            )
        return escape_output(results)


# -- content pages ----------------------------------------------------------


def _normalize_content_page(record: dict[str, Any], previous: dict[str, Any] | None) -> dict[str, Any]:
    if "slug" in record or "title" in record or previous is None:
        source = record.get("slug") or record.get("title") or (previous or {}).get("title")
        slug = slugify(source)
        if slug:
            record["slug"] = slug
    record.setdefault("status", (previous or {}).get("status") or "draft")
    return record


def _validate_content_page(record: dict[str, Any], _previous: dict[str, Any] | None) -> ValidationFailed | None:
    if not record.get("slug"):
        return ValidationFailed(message="slug could not be derived from title", fields=["slug"])
    if record.get("status") not in ("draft", "published"):
        return ValidationFailed(message="status must be one of: draft, published", fields=["status"])
    return None


CONTENT_PAGES = ResourceSpec(
    name="content_pages",
    label="Content page",
    required_fields=("title", "body"),
    unique_fields=("slug",),
    filter_fields=("status",),
    search_fields=("title", "body", "slug"),
    sort_fields=("createdAt", "updatedAt", "title"),
    normalize=_normalize_content_page,
    validate=_validate_content_page,
)


# -- redirects --------------------------------------------------------------


def _normalize_redirect(record: dict[str, Any], previous: dict[str, Any] | None) -> dict[str, Any]:
    if "statusCode" in record or previous is None:
        record["statusCode"] = 302 if str(record.get("statusCode")) == "302" else 301
    return record


def _validate_redirect(record: dict[str, Any], _previous: dict[str, Any] | None) -> ValidationFailed | None:
    bad = [name for name in ("sourcePath", "targetPath") if not str(record.get(name, "")).startswith("/")]
    if bad:
        return ValidationFailed(message=f"{', '.join(bad)} must start with '/'", fields=bad)
    if record.get("sourcePath") == record.get("targetPath"):
        return ValidationFailed(message="sourcePath and targetPath must differ", fields=["targetPath"])
    return None


REDIRECTS = ResourceSpec(
    name="redirects",
    label="Redirect",
    required_fields=("sourcePath", "targetPath"),
    unique_fields=("sourcePath",),
    filter_fields=("statusCode",),
    search_fields=("sourcePath", "targetPath"),
    sort_fields=("createdAt", "sourcePath"),
    normalize=_normalize_redirect,
    validate=_validate_redirect,
)


# -- service tickets --------------------------------------------------------

TICKET_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "open": ("in_progress", "on_hold", "closed"),
    "in_progress": ("on_hold", "closed"),
    "on_hold": ("in_progress", "closed"),
    "closed": (),
}


def _normalize_ticket(record: dict[str, Any], _previous: dict[str, Any] | None) -> dict[str, Any]:
    if "lineItems" in record:
        items = record["lineItems"] if isinstance(record["lineItems"], list) else []
        record["lineItems"] = [
            {
                "description": item.get("description"),
                "laborHours": clamp_number(item.get("laborHours"), 0) or 0,
                "partsCost": clamp_number(item.get("partsCost"), 0) or 0,
            }
            for item in items
            if isinstance(item, dict)
        ]
    return record


SERVICE_TICKETS = ResourceSpec(
    name="service_tickets",
    label="Service ticket",
    required_fields=("customerId", "concern"),
    filter_fields=("status", "customerId", "technician", "warranty"),
    search_fields=("concern", "technician"),
    sort_fields=("createdAt", "scheduledDate", "updatedAt"),
    bool_fields=("warranty",),
    defaults={"warranty": False, "lineItems": []},
    transitions=TICKET_TRANSITIONS,
    initial_status="open",
    normalize=_normalize_ticket,
)


# -- small catalog resources ------------------------------------------------

TEAMS = ResourceSpec(
    name="teams",
    label="Team member",
    required_fields=("name", "role"),
    filter_fields=("role",),
    search_fields=("name", "role", "bio"),
    sort_fields=("createdAt", "name"),
)

FINANCE_OFFERS = ResourceSpec(
    name="finance_offers",
    label="Finance offer",
    required_fields=("lender", "termMonths", "apr"),
    filter_fields=("lender", "vehicleCategory"),
    search_fields=("lender", "restrictions", "vehicleCategory"),
    sort_fields=("createdAt", "apr", "termMonths"),
    number_fields=("termMonths", "apr", "downPayment"),
)

TASKS = ResourceSpec(
    name="tasks",
    label="Task",
    required_fields=("title",),
    filter_fields=("status", "assignedTo", "contactId"),
    search_fields=("title", "notes"),
    sort_fields=("createdAt", "dueDate"),
    transitions={"open": ("in_progress", "done"), "in_progress": ("open", "done"), "done": ("open",)},
    initial_status="open",
)


ALL_SPECS: tuple[ResourceSpec, ...] = (
    INVENTORY,
    LEADS,
    CUSTOMERS,
    REVIEWS,
    CAMPAIGNS,
    CONTENT_PAGES,
    REDIRECTS,
    SERVICE_TICKETS,
    TEAMS,
    FINANCE_OFFERS,
    TASKS,
)


