"""
LID mapping API endpoints.

Query surface over the contact store, ingestion endpoints for the WhatsApp
bridge's events, and operator actions (scan, save, export, cleanup, link).
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from api.services.contact_record import ContactRecord
from api.services.contact_store import PersistenceError
from api.services.lid_mapping import (
    ContactUpdate,
    LidMappingService,
    MessageNotification,
    ScanInProgressError,
)
from config.settings import settings

router = APIRouter(prefix="/api/lid", tags=["lid"])


def get_service(request: Request) -> LidMappingService:
    """Dependency: the service attached to the running app."""
    service = getattr(request.app.state, "lid_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="LID mapping service not configured")
    return service


class ContactResponse(BaseModel):
    """Response model for a contact record."""
    id: str
    phone_number: Optional[str] = None
    linked_id: Optional[str] = None
    display_name: Optional[str] = None
    source: str
    origin_group: Optional[str] = None
    origin_chat: Optional[str] = None
    last_seen: Optional[str] = None


class ContactDetailResponse(BaseModel):
    success: bool = True
    contact: ContactResponse


class ContactsResponse(BaseModel):
    success: bool = True
    contacts: list[ContactResponse]
    count: int


class StatsResponse(BaseModel):
    success: bool = True
    stats: dict


class ResolveNameResponse(BaseModel):
    id: str
    display_name: Optional[str] = None


class ScanResponse(BaseModel):
    success: bool = True
    report: dict


class ExportRequest(BaseModel):
    format: str = "csv"
    filename: Optional[str] = None


class ContactUpdateItem(BaseModel):
    id: str
    notify: Optional[str] = None
    name: Optional[str] = None


class ContactsEvent(BaseModel):
    contacts: list[ContactUpdateItem]


class MessageEvent(BaseModel):
    sender_id: str = Field(alias="senderId")
    chat_id: str = Field(alias="chatId")
    push_name: Optional[str] = Field(default=None, alias="pushName")
    timestamp: Optional[datetime] = None

    model_config = {"populate_by_name": True}


class ChatsEvent(BaseModel):
    chat_ids: list[str]


class IngestResponse(BaseModel):
    success: bool = True
    processed: int


def _record_to_response(record: ContactRecord) -> ContactResponse:
    """Convert ContactRecord to API response."""
    return ContactResponse(
        id=record.id,
        phone_number=record.phone_number,
        linked_id=record.linked_id,
        display_name=record.display_name,
        source=record.source.value,
        origin_group=record.origin_group,
        origin_chat=record.origin_chat,
        last_seen=record.last_seen.isoformat() if record.last_seen else None,
    )


@router.get("/stats", response_model=StatsResponse)
async def get_stats(service: LidMappingService = Depends(get_service)):
    """Mapping statistics."""
    return StatsResponse(stats=service.stats())


@router.get("/contacts", response_model=ContactsResponse)
async def list_contacts(
    search: Optional[str] = Query(default=None, description="Search term"),
    type: str = Query(default="name", pattern="^(name|phone)$", description="Search by 'name' or 'phone'"),
    service: LidMappingService = Depends(get_service),
):
    """
    List contacts, optionally filtered.

    - `search=Widji&type=name`: case-insensitive substring match on display name
    - `search=6285712612218&type=phone`: exact phone number match
    """
    if not search:
        records = service.get_all()
    elif type == "phone":
        records = service.search_by_phone(search)
    else:
        records = service.search_by_name(search)

    contacts = [_record_to_response(r) for r in records]
    return ContactsResponse(contacts=contacts, count=len(contacts))


@router.get("/contact/{contact_id:path}", response_model=ContactDetailResponse)
async def get_contact(contact_id: str, service: LidMappingService = Depends(get_service)):
    """Contact by primary id (raw JID)."""
    record = service.get(contact_id)
    if not record:
        raise HTTPException(status_code=404, detail=f"Contact not found: {contact_id}")
    return ContactDetailResponse(contact=_record_to_response(record))


@router.get("/phone/{phone}", response_model=ContactDetailResponse)
async def get_contact_by_phone(phone: str, service: LidMappingService = Depends(get_service)):
    """Contact by phone number, directly or through its LID record."""
    record = service.get_by_phone(phone.lstrip("+"))
    if not record:
        raise HTTPException(status_code=404, detail=f"No contact for phone: {phone}")
    return ContactDetailResponse(contact=_record_to_response(record))


@router.get("/resolve-name", response_model=ResolveNameResponse)
async def resolve_name(
    id: str = Query(..., description="Sender JID"),
    fallback: Optional[str] = Query(default=None, description="Name to return when unknown"),
    service: LidMappingService = Depends(get_service),
):
    """Best-known display name for a sender."""
    return ResolveNameResponse(id=id, display_name=service.resolve_display_name(id, fallback))


@router.post("/scan", response_model=ScanResponse)
async def trigger_scan(service: LidMappingService = Depends(get_service)):
    """Run a full backfill scan over all chats, then save."""
    try:
        report = await service.scan_all()
    except ScanInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=f"Scan finished but save failed: {e}")
    return ScanResponse(report=report.to_dict())


@router.post("/save")
async def trigger_save(service: LidMappingService = Depends(get_service)):
    """Persist the contact store now."""
    try:
        await service.save()
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=f"Save failed: {e}")
    return {"success": True}


@router.post("/export")
async def export_contacts(request: ExportRequest, service: LidMappingService = Depends(get_service)):
    """Export contacts to a file next to the snapshot (csv or json)."""
    fmt = request.format.lower()
    if fmt == "csv":
        try:
            path = service.export_csv(request.filename)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return {"success": True, "format": "csv", "path": str(path)}
    if fmt == "json":
        try:
            await service.save()
        except PersistenceError as e:
            raise HTTPException(status_code=500, detail=f"Save failed: {e}")
        return {"success": True, "format": "json", "path": str(service.store.storage_path)}
    raise HTTPException(status_code=400, detail=f"Unsupported export format: {request.format}")


@router.get("/export.csv", response_class=PlainTextResponse)
async def download_csv(service: LidMappingService = Depends(get_service)):
    """Contacts as CSV."""
    return PlainTextResponse(
        service.to_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=contacts.csv"},
    )


@router.post("/cleanup")
async def cleanup_duplicate_names(service: LidMappingService = Depends(get_service)):
    """
    Clear push names shared by several unrelated contacts.

    Heuristic: can erase a legitimate name. Requires LIDMAP_DEDUPE_ENABLED.
    """
    if not settings.dedupe_enabled:
        raise HTTPException(
            status_code=403,
            detail="Duplicate-name cleanup is disabled (set LIDMAP_DEDUPE_ENABLED=true)",
        )
    groups = service.cleanup_duplicate_names()
    return {
        "success": True,
        "groups": [
            {"name": g.name, "keeper_id": g.keeper_id, "cleared_ids": g.cleared_ids}
            for g in groups
        ],
    }


@router.post("/link")
async def link_contacts(service: LidMappingService = Depends(get_service)):
    """Back-fill LIDs and names onto phone contacts from learned mappings."""
    return {"success": True, "linked": service.link_lid_to_phone_contacts()}


@router.post("/events/contacts", response_model=IngestResponse)
async def ingest_contacts(event: ContactsEvent, service: LidMappingService = Depends(get_service)):
    """Contacts upsert/update batch from the bridge."""
    updates = [ContactUpdate(id=c.id, display_name=c.notify or c.name) for c in event.contacts]
    records = service.ingest_contacts(updates)
    return IngestResponse(processed=len(records))


@router.post("/events/messages", response_model=IngestResponse)
async def ingest_message(event: MessageEvent, service: LidMappingService = Depends(get_service)):
    """Received-message notification from the bridge."""
    record = service.ingest_message(MessageNotification(
        sender_id=event.sender_id,
        chat_id=event.chat_id,
        push_name=event.push_name,
        timestamp=event.timestamp,
    ))
    return IngestResponse(processed=1 if record else 0)


@router.post("/events/chats", response_model=IngestResponse)
async def ingest_chats(event: ChatsEvent, service: LidMappingService = Depends(get_service)):
    """Chats announced by the bridge (used when it cannot enumerate chats)."""
    return IngestResponse(processed=service.ingest_chats(event.chat_ids))
