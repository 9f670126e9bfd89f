"""Modelos Pydantic para invitaciones"""
from pydantic import BaseModel
from typing import Optional, List, Dict


class SendInvitationsRequest(BaseModel):
    eventId: str
    message: str
    method: str = "sms"  # sms, whatsapp


class SendInvitationsResponse(BaseModel):
    message: str
    eventId: str
    queued: int
    taskId: Optional[str] = None


class GuestInvitationStatus(BaseModel):
    guestId: str
    name: str
    phone: Optional[str] = None
    status: str
    lastInvitedAt: Optional[str] = None


class InvitationStatusResponse(BaseModel):
    eventId: str
    eventName: str
    total: int
    counts: Dict[str, int]
    guests: List[GuestInvitationStatus]
