from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from datetime import datetime
from uuid import UUID
from typing import Any, Dict, List, Literal, Optional, get_args


# Intake


class IntakeProgressSave(BaseModel):
    """Autosave payload from the intake wizard"""
    selected_path: Optional[str] = None
    current_step: int = Field(..., ge=0)
    total_steps: Optional[int] = Field(None, ge=0)
    responses: Dict[str, Any]
    is_complete: bool = False

    @model_validator(mode="after")
    def check_step_within_total(self):
        if self.total_steps is not None and self.current_step > self.total_steps:
            raise ValueError("current_step cannot exceed total_steps")
        return self


class IntakeProgressResponse(BaseModel):
    selected_path: Optional[str] = None
    current_step: int
    total_steps: Optional[int] = None
    responses: Dict[str, Any]
    is_complete: bool
    last_saved_at: datetime

    model_config = ConfigDict(from_attributes=True)


class IntakeProgressEnvelope(BaseModel):
    progress: Optional[IntakeProgressResponse] = None


class IntakeSubmission(BaseModel):
    classification: str
    responses: Dict[str, Any]


class ClientSummary(BaseModel):
    id: UUID
    full_name: str
    email: str
    client_type: str

    model_config = ConfigDict(from_attributes=True)


class PacketSummary(BaseModel):
    id: UUID
    type: str
    status: str

    model_config = ConfigDict(from_attributes=True)


class IntakeSubmissionResponse(BaseModel):
    success: bool = True
    client: ClientSummary
    packets: List[PacketSummary]
    message: str


class AnalyticsStartRequest(BaseModel):
    client_type: str = Field(..., validation_alias=AliasChoices("client_type", "clientType"))


class AnalyticsStartResponse(BaseModel):
    success: bool = True
    analytics_id: UUID


class AnalyticsAbandonRequest(BaseModel):
    """Sent by the browser (often as a sendBeacon) when the intake page is left"""
    client_type: str = Field(..., validation_alias=AliasChoices("client_type", "clientType"))
    drop_off_step: int = Field(..., ge=0, validation_alias=AliasChoices("drop_off_step", "dropOffStep"))


class AnalyticsAbandonResponse(BaseModel):
    success: bool = True
    closed: bool


# Packets


CallbackPacketType = Literal["INTRO", "NUTRITION", "WORKOUT"]
CALLBACK_PACKET_TYPES = get_args(CallbackPacketType)
CallbackStatus = Literal["READY", "FAILED"]


class PacketCallback(BaseModel):
    """
    Body of the generation worker's status callback.

    The worker speaks camelCase; exactly one of clientId/clientEmail identifies
    the client.
    """
    client_id: Optional[UUID] = Field(None, alias="clientId")
    client_email: Optional[str] = Field(None, alias="clientEmail")
    packet_type: CallbackPacketType = Field(..., alias="packetType")
    status: CallbackStatus
    doc_url: Optional[str] = Field(None, alias="docUrl")
    error: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def check_single_client_reference(self):
        email = (self.client_email or "").strip()
        if bool(self.client_id) == bool(email):
            raise ValueError("Exactly one of clientId or clientEmail is required")
        return self


class PacketCallbackPacket(BaseModel):
    id: UUID
    type: str
    status: str
    docUrl: Optional[str] = None


class PacketCallbackResponse(BaseModel):
    success: bool = True
    packet: PacketCallbackPacket


class PacketEditRequest(BaseModel):
    content: Dict[str, Any]
    status: Optional[Literal["READY", "APPROVED", "SENT"]] = None


class SideEffectOutcomeResponse(BaseModel):
    name: str
    succeeded: bool
    skipped: bool = False
    error: Optional[str] = None
    detail: Optional[str] = None


class PacketResponse(BaseModel):
    id: UUID
    client_id: UUID
    type: str
    status: str
    content: Optional[Dict[str, Any]] = None
    doc_url: Optional[str] = None
    pdf_url: Optional[str] = None
    last_error: Optional[str] = None
    retry_count: int
    version: int
    previous_version_id: Optional[UUID] = None
    template_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    sent_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PacketMutationResponse(BaseModel):
    success: bool = True
    packet: PacketResponse
    side_effects: List[SideEffectOutcomeResponse] = []
    message: Optional[str] = None


class PacketDeleteResponse(BaseModel):
    success: bool = True
    message: str
    side_effects: List[SideEffectOutcomeResponse] = []


class PacketStatusItem(BaseModel):
    id: UUID
    type: str
    status: str
    retry_count: int
    last_error: Optional[str] = None
    doc_url: Optional[str] = None
    pdf_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PacketStatusSummary(BaseModel):
    total: int
    completed: int
    failed: int
    generating: int
    pending: int
    progress: int  # percent of packets out of the generation pipeline


class PacketStatusResponse(BaseModel):
    packets: List[PacketStatusItem]
    summary: PacketStatusSummary


# Staff


class FailedPacketItem(BaseModel):
    id: UUID
    type: str
    client_id: UUID
    client_name: str
    client_email: str
    last_error: Optional[str] = None
    retry_count: int
    updated_at: datetime


class FailedPacketsResponse(BaseModel):
    packets: List[FailedPacketItem]
    total: int


class FunnelTypeSummary(BaseModel):
    client_type: str
    started: int
    completed: int
    abandoned: int
    open: int
    completion_rate: float  # percent, 0-100
    avg_completion_time_s: Optional[float] = None
    drop_off_by_step: Dict[int, int]


class FunnelSummaryResponse(BaseModel):
    window_days: int
    since: datetime
    totals: FunnelTypeSummary
    by_client_type: List[FunnelTypeSummary]
