"""
Typed notification payloads.

Each notification type carries a small set of identifiers the UI needs to
navigate to the related entity. On the wire and in the database the
payload is a JSON object with camelCase keys (``conversationId``,
``eventId``, ...); in Python it is one pydantic model per type family.

Parsing is lenient: unknown keys are ignored, malformed values make the
payload fall back to an empty instance of the right model. Storage keeps
whatever map the producer supplied.
"""

from typing import Any, Dict, Mapping, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nextlevel.src.models.notification import NotificationType


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    def to_data(self) -> Dict[str, Any]:
        """Wire/storage representation (camelCase keys, unset fields dropped)."""
        return self.model_dump(by_alias=True, exclude_none=True)


class MessagePayload(_Payload):
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    message_id: Optional[str] = Field(default=None, alias="messageId")
    sender_name: Optional[str] = Field(default=None, alias="senderName")


class ClientJoinRequestPayload(_Payload):
    client_id: Optional[str] = Field(default=None, alias="clientId")
    client_user_id: Optional[str] = Field(default=None, alias="clientUserId")
    client_name: Optional[str] = Field(default=None, alias="clientName")


class LessonPayload(_Payload):
    """LESSON_SCHEDULED, LESSON_CANCELLED and SCHEDULE_REQUEST."""
    event_id: Optional[str] = Field(default=None, alias="eventId")


class ProgramPayload(_Payload):
    """WORKOUT_ASSIGNED, WORKOUT_COMPLETED and PROGRAM_ASSIGNED."""
    program_id: Optional[str] = Field(default=None, alias="programId")
    drill_id: Optional[str] = Field(default=None, alias="drillId")


class ProgressPayload(_Payload):
    program_id: Optional[str] = Field(default=None, alias="programId")


class VideoSubmissionPayload(_Payload):
    video_submission_id: Optional[str] = Field(default=None, alias="videoSubmissionId")


class TimeSwapPayload(_Payload):
    swap_request_id: Optional[str] = Field(default=None, alias="swapRequestId")
    requester_name: Optional[str] = Field(default=None, alias="requesterName")
    target_name: Optional[str] = Field(default=None, alias="targetName")


class SystemPayload(_Payload):
    pass


NotificationPayload = Union[
    MessagePayload,
    ClientJoinRequestPayload,
    LessonPayload,
    ProgramPayload,
    ProgressPayload,
    VideoSubmissionPayload,
    TimeSwapPayload,
    SystemPayload,
]


PAYLOAD_MODELS: Dict[NotificationType, Type[_Payload]] = {
    NotificationType.MESSAGE: MessagePayload,
    NotificationType.CLIENT_JOIN_REQUEST: ClientJoinRequestPayload,
    NotificationType.LESSON_SCHEDULED: LessonPayload,
    NotificationType.LESSON_CANCELLED: LessonPayload,
    NotificationType.SCHEDULE_REQUEST: LessonPayload,
    NotificationType.WORKOUT_ASSIGNED: ProgramPayload,
    NotificationType.WORKOUT_COMPLETED: ProgramPayload,
    NotificationType.PROGRAM_ASSIGNED: ProgramPayload,
    NotificationType.PROGRESS_UPDATE: ProgressPayload,
    NotificationType.VIDEO_SUBMISSION: VideoSubmissionPayload,
    NotificationType.TIME_SWAP_REQUEST: TimeSwapPayload,
    NotificationType.SYSTEM: SystemPayload,
}


def payload_model_for(notification_type: Any) -> Type[_Payload]:
    """Model class for a type; unknown types use SystemPayload."""
    ntype = NotificationType.coerce(notification_type)
    if ntype is None:
        return SystemPayload
    return PAYLOAD_MODELS[ntype]


def parse_payload(notification_type: Any, data: Any) -> NotificationPayload:
    """
    Build the typed payload for ``notification_type`` from a raw map.

    Never raises: non-mapping or invalid data yields an empty payload.
    Already-typed payloads of the right model are returned unchanged.

    Example:
        >>> parse_payload("MESSAGE", {"conversationId": "c1"}).conversation_id
        'c1'
    """
    model = payload_model_for(notification_type)
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True, exclude_none=True)
    if not isinstance(data, Mapping):
        return model()

    # Identifiers may arrive as ints from older producers
    cleaned = {
        key: str(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else value
        for key, value in data.items()
    }
    try:
        return model.model_validate(cleaned)
    except ValidationError:
        return model()


def payload_to_data(payload: Union[NotificationPayload, Mapping[str, Any], None]) -> Dict[str, Any]:
    """Storage map for a typed payload or a raw mapping."""
    if payload is None:
        return {}
    if isinstance(payload, _Payload):
        return payload.to_data()
    return dict(payload)
