"""
Request lifecycle service.

Owns the PrintRequest state machine and is the only code that writes
request documents.

State machine:
    Pending --(claim)--> In Progress --(complete)--> Complete

    - Forward only, one step at a time; Complete is terminal
    - makerId is written on the claim and never again
    - updatedAt is stamped by the store on every transition

Concurrency:
    Every transition is a conditional update keyed on the status the
    caller saw (compare-and-swap). When two makers claim the same Pending
    request, the store applies exactly one write; the other finds the
    status already moved and its transition is ignored (advance_status
    returns False). Callers that want to know pass raise_on_conflict=True
    and get a ConflictError instead.

Usage:
    service = RequestService(store, settings, schema)
    request_id = service.submit_request(form_values, requester_id)
    service.advance_status(request_id, maker_id, RequestStatus.PENDING)
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Union

from config import MarketplaceSettings
from core.document_store import SERVER_TIMESTAMP, DocumentStore
from core.exceptions import AuthError, ConflictError, PersistenceError
from models.print_request import PrintRequest, RequestStatus
from modules.field_schema import FieldDescriptor, FieldSchema
from modules.sanitize import sanitize_text
from logging_config import get_logger, get_request_logger


# Module logger
logger = get_logger(__name__)


class RequestService:
    """
    Creates print requests and advances their status.

    Attributes:
        schema: Field schema used to validate submissions
    """

    def __init__(self, store: DocumentStore, settings: MarketplaceSettings, schema: FieldSchema):
        """
        Args:
            store: Document store adapter
            settings: Collection namespace and input limits
            schema: Field schema (single source of truth for validation)
        """
        self._store = store
        self._settings = settings
        self.schema = schema

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def submit_request(self, fields: Dict[str, Any], requester_id: str) -> str:
        """
        Validate and persist a new request.

        Validation runs before any store call; a ValidationError therefore
        leaves the store untouched.

        Args:
            fields: Raw field values keyed by schema key
            requester_id: Identity of the requester

        Returns:
            Id of the new request

        Raises:
            AuthError: If requester_id is empty
            ValidationError: Naming the first unsatisfied field
            PersistenceError: If the store rejects the create
        """
        if not requester_id:
            raise AuthError("Authentication not ready.")

        cleaned = self.schema.validate(fields, clean_text=self._clean_text)

        document = {key: value for key, value in cleaned.items() if value is not None}
        document.update({
            "requesterId": requester_id,
            "status": RequestStatus.PENDING.value,
            "createdAt": SERVER_TIMESTAMP,
        })

        request_id = self._store.create(self._settings.requests_collection, document)

        get_request_logger(request_id).info(
            f"Request '{document.get('title', '')}' submitted by {requester_id[:8]}"
        )
        return request_id

    def _clean_text(self, text: str, field: FieldDescriptor) -> str:
        limit = (self._settings.max_description_length if field.multiline
                 else self._settings.max_text_length)
        return sanitize_text(text, max_length=limit)

    # =========================================================================
    # STATUS TRANSITIONS
    # =========================================================================

    def advance_status(
        self,
        request_id: str,
        acting_maker_id: str,
        expected_current_status: Optional[Union[RequestStatus, str]] = None,
        raise_on_conflict: bool = False
    ) -> bool:
        """
        Move a request one step forward.

        Args:
            request_id: Request to advance
            acting_maker_id: Maker performing the transition
            expected_current_status: Status the caller saw. When omitted the
                stored status is read first (job queue behaviour).
            raise_on_conflict: Raise ConflictError instead of ignoring a
                transition that lost a race

        Returns:
            True if the transition was applied, False if it was a no-op

        Raises:
            AuthError: If acting_maker_id is empty
            ConflictError: Only with raise_on_conflict, when the status moved
            PersistenceError: If the store read or write fails
        """
        if not acting_maker_id:
            raise AuthError("Authentication not ready.")

        path = self._settings.request_document(request_id)
        request_logger = get_request_logger(request_id)

        if expected_current_status is None:
            snapshot = self._store.get(path)
            if snapshot is None:
                raise PersistenceError("Request not found", operation="get", path=path)
            current = RequestStatus.parse(snapshot.get("status"))
        else:
            current = RequestStatus.parse(expected_current_status)

        if current is None or current.is_terminal:
            request_logger.info(f"Ignoring advance from status {expected_current_status or current}")
            return False

        target = current.next_status
        updates: Dict[str, Any] = {
            "status": target.value,
            "updatedAt": SERVER_TIMESTAMP,
        }
        if current is RequestStatus.PENDING:
            updates["makerId"] = acting_maker_id

        applied = self._store.update_if(path, "status", current.value, updates)

        if not applied:
            if raise_on_conflict:
                latest = self._store.get(path)
                raise ConflictError(path, current.value, latest.get("status") if latest else None)
            request_logger.info(
                f"Advance {current.value} -> {target.value} by {acting_maker_id[:8]} "
                f"ignored: status already changed"
            )
            return False

        if current is RequestStatus.PENDING:
            request_logger.info(f"Claimed by {acting_maker_id[:8]}")
        else:
            request_logger.info(f"{current.value} -> {target.value} by {acting_maker_id[:8]}")
        return True

    # =========================================================================
    # READS
    # =========================================================================

    def get_request(self, request_id: str) -> Optional[PrintRequest]:
        """
        Read one request.

        Returns:
            PrintRequest, or None if no such request exists
        """
        snapshot = self._store.get(self._settings.request_document(request_id))
        if snapshot is None:
            return None
        return PrintRequest.from_document(snapshot.id, snapshot.data)
