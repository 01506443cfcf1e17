"""Best-effort propagation of document attributes to the external index.

The relational store stays authoritative: an index that never reports ready,
or rejects the update, only produces a log line.
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from argus.core.exceptions import APIClientError
from argus.database.models import Document
from argus.schemas.extraction_state import DocumentExtractionState
from argus.services.indexing.index_client import READY_STATUS, TERMINAL_STATUSES, VectorStoreIndexClient
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)


class SyncOutcome(str, Enum):
    UPDATED = "updated"
    SKIPPED = "skipped"
    DISABLED = "disabled"
    FAILED = "failed"


def build_attributes(document: Document, state: Optional[DocumentExtractionState] = None) -> Dict[str, Any]:
    """The small searchable subset pushed to the index. None values are omitted."""
    high_level = state.high_level_classification if state else None
    attributes = {
        "document_type": document.document_type,
        "file_name": document.file_name,
        "is_active": bool(document.is_active),
        "date": document.encounter_date.isoformat() if document.encounter_date else None,
        "provider_name": document.provider_name,
        "clinic_or_facility": document.clinic_or_facility,
        "has_metadata": not document.needs_metadata,
        "high_level_type": high_level.type.value if high_level else None,
    }
    return {key: value for key, value in attributes.items() if value is not None}


class IndexSynchronizer:
    def __init__(
        self,
        client: Optional[VectorStoreIndexClient],
        poll_attempts: int = 5,
        poll_delay_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the synchronizer.

        Args:
            client: Index client, or None when no index is configured
            poll_attempts: Readiness checks before giving up
            poll_delay_seconds: Fixed delay between readiness checks
            sleep: Awaitable sleep, injectable for tests
        """
        self.client = client
        self.poll_attempts = max(1, poll_attempts)
        self.poll_delay_seconds = poll_delay_seconds
        self._sleep = sleep

    async def wait_until_ready(self, external_ref: str) -> bool:
        for attempt in range(1, self.poll_attempts + 1):
            status = await self.client.get_status(external_ref)
            if status == READY_STATUS:
                return True
            if status in TERMINAL_STATUSES:
                LOGGER.warning(
                    "Index entry ended in a terminal state",
                    extra={"external_ref": external_ref, "index_status": status},
                )
                return False
            if attempt < self.poll_attempts:
                await self._sleep(self.poll_delay_seconds)
        return False

    async def sync(self, document: Document, state: Optional[DocumentExtractionState] = None) -> SyncOutcome:
        """Push the document's attributes if the index entry is ready. Never raises."""
        log_context = {"document_id": str(document.id), "stage": "index_sync"}

        if self.client is None or not document.external_ref:
            return SyncOutcome.DISABLED

        try:
            if not await self.wait_until_ready(document.external_ref):
                LOGGER.info(
                    "Index entry not ready, attribute sync skipped",
                    extra={**log_context, "attempts": self.poll_attempts},
                )
                return SyncOutcome.SKIPPED

            attributes = build_attributes(document, state)
            await self.client.update_attributes(document.external_ref, attributes)
            LOGGER.info("Index attributes updated", extra={**log_context, "attributes": sorted(attributes)})
            return SyncOutcome.UPDATED

        except APIClientError as e:
            LOGGER.warning("Index attribute sync failed", extra={**log_context, "error": str(e)})
            return SyncOutcome.FAILED
