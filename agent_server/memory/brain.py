"""
MemoryStore: the agent's long-term memory for one tenant.

Records are created directly. Edits and deletes are only ever staged as
ModificationRequests and applied when a human approves them.
"""
import json
import logging
import re
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ValidationError

from ..llm import ChatModel, ask_json
from ..models import AgentRecord, ModificationRequest, ModificationType, RequestStatus, utcnow
from .knowledge import KnowledgeIndex
from .records import (
    RecordNotFoundError,
    RecordRepository,
    RequestAlreadyProcessedError,
    RequestNotFoundError,
    new_request_id,
)

logger = logging.getLogger(__name__)

CONSOLIDATE_PROMPT = """You maintain a knowledge base for a clinic assistant.
Find records that duplicate or overlap each other and propose how to merge them.
Reply with JSON only, in this shape:
{"proposals": [{"type": "edit" | "delete", "record_id": "...", "title": "...", "content": "...", "reason": "..."}]}
Use "edit" to rewrite the record that should survive, "delete" for redundant ones.
Reply {"proposals": []} if nothing should change."""


class ConsolidationProposal(BaseModel):
    type: Literal["edit", "delete"]
    record_id: str
    title: Optional[str] = None
    content: Optional[str] = None
    reason: Optional[str] = None


class ConsolidationPlan(BaseModel):
    proposals: List[ConsolidationProposal] = []


def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"[^\w\s]", "", text.lower())).strip()


class MemoryStore:
    """Tenant-scoped facade over the record repository and the knowledge index."""

    def __init__(
        self,
        tenant_id: str,
        records: RecordRepository,
        knowledge: KnowledgeIndex,
        model: Optional[ChatModel] = None,
    ):
        self.tenant_id = tenant_id
        self.records = records
        self.knowledge = knowledge
        self.model = model

    def create_record(self, title: str, content: str) -> AgentRecord:
        title, content = title.strip(), content.strip()
        if not title or not content:
            raise ValueError("Record title and content must not be empty")
        record = self.records.create_record(self.tenant_id, title, content)
        self.knowledge.index_document(self.tenant_id, record.record_id, record.title, record.content)
        return record

    def get_record(self, record_id: str) -> AgentRecord:
        record = self.records.get_record(self.tenant_id, record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    def list_records(self) -> List[AgentRecord]:
        return self.records.list_records(self.tenant_id)

    def list_pending(self) -> List[ModificationRequest]:
        return self.records.list_requests(self.tenant_id, RequestStatus.PENDING)

    def _stage(self, request: ModificationRequest) -> ModificationRequest:
        self.records.add_request(self.tenant_id, request)
        return request

    def request_edit(
        self,
        record_id: str,
        title: Optional[str] = None,
        content: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> ModificationRequest:
        """
        Stage an edit. The record is not touched until approve().

        Raises:
            RecordNotFoundError: if the target record does not exist
        """
        self.get_record(record_id)
        title = title.strip() if title else None
        content = content.strip() if content else None
        if not title and not content:
            raise ValueError("An edit request needs a new title or new content")
        return self._stage(
            ModificationRequest(
                request_id=new_request_id(),
                type=ModificationType.EDIT,
                record_id=record_id,
                proposed_title=title,
                proposed_content=content,
                reason=reason,
                created_at=utcnow(),
            )
        )

    def request_delete(self, record_id: str, reason: Optional[str] = None) -> ModificationRequest:
        """
        Stage a delete. The record is not touched until approve().

        Raises:
            RecordNotFoundError: if the target record does not exist
        """
        self.get_record(record_id)
        return self._stage(
            ModificationRequest(
                request_id=new_request_id(),
                type=ModificationType.DELETE,
                record_id=record_id,
                reason=reason,
                created_at=utcnow(),
            )
        )

    def _pending_request(self, request_id: str) -> ModificationRequest:
        request = self.records.get_request(self.tenant_id, request_id)
        if request is None:
            raise RequestNotFoundError(request_id)
        if request.status != RequestStatus.PENDING:
            raise RequestAlreadyProcessedError(request_id, request.status)
        return request

    def approve(self, request_id: str, reviewed_by: Optional[str] = None) -> ModificationRequest:
        """
        Apply a staged change and take it off the pending queue.

        Raises:
            RequestNotFoundError: unknown request
            RequestAlreadyProcessedError: request is not pending
            RecordNotFoundError: target record vanished (the request is marked rejected)
        """
        request = self._pending_request(request_id)
        record = self.records.get_record(self.tenant_id, request.record_id)
        if record is None:
            self.records.set_request_status(self.tenant_id, request_id, RequestStatus.REJECTED, reviewed_by)
            logger.warning(f"Request {request_id} targets missing record {request.record_id}; rejected")
            raise RecordNotFoundError(request.record_id)

        if request.type == ModificationType.EDIT:
            updated = self.records.update_record(
                self.tenant_id, record.record_id, request.proposed_title, request.proposed_content
            )
            if updated and (updated.title != record.title or updated.content != record.content):
                self.knowledge.index_document(self.tenant_id, updated.record_id, updated.title, updated.content)
        else:
            self.records.delete_record(self.tenant_id, record.record_id)
            self.knowledge.delete_document(self.tenant_id, record.record_id)

        logger.info(f"Approved {request.type.value} request {request_id} on {record.record_id}")
        return self.records.set_request_status(self.tenant_id, request_id, RequestStatus.APPROVED, reviewed_by)

    def reject(self, request_id: str, reviewed_by: Optional[str] = None) -> ModificationRequest:
        """Discard a staged change; the record stays as it is."""
        self._pending_request(request_id)
        logger.info(f"Rejected request {request_id}")
        return self.records.set_request_status(self.tenant_id, request_id, RequestStatus.REJECTED, reviewed_by)

    async def consolidate(self) -> List[ModificationRequest]:
        """
        Propose edit/delete requests that merge duplicate records.

        Never mutates records; every proposal goes through approve().
        """
        records = self.list_records()
        if len(records) < 2:
            return []
        busy = {r.record_id for r in self.list_pending()}
        candidates = [r for r in records if r.record_id not in busy]

        proposals = await self._model_proposals(candidates)
        if proposals is None:
            proposals = self._duplicate_proposals(candidates)

        known = {r.record_id for r in candidates}
        staged: List[ModificationRequest] = []
        seen = set()
        for proposal in proposals:
            if proposal.record_id not in known or proposal.record_id in seen:
                continue
            seen.add(proposal.record_id)
            try:
                if proposal.type == "edit":
                    staged.append(
                        self.request_edit(proposal.record_id, proposal.title, proposal.content, proposal.reason)
                    )
                else:
                    staged.append(self.request_delete(proposal.record_id, proposal.reason))
            except ValueError as e:
                logger.warning(f"Skipping consolidation proposal for {proposal.record_id}: {e}")
        logger.info(f"Consolidation staged {len(staged)} requests")
        return staged

    async def _model_proposals(self, records: List[AgentRecord]) -> Optional[List[ConsolidationProposal]]:
        if self.model is None:
            return None
        listing = json.dumps(
            [{"record_id": r.record_id, "title": r.title, "content": r.content} for r in records],
            indent=2,
        )
        parsed = await ask_json(self.model, CONSOLIDATE_PROMPT, f"Records:\n{listing}")
        if parsed is None:
            return None
        try:
            return ConsolidationPlan.model_validate(parsed).proposals
        except ValidationError as e:
            logger.warning(f"Consolidation output failed validation: {e}")
            return None

    @staticmethod
    def _duplicate_proposals(records: List[AgentRecord]) -> List[ConsolidationProposal]:
        """Same normalized title or content: keep the most recently updated record."""
        kept: Dict[str, str] = {}
        proposals = []
        for record in sorted(records, key=lambda r: r.updated_at, reverse=True):
            keys = (f"t:{_normalize(record.title)}", f"c:{_normalize(record.content)}")
            survivor = next((kept[k] for k in keys if k in kept), None)
            if survivor:
                proposals.append(
                    ConsolidationProposal(
                        type="delete", record_id=record.record_id, reason=f"Duplicate of {survivor}"
                    )
                )
                continue
            for key in keys:
                kept[key] = record.record_id
        return proposals
