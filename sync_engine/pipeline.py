"""Per-transaction pipeline: mapping -> staging -> posting -> markers.

Shared by the main pass and the reprocessing engine. Stages recorded in the
idempotency store (or projected as a marker) are never executed again; a
failing stage raises the matching StageFailure and leaves later stages
untouched. AuthenticationFailure and LedgerContextMissing propagate as-is.
"""

from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional, Protocol

from connectors.base import AuthenticationFailure, ClientError
from core.markers import POSTED_TO_ACCOUNTING, PUSHED_TO_STORE, paid_marker
from core.models.sync import (
    AccountingDocumentRef,
    LedgerTransaction,
    Stage,
    StageCompletion,
    StagedRecord,
    StagedStatus,
    utcnow,
)
from core.observability.logging import get_logger, with_correlation
from core.storage.idempotency_store import IdempotencyStore
from mapping_resolver.models import CategoryMapping
from mapping_resolver.resolver import MappingResolver
from sync_engine.errors import (
    LedgerContextMissing,
    MappingUnresolved,
    PostingFailure,
    StagingFailure,
)
from sync_engine.marker_writer import MarkerWriter

logger = get_logger(__name__)

FATAL_ERRORS = (AuthenticationFailure, LedgerContextMissing)
STAGE_ERRORS = (ClientError, ValueError)


class StagingStore(Protocol):
    async def upsert_staged_record(self, record: StagedRecord) -> StagedRecord:
        ...

    async def get_staged_record(self, transaction_id: str) -> Optional[StagedRecord]:
        ...

    async def update_staged_status(
        self, transaction_id: str, status: StagedStatus, accounting_ref: Optional[str] = None
    ) -> StagedRecord:
        ...


class AccountingSystem(Protocol):
    async def find_document_by_reference(self, reference: str) -> Optional[AccountingDocumentRef]:
        ...

    async def create_document(self, record: StagedRecord) -> AccountingDocumentRef:
        ...


@dataclass
class PipelineResult:
    transaction_id: str
    posted: bool = False
    already_posted: bool = False
    document: Optional[AccountingDocumentRef] = None


def build_staged_record(tx: LedgerTransaction, mapping: CategoryMapping) -> StagedRecord:
    return StagedRecord(
        transaction_id=tx.id,
        date=tx.date,
        amount=tx.amount,
        payee_name=tx.payee_name,
        description=tx.payee_name or mapping.destination_name,
        category_id=tx.category_id,
        destination_account_id=mapping.destination_account_id,
        destination_account_code=mapping.destination_account_code,
        status=StagedStatus.STAGED,
    )


class TransactionPipeline:
    """Moves one transaction through the remaining stages."""

    def __init__(
        self,
        resolver: MappingResolver,
        store: StagingStore,
        accounting: AccountingSystem,
        markers: MarkerWriter,
        completions: IdempotencyStore,
        today: Callable[[], date] = lambda: utcnow().date(),
    ):
        self.resolver = resolver
        self.store = store
        self.accounting = accounting
        self.markers = markers
        self.completions = completions
        self._today = today

    def is_posted(self, tx: LedgerTransaction) -> bool:
        return self.completions.is_complete(tx.id, Stage.POSTING) or tx.has_marker(POSTED_TO_ACCOUNTING)

    async def run(self, tx: LedgerTransaction, start_stage: Stage = Stage.MAPPING) -> PipelineResult:
        """Run the stages not yet complete for `tx`.

        `start_stage` is the stage a RetryItem failed at; earlier stages are
        expected to be complete and are only re-read, not re-executed.

        Raises:
            MappingUnresolved / StagingFailure / PostingFailure
        """
        completed = self.completions.completed_stages(tx.id)

        if Stage.POSTING in completed or tx.has_marker(POSTED_TO_ACCOUNTING):
            await self.repair_markers(tx)
            return PipelineResult(tx.id, already_posted=True)

        record: Optional[StagedRecord] = None
        if Stage.STAGING in completed:
            record = await self._load_staged(tx)
            await self._write_markers(tx.id, [PUSHED_TO_STORE])
        elif start_stage is Stage.POSTING or tx.has_marker(PUSHED_TO_STORE):
            # Staged by an earlier run that did not reach the completion write
            record = await self._load_staged(tx, required=False)

        if record is None:
            mapping = await self._map(tx)
            record = await self._stage(tx, mapping)

        document = await self._post(tx, record)
        return PipelineResult(tx.id, posted=True, document=document)

    # =========================================================================
    # Stages
    # =========================================================================

    async def _map(self, tx: LedgerTransaction) -> CategoryMapping:
        with with_correlation(stage=Stage.MAPPING.value):
            try:
                return await self.resolver.resolve(tx.category_id)
            except MappingUnresolved as e:
                e.transaction_id = tx.id
                raise
            except FATAL_ERRORS:
                raise
            except STAGE_ERRORS as e:
                raise MappingUnresolved(
                    tx.category_id, f"category lookup failed: {e}", transaction_id=tx.id
                ) from e

    async def _load_staged(self, tx: LedgerTransaction, required: bool = True) -> Optional[StagedRecord]:
        with with_correlation(stage=Stage.POSTING.value):
            try:
                record = await self.store.get_staged_record(tx.id)
            except FATAL_ERRORS:
                raise
            except STAGE_ERRORS as e:
                raise PostingFailure(tx.id, f"could not read staged record: {e}", cause=e) from e
            if record is None and required:
                raise PostingFailure(tx.id, "staging is recorded complete but the staged record is missing")
            return record

    async def _stage(self, tx: LedgerTransaction, mapping: CategoryMapping) -> StagedRecord:
        with with_correlation(stage=Stage.STAGING.value):
            try:
                record = await self.store.upsert_staged_record(build_staged_record(tx, mapping))
            except FATAL_ERRORS:
                raise
            except STAGE_ERRORS as e:
                raise StagingFailure(tx.id, f"staging failed: {e}", cause=e) from e

            self.completions.record(StageCompletion(transaction_id=tx.id, stage=Stage.STAGING))
            await self._write_markers(tx.id, [PUSHED_TO_STORE])
            return record

    async def _post(self, tx: LedgerTransaction, record: StagedRecord) -> AccountingDocumentRef:
        with with_correlation(stage=Stage.POSTING.value):
            try:
                document = await self.accounting.find_document_by_reference(tx.id)
                if document is not None:
                    logger.info(f"Document {document.document_id} already exists for transaction {tx.id}")
                else:
                    document = await self.accounting.create_document(record)
            except FATAL_ERRORS:
                raise
            except STAGE_ERRORS as e:
                await self._set_staged_status(tx.id, StagedStatus.FAILED)
                raise PostingFailure(tx.id, f"posting failed: {e}", cause=e) from e

            self.completions.record(StageCompletion(
                transaction_id=tx.id,
                stage=Stage.POSTING,
                detail=document.document_id,
            ))
            await self._set_staged_status(tx.id, StagedStatus.POSTED, document.document_id)
            await self._write_markers(tx.id, [POSTED_TO_ACCOUNTING, paid_marker(self._today())])
            return document

    # =========================================================================
    # Projections (store status, notes markers)
    # =========================================================================

    async def repair_markers(self, tx: LedgerTransaction) -> None:
        """Make the notes reflect what the idempotency store says is complete."""
        completed = self.completions.completed_stages(tx.id)
        tokens = []
        if Stage.STAGING in completed and not tx.has_marker(PUSHED_TO_STORE):
            tokens.append(PUSHED_TO_STORE)
        if Stage.POSTING in completed and not tx.has_marker(POSTED_TO_ACCOUNTING):
            tokens.extend([POSTED_TO_ACCOUNTING, paid_marker(self._today())])
        if tokens:
            logger.info(f"Repairing markers on transaction {tx.id}: {tokens}")
            await self._write_markers(tx.id, tokens)

    async def _write_markers(self, transaction_id: str, tokens) -> None:
        """Markers are a projection; a failed write is repaired by a later run."""
        try:
            await self.markers.append(transaction_id, tokens)
        except FATAL_ERRORS:
            raise
        except ClientError as e:
            logger.warning(f"Could not write markers {list(tokens)} to transaction {transaction_id}: {e}")

    async def _set_staged_status(
        self,
        transaction_id: str,
        status: StagedStatus,
        accounting_ref: Optional[str] = None,
    ) -> None:
        try:
            await self.store.update_staged_status(transaction_id, status, accounting_ref)
        except FATAL_ERRORS:
            raise
        except ClientError as e:
            logger.warning(f"Could not set staged record {transaction_id} to {status.value}: {e}")
