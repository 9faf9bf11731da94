"""SQLAlchemy-backed process-state ledger.

Each document is one row holding the wire map as JSON plus a ``version``
counter. Writes are optimistic: the row is read, changed in memory and
written back with ``UPDATE ... WHERE version = :expected``. A lost race
re-reads and retries a bounded number of times.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, create_engine, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from docai.errors import TransientIOError, require_document_id
from docai.state.models import DocumentRecord, utcnow
from docai.state.store import ProcessStateStore, new_record
from docai.utils.logger import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    pass


class DocumentStateRow(Base):
    __tablename__ = "doc_process_state"

    document_id: Mapped[str] = mapped_column(String(1024), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    overall_status: Mapped[str] = mapped_column(String(32), index=True)
    body: Mapped[dict[str, Any]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class SqlStateStore(ProcessStateStore):
    """Ledger persisted in any SQLAlchemy-supported database.

    Args:
        database_url: SQLAlchemy URL, e.g. ``sqlite:///docai_state.db``.
        max_retries: Optimistic write attempts before giving up.
        create_tables: Create the table on startup when missing.
    """

    def __init__(
        self,
        database_url: str,
        max_retries: int = 3,
        create_tables: bool = True,
    ) -> None:
        self.engine = create_engine(database_url)
        self._session_factory = sessionmaker(self.engine, expire_on_commit=False)
        self.max_retries = max_retries
        if create_tables:
            Base.metadata.create_all(self.engine)

    def get(self, document_id: str) -> DocumentRecord | None:
        require_document_id(document_id)
        try:
            with self._session_factory() as session:
                row = session.get(DocumentStateRow, document_id)
                return DocumentRecord.from_wire(row.body) if row else None
        except SQLAlchemyError as exc:
            raise TransientIOError(f"state read failed for {document_id}") from exc

    def init_if_absent(
        self, document_id: str, correlation_id: str | None = None
    ) -> DocumentRecord:
        require_document_id(document_id)
        existing = self.get(document_id)
        if existing is not None:
            return existing

        record = new_record(document_id, correlation_id)
        try:
            with self._session_factory() as session, session.begin():
                session.add(self._to_row(record, version=0))
            logger.info("docstate.init doc_id=%s", document_id)
            return record
        except IntegrityError:
            logger.info("docstate.init lost race doc_id=%s", document_id)
        except SQLAlchemyError as exc:
            raise TransientIOError(f"state init failed for {document_id}") from exc

        winner = self.get(document_id)
        if winner is None:
            raise TransientIOError(f"state row vanished for {document_id}")
        return winner

    def list_ids(self) -> list[str]:
        try:
            with self._session_factory() as session:
                return list(session.scalars(select(DocumentStateRow.document_id)))
        except SQLAlchemyError as exc:
            raise TransientIOError("state listing failed") from exc

    def _mutate(
        self, document_id: str, change: Callable[[DocumentRecord], None]
    ) -> DocumentRecord:
        for attempt in range(1, self.max_retries + 1):
            try:
                result = self._try_mutate(document_id, change)
            except SQLAlchemyError as exc:
                raise TransientIOError(f"state write failed for {document_id}") from exc
            if result is not None:
                return result
            logger.warning(
                "docstate.conflict doc_id=%s attempt=%d/%d",
                document_id,
                attempt,
                self.max_retries,
            )
        raise TransientIOError(
            f"state write for {document_id} lost {self.max_retries} concurrent races"
        )

    def _try_mutate(
        self, document_id: str, change: Callable[[DocumentRecord], None]
    ) -> DocumentRecord | None:
        """One optimistic read-modify-write; ``None`` means a concurrent writer won."""
        with self._session_factory() as session:
            try:
                with session.begin():
                    row = session.get(DocumentStateRow, document_id)
                    if row is None:
                        record = new_record(document_id)
                        change(record)
                        record.updated_at = utcnow()
                        session.add(self._to_row(record, version=0))
                        return record

                    expected = row.version
                    record = DocumentRecord.from_wire(row.body)
                    change(record)
                    record.updated_at = utcnow()
                    updated = self._conditional_update(session, record, expected)
                    return record if updated else None
            except IntegrityError:
                return None

    @staticmethod
    def _conditional_update(
        session: Session, record: DocumentRecord, expected: int
    ) -> bool:
        result = session.execute(
            update(DocumentStateRow)
            .where(
                DocumentStateRow.document_id == record.document_id,
                DocumentStateRow.version == expected,
            )
            .values(
                version=expected + 1,
                overall_status=record.overall_status.value,
                body=record.to_wire(),
                updated_at=record.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def _to_row(record: DocumentRecord, version: int) -> DocumentStateRow:
        return DocumentStateRow(
            document_id=record.document_id,
            version=version,
            overall_status=record.overall_status.value,
            body=record.to_wire(),
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
