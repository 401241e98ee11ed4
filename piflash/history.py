"""Run history.

Every provisioning run leaves one ProvisionRecord behind: which device was
targeted, how it was classified, which image was used and how the run
ended. This is an audit trail next to the run configuration store, which
only remembers the last outcome.
"""

import logging
from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Mapped, Session, mapped_column, sessionmaker

from piflash.db import Base, create_all_tables, get_engine, get_session_factory
from piflash.types import RunOutcome

logger = logging.getLogger(__name__)


class ProvisionRecord(Base):
    """ORM model for a provisioning run.

    Attributes:
        id: Primary key.
        device_path: Target block device (e.g., '/dev/sdX'), if selected.
        device_model: Device model string, if reported.
        device_class: Heuristic device class.
        image_path: Image written to the device.
        username: Account provisioned on the image.
        status: Run outcome (success, failed, unknown).
        error_code: Error code if the run failed.
        error_message: Error message if the run failed.
        started_at: When the run started.
        finished_at: When the run ended.
    """

    __tablename__ = "provision_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    device_path: Mapped[str | None] = mapped_column(String(100), nullable=True)
    device_model: Mapped[str | None] = mapped_column(String(255), nullable=True)
    device_class: Mapped[str | None] = mapped_column(String(20), nullable=True)
    image_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    username: Mapped[str | None] = mapped_column(String(32), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=RunOutcome.UNKNOWN.value, index=True
    )
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        """Return string representation of ProvisionRecord."""
        return (
            f"<ProvisionRecord(id={self.id}, device_path='{self.device_path}', "
            f"status='{self.status}')>"
        )


def record_run(
    session: Session,
    *,
    outcome: RunOutcome,
    started_at: datetime,
    finished_at: datetime | None = None,
    device_path: str | None = None,
    device_model: str | None = None,
    device_class: str | None = None,
    image_path: str | None = None,
    username: str | None = None,
    error_code: str | None = None,
    error_message: str | None = None,
) -> ProvisionRecord:
    """Add a record for a finished run.

    Args:
        session: Database session (committed by the caller).
        outcome: Final status of the run.
        started_at: Run start time.
        finished_at: Run end time (defaults to now).
        device_path: Target device, if one was selected.
        device_model: Device model string.
        device_class: Heuristic device class value.
        image_path: Image written, if resolved.
        username: Account provisioned.
        error_code: Error code of the terminal failure.
        error_message: Message of the terminal failure.

    Returns:
        The new ProvisionRecord.
    """
    record = ProvisionRecord(
        device_path=device_path,
        device_model=device_model,
        device_class=device_class,
        image_path=image_path,
        username=username,
        status=outcome.value,
        error_code=error_code,
        error_message=error_message,
        started_at=started_at,
        finished_at=finished_at or datetime.now(),
    )
    session.add(record)
    session.flush()
    logger.debug("Recorded run id=%d status=%s", record.id, record.status)
    return record


def list_runs(session: Session, *, limit: int = 20) -> list[ProvisionRecord]:
    """Return the most recent runs, newest first."""
    stmt = (
        select(ProvisionRecord)
        .order_by(ProvisionRecord.started_at.desc(), ProvisionRecord.id.desc())
        .limit(limit)
    )
    return list(session.execute(stmt).scalars().all())


def open_history(db_url: str) -> sessionmaker[Session] | None:
    """Prepare the history database.

    Args:
        db_url: Database URL.

    Returns:
        A session factory, or None if the database is unusable. Provisioning
        does not depend on the history, so failures are only logged.
    """
    try:
        engine = get_engine(db_url)
        create_all_tables(engine)
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Run history disabled, database %s unusable: %s", db_url, e)
        return None
    return get_session_factory(engine)


__all__ = ["ProvisionRecord", "list_runs", "open_history", "record_run"]
