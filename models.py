from sqlalchemy import BigInteger, Column, DateTime, Integer, String, Text, Uuid, Index, UniqueConstraint
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import uuid_utils
import uuid


def generate_uuid7():
    """Generate UUIDv7 and convert to standard Python UUID"""
    uuid7_obj = uuid_utils.uuid7()
    return uuid.UUID(str(uuid7_obj))

Base = declarative_base()


class Site(Base):
    """Tracked site reference data, owned by the tracking system."""

    __tablename__ = 'sites'

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(200), nullable=False, default="")
    timezone = Column(String(64), nullable=False, default="UTC", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    last_visit_at = Column(DateTime(timezone=True), index=True)

    def __repr__(self):
        return f"<Site(id={self.id}, name='{self.name}', timezone='{self.timezone}')>"


class ArchivingOption(Base):
    __tablename__ = 'archiving_options'

    name = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<ArchivingOption(name='{self.name}', value='{self.value[:30]}')>"


class ArchivingCounter(Base):
    __tablename__ = 'archiving_counters'

    name = Column(String(255), primary_key=True)
    value = Column(BigInteger, nullable=False, default=0)

    def __repr__(self):
        return f"<ArchivingCounter(name='{self.name}', value={self.value})>"


class ArchivingJob(Base):
    __tablename__ = 'archiving_jobs'

    # UUIDv7 keys sort by creation time, which keeps the queue FIFO
    id = Column(Uuid, primary_key=True, default=generate_uuid7)
    namespace = Column(String(100), nullable=False)
    url = Column(Text, nullable=False)
    enqueued_at = Column(DateTime, default=func.now(), nullable=False)
    claimed_at = Column(DateTime)
    claimed_by = Column(String(200))

    __table_args__ = (
        Index('ix_archiving_jobs_namespace_claimed', 'namespace', 'claimed_at'),
    )

    def __repr__(self):
        return f"<ArchivingJob(id={self.id}, namespace='{self.namespace}', url='{self.url[:60]}...')>"


class ResolvedJob(Base):
    __tablename__ = 'archiving_resolved_jobs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    namespace = Column(String(100), nullable=False)
    job_key = Column(String(128), nullable=False)
    resolved_at = Column(DateTime, default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('namespace', 'job_key', name='uq_archiving_resolved_jobs_namespace_key'),
    )

    def __repr__(self):
        return f"<ResolvedJob(namespace='{self.namespace}', job_key='{self.job_key[:60]}')>"
