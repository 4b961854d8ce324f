"""Chunk store tables used by the database provider."""
from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    LargeBinary,
    String,
    text,
)

from .base import Base, utcnow

class StoredObjectModel(Base):
    """ORM mapping for stored_objects table (one row per uploaded object)."""

    __tablename__ = "stored_objects"
    __table_args__ = (
        Index("ix_stored_objects_state_created", "state", "created_at"),
        Index("ix_stored_objects_request_id", "request_id"),
        {"comment": "分块存储对象表"},
    )

    id = Column(String(32), primary_key=True, comment="对象ID（uuid4 hex）")
    filename = Column(String(255), nullable=False, comment="存储文件名")
    content_type = Column(String(100), nullable=False, comment="MIME类型")
    state = Column(
        String(16),
        nullable=False,
        default="open",
        server_default=text("'open'"),
        comment="对象状态：open/finalized",
    )
    write_started = Column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
        comment="是否已打开写入（只允许一次）",
    )
    expected_length = Column(BigInteger, nullable=False, comment="声明长度（字节）")
    length = Column(BigInteger, nullable=True, comment="finalize 后的实际长度")
    chunk_size = Column(Integer, nullable=False, comment="块大小（字节）")

    request_id = Column(Integer, nullable=True, comment="所属请求ID")
    uploader_id = Column(Integer, nullable=True, comment="上传者ID")
    size_bytes = Column(BigInteger, nullable=False, default=0, comment="源文件大小")
    mime_type = Column(String(100), nullable=True, comment="源文件MIME类型")
    original_name = Column(String(255), nullable=True, comment="原始文件名")
    extra = Column(JSON, nullable=True, default=dict, comment="扩展元数据")

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="创建时间",
    )
    finalized_at = Column(DateTime(timezone=True), nullable=True, comment="finalize 时间")

    def __repr__(self) -> str:
        return f"<StoredObjectModel(id='{self.id}', state='{self.state}', length={self.length})>"

class ObjectChunkModel(Base):
    """ORM mapping for object_chunks table."""

    __tablename__ = "object_chunks"

    object_id = Column(
        String(32),
        ForeignKey("stored_objects.id", ondelete="CASCADE"),
        primary_key=True,
        comment="所属对象ID",
    )
    n = Column(Integer, primary_key=True, comment="块序号，从 0 开始")
    size = Column(Integer, nullable=False, comment="块大小（字节）")
    data = Column(LargeBinary, nullable=False, comment="块数据")
