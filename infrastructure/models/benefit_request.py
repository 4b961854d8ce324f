"""Benefit request and document reference table definitions."""
from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    text,
)
from sqlalchemy.orm import relationship

from .base import Base, utcnow

class BenefitRequestModel(Base):
    """ORM mapping for benefit_requests table."""

    __tablename__ = "benefit_requests"
    __table_args__ = (
        Index("ix_benefit_requests_user_status", "user_id", "status"),
        {"comment": "福利申请表"},
    )

    id = Column(Integer, primary_key=True, autoincrement=True, comment="主键ID")
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        comment="申请人ID",
    )
    benefit_id = Column(Integer, nullable=True, comment="福利ID")
    status = Column(
        String(20),
        nullable=False,
        default="pending",
        server_default=text("'pending'"),
        comment="状态：pending/approved/rejected/needs_revision",
    )
    version = Column(
        Integer,
        nullable=False,
        default=1,
        server_default=text("1"),
        comment="乐观锁版本号",
    )
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="创建时间",
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="更新时间",
    )

    documents = relationship(
        "RequestDocumentModel",
        order_by="RequestDocumentModel.id",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<BenefitRequestModel(id={self.id}, status='{self.status}', version={self.version})>"

class RequestDocumentModel(Base):
    """ORM mapping for request_documents table (document references)."""

    __tablename__ = "request_documents"
    __table_args__ = (
        Index("ix_request_documents_request_id", "request_id"),
        {"comment": "申请附件引用表"},
    )

    id = Column(Integer, primary_key=True, autoincrement=True, comment="主键ID（同时决定列表顺序）")
    request_id = Column(
        Integer,
        ForeignKey("benefit_requests.id", ondelete="CASCADE"),
        nullable=False,
        comment="所属申请ID",
    )
    # 一个对象只属于一个申请
    object_id = Column(String(32), nullable=False, unique=True, comment="存储对象ID")
    filename = Column(String(255), nullable=False, comment="存储文件名")
    original_name = Column(String(255), nullable=False, comment="原始文件名")
    content_type = Column(String(100), nullable=False, comment="MIME类型")
    size = Column(BigInteger, nullable=False, comment="文件大小（字节）")
    upload_date = Column(DateTime(timezone=True), nullable=False, comment="上传时间")
    extra_metadata = Column("metadata", JSON, nullable=True, default=dict, comment="扩展元数据")
