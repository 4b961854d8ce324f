"""document_storage_tables

Revision ID: 3f6c2a91d4b7
Revises:
Create Date: 2025-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f6c2a91d4b7'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=100), nullable=False, comment='邮箱'),
        sa.Column('full_name', sa.String(length=100), nullable=True, comment='全名'),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='employee', comment='角色：employee/employer'),
        sa.Column('is_active', sa.Boolean(), nullable=False, comment='是否激活'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_id', 'users', ['id'], unique=False)
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'benefit_requests',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False, comment='主键ID'),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='申请人ID'),
        sa.Column('benefit_id', sa.Integer(), nullable=True, comment='福利ID'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending', comment='状态：pending/approved/rejected/needs_revision'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1', comment='乐观锁版本号'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, comment='更新时间'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        comment='福利申请表',
    )
    op.create_index('ix_benefit_requests_user_status', 'benefit_requests', ['user_id', 'status'], unique=False)

    op.create_table(
        'request_documents',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False, comment='主键ID（同时决定列表顺序）'),
        sa.Column('request_id', sa.Integer(), nullable=False, comment='所属申请ID'),
        sa.Column('object_id', sa.String(length=32), nullable=False, comment='存储对象ID'),
        sa.Column('filename', sa.String(length=255), nullable=False, comment='存储文件名'),
        sa.Column('original_name', sa.String(length=255), nullable=False, comment='原始文件名'),
        sa.Column('content_type', sa.String(length=100), nullable=False, comment='MIME类型'),
        sa.Column('size', sa.BigInteger(), nullable=False, comment='文件大小（字节）'),
        sa.Column('upload_date', sa.DateTime(timezone=True), nullable=False, comment='上传时间'),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='扩展元数据'),
        sa.ForeignKeyConstraint(['request_id'], ['benefit_requests.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('object_id'),
        comment='申请附件引用表',
    )
    op.create_index('ix_request_documents_request_id', 'request_documents', ['request_id'], unique=False)

    # 分块存储表；chunk store 使用独立数据库时在该库上执行同一迁移即可
    op.create_table(
        'stored_objects',
        sa.Column('id', sa.String(length=32), nullable=False, comment='对象ID（uuid4 hex）'),
        sa.Column('filename', sa.String(length=255), nullable=False, comment='存储文件名'),
        sa.Column('content_type', sa.String(length=100), nullable=False, comment='MIME类型'),
        sa.Column('state', sa.String(length=16), nullable=False, server_default='open', comment='对象状态：open/finalized'),
        sa.Column('write_started', sa.Boolean(), nullable=False, server_default=sa.text('false'), comment='是否已打开写入（只允许一次）'),
        sa.Column('expected_length', sa.BigInteger(), nullable=False, comment='声明长度（字节）'),
        sa.Column('length', sa.BigInteger(), nullable=True, comment='finalize 后的实际长度'),
        sa.Column('chunk_size', sa.Integer(), nullable=False, comment='块大小（字节）'),
        sa.Column('request_id', sa.Integer(), nullable=True, comment='所属请求ID'),
        sa.Column('uploader_id', sa.Integer(), nullable=True, comment='上传者ID'),
        sa.Column('size_bytes', sa.BigInteger(), nullable=False, comment='源文件大小'),
        sa.Column('mime_type', sa.String(length=100), nullable=True, comment='源文件MIME类型'),
        sa.Column('original_name', sa.String(length=255), nullable=True, comment='原始文件名'),
        sa.Column('extra', sa.JSON(), nullable=True, comment='扩展元数据'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='创建时间'),
        sa.Column('finalized_at', sa.DateTime(timezone=True), nullable=True, comment='finalize 时间'),
        sa.PrimaryKeyConstraint('id'),
        comment='分块存储对象表',
    )
    op.create_index('ix_stored_objects_state_created', 'stored_objects', ['state', 'created_at'], unique=False)
    op.create_index('ix_stored_objects_request_id', 'stored_objects', ['request_id'], unique=False)

    op.create_table(
        'object_chunks',
        sa.Column('object_id', sa.String(length=32), nullable=False, comment='所属对象ID'),
        sa.Column('n', sa.Integer(), nullable=False, comment='块序号，从 0 开始'),
        sa.Column('size', sa.Integer(), nullable=False, comment='块大小（字节）'),
        sa.Column('data', sa.LargeBinary(), nullable=False, comment='块数据'),
        sa.ForeignKeyConstraint(['object_id'], ['stored_objects.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('object_id', 'n'),
    )


def downgrade() -> None:
    op.drop_table('object_chunks')
    op.drop_index('ix_stored_objects_request_id', table_name='stored_objects')
    op.drop_index('ix_stored_objects_state_created', table_name='stored_objects')
    op.drop_table('stored_objects')
    op.drop_index('ix_request_documents_request_id', table_name='request_documents')
    op.drop_table('request_documents')
    op.drop_index('ix_benefit_requests_user_status', table_name='benefit_requests')
    op.drop_table('benefit_requests')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_index('ix_users_id', table_name='users')
    op.drop_table('users')
