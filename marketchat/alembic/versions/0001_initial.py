"""initial messaging schema

Revision ID: 0001
Revises: 
Create Date: 2025-11-08 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

revision = '0001'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    # users and apartments mirror the columns messaging reads from the accounts and listings services
    op.create_table('users',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(150), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('avatar_url', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now())
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_table('apartments',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('lister_id', sa.Uuid, sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('unit_name', sa.String(255), nullable=False),
        sa.Column('unit_number', sa.String(50), nullable=True),
        sa.Column('price_egp', sa.Integer, nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now())
    )
    op.create_index('ix_apartments_lister_id', 'apartments', ['lister_id'])
    op.create_table('conversations',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('apartment_id', sa.Uuid, sa.ForeignKey('apartments.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('participant_a_id', sa.Uuid, sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('participant_b_id', sa.Uuid, sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('user_low_id', sa.Uuid, nullable=False),
        sa.Column('user_high_id', sa.Uuid, nullable=False),
        sa.Column('last_message_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('apartment_id', 'user_low_id', 'user_high_id', name='uix_conversation_apartment_pair')
    )
    op.create_index('ix_conversations_user_low_id', 'conversations', ['user_low_id'])
    op.create_index('ix_conversations_user_high_id', 'conversations', ['user_high_id'])
    op.create_index('ix_conversations_created_at', 'conversations', ['created_at'])
    op.create_table('messages',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('conversation_id', sa.Uuid, sa.ForeignKey('conversations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_id', sa.Uuid, sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('message_type', sa.String(20), nullable=False, server_default='TEXT'),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('is_read = (read_at IS NOT NULL)', name='ck_messages_read_state')
    )
    op.create_index('ix_messages_sender_id', 'messages', ['sender_id'])
    op.create_index('ix_messages_conversation_created', 'messages', ['conversation_id', 'created_at'])
    op.create_index('ix_messages_conversation_unread', 'messages', ['conversation_id', 'is_read'])

def downgrade():
    op.drop_table('messages')
    op.drop_table('conversations')
    op.drop_table('apartments')
    op.drop_table('users')
