"""Create users, user_settings, notifications and push_subscriptions tables.

Revision ID: 001_initial_notifications
Revises:
Create Date: 2026-10-18

- users / user_settings: notification recipients and their delivery preferences
- notifications: durable notification history (rows are never deleted)
- push_subscriptions: Web Push endpoints, unique per (user, endpoint)
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '001_initial_notifications'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the notification subsystem tables."""
    bind = op.get_bind()
    dialect = bind.dialect.name

    if dialect == 'postgresql':
        uuid_type = postgresql.UUID(as_uuid=True)
        json_type = postgresql.JSONB()
        now = sa.text('NOW()')
    else:
        # SQLite: LargeBinary for UUID, JSON for data
        uuid_type = sa.LargeBinary(16)
        json_type = sa.JSON()
        now = sa.text("datetime('now')")

    # =========================================================================
    # users
    # =========================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('uuid', uuid_type, nullable=False, unique=True, index=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column(
            'role',
            sa.Enum('COACH', 'CLIENT', name='user_role', create_constraint=True),
            nullable=False,
        ),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=now),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'user_settings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'user_id', sa.Integer(),
            sa.ForeignKey('users.id', name='fk_user_settings_user_id', ondelete='CASCADE'),
            nullable=False, unique=True,
        ),
        sa.Column('push_notifications', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('message_notifications', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('email_notifications', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=now),
    )

    # =========================================================================
    # notifications
    # =========================================================================
    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('uuid', uuid_type, nullable=False, unique=True, index=True),
        sa.Column(
            'user_id', sa.Integer(),
            sa.ForeignKey('users.id', name='fk_notifications_user_id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('type', sa.String(40), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.String(1000), nullable=False),
        sa.Column('data', json_type, nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('read_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=now),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'])
    op.create_index('ix_notifications_user_unread', 'notifications', ['user_id', 'is_read'])

    # =========================================================================
    # push_subscriptions
    # =========================================================================
    op.create_table(
        'push_subscriptions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('uuid', uuid_type, nullable=False, unique=True, index=True),
        sa.Column(
            'user_id', sa.Integer(),
            sa.ForeignKey('users.id', name='fk_push_subscriptions_user_id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('endpoint', sa.String(1024), nullable=False),
        sa.Column('p256dh_key', sa.String(255), nullable=False),
        sa.Column('auth_key', sa.String(255), nullable=False),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('last_used_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=now),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=now),
        sa.UniqueConstraint('user_id', 'endpoint', name='uq_push_subscriptions_user_endpoint'),
    )
    op.create_index('ix_push_subscriptions_user_id', 'push_subscriptions', ['user_id'])


def downgrade() -> None:
    """Drop the notification subsystem tables."""
    op.drop_index('ix_push_subscriptions_user_id', table_name='push_subscriptions')
    op.drop_table('push_subscriptions')

    op.drop_index('ix_notifications_user_unread', table_name='notifications')
    op.drop_index('ix_notifications_created_at', table_name='notifications')
    op.drop_index('ix_notifications_user_id', table_name='notifications')
    op.drop_table('notifications')

    op.drop_table('user_settings')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')

    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        sa.Enum(name='user_role').drop(bind, checkfirst=True)
