"""Initial schema: users, CLI token whitelist, login rate limiting

Revision ID: 001
Revises:
Create Date: 2024-01-01

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('totp_secret', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # Whitelisted CLI token identifiers; a missing row means revoked
    op.create_table(
        'jwt_jti',
        sa.Column('jti', sa.String(36), nullable=False),
        sa.Column('user_id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('jti'),
    )
    op.create_index('ix_jwt_jti_user_id', 'jwt_jti', ['user_id'])

    op.create_table(
        'failed_login_attempts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ip', sa.String(45), nullable=False),
        sa.Column('username', sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_failed_login_attempts_timestamp', 'failed_login_attempts', ['timestamp'])
    op.create_index('ix_failed_login_attempts_username', 'failed_login_attempts', ['username'])
    op.create_index('ix_failed_login_attempts_ip', 'failed_login_attempts', ['ip'])

    op.create_table(
        'login_blocks',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('username', sa.String(255), nullable=True),
        sa.Column('ip', sa.String(45), nullable=True),
        sa.Column('blocked_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            '(username IS NULL) <> (ip IS NULL)',
            name='ck_login_blocks_single_scope',
        ),
    )
    op.create_index('ix_login_blocks_expires_at', 'login_blocks', ['expires_at'])


def downgrade() -> None:
    op.drop_table('login_blocks')
    op.drop_table('failed_login_attempts')
    op.drop_table('jwt_jti')
    op.drop_table('users')
