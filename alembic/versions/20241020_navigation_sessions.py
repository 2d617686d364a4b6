"""Navigation session history"""

import sqlalchemy as sa

from alembic import op

revision = '20241020_navigation_sessions'
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        'navigation_sessions',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('user_id', sa.String(length=64)),
        sa.Column('group_session_id', sa.String(length=64)),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('route', sa.JSON(), nullable=False),
        sa.Column('current_step_index', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('distance_traveled_m', sa.Float(), nullable=False, server_default='0'),
        sa.Column('elapsed_s', sa.Float(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.DateTime(timezone=True)),
        sa.Column('ended_at', sa.DateTime(timezone=True)),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index('ix_navigation_sessions_user_id', 'navigation_sessions', ['user_id'])
    op.create_index(
        'ix_navigation_sessions_group_session_id',
        'navigation_sessions',
        ['group_session_id'],
    )

def downgrade() -> None:
    op.drop_index('ix_navigation_sessions_group_session_id', 'navigation_sessions')
    op.drop_index('ix_navigation_sessions_user_id', 'navigation_sessions')
    op.drop_table('navigation_sessions')
