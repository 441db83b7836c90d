"""initial chart analyst schema

Revision ID: a7c1e9d2f3b4
Revises:
Create Date: 2026-10-19 09:12:41.318207

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'a7c1e9d2f3b4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('profiles',
    sa.Column('id', sa.String(length=64), nullable=False, comment='用户 ID'),
    sa.Column('analysis_credits', sa.Integer(), server_default='0', nullable=False, comment='剩余分析额度'),
    sa.Column('subscription_plan', sa.String(length=64), nullable=True, comment='订阅计划名称'),
    sa.Column('subscription_status', sa.String(length=16), nullable=True, comment='订阅状态'),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.CheckConstraint('analysis_credits >= 0', name='ck_profiles_credits_non_negative'),
    comment='用户额度与订阅'
    )
    op.create_table('processed_webhook_events',
    sa.Column('event_id', sa.String(length=128), nullable=False, comment='支付渠道事件 ID'),
    sa.Column('provider', sa.String(length=16), nullable=False, comment='dlocal / paypal'),
    sa.Column('user_id', sa.String(length=64), nullable=False),
    sa.Column('plan_id', sa.String(length=64), nullable=False),
    sa.Column('credits_granted', sa.Integer(), nullable=False),
    sa.Column('processed_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('event_id'),
    comment='已处理的计费回调'
    )
    op.create_table('analysis_requests',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(length=64), nullable=False),
    sa.Column('image_path', sa.String(length=512), nullable=False, comment='对象存储路径'),
    sa.Column('notes', sa.Text(), nullable=True, comment='用户备注'),
    sa.Column('status', sa.String(length=16), nullable=False, comment='pending/analyzing/enriching/generating/complete/failed'),
    sa.Column('analysis_result', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='图表识别结果'),
    sa.Column('market_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='行情增强数据'),
    sa.Column('final_recommendation', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='最终建议'),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('failed_stage', sa.String(length=32), nullable=True),
    sa.Column('lease_token', sa.String(length=36), nullable=True, comment='阶段执行占用标记'),
    sa.Column('credit_charged', sa.Boolean(), server_default=sa.false(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    comment='图表分析请求'
    )
    op.create_index('ix_analysis_requests_user_created', 'analysis_requests', ['user_id', 'created_at'], unique=False)
    op.create_index('ix_analysis_requests_status_updated', 'analysis_requests', ['status', 'updated_at'], unique=False)
    op.create_table('trading_signals',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('asset', sa.String(length=16), nullable=False),
    sa.Column('direction', sa.String(length=4), nullable=False, comment='BUY / SELL'),
    sa.Column('entry_price', sa.Numeric(precision=20, scale=6), nullable=False),
    sa.Column('stop_loss', sa.Numeric(precision=20, scale=6), nullable=False),
    sa.Column('take_profit', sa.Numeric(precision=20, scale=6), nullable=False),
    sa.Column('justification', sa.Text(), nullable=False),
    sa.Column('technical_pattern', sa.String(length=128), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    comment='AI 确认的交易信号'
    )
    op.create_index('ix_trading_signals_created_at', 'trading_signals', ['created_at'], unique=False)
    op.create_index('ix_trading_signals_asset', 'trading_signals', ['asset'], unique=False)
    op.create_table('economic_events',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('event_date', sa.DateTime(), nullable=False, comment='公布时间（UTC）'),
    sa.Column('event_name', sa.String(length=256), nullable=False),
    sa.Column('country', sa.String(length=8), nullable=True),
    sa.Column('currency', sa.String(length=8), nullable=True),
    sa.Column('impact', sa.String(length=8), nullable=True, comment='High / Medium / Low'),
    sa.Column('actual', sa.String(length=32), nullable=True),
    sa.Column('estimate', sa.String(length=32), nullable=True),
    sa.Column('previous', sa.String(length=32), nullable=True),
    sa.Column('event_description', sa.Text(), nullable=True, comment='AI 生成的事件说明，写入后不覆盖'),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('event_date', 'event_name', name='uq_economic_event'),
    comment='经济日历'
    )
    op.create_index(op.f('ix_economic_events_event_date'), 'economic_events', ['event_date'], unique=False)
    op.create_index(op.f('ix_economic_events_currency'), 'economic_events', ['currency'], unique=False)
    op.create_table('event_analysis_cache',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('event_name', sa.String(length=256), nullable=False),
    sa.Column('currency', sa.String(length=8), nullable=False),
    sa.Column('event_date', sa.Date(), nullable=False),
    sa.Column('analysis', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column('requested_by', sa.String(length=64), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('event_name', 'currency', 'event_date', name='uq_event_analysis'),
    comment='经济事件 AI 分析缓存'
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('event_analysis_cache')
    op.drop_index(op.f('ix_economic_events_currency'), table_name='economic_events')
    op.drop_index(op.f('ix_economic_events_event_date'), table_name='economic_events')
    op.drop_table('economic_events')
    op.drop_index('ix_trading_signals_asset', table_name='trading_signals')
    op.drop_index('ix_trading_signals_created_at', table_name='trading_signals')
    op.drop_table('trading_signals')
    op.drop_index('ix_analysis_requests_status_updated', table_name='analysis_requests')
    op.drop_index('ix_analysis_requests_user_created', table_name='analysis_requests')
    op.drop_table('analysis_requests')
    op.drop_table('processed_webhook_events')
    op.drop_table('profiles')
