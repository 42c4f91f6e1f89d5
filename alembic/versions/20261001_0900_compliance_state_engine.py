"""Compliance state engine tables

Revision ID: 20261001_0900_compliance_state_engine
Revises:
Create Date: 2026-10-01 09:00:00.000000

This migration creates the tables of the compliance state engine:
- business_entities: entity profile read by the engine
- compliance_rules: effective-dated, versioned rule catalog
- compliance_filings / public_holidays: filing signals and holiday calendar
- compliance_states: current state per entity (optimistic version counter)
- compliance_state_history: snapshots on material change
- compliance_alerts: engine alerts
- state_calculation_logs: one row per calculation attempt
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '20261001_0900_compliance_state_engine'
down_revision = None
branch_labels = None
depends_on = None


overall_state = postgresql.ENUM('GREEN', 'AMBER', 'RED', name='overallstate', create_type=False)
compliance_domain = postgresql.ENUM(
    'CORPORATE', 'TAX_GST', 'TAX_INCOME', 'LABOUR', 'FEMA', 'LICENSES', 'STATUTORY',
    name='compliancedomain',
    create_type=False,
)
rule_frequency = postgresql.ENUM(
    'ONE_TIME', 'MONTHLY', 'QUARTERLY', 'HALF_YEARLY', 'ANNUAL', 'EVENT_BASED',
    name='rulefrequency',
    create_type=False,
)
filing_status = postgresql.ENUM('COMPLETED', 'WAIVED', 'EXTENDED', name='filingstatus', create_type=False)
alert_type = postgresql.ENUM('UPCOMING', 'OVERDUE', 'PENALTY_RISK', 'STATE_CHANGE', name='alerttype', create_type=False)
alert_severity = postgresql.ENUM('INFO', 'WARNING', 'CRITICAL', name='alertseverity', create_type=False)
calculation_trigger = postgresql.ENUM(
    'SCHEDULED', 'PROFILE_CHANGE', 'RULE_PUBLISH', 'FILING_RECORDED', 'MANUAL',
    name='calculationtrigger',
    create_type=False,
)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Create compliance state engine tables."""

    connection = op.get_bind()
    for enum in (
        overall_state, compliance_domain, rule_frequency, filing_status,
        alert_type, alert_severity, calculation_trigger,
    ):
        enum.create(connection, checkfirst=True)

    op.create_table(
        'business_entities',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('gstin', sa.String(15), nullable=True),
        sa.Column('state', sa.String(100), nullable=True),
        sa.Column('annual_turnover', sa.Numeric(18, 2), nullable=True),
        sa.Column('employee_count', sa.Integer(), nullable=True),
        sa.Column('is_gst_registered', sa.Boolean(), nullable=True),
        sa.Column('is_pf_registered', sa.Boolean(), nullable=True),
        sa.Column('is_esi_registered', sa.Boolean(), nullable=True),
        sa.Column('incorporation_date', sa.Date(), nullable=True),
        sa.Column('event_dates', postgresql.JSONB(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'compliance_rules',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('rule_code', sa.String(100), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column(
            'replaces_rule_id', postgresql.UUID(as_uuid=True),
            sa.ForeignKey('compliance_rules.id', ondelete='RESTRICT'), nullable=True,
        ),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('domain', compliance_domain, nullable=False),
        sa.Column('applicable_entity_types', postgresql.JSONB(), nullable=True),
        sa.Column('turnover_min', sa.Numeric(18, 2), nullable=True),
        sa.Column('turnover_max', sa.Numeric(18, 2), nullable=True),
        sa.Column('employee_count_min', sa.Integer(), nullable=True),
        sa.Column('requires_gst', sa.Boolean(), nullable=True),
        sa.Column('requires_pf', sa.Boolean(), nullable=True),
        sa.Column('requires_esi', sa.Boolean(), nullable=True),
        sa.Column('state_specific', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('applicable_states', postgresql.JSONB(), nullable=True),
        sa.Column('frequency', rule_frequency, nullable=False),
        sa.Column('due_date_formula', postgresql.JSONB(), nullable=False),
        sa.Column('grace_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('penalty_spec', postgresql.JSONB(), nullable=True),
        sa.Column('criticality_score', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('amber_threshold_days', sa.Integer(), nullable=False, server_default='7'),
        sa.Column('red_threshold_days', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('depends_on_rules', postgresql.JSONB(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('effective_from', sa.Date(), nullable=False),
        sa.Column('effective_until', sa.Date(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('rule_code', 'version', name='uq_compliance_rules_code_version'),
        sa.CheckConstraint(
            'criticality_score >= 1 AND criticality_score <= 10',
            name='ck_compliance_rules_criticality_range',
        ),
    )
    op.create_index('ix_compliance_rules_rule_code', 'compliance_rules', ['rule_code'])
    op.create_index('ix_compliance_rules_domain', 'compliance_rules', ['domain'])

    op.create_table(
        'compliance_filings',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'entity_id', postgresql.UUID(as_uuid=True),
            sa.ForeignKey('business_entities.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('rule_code', sa.String(100), nullable=False),
        sa.Column('period_key', sa.String(50), nullable=True),
        sa.Column('status', filing_status, nullable=False),
        sa.Column('filed_on', sa.Date(), nullable=True),
        sa.Column('extended_due_date', sa.Date(), nullable=True),
        sa.Column('reference', sa.String(100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('recorded_by', sa.String(255), nullable=True),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_compliance_filings_entity_rule', 'compliance_filings', ['entity_id', 'rule_code'])

    op.create_table(
        'public_holidays',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('jurisdiction', sa.String(100), nullable=False, server_default='NATIONAL'),
        sa.Column('holiday_date', sa.Date(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('jurisdiction', 'holiday_date', name='uq_public_holidays_jurisdiction_date'),
    )

    op.create_table(
        'compliance_states',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'entity_id', postgresql.UUID(as_uuid=True),
            sa.ForeignKey('business_entities.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('overall_state', overall_state, nullable=False),
        sa.Column('overall_risk_score', sa.Numeric(5, 2), nullable=False),
        sa.Column('total_penalty_exposure', sa.Numeric(15, 2), nullable=False, server_default='0'),
        sa.Column('total_overdue_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_upcoming_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_critical_deadline', sa.Date(), nullable=True),
        sa.Column('next_critical_action', sa.Text(), nullable=True),
        sa.Column('days_until_next_deadline', sa.Integer(), nullable=True),
        sa.Column('domain_states', postgresql.JSONB(), nullable=False),
        sa.Column('requirement_states', postgresql.JSONB(), nullable=False),
        sa.Column('as_of_date', sa.Date(), nullable=False),
        sa.Column('calculated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('calculation_version', sa.String(20), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('data_completeness_score', sa.Numeric(5, 2), nullable=False, server_default='100'),
        sa.Column('is_degraded', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint('entity_id', name='uq_compliance_states_entity_id'),
    )

    op.create_table(
        'compliance_state_history',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'entity_id', postgresql.UUID(as_uuid=True),
            sa.ForeignKey('business_entities.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('state', overall_state, nullable=False),
        sa.Column('previous_state', overall_state, nullable=True),
        sa.Column('risk_score', sa.Numeric(5, 2), nullable=False),
        sa.Column('previous_risk_score', sa.Numeric(5, 2), nullable=True),
        sa.Column('penalty_exposure', sa.Numeric(15, 2), nullable=False),
        sa.Column('overdue_items', sa.Integer(), nullable=False),
        sa.Column('as_of_date', sa.Date(), nullable=False),
        sa.Column('snapshot_data', postgresql.JSONB(), nullable=False),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        'ix_compliance_state_history_entity_recorded',
        'compliance_state_history', ['entity_id', 'recorded_at'],
    )

    op.create_table(
        'compliance_alerts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'entity_id', postgresql.UUID(as_uuid=True),
            sa.ForeignKey('business_entities.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('rule_code', sa.String(100), nullable=True),
        sa.Column('period_key', sa.String(50), nullable=True),
        sa.Column('alert_type', alert_type, nullable=False),
        sa.Column('severity', alert_severity, nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('action_required', sa.Text(), nullable=True),
        sa.Column('penalty_estimate', sa.Numeric(15, 2), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_acknowledged', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('acknowledged_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('acknowledged_by', sa.String(255), nullable=True),
        sa.Column('triggered_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expired_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        'ix_compliance_alerts_scope',
        'compliance_alerts', ['entity_id', 'rule_code', 'alert_type', 'is_active'],
    )

    op.create_table(
        'state_calculation_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('entity_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('trigger', calculation_trigger, nullable=False),
        sa.Column('as_of_date', sa.Date(), nullable=False),
        sa.Column('calculation_version', sa.String(20), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('calculation_time_ms', sa.Integer(), nullable=False),
        sa.Column('rules_applied', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('previous_state', overall_state, nullable=True),
        sa.Column('new_state', overall_state, nullable=True),
        sa.Column('state_changed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('history_written', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_degraded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('errors_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('warnings_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('errors', postgresql.JSONB(), nullable=False),
        sa.Column('warnings', postgresql.JSONB(), nullable=False),
        sa.Column('calculated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        'ix_state_calculation_logs_entity_calculated',
        'state_calculation_logs', ['entity_id', 'calculated_at'],
    )


def downgrade() -> None:
    """Drop compliance state engine tables."""
    op.drop_index('ix_state_calculation_logs_entity_calculated', table_name='state_calculation_logs', create_type=False)
    op.drop_table('state_calculation_logs')
    op.drop_index('ix_compliance_alerts_scope', table_name='compliance_alerts', create_type=False)
    op.drop_table('compliance_alerts')
    op.drop_index('ix_compliance_state_history_entity_recorded', table_name='compliance_state_history', create_type=False)
    op.drop_table('compliance_state_history')
    op.drop_table('compliance_states')
    op.drop_table('public_holidays')
    op.drop_index('ix_compliance_filings_entity_rule', table_name='compliance_filings', create_type=False)
    op.drop_table('compliance_filings')
    op.drop_index('ix_compliance_rules_domain', table_name='compliance_rules', create_type=False)
    op.drop_index('ix_compliance_rules_rule_code', table_name='compliance_rules', create_type=False)
    op.drop_table('compliance_rules')
    op.drop_table('business_entities')

    bind = op.get_bind()
    for enum in (
        calculation_trigger, alert_severity, alert_type, filing_status,
        rule_frequency, compliance_domain, overall_state,
    ):
        enum.drop(bind, checkfirst=True)
