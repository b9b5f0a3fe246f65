"""Initial schema for the discovery agent.

Revision ID: 0001
Revises:
Create Date: 2026-10-16

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Strategies and their outcome log
    op.create_table(
        "strategies",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("platform", sa.String(30), nullable=False),
        sa.Column("country", sa.String(5), nullable=False),
        sa.Column("query_template", sa.Text(), nullable=False),
        sa.Column("success_rate", sa.Integer(), default=50),
        sa.Column("total_uses", sa.Integer(), default=0),
        sa.Column("successful_discoveries", sa.Integer(), default=0),
        sa.Column("false_positives", sa.Integer(), default=0),
        sa.Column("tags_json", sa.Text(), default="[]"),
        sa.Column("origin", sa.String(20), default="seed"),
        sa.Column("parent_strategy_id", sa.String(36), sa.ForeignKey("strategies.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("last_used", sa.DateTime(), nullable=True),
        sa.Column("deprecated_at", sa.DateTime(), nullable=True),
        sa.Column("deprecation_reason", sa.Text(), nullable=True),
    )
    op.create_index("ix_strategies_platform", "strategies", ["platform"])
    op.create_index("ix_strategies_country", "strategies", ["country"])
    op.create_index("ix_strategies_deprecated_at", "strategies", ["deprecated_at"])

    op.create_table(
        "strategy_usage",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("strategy_id", sa.String(36), sa.ForeignKey("strategies.id"), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("was_false_positive", sa.Boolean(), default=False),
        sa.Column("run_id", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_strategy_usage_strategy_id", "strategy_usage", ["strategy_id"])
    op.create_index("ix_strategy_usage_run_id", "strategy_usage", ["run_id"])

    # Query deduplication
    op.create_table(
        "query_cache",
        sa.Column("query_hash", sa.String(32), primary_key=True),
        sa.Column("normalized_query", sa.Text(), nullable=False),
        sa.Column("original_query", sa.Text(), default=""),
        sa.Column("executed_at", sa.DateTime(), nullable=False),
        sa.Column("results_count", sa.Integer(), default=0),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_query_cache_expires_at", "query_cache", ["expires_at"])

    op.create_table(
        "query_claims",
        sa.Column("query_hash", sa.String(32), primary_key=True),
        sa.Column("run_id", sa.String(36), nullable=True),
        sa.Column("claimed_at", sa.DateTime(), nullable=False),
    )

    # Budget
    op.create_table(
        "budget_ledger",
        sa.Column("day_key", sa.String(10), primary_key=True),
        sa.Column("month_key", sa.String(7), nullable=False),
        sa.Column("search_queries_free", sa.Integer(), default=0),
        sa.Column("search_queries_paid", sa.Integer(), default=0),
        sa.Column("ai_calls", sa.Integer(), default=0),
        sa.Column("search_cost", sa.Float(), default=0.0),
        sa.Column("ai_cost", sa.Float(), default=0.0),
        sa.Column("total_cost", sa.Float(), default=0.0),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_budget_ledger_month_key", "budget_ledger", ["month_key"])

    op.create_table(
        "throttle_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("current_cost", sa.Float(), default=0.0),
        sa.Column("monthly_cost", sa.Float(), default=0.0),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_throttle_events_created_at", "throttle_events", ["created_at"])

    # Runs
    op.create_table(
        "scraper_runs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("scraper_id", sa.String(255), default=""),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), default="pending"),
        sa.Column("config_json", sa.Text(), default="{}"),
        sa.Column("cancel_requested", sa.Boolean(), default=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_scraper_runs_scraper_id", "scraper_runs", ["scraper_id"])
    op.create_index("ix_scraper_runs_kind", "scraper_runs", ["kind"])
    op.create_index("ix_scraper_runs_status", "scraper_runs", ["status"])

    op.create_table(
        "run_stats",
        sa.Column("run_id", sa.String(36), sa.ForeignKey("scraper_runs.id"), primary_key=True),
        sa.Column("key", sa.String(64), primary_key=True),
        sa.Column("value", sa.Integer(), default=0),
    )

    op.create_table(
        "run_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("run_id", sa.String(36), sa.ForeignKey("scraper_runs.id"), nullable=False),
        sa.Column("level", sa.String(10), default="info"),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_run_logs_run_id", "run_logs", ["run_id"])

    # Staged entities
    op.create_table(
        "discovered_venues",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("platform", sa.String(30), nullable=False),
        sa.Column("country", sa.String(5), nullable=False),
        sa.Column("city", sa.String(100), default=""),
        sa.Column("url", sa.String(1000), nullable=False, unique=True),
        sa.Column("venue_id", sa.String(255), default=""),
        sa.Column("address", sa.String(500), default=""),
        sa.Column("is_chain", sa.Boolean(), default=False),
        sa.Column("chain_name", sa.String(255), nullable=True),
        sa.Column("chain_confidence", sa.String(10), default="low"),
        sa.Column("products_json", sa.Text(), default="[]"),
        sa.Column("confidence_score", sa.Integer(), default=0),
        sa.Column("confidence_factors_json", sa.Text(), default="{}"),
        sa.Column("flags_json", sa.Text(), default="[]"),
        sa.Column("status", sa.String(20), default="pending"),
        sa.Column("discovered_by_strategy_id", sa.String(36), nullable=True),
        sa.Column("discovered_by_query", sa.Text(), default=""),
        sa.Column("discovery_run_id", sa.String(36), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_discovered_venues_name", "discovered_venues", ["name"])
    op.create_index("ix_discovered_venues_platform", "discovered_venues", ["platform"])
    op.create_index("ix_discovered_venues_country", "discovered_venues", ["country"])
    op.create_index("ix_discovered_venues_city", "discovered_venues", ["city"])
    op.create_index("ix_discovered_venues_venue_id", "discovered_venues", ["venue_id"])
    op.create_index("ix_discovered_venues_chain_name", "discovered_venues", ["chain_name"])
    op.create_index("ix_discovered_venues_status", "discovered_venues", ["status"])
    op.create_index(
        "ix_discovered_venues_discovered_by_strategy_id",
        "discovered_venues",
        ["discovered_by_strategy_id"],
    )
    op.create_index("ix_discovered_venues_discovery_run_id", "discovered_venues", ["discovery_run_id"])

    op.create_table(
        "discovered_dishes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("venue_id", sa.String(36), sa.ForeignKey("discovered_venues.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), default=""),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("product", sa.String(50), default=""),
        sa.Column("is_vegan", sa.Boolean(), default=False),
        sa.Column("confidence_score", sa.Integer(), default=0),
        sa.Column("flags_json", sa.Text(), default="[]"),
        sa.Column("status", sa.String(20), default="pending"),
        sa.Column("extraction_run_id", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_discovered_dishes_venue_id", "discovered_dishes", ["venue_id"])
    op.create_index("ix_discovered_dishes_product", "discovered_dishes", ["product"])
    op.create_index("ix_discovered_dishes_status", "discovered_dishes", ["status"])

    # Review log
    op.create_table(
        "feedback",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("entity_type", sa.String(10), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=False),
        sa.Column("strategy_id", sa.String(36), nullable=True),
        sa.Column("result_type", sa.String(20), nullable=False),
        sa.Column("reviewer", sa.String(255), default="unknown"),
        sa.Column("notes", sa.Text(), default=""),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_feedback_entity_id", "feedback", ["entity_id"])
    op.create_index("ix_feedback_strategy_id", "feedback", ["strategy_id"])
    op.create_index("ix_feedback_result_type", "feedback", ["result_type"])
    op.create_index("ix_feedback_created_at", "feedback", ["created_at"])


def downgrade() -> None:
    op.drop_table("feedback")
    op.drop_table("discovered_dishes")
    op.drop_table("discovered_venues")
    op.drop_table("run_logs")
    op.drop_table("run_stats")
    op.drop_table("scraper_runs")
    op.drop_table("throttle_events")
    op.drop_table("budget_ledger")
    op.drop_table("query_claims")
    op.drop_table("query_cache")
    op.drop_table("strategy_usage")
    op.drop_table("strategies")
