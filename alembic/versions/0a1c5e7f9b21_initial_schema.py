"""Initial schema: companies, members, ledger, rules, badges, rewards

Revision ID: 0a1c5e7f9b21
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0a1c5e7f9b21"
down_revision = None
branch_labels = None
depends_on = None


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True
    )


def upgrade() -> None:
    op.create_table(
        "companies",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("owner_id", sa.String(64), nullable=True),
        sa.Column("settings", postgresql.JSONB(), nullable=True),
        _created_at(),
    )

    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "company_id", sa.String(64),
            sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("external_user_id", sa.String(64), nullable=False),
        sa.Column("membership_id", sa.String(64), nullable=True),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("total_xp", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("current_level_xp", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint(
            "external_user_id", "company_id", name="uq_members_external_company"
        ),
    )
    op.create_index("ix_members_company_xp", "members", ["company_id", "total_xp"])
    op.create_index(
        "ix_members_company_level", "members", ["company_id", "level", "total_xp"]
    )

    op.create_table(
        "xp_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "member_id", sa.Integer(),
            sa.ForeignKey("members.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(200), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_xp_transactions_member_time", "xp_transactions", ["member_id", "created_at"]
    )
    op.create_index(
        "ix_xp_transactions_member_event_time",
        "xp_transactions",
        ["member_id", "event_type", "created_at"],
    )

    op.create_table(
        "xp_rules",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "company_id", sa.String(64),
            sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("xp_amount", sa.Integer(), nullable=False),
        sa.Column("cooldown_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_per_day", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("conditions", postgresql.JSONB(), nullable=True),
    )
    op.create_index("ix_xp_rules_company_event", "xp_rules", ["company_id", "event_type"])

    op.create_table(
        "badges",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "company_id", sa.String(64),
            sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column("rarity", sa.String(20), nullable=False, server_default="common"),
        sa.Column("requirement", postgresql.JSONB(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_secret", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_badges_company_active", "badges", ["company_id", "is_active"])

    op.create_table(
        "member_badges",
        sa.Column(
            "member_id", sa.Integer(),
            sa.ForeignKey("members.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column(
            "badge_id", sa.Integer(),
            sa.ForeignKey("badges.id", ondelete="CASCADE"), primary_key=True,
        ),
        _created_at("earned_at"),
    )

    op.create_table(
        "rewards",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "company_id", sa.String(64),
            sa.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("config", postgresql.JSONB(), nullable=True),
        sa.Column("required_level", sa.Integer(), nullable=True),
        sa.Column("required_xp", sa.Integer(), nullable=True),
        sa.Column("required_badges", postgresql.JSONB(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_repeatable", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cooldown_days", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "reward_claims",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column(
            "member_id", sa.Integer(),
            sa.ForeignKey("members.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "reward_id", sa.Integer(),
            sa.ForeignKey("rewards.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        _created_at("claimed_at"),
    )
    op.create_index(
        "ix_reward_claims_member_reward",
        "reward_claims",
        ["member_id", "reward_id", "claimed_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_reward_claims_member_reward", table_name="reward_claims")
    op.drop_table("reward_claims")
    op.drop_table("rewards")
    op.drop_table("member_badges")
    op.drop_index("ix_badges_company_active", table_name="badges")
    op.drop_table("badges")
    op.drop_index("ix_xp_rules_company_event", table_name="xp_rules")
    op.drop_table("xp_rules")
    op.drop_index("ix_xp_transactions_member_event_time", table_name="xp_transactions")
    op.drop_index("ix_xp_transactions_member_time", table_name="xp_transactions")
    op.drop_table("xp_transactions")
    op.drop_index("ix_members_company_level", table_name="members")
    op.drop_index("ix_members_company_xp", table_name="members")
    op.drop_table("members")
    op.drop_table("companies")
