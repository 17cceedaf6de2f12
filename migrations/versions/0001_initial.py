"""initial schema: students, operators/roles, certificate types, certificates,
approval history and ledger transactions

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 12:00:00
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "0001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels = None
depends_on = None

CERT_STATUS = sa.Enum("pending", "approved", "rejected", "issued", "revoked", name="certificatestatus")
DECISION = sa.Enum("pending", "approved", "rejected", name="approvaldecision")
TX_KIND = sa.Enum("issue", "revoke", name="ledgertxkind")
TX_STATUS = sa.Enum("pending", "confirmed", "failed", name="ledgertxstatus")


def _upsert_role(conn, name: str) -> None:
    bp = sa.bindparam("name", type_=sa.String(32))
    if conn.dialect.name == "postgresql":
        conn.execute(
            sa.text("INSERT INTO roles (name) VALUES (:name) ON CONFLICT (name) DO NOTHING").bindparams(bp),
            {"name": name},
        )
    else:
        conn.execute(
            sa.text(
                "INSERT INTO roles (name) "
                "SELECT :name WHERE NOT EXISTS (SELECT 1 FROM roles WHERE name=:name)"
            ).bindparams(bp),
            {"name": name},
        )


def upgrade() -> None:
    op.create_table(
        "students",
        sa.Column("id", sa.Integer(), autoincrement=True),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("email", sa.String(160), nullable=False),
        sa.Column("wallet_address", sa.String(42), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_students"),
        sa.UniqueConstraint("email", name="uq_students_email"),
    )

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), autoincrement=True),
        sa.Column("name", sa.String(32), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_roles"),
        sa.UniqueConstraint("name", name="uq_roles_name"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(160), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], name="fk_user_roles_user_id_users"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], name="fk_user_roles_role_id_roles"),
        sa.PrimaryKeyConstraint("user_id", "role_id", name="pk_user_roles"),
        sa.UniqueConstraint("user_id", "role_id", name="uq_user_role"),
    )

    op.create_table(
        "certificate_types",
        sa.Column("id", sa.Integer(), autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("achievement_schema", sa.JSON(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_certificate_types"),
        sa.UniqueConstraint("name", name="uq_certificate_types_name"),
    )

    op.create_table(
        "certificates",
        sa.Column("id", sa.Integer(), autoincrement=True),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("certificate_type_id", sa.Integer(), nullable=False),
        sa.Column("achievement_data", sa.JSON(), nullable=False),
        sa.Column("status", CERT_STATUS, nullable=False),
        sa.Column("content_id", sa.String(128), nullable=True),
        sa.Column("proof_hash", sa.String(66), nullable=True),
        sa.Column("tx_ref", sa.String(80), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=False),
        sa.Column("approved_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_certificates"),
        sa.ForeignKeyConstraint(["student_id"], ["students.id"], name="fk_certificates_student_id_students"),
        sa.ForeignKeyConstraint(["certificate_type_id"], ["certificate_types.id"],
                                name="fk_certificates_certificate_type_id_certificate_types"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], name="fk_certificates_created_by_users"),
        sa.ForeignKeyConstraint(["approved_by"], ["users.id"], name="fk_certificates_approved_by_users"),
        sa.UniqueConstraint("proof_hash", name="uq_certificates_proof_hash"),
    )
    op.create_index("ix_certificates_student_id", "certificates", ["student_id"])
    op.create_index("ix_certificates_status", "certificates", ["status"])

    op.create_table(
        "certificate_approvals",
        sa.Column("id", sa.Integer(), autoincrement=True),
        sa.Column("certificate_id", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("decision", DECISION, nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_certificate_approvals"),
        sa.ForeignKeyConstraint(["certificate_id"], ["certificates.id"],
                                name="fk_certificate_approvals_certificate_id_certificates"),
        sa.ForeignKeyConstraint(["actor_id"], ["users.id"], name="fk_certificate_approvals_actor_id_users"),
    )
    op.create_index("ix_certificate_approvals_certificate_id", "certificate_approvals", ["certificate_id"])

    op.create_table(
        "ledger_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True),
        sa.Column("certificate_id", sa.Integer(), nullable=False),
        sa.Column("tx_id", sa.String(66), nullable=False),
        sa.Column("kind", TX_KIND, nullable=False),
        sa.Column("gas_used", sa.BigInteger(), nullable=True),
        sa.Column("gas_price", sa.BigInteger(), nullable=True),
        sa.Column("status", TX_STATUS, nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=True),
        sa.Column("block_hash", sa.String(66), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_ledger_transactions"),
        sa.ForeignKeyConstraint(["certificate_id"], ["certificates.id"],
                                name="fk_ledger_transactions_certificate_id_certificates"),
    )
    op.create_index("ix_ledger_transactions_certificate_id", "ledger_transactions", ["certificate_id"])
    op.create_index("ix_ledger_transactions_tx_id", "ledger_transactions", ["tx_id"], unique=True)
    op.create_index("ix_ledger_transactions_status", "ledger_transactions", ["status"])

    conn = op.get_bind()
    for r in ["admin", "registrar", "approver"]:
        _upsert_role(conn, r)


def downgrade() -> None:
    op.drop_table("ledger_transactions")
    op.drop_table("certificate_approvals")
    op.drop_table("certificates")
    op.drop_table("certificate_types")
    op.drop_table("user_roles")
    op.drop_table("users")
    op.drop_table("roles")
    op.drop_table("students")
    bind = op.get_bind()
    for enum in (TX_STATUS, TX_KIND, DECISION, CERT_STATUS):
        enum.drop(bind, checkfirst=True)
