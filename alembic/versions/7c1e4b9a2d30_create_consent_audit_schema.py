"""create consent, audit and verification schema

Revision ID: 7c1e4b9a2d30
Revises:
Create Date: 2026-10-19 10:12:44.318207

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "7c1e4b9a2d30"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Identités (créées par l'inscription, jamais supprimées)
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), nullable=False, comment="Health ID opaque et stable"),
        sa.Column("role", sa.String(length=20), nullable=False, comment="patient | doctor | admin"),
        sa.Column(
            "status",
            sa.String(length=32),
            nullable=False,
            comment="active | suspended | pending_verification | pending_approval",
        ),
        sa.Column(
            "is_verified",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
            comment="Identité vérifiée par un administrateur",
        ),
        sa.Column("email", sa.String(length=255), nullable=True, comment="Adresse email vérifiée (unique)"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
            comment="Date de création du compte",
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
            comment="Date de derniere modification",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index(op.f("ix_users_role"), "users", ["role"], unique=False)
    op.create_index(op.f("ix_users_status"), "users", ["status"], unique=False)

    op.create_table(
        "health_profiles",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False, comment="Identité propriétaire"),
        sa.Column("display_name", sa.String(length=255), nullable=True, comment="Nom affiché"),
        sa.Column(
            "verified_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="Date de vérification professionnelle (médecins)",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_health_profiles_user_id"), "health_profiles", ["user_id"], unique=True)

    # Consentements
    op.create_table(
        "consents",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("patient_id", sa.String(length=64), nullable=False, comment="Patient qui accorde le consentement"),
        sa.Column("provider_id", sa.String(length=64), nullable=False, comment="Professionnel bénéficiaire"),
        sa.Column(
            "requested_by",
            sa.String(length=64),
            nullable=False,
            comment="Identité ayant créé la demande (patient ou professionnel)",
        ),
        sa.Column("status", sa.String(length=16), nullable=False, comment="REQUESTED | ACTIVE | REVOKED | EXPIRED"),
        sa.Column("purpose", sa.Text(), nullable=False, comment="Finalité de l'accès"),
        sa.Column(
            "scope",
            sa.String(length=32),
            nullable=False,
            comment="Périmètre temporel ou typé des données partagées",
        ),
        sa.Column("specific_types", sa.JSON(), nullable=True, comment="Types de ressources si scope=SPECIFIC_TYPES"),
        sa.Column("permissions", sa.JSON(), nullable=False, comment="Actions autorisées (read, write...)"),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True, comment="Fin de validité (expiration passive)"),
        sa.Column(
            "request_expires_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="Échéance de la demande REQUESTED (sans réponse, elle ne bloque plus)",
        ),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revocation_reason", sa.Text(), nullable=True),
        sa.Column("access_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_accessed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["patient_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["provider_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_consents_patient_id"), "consents", ["patient_id"], unique=False)
    op.create_index(op.f("ix_consents_provider_id"), "consents", ["provider_id"], unique=False)
    op.create_index(op.f("ix_consents_status"), "consents", ["status"], unique=False)
    op.create_index(op.f("ix_consents_expires_at"), "consents", ["expires_at"], unique=False)

    # Journal d'audit
    op.create_table(
        "audit_entries",
        sa.Column(
            "sequence",
            sa.BigInteger(),
            autoincrement=True,
            nullable=False,
            comment="Ordre d'écriture global (monotone)",
        ),
        sa.Column(
            "subject_id",
            sa.String(length=64),
            nullable=False,
            comment="Identité dont les données ou le compte sont touchés",
        ),
        sa.Column(
            "actor_id",
            sa.String(length=64),
            nullable=False,
            comment="Identité ayant réalisé l'action (peut égaler subject_id)",
        ),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False, comment="Etat avant/après et contexte de l'action"),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column(
            "prev_hash",
            sa.String(length=64),
            nullable=True,
            comment="Sceau de l'entrée précédente du même sujet",
        ),
        sa.Column(
            "entry_hash",
            sa.String(length=64),
            nullable=False,
            comment="HMAC-SHA256(prev_hash + champs canoniques)",
        ),
        sa.PrimaryKeyConstraint("sequence"),
    )
    op.create_index(op.f("ix_audit_entries_action"), "audit_entries", ["action"], unique=False)
    op.create_index("ix_audit_entries_subject_timestamp", "audit_entries", ["subject_id", "timestamp"], unique=False)
    op.create_index("ix_audit_entries_actor_timestamp", "audit_entries", ["actor_id", "timestamp"], unique=False)

    op.create_table(
        "audit_chain_heads",
        sa.Column("subject_id", sa.String(length=64), nullable=False),
        sa.Column("last_hash", sa.String(length=64), nullable=True),
        sa.Column("last_sequence", sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint("subject_id"),
    )

    # Le journal est append-only, y compris hors ORM
    op.execute(
        """
        CREATE OR REPLACE FUNCTION audit_entries_immutable() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'audit_entries is append-only';
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        CREATE TRIGGER audit_entries_no_update_delete
        BEFORE UPDATE OR DELETE ON audit_entries
        FOR EACH ROW EXECUTE FUNCTION audit_entries_immutable();
        """
    )

    # Codes de vérification
    op.create_table(
        "verification_codes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("subject_id", sa.String(length=64), nullable=False),
        sa.Column(
            "target_value",
            sa.String(length=255),
            nullable=False,
            comment="Valeur dont la possession est prouvée (ex: email)",
        ),
        sa.Column("channel", sa.String(length=16), nullable=False, server_default="email"),
        sa.Column(
            "code_hash",
            sa.String(length=64),
            nullable=False,
            comment="HMAC-SHA256 du code (jamais le code en clair)",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("attempts >= 0", name="ck_verification_codes_attempts_non_negative"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_verification_codes_code_hash"), "verification_codes", ["code_hash"], unique=False)
    op.create_index(
        "ix_verification_codes_subject_target_created",
        "verification_codes",
        ["subject_id", "target_value", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_verification_codes_subject_target_created", table_name="verification_codes")
    op.drop_index(op.f("ix_verification_codes_code_hash"), table_name="verification_codes")
    op.drop_table("verification_codes")

    op.drop_table("audit_chain_heads")
    op.execute("DROP TRIGGER IF EXISTS audit_entries_no_update_delete ON audit_entries")
    op.execute("DROP FUNCTION IF EXISTS audit_entries_immutable()")
    op.drop_index("ix_audit_entries_actor_timestamp", table_name="audit_entries")
    op.drop_index("ix_audit_entries_subject_timestamp", table_name="audit_entries")
    op.drop_index(op.f("ix_audit_entries_action"), table_name="audit_entries")
    op.drop_table("audit_entries")

    op.drop_index(op.f("ix_consents_expires_at"), table_name="consents")
    op.drop_index(op.f("ix_consents_status"), table_name="consents")
    op.drop_index(op.f("ix_consents_provider_id"), table_name="consents")
    op.drop_index(op.f("ix_consents_patient_id"), table_name="consents")
    op.drop_table("consents")

    op.drop_index(op.f("ix_health_profiles_user_id"), table_name="health_profiles")
    op.drop_table("health_profiles")

    op.drop_index(op.f("ix_users_status"), table_name="users")
    op.drop_index(op.f("ix_users_role"), table_name="users")
    op.drop_table("users")
