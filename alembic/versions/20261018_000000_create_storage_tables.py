"""Create users, photos and hero_images tables

Revision ID: create_storage_tables
Revises:
Create Date: 2026-10-18

The three tables whose rows reference object storage keys:
- users.profile_image_key
- photos.storage_key
- hero_images.storage_key (owner_id NULL = global hero)
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "create_storage_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("""
        DO $$ BEGIN
            CREATE TYPE photo_visibility AS ENUM ('public', 'private');
        EXCEPTION
            WHEN duplicate_object THEN null;
        END $$
    """)

    op.create_table(
        "users",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("profile_image_key", sa.String(1024), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("NOW()")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "photos",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("owner_id", sa.String(64), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("storage_key", sa.String(1024), nullable=True),
        sa.Column("content_hash", sa.String(64), nullable=True),
        sa.Column("size_bytes", sa.Integer(), nullable=True),
        sa.Column("content_type", sa.String(100), nullable=True),
        sa.Column(
            "visibility",
            postgresql.ENUM("public", "private", name="photo_visibility", create_type=False),
            nullable=False,
            server_default="private",
        ),
        sa.Column("featured", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("needs_review", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("NOW()")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_photos_owner_id", "photos", ["owner_id"])
    op.create_index("ix_photos_storage_key", "photos", ["storage_key"])

    op.create_table(
        "hero_images",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("owner_id", sa.String(64), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("storage_key", sa.String(1024), nullable=True),
        sa.Column("content_hash", sa.String(64), nullable=True),
        sa.Column("size_bytes", sa.Integer(), nullable=True),
        sa.Column("content_type", sa.String(100), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("needs_review", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("NOW()")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_hero_images_owner_id", "hero_images", ["owner_id"])
    op.create_index("ix_hero_images_storage_key", "hero_images", ["storage_key"])

    # At most one default hero per owner
    op.create_index(
        "uq_hero_images_default_per_owner",
        "hero_images",
        ["owner_id"],
        unique=True,
        postgresql_where=sa.text("is_default"),
    )
    # ...and at most one default in the global (NULL owner) scope
    op.execute("""
        CREATE UNIQUE INDEX uq_hero_images_default_global
        ON hero_images ((owner_id IS NULL))
        WHERE is_default AND owner_id IS NULL
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS uq_hero_images_default_global")
    op.drop_index("uq_hero_images_default_per_owner", table_name="hero_images")
    op.drop_index("ix_hero_images_storage_key", table_name="hero_images")
    op.drop_index("ix_hero_images_owner_id", table_name="hero_images")
    op.drop_table("hero_images")
    op.drop_index("ix_photos_storage_key", table_name="photos")
    op.drop_index("ix_photos_owner_id", table_name="photos")
    op.drop_table("photos")
    op.drop_table("users")
    op.execute("DROP TYPE photo_visibility")
