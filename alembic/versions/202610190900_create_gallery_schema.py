"""
Create album, photo, user, role and grant tables
"""
from alembic import op
import sqlalchemy as sa
# revision identifiers, used by Alembic.
revision = '202610190900_create_gallery_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'albums',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('parent_id', sa.String(length=36), sa.ForeignKey('albums.id'), nullable=True),
        sa.Column('visibility', sa.String(length=16), nullable=False, server_default='private'),
        sa.Column('cover_photo_id', sa.String(length=36), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('slug', 'parent_id', name='uq_albums_slug_parent'),
        sa.CheckConstraint("visibility IN ('public', 'private', 'archived')", name='ck_albums_visibility'),
    )
    op.create_index('ix_albums_parent_id', 'albums', ['parent_id'])
    op.create_index(
        'uq_albums_root_slug',
        'albums',
        ['slug'],
        unique=True,
        postgresql_where=sa.text('parent_id IS NULL'),
        sqlite_where=sa.text('parent_id IS NULL'),
    )

    op.create_table(
        'photos',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('album_id', sa.String(length=36), sa.ForeignKey('albums.id'), nullable=False),
        sa.Column('filename', sa.String(length=512), nullable=False),
        sa.Column('r2_key', sa.String(length=1024), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('width', sa.Integer(), nullable=True),
        sa.Column('height', sa.Integer(), nullable=True),
        sa.Column('storage_provider', sa.String(length=16), nullable=False, server_default='r2'),
        sa.Column('visibility', sa.String(length=16), nullable=False, server_default='visible'),
        sa.Column('caption', sa.Text(), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=True),
        sa.Column('uploaded_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('storage_provider', 'r2_key', name='uq_photos_provider_key'),
        sa.CheckConstraint("storage_provider IN ('r2', 'oracle')", name='ck_photos_storage_provider'),
    )
    op.create_index('ix_photos_album_id', 'photos', ['album_id'])
    op.create_index('idx_photos_album_visibility', 'photos', ['album_id', 'visibility'])
    op.create_index('idx_photos_uploaded_at', 'photos', ['uploaded_at'])

    op.create_table(
        'photo_likes',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('photo_id', sa.String(length=36), sa.ForeignKey('photos.id'), nullable=False),
        sa.Column('user_id', sa.String(length=36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('photo_id', 'user_id', name='uq_photo_likes_photo_user'),
    )

    op.create_table(
        'roles',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('name', sa.String(length=64), nullable=False, unique=True),
        sa.Column('color', sa.String(length=16), nullable=False, server_default='#6366f1'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )

    op.create_table(
        'role_assignments',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('role_id', sa.String(length=36), sa.ForeignKey('roles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(length=36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('role_id', 'user_id', name='uq_role_assignments_role_user'),
    )

    op.create_table(
        'role_album_access',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('role_id', sa.String(length=36), sa.ForeignKey('roles.id', ondelete='CASCADE'), nullable=False),
        sa.Column('album_id', sa.String(length=36), sa.ForeignKey('albums.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('role_id', 'album_id', name='uq_role_album_access_role_album'),
    )
    op.create_index('ix_role_album_access_album_id', 'role_album_access', ['album_id'])

    op.create_table(
        'album_permissions',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('album_id', sa.String(length=36), sa.ForeignKey('albums.id'), nullable=False),
        sa.Column('user_id', sa.String(length=36), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.UniqueConstraint('album_id', 'user_id', name='uq_album_permissions_album_user'),
    )
    op.create_index('ix_album_permissions_album_id', 'album_permissions', ['album_id'])


def downgrade():
    op.drop_index('ix_album_permissions_album_id', table_name='album_permissions')
    op.drop_table('album_permissions')
    op.drop_index('ix_role_album_access_album_id', table_name='role_album_access')
    op.drop_table('role_album_access')
    op.drop_table('role_assignments')
    op.drop_table('roles')
    op.drop_table('photo_likes')
    op.drop_index('idx_photos_uploaded_at', table_name='photos')
    op.drop_index('idx_photos_album_visibility', table_name='photos')
    op.drop_index('ix_photos_album_id', table_name='photos')
    op.drop_table('photos')
    op.drop_index('uq_albums_root_slug', table_name='albums')
    op.drop_index('ix_albums_parent_id', table_name='albums')
    op.drop_table('albums')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
