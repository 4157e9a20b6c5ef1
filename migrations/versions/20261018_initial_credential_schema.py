"""
Create the credential schema: users, institutions and memberships,
stored files, certificates and the activity log.
"""
from alembic import op
import sqlalchemy as sa


def upgrade():
    op.create_table(
        'user',
        sa.Column('user_id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=120), nullable=False, unique=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='USER'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_table(
        'institution',
        sa.Column('institution_id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=120), nullable=True),
        sa.Column('website', sa.String(length=255), nullable=True),
        sa.Column('logo', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_table(
        'institution_user',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('institution_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='STAFF'),
        sa.ForeignKeyConstraint(['user_id'], ['user.user_id'], name='fk_institution_user_user'),
        sa.ForeignKeyConstraint(['institution_id'], ['institution.institution_id'], name='fk_institution_user_institution'),
        sa.UniqueConstraint('user_id', 'institution_id', name='uq_institution_user'),
    )
    op.create_table(
        'stored_file',
        sa.Column('file_id', sa.String(length=36), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('content_type', sa.String(length=100), nullable=False),
        sa.Column('size', sa.Integer(), nullable=False),
        sa.Column('folder', sa.String(length=100), nullable=False),
        sa.Column('data', sa.LargeBinary(), nullable=False),
        sa.Column('uploaded_at', sa.DateTime(), nullable=True),
    )
    op.create_table(
        'certificate',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('verification_id', sa.String(length=32), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('recipient_name', sa.String(length=255), nullable=False),
        sa.Column('recipient_email', sa.String(length=120), nullable=False),
        sa.Column('institution_id', sa.Integer(), nullable=False),
        sa.Column('certificate_type', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='ISSUED'),
        sa.Column('issue_date', sa.Date(), nullable=False),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('content_hash', sa.String(length=64), nullable=False),
        sa.Column('anchor_receipt', sa.String(length=130), nullable=True),
        sa.Column('anchor_network', sa.String(length=50), nullable=True),
        sa.Column('artifact_kind', sa.String(length=20), nullable=False),
        sa.Column('artifact_content_type', sa.String(length=100), nullable=False),
        sa.Column('artifact_data', sa.LargeBinary(), nullable=True),
        sa.Column('artifact_file_id', sa.String(length=36), nullable=True),
        sa.Column('design_data', sa.Text(), nullable=True),
        sa.Column('issued_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['institution_id'], ['institution.institution_id'], name='fk_certificate_institution'),
        sa.ForeignKeyConstraint(['artifact_file_id'], ['stored_file.file_id'], name='fk_certificate_artifact_file'),
        sa.ForeignKeyConstraint(['issued_by_user_id'], ['user.user_id'], name='fk_certificate_issued_by',
                                ondelete='SET NULL'),
    )
    op.create_index('ix_certificate_verification_id', 'certificate', ['verification_id'], unique=True)
    op.create_index('ix_certificate_institution_id', 'certificate', ['institution_id'])
    op.create_index('ix_certificate_content_hash', 'certificate', ['content_hash'])

    op.create_table(
        'activity_log',
        sa.Column('log_id', sa.Integer(), primary_key=True),
        sa.Column('action', sa.String(length=30), nullable=False),
        sa.Column('category', sa.String(length=30), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='SUCCESS'),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('institution_id', sa.Integer(), nullable=True),
        sa.Column('certificate_id', sa.String(length=36), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_activity_log_user_id', 'activity_log', ['user_id'])
    op.create_index('ix_activity_log_institution_id', 'activity_log', ['institution_id'])
    op.create_index('ix_activity_log_certificate_id', 'activity_log', ['certificate_id'])
    op.create_index('ix_activity_log_created_at', 'activity_log', ['created_at'])


def downgrade():
    op.drop_table('activity_log')
    op.drop_index('ix_certificate_content_hash', table_name='certificate')
    op.drop_index('ix_certificate_institution_id', table_name='certificate')
    op.drop_index('ix_certificate_verification_id', table_name='certificate')
    op.drop_table('certificate')
    op.drop_table('stored_file')
    op.drop_table('institution_user')
    op.drop_table('institution')
    op.drop_table('user')
