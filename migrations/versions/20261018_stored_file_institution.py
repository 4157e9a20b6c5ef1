"""
Add stored_file.institution_id and stored_file.updated_at so saved
certificate design templates belong to one institution
"""
from alembic import op
import sqlalchemy as sa


def upgrade():
    op.add_column('stored_file', sa.Column('institution_id', sa.Integer(), nullable=True))
    op.add_column('stored_file', sa.Column('updated_at', sa.DateTime(), nullable=True))
    op.create_foreign_key('fk_stored_file_institution', 'stored_file', 'institution',
                          ['institution_id'], ['institution_id'], ondelete='CASCADE')
    op.create_index('ix_stored_file_folder_institution', 'stored_file', ['folder', 'institution_id'])


def downgrade():
    op.drop_index('ix_stored_file_folder_institution', table_name='stored_file')
    op.drop_constraint('fk_stored_file_institution', 'stored_file', type_='foreignkey')
    op.drop_column('stored_file', 'updated_at')
    op.drop_column('stored_file', 'institution_id')
