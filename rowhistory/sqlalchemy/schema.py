'''Deriving the version table of a versioned class from its own table.

The version table gets, in this order:

  * an `id` surrogate primary key
  * the foreign key to the original table (e.g. page_id)
  * the version column
  * one column per versioned column (same name, type, defaults)
  * the versioned inheritance column if the original table uses single table
    inheritance

plus an index on the foreign key.
'''
import logging

from sqlalchemy import Column, ForeignKey, Index, Integer, Sequence, Table
from sqlalchemy import inspect
from sqlalchemy.schema import CreateSequence, DefaultClause, DropSequence

from alembic.migration import MigrationContext
from alembic.operations import Operations

from .sqla import primary_key_column

logger = logging.getLogger('rowhistory')


def inheritance_column_name(mapper, options):
    if options.inheritance_column:
        return options.inheritance_column
    polymorphic_on = mapper.polymorphic_on
    if isinstance(polymorphic_on, Column):
        return polymorphic_on.name
    return 'type'


def versioned_columns(table, options):
    '''Columns of table which are copied into the version table.'''
    excluded = set(options.non_versioned_columns)
    excluded.add(primary_key_column(table).name)
    return [col for col in table.c if col.name not in excluded]


def copy_column(col, name=None):
    '''Copy type and defaults of col but none of its constraints.'''
    kwargs = {'nullable': True}
    if col.default is not None and col.default.is_scalar:
        kwargs['default'] = col.default.arg
    if isinstance(col.server_default, DefaultClause):
        kwargs['server_default'] = DefaultClause(col.server_default.arg)
    return Column(name or col.name, col.type, **kwargs)


def make_history_columns(table, columns, options):
    pkcol = primary_key_column(table)
    if options.sequence_name:
        id_col = Column('id', Integer, Sequence(options.sequence_name),
                        primary_key=True)
    else:
        id_col = Column('id', Integer, primary_key=True)
    fk_name = '%s.%s' % (table.fullname, pkcol.name)
    history_columns = [
        id_col,
        Column(options.foreign_key, pkcol.type, ForeignKey(fk_name)),
        Column(options.version_column, Integer),
    ]
    for col in columns:
        history_columns.append(copy_column(col))
    if options.inheritance_column in table.c:
        history_columns.append(copy_column(
            table.c[options.inheritance_column],
            name=options.versioned_inheritance_column,
        ))
    return history_columns


def history_index_name(options):
    return 'ix_%s_%s' % (options.table_name, options.foreign_key)


def make_versioned_table(table, columns, options):
    '''Create the version table in the metadata of table.

    @return the version table.
    '''
    history_table = Table(options.table_name, table.metadata,
                          *make_history_columns(table, columns, options),
                          schema=table.schema)
    Index(history_index_name(options), history_table.c[options.foreign_key])
    return history_table


def _operations(connection):
    return Operations(MigrationContext.configure(connection))


def create_versioned_table(cls, connection, **create_table_options):
    '''Create the version table of cls in the database (for migrations).

    Also adds the version column to the original table if it is missing
    there. Does nothing if the version table already exists.

    @param create_table_options: passed on to alembic's create_table.
    '''
    options = cls.__version_options__
    table = cls.__table__
    op = _operations(connection)
    insp = inspect(connection)

    existing = [c['name'] for c in
                insp.get_columns(table.name, schema=table.schema)]
    if options.version_column not in existing:
        logger.info('Adding column %s to %s' % (options.version_column,
                                                 table.name))
        op.add_column(table.name, Column(options.version_column, Integer),
                      schema=table.schema)
        existing.append(options.version_column)
    if options.lock_column in table.c and options.lock_column not in existing:
        logger.info('Adding column %s to %s' % (options.lock_column,
                                                 table.name))
        op.add_column(table.name,
                      Column(options.lock_column, Integer,
                             server_default='0'),
                      schema=table.schema)

    if insp.has_table(options.table_name, schema=table.schema):
        return

    logger.info('Creating version table %s' % options.table_name)
    if options.sequence_name and connection.dialect.supports_sequences:
        op.execute(CreateSequence(Sequence(options.sequence_name,
                                           schema=table.schema)))
    op.create_table(
        options.table_name,
        *make_history_columns(table, cls.versioned_columns(), options),
        schema=table.schema,
        **create_table_options
    )
    op.create_index(history_index_name(options), options.table_name,
                    [options.foreign_key], schema=table.schema)


def drop_versioned_table(cls, connection):
    options = cls.__version_options__
    table = cls.__table__
    logger.info('Dropping version table %s' % options.table_name)
    op = _operations(connection)
    op.drop_table(options.table_name, schema=table.schema)
    if options.sequence_name and connection.dialect.supports_sequences:
        op.execute(DropSequence(Sequence(options.sequence_name,
                                         schema=table.schema)))
