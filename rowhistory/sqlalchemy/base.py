'''Versioned objects for SQLAlchemy.

Mix `Versioned` into a declarative class and every flush of an instance
writes a copy of its row into the version table. Copy on write happens in
mapper events (see `Versioner`) so the version row is part of the same
transaction as the change itself.

Based partially on:

http://www.sqlalchemy.org/trac/browser/examples/versioning/history_meta.py
'''
import logging

from sqlalchemy import Column, Integer, and_, event, func, select
from sqlalchemy import inspect
from sqlalchemy.exc import InvalidRequestError, SQLAlchemyError
from sqlalchemy.orm import object_session
from sqlalchemy.orm.exc import StaleDataError, UnmappedColumnError

from rowhistory import base
from . import schema
from .history import create_version_class
from .sqla import committed_value, primary_key_column

logger = logging.getLogger('rowhistory')


def versioned_objects(iter):
    for obj in iter:
        if hasattr(obj, '__version_class__'):
            yield obj


def setup_versioning(local_mapper):
    '''Derive and map the version table of a freshly mapped versioned class.
    '''
    cls = local_mapper.class_
    super_mapper = local_mapper.inherits
    if super_mapper is not None:
        # single table inheritance: everything lives in the parent's table
        # and the parent's listeners propagate to us
        if local_mapper.local_table is super_mapper.local_table:
            add_subclass_columns(local_mapper)
        else:
            logger.warning('%s uses joined table inheritance: only columns '
                           'of %s are versioned' %
                           (cls.__name__, super_mapper.local_table.name))
        return
    if cls.__dict__.get('__version_class__') is not None:
        return

    options = base.VersioningOptions(cls.__name__,
                                     **getattr(cls, '__versioned__', {}))
    table = local_mapper.local_table
    if options.version_column not in table.c:
        table.append_column(Column(options.version_column, Integer),
                            replace_existing=True)
        local_mapper.add_property(options.version_column,
                                  table.c[options.version_column])
    options.inheritance_column = schema.inheritance_column_name(local_mapper,
                                                                options)

    columns = schema.versioned_columns(table, options)
    version_table = schema.make_versioned_table(table, columns, options)

    cls.__version_options__ = options
    cls.__versioned_columns__ = tuple(columns)
    cls.__version_table__ = version_table
    cls.__version_class__ = create_version_class(cls, local_mapper,
                                                 version_table, options)
    Versioner().register(cls)
    logger.debug('Versioning %s into %s' % (cls.__name__, options.table_name))


def add_subclass_columns(local_mapper):
    '''Version the columns a single table inheritance subclass adds.'''
    base_class = local_mapper.base_mapper.class_
    options = base_class.__version_options__
    version_table = base_class.__version_table__
    version_mapper = inspect(base_class.__version_class__)
    excluded = set(options.non_versioned_columns)
    excluded.add(primary_key_column(local_mapper.local_table).name)
    added = []
    for col in local_mapper.local_table.c:
        if col.name in excluded or col.name in version_table.c:
            continue
        newcol = schema.copy_column(col)
        version_table.append_column(newcol)
        version_mapper.add_property(col.name, newcol)
        added.append(col)
    base_class.__versioned_columns__ += tuple(added)


class Versioner:
    '''Version versioned objects.

    In essence we are implementing copy on write. Column attributes may be
    changed in before_* (they are part of the row being written) but nothing
    may be added to the session during a flush, so version rows are written
    with plain SQL on the flush's connection in after_*.
    '''

    def register(self, cls):
        for name in ('before_insert', 'before_update', 'after_insert',
                     'after_update', 'before_delete'):
            event.listen(cls, name, getattr(self, name), propagate=True)

    def before_insert(self, mapper, connection, instance):
        if not base.versioning_disabled(instance):
            logger.debug('before_insert: %s' % instance)
            instance.set_new_version(connection)
        instance.apply_lock(connection)

    def before_update(self, mapper, connection, instance):
        if not base.versioning_disabled(instance):
            logger.debug('before_update: %s' % instance)
            instance.set_new_version(connection)
        instance.apply_lock(connection)

    def after_insert(self, mapper, connection, instance):
        if not base.versioning_disabled(instance):
            instance.save_version(connection)
        instance.clear_old_versions(connection)

    def after_update(self, mapper, connection, instance):
        if not base.versioning_disabled(instance):
            instance.save_version(connection)
        instance.clear_old_versions(connection)

    def before_delete(self, mapper, connection, instance):
        # versions belong to the object: remove them before the row they
        # point at goes
        version_table = instance.versioned_table()
        fk = version_table.c[instance.__version_options__.foreign_key]
        logger.debug('Deleting versions of %s' % instance)
        connection.execute(
            version_table.delete().where(fk == instance._pk_value())
        )


class Versioned:
    '''Mixin for declarative classes whose rows should be versioned.

    Options go in `__versioned__` (see `rowhistory.base.VersioningOptions`).
    '''

    __versioned__ = {}

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        insp = inspect(cls, raiseerr=False)
        if insp is not None:
            setup_versioning(insp)
        else:
            @event.listens_for(cls, 'after_mapper_constructed')
            def _mapper_constructed(mapper, class_):
                setup_versioning(mapper)

    ## ----------------------------------------
    ## Class level

    @classmethod
    def versioned_columns(cls):
        '''Columns copied into the version table.

        Everything except the primary key, inheritance column, version and
        lock columns and any `non_versioned_columns`.
        '''
        return list(cls.__versioned_columns__)

    @classmethod
    def versioned_class(cls):
        return cls.__version_class__

    @classmethod
    def versioned_table(cls):
        return cls.__version_table__

    @classmethod
    def create_versioned_table(cls, connection, **create_table_options):
        '''Migration helper creating the version table.

            with engine.begin() as connection:
                Page.create_versioned_table(connection)
        '''
        schema.create_versioned_table(cls, connection, **create_table_options)

    @classmethod
    def drop_versioned_table(cls, connection):
        schema.drop_versioned_table(cls, connection)

    @classmethod
    def without_versioning(cls):
        '''Context manager turning off versioning of this class.

            with Page.without_versioning():
                session.commit()
        '''
        return base.without_versioning(cls)

    @classmethod
    def without_locking(cls):
        return base.without_locking()

    ## ----------------------------------------
    ## Helpers

    def _column_key(self, name):
        mapper = inspect(self).mapper
        col = mapper.local_table.c[name]
        return mapper.get_property_by_column(col).key

    def _pk_value(self):
        state = inspect(self)
        if state.identity is not None:
            return state.identity[0]
        return state.mapper.primary_key_from_instance(self)[0]

    def _is_new(self):
        return not inspect(self).has_identity

    def _version_number(self):
        # what is loaded only, this runs during flushes
        key = self._column_key(self.__version_options__.version_column)
        return inspect(self).dict.get(key)

    def _stored_value(self, connection, name):
        '''Value of column name in the database row of this object.'''
        table = inspect(self).mapper.local_table
        pkcol = primary_key_column(table)
        return connection.execute(
            select(table.c[name]).where(pkcol == self._pk_value())
        ).scalar()

    def _has_lock_column(self):
        table = inspect(self).mapper.local_table
        return self.__version_options__.lock_column in table.c

    def _lock_is_version(self):
        options = self.__version_options__
        return (self.locking_enabled()
                and options.lock_column == options.version_column)

    ## ----------------------------------------
    ## Deciding whether to version

    def version_condition_met(self):
        '''Checks the `condition` option. Override for custom checks.'''
        return base.condition_met(self.__version_options__.condition, self)

    def changed_attributes(self):
        state = inspect(self)
        return [attr.key for attr in state.mapper.column_attrs
                if state.attrs[attr.key].history.has_changes()]

    def is_altered(self):
        options = self.__version_options__
        watched = None
        if options.track_altered_attributes:
            watched = options.version_if_changed
        return base.is_altered(self.changed_attributes(), watched)

    def should_save_version(self):
        return self.version_condition_met() and self.is_altered()

    def next_version(self, connection=None):
        '''Next available version number, 1 for a new object.

        Based on the version rows actually stored rather than the version
        column so deleting versions never leads to duplicates.
        '''
        if self._is_new():
            return 1
        if connection is None:
            connection = object_session(self).connection()
        version_table = self.versioned_table()
        options = self.__version_options__
        max_version = connection.execute(
            select(func.max(version_table.c[options.version_column])).where(
                version_table.c[options.foreign_key] == self._pk_value())
        ).scalar()
        if max_version is None:
            current = self._stored_value(connection, options.version_column)
            return (current or 0) + 1
        return max_version + 1

    ## ----------------------------------------
    ## Flush hooks

    def set_new_version(self, connection):
        '''Decide whether this save gets a version and number it.

        With optimistic locking on a lock column which doubles as the version
        column the version is left alone: apply_lock increments it.
        '''
        new = self._is_new()
        self._saving_version = new or self.should_save_version()
        if self._saving_version and (new or not self._lock_is_version()):
            key = self._column_key(self.__version_options__.version_column)
            setattr(self, key, self.next_version(connection))

    def save_version(self, connection):
        '''Write the version row of a save flagged by set_new_version.'''
        if not self.__dict__.get('_saving_version'):
            return
        self._saving_version = False
        options = self.__version_options__
        mapper = inspect(self).mapper
        table = mapper.local_table
        version_table = self.versioned_table()

        pkcol = primary_key_column(table)
        targets = [options.foreign_key, options.version_column]
        sources = [pkcol, table.c[options.version_column]]
        for col in self.versioned_columns():
            targets.append(col.name)
            sources.append(col)
        inheritance_column = options.inheritance_column
        if (inheritance_column in table.c and
                options.versioned_inheritance_column in version_table.c):
            targets.append(options.versioned_inheritance_column)
            sources.append(table.c[inheritance_column])

        logger.debug('Creating version %s of %s' % (self._version_number(),
                                                    self))
        # copy straight from the row just written: column values are then
        # exactly what the database holds, server defaults included
        connection.execute(
            version_table.insert().from_select(
                targets,
                select(*sources).where(pkcol == self._pk_value()),
            )
        )

    def clear_old_versions(self, connection):
        '''Remove versions beyond `limit`, keeping the most recent ones.'''
        options = self.__version_options__
        if options.limit <= 0:
            return
        current = self._stored_value(connection, options.version_column)
        excess_baggage = (current or 0) - options.limit
        if excess_baggage <= 0:
            return
        version_table = self.versioned_table()
        logger.info('Clearing versions <= %s of %s' % (excess_baggage, self))
        connection.execute(version_table.delete().where(and_(
            version_table.c[options.version_column] <= excess_baggage,
            version_table.c[options.foreign_key] == self._pk_value(),
        )))

    ## ----------------------------------------
    ## Optimistic locking

    def locking_enabled(self):
        return self._has_lock_column() and not base.locking_disabled()

    def apply_lock(self, connection):
        '''Check and increment the lock column.

        Raises StaleDataError if the row was changed by someone else since we
        loaded it.
        '''
        if not self.locking_enabled():
            return
        options = self.__version_options__
        key = self._column_key(options.lock_column)
        if self._is_new():
            if getattr(self, key) is None:
                setattr(self, key, 0)
            return
        if not self.changed_attributes():
            return
        found = self._stored_value(connection, options.lock_column)
        # nothing to compare against if the lock was never loaded
        expected = committed_value(self, key, default=found)
        if found != expected:
            msg = '%s was updated by another transaction (%s is %s, ' \
                'expected %s)' % (self, options.lock_column, found, expected)
            raise StaleDataError(msg)
        new_lock = (expected or 0) + 1
        if self._lock_is_version() and self.__dict__.get('_saving_version'):
            # after a revert the counter can be below stored versions
            new_lock = max(new_lock, self.next_version(connection))
        setattr(self, key, new_lock)

    ## ----------------------------------------
    ## Versions and reverting

    @property
    def versions(self):
        '''Versions of this object, oldest first.'''
        session = object_session(self)
        if session is None:
            raise InvalidRequestError('%s is not attached to a session' % self)
        version_class = self.versioned_class()
        options = self.__version_options__
        fk = getattr(version_class, options.foreign_key)
        col = getattr(version_class, options.version_column)
        q = version_class.query(session)
        return q.filter(fk == self._pk_value()).order_by(col.asc())

    def clone_versioned_model(self, orig_model, new_model):
        '''Copy versioned attributes from orig_model onto new_model.

        One of the two is this object's class, the other its version class.
        '''
        version_class = self.versioned_class()

        def key(obj, col):
            if isinstance(obj, version_class):
                return col.name
            return obj._column_key(col.name)

        for col in self.versioned_columns():
            try:
                orig_key = key(orig_model, col)
                new_key = key(new_model, col)
            except UnmappedColumnError:
                # column of a single table inheritance sibling class
                continue
            setattr(new_model, new_key, getattr(orig_model, orig_key))
        self.clone_inheritance_column(orig_model, new_model)

    def clone_inheritance_column(self, orig_model, new_model):
        options = self.__version_options__
        version_class = self.versioned_class()
        table = inspect(self).mapper.local_table
        version_table = self.versioned_table()
        if options.inheritance_column not in table.c:
            return
        if options.versioned_inheritance_column not in version_table.c:
            return
        if isinstance(orig_model, version_class):
            value = getattr(orig_model, options.versioned_inheritance_column)
            setattr(new_model,
                    new_model._column_key(options.inheritance_column), value)
        elif isinstance(new_model, version_class):
            value = getattr(orig_model,
                            orig_model._column_key(options.inheritance_column))
            setattr(new_model, options.versioned_inheritance_column, value)

    def revert_to(self, version):
        '''Revert to version, a version number or a version object.

        Only changes attributes, nothing is saved.

        @return False (and change nothing) if version cannot be found or is
            not a saved version of this object.
        '''
        version_class = self.versioned_class()
        options = self.__version_options__
        if isinstance(version, version_class):
            if inspect(self).identity is None:
                return False
            if getattr(version, options.foreign_key) != self._pk_value():
                return False
            if not inspect(version).has_identity:
                return False
        else:
            if object_session(self) is None or self._is_new():
                return False
            col = getattr(version_class, options.version_column)
            # a flush here would save (and version) pending changes
            with object_session(self).no_autoflush:
                version = self.versions.filter(col == version).first()
            if version is None:
                return False
        self.clone_versioned_model(version, self)
        key = self._column_key(options.version_column)
        setattr(self, key, getattr(version, options.version_column))
        return True

    def save_without_versioning(self):
        '''Flush this object's session without creating a version.

        Optimistic locking is turned off as well, so this is what reverting
        uses.
        '''
        session = object_session(self)
        if session is None:
            raise InvalidRequestError('%s is not attached to a session' % self)
        with base.without_locking(), base.without_versioning(type(self)):
            session.flush()

    def revert_and_save(self, version):
        '''Revert to version and save without creating a new version.

        @return True if the object was reverted and saved.
        '''
        if not self.revert_to(version):
            return False
        try:
            self.save_without_versioning()
        except SQLAlchemyError:
            logger.exception('Saving %s reverted to %s failed' % (self,
                                                                  version))
            return False
        return True
