'''Framework independent parts of versioning.

Holds the versioning options, the rules deciding whether a save should create
a new version and the (call scoped) switches used to turn versioning and
optimistic locking off for a while.
'''
import logging
import re
from contextlib import contextmanager
from contextvars import ContextVar

logger = logging.getLogger('rowhistory')


def snake_case(name):
    '''PageVersion -> page_version'''
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()


class VersioningOptions:
    '''Options of a versioned class, read from its `__versioned__` dict.

    * class_name: name of the generated version class (default: PageVersion
      for a Page class)
    * table_name: version table name (default: page_versions)
    * foreign_key: column relating the version table to the original table
      (default: page_id)
    * inheritance_column: column holding the single table inheritance type of
      the original table (default: the mapper's polymorphic_on column, or
      'type')
    * versioned_inheritance_column: column of the version table storing the
      inheritance_column value (default: versioned_type)
    * version_column: column keeping the version number (default: version)
    * lock_column: optimistic locking counter (default: lock_version)
    * sequence_name: sequence used for the version table's id column
    * limit: number of versions to keep, 0 keeps all of them
    * condition: checked before saving a new version. Either a bool, a
      callable taking the object or the name of a method of the object.
    * if_changed: attribute name (or list of names) of which at least one must
      have changed for a new version to be saved
    * non_versioned_columns: additional column names not to copy
    * extend: a class mixed into the generated version class
    '''

    defaults = {
        'class_name': None,
        'table_name': None,
        'foreign_key': None,
        'inheritance_column': None,
        'versioned_inheritance_column': None,
        'version_column': 'version',
        'lock_column': 'lock_version',
        'sequence_name': None,
        'limit': 0,
        'condition': True,
        'if_changed': None,
        'non_versioned_columns': (),
        'extend': None,
    }

    def __init__(self, entity_name, **kwargs):
        unknown = set(kwargs) - set(self.defaults)
        if unknown:
            msg = 'Unknown versioning option(s) for %s: %s' % (
                entity_name, ', '.join(sorted(unknown)))
            raise ValueError(msg)
        values = dict(self.defaults)
        values.update(kwargs)

        name = snake_case(entity_name)
        self.class_name = values['class_name'] or entity_name + 'Version'
        self.table_name = values['table_name'] or name + '_versions'
        self.foreign_key = values['foreign_key'] or name + '_id'
        self.inheritance_column = values['inheritance_column']
        self._versioned_inheritance_column = values['versioned_inheritance_column']
        self.version_column = values['version_column']
        self.lock_column = values['lock_column']
        self.sequence_name = values['sequence_name']
        self.limit = int(values['limit'] or 0)
        self.condition = values['condition']
        self.extend = values['extend']

        if_changed = values['if_changed']
        if isinstance(if_changed, str):
            if_changed = [if_changed]
        self.track_altered_attributes = if_changed is not None
        self.version_if_changed = list(if_changed or [])
        self.extra_non_versioned_columns = list(values['non_versioned_columns'])

    @property
    def versioned_inheritance_column(self):
        if self._versioned_inheritance_column:
            return self._versioned_inheritance_column
        return 'versioned_%s' % (self.inheritance_column or 'type')

    @property
    def non_versioned_columns(self):
        '''Column names never copied into the version table.

        The primary key is handled separately as its name is only known once
        the class is mapped.
        '''
        names = [
            self.inheritance_column or 'type',
            self.version_column,
            self.lock_column,
            self.versioned_inheritance_column,
        ]
        return names + self.extra_non_versioned_columns

    def __repr__(self):
        return '<VersioningOptions %s -> %s>' % (self.class_name,
                                                 self.table_name)


def condition_met(condition, obj):
    '''Evaluate a `condition` option against obj.'''
    if isinstance(condition, str):
        method = getattr(obj, condition)
        return bool(method() if callable(method) else method)
    if callable(condition):
        return bool(condition(obj))
    return bool(condition)


def is_altered(changed, watched=None):
    '''Has the object changed enough to be worth a new version?

    @param changed: names of the attributes which changed.
    @param watched: if not None only changes to these attributes count.
    '''
    if watched is None:
        return len(changed) > 0
    watched = list(watched)
    return len(set(watched) - set(changed)) < len(watched)


## --------------------------------------------------------
## Suppression
#
# Both switches are context variables so turning versioning off in one thread
# (or asyncio task) never affects another one.

_versioning_disabled = ContextVar('rowhistory_versioning_disabled',
                                  default=frozenset())
_locking_disabled = ContextVar('rowhistory_locking_disabled', default=False)


@contextmanager
def without_versioning(*classes):
    '''Turn off versioning of instances of classes inside the block.

        with without_versioning(Page):
            page.title = 'typo fix'
            session.flush()
    '''
    current = _versioning_disabled.get()
    token = _versioning_disabled.set(current | frozenset(classes))
    logger.debug('Versioning disabled for %s' % (classes,))
    try:
        yield
    finally:
        _versioning_disabled.reset(token)


@contextmanager
def without_locking():
    '''Turn off optimistic locking inside the block.'''
    token = _locking_disabled.set(True)
    try:
        yield
    finally:
        _locking_disabled.reset(token)


def versioning_disabled(obj):
    return isinstance(obj, tuple(_versioning_disabled.get()))


def locking_disabled():
    return _locking_disabled.get()
