'''The version ("history row") class generated for each versioned class.'''
from sqlalchemy.orm import Query, object_session, relationship

from rowhistory.base import snake_case
from .sqla import SQLAlchemyMixin


class VersionQuery(Query):
    '''Query over version objects.

    earliest() and latest() work on whatever the query is already filtered
    by, so `page.versions.latest()` is the latest version of page while
    `PageVersion.query(session).latest()` is the latest row of the whole
    table.
    '''

    def _version_column(self):
        version_class = self.column_descriptions[0]['entity']
        return getattr(version_class, version_class.version_column_name())

    def earliest(self):
        col = self._version_column()
        return self.order_by(None).order_by(col.asc()).first()

    def latest(self):
        col = self._version_column()
        return self.order_by(None).order_by(col.desc()).first()


class VersionMixin(SQLAlchemyMixin):
    '''Base class of generated version classes.'''

    # the versioned class this class stores versions of
    original_class = None

    @classmethod
    def version_column_name(cls):
        return cls.original_class.__version_options__.version_column

    @classmethod
    def foreign_key_name(cls):
        return cls.original_class.__version_options__.foreign_key

    @classmethod
    def query(cls, session):
        return VersionQuery(cls, session)

    @classmethod
    def _same_owner(cls, session, version):
        fk = cls.foreign_key_name()
        return cls.query(session).filter(
            getattr(cls, fk) == getattr(version, fk))

    @classmethod
    def before(cls, session, version):
        '''Find the version of the same object just before version.'''
        col = getattr(cls, cls.version_column_name())
        number = getattr(version, cls.version_column_name())
        q = cls._same_owner(session, version).filter(col < number)
        return q.order_by(col.desc()).first()

    @classmethod
    def after(cls, session, version):
        '''Find the version of the same object just after version.'''
        col = getattr(cls, cls.version_column_name())
        number = getattr(version, cls.version_column_name())
        q = cls._same_owner(session, version).filter(col > number)
        return q.order_by(col.asc()).first()

    # NB: unlike before/after these are not restricted to one object. Use
    # obj.versions.earliest() for that.
    @classmethod
    def earliest(cls, session):
        return cls.query(session).earliest()

    @classmethod
    def latest(cls, session):
        return cls.query(session).latest()

    def previous(self):
        return self.before(object_session(self), self)

    def next(self):
        return self.after(object_session(self), self)


def create_version_class(base_object, base_mapper, version_table, options):
    '''Create and map the Version Domain Object corresponding to base_object.

    E.g. if Page is our original object we get::

        PageVersion = create_version_class(Page, ...)

    NB: This must obviously be called after mapping has happened to
    base_object.
    '''
    bases = (VersionMixin,)
    if options.extend is not None:
        bases = (options.extend,) + bases
    version_class = type(options.class_name, bases, {
        'original_class': base_object,
        '__module__': base_object.__module__,
    })
    base_mapper.registry.map_imperatively(version_class, version_table,
        properties={
            # version rows are written with plain inserts during the flush
            # of base_object so this side is read only
            snake_case(base_object.__name__): relationship(base_object,
                                                           viewonly=True),
        })
    return version_class
