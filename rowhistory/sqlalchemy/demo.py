'''Demo of rowhistory for SQLAlchemy.

This module sets up a small domain model with some versioned objects. Code
that then uses these objects can be found in test_demo.py.
'''
import logging

from sqlalchemy import Float, Integer, String, Text, create_engine
from sqlalchemy.orm import DeclarativeBase, mapped_column
from sqlalchemy.orm import scoped_session, sessionmaker

from rowhistory.sqlalchemy import Repository, SQLAlchemyMixin, Versioned

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger('rowhistory')

engine = create_engine('sqlite://')


class Base(DeclarativeBase):
    pass


## -------------------
## Mapped classes

class Page(Versioned, SQLAlchemyMixin, Base):
    __tablename__ = 'pages'
    __versioned__ = {'condition': 'feeling_good'}

    id = mapped_column(Integer, primary_key=True)
    title = mapped_column(String(255), unique=True)
    body = mapped_column(Text)
    author_name = mapped_column(String(100))
    version = mapped_column(Integer)

    # not a column: tests flip it to skip versions
    feeling_good = True


class LimitedPage(Versioned, SQLAlchemyMixin, Base):
    __tablename__ = 'limited_pages'
    __versioned__ = {'limit': 2}

    id = mapped_column(Integer, primary_key=True)
    title = mapped_column(String(255))
    body = mapped_column(Text)


class LockedPage(Versioned, SQLAlchemyMixin, Base):
    '''Optimistic locking with the lock counter as version number.'''
    __tablename__ = 'locked_pages'
    __versioned__ = {'version_column': 'lock_version'}

    id = mapped_column(Integer, primary_key=True)
    title = mapped_column(String(255))
    lock_version = mapped_column(Integer)
    type = mapped_column(String(20))

    __mapper_args__ = {
        'polymorphic_on': 'type',
        'polymorphic_identity': 'locked',
    }


class SpecialLockedPage(LockedPage):
    special_note = mapped_column(String(100), nullable=True)

    __mapper_args__ = {
        'polymorphic_identity': 'special',
    }


class Document(Versioned, SQLAlchemyMixin, Base):
    '''Optimistic locking with a lock counter separate from the version.'''
    __tablename__ = 'documents'

    id = mapped_column(Integer, primary_key=True)
    title = mapped_column(String(255))
    version = mapped_column(Integer)
    lock_version = mapped_column(Integer)


class WidgetExtension:
    def describe(self):
        return 'widget %s' % self.name


class Widget(Versioned, SQLAlchemyMixin, Base):
    __tablename__ = 'widgets'
    __versioned__ = {
        'sequence_name': 'widgets_seq',
        'non_versioned_columns': ['foo'],
        'extend': WidgetExtension,
    }

    id = mapped_column(Integer, primary_key=True)
    name = mapped_column(String(50))
    foo = mapped_column(String(50))
    version = mapped_column(Integer)


class Landmark(Versioned, SQLAlchemyMixin, Base):
    __tablename__ = 'landmarks'
    __versioned__ = {'if_changed': ['name', 'longitude']}

    id = mapped_column(Integer, primary_key=True)
    name = mapped_column(String(100))
    latitude = mapped_column(Float)
    longitude = mapped_column(Float)
    doesnt_trigger_version = mapped_column(String(100))
    version = mapped_column(Integer)


PageVersion = Page.versioned_class()
LimitedPageVersion = LimitedPage.versioned_class()
LockedPageVersion = LockedPage.versioned_class()
DocumentVersion = Document.versioned_class()
WidgetVersion = Widget.versioned_class()
LandmarkVersion = Landmark.versioned_class()


## --------------------------------------------------------
## Session

Session = scoped_session(
    sessionmaker(bind=engine, autoflush=True, expire_on_commit=False)
)

## ------------------------
## Repository helper object

repo = Repository(Base.metadata, Session, engine=engine,
                  versioned_objects=[Page, LimitedPage, LockedPage, Document,
                                     Widget, Landmark])
