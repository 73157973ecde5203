'''Various useful tools for working with versioned objects.

Primarily organized within a `Repository` object.
'''
import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session

from .base import versioned_objects

logger = logging.getLogger('rowhistory')


class Repository:
    def __init__(self, our_metadata, our_session, dburi=None, engine=None,
                 versioned_objects=None):
        '''
        @param dburi: sqlalchemy dburi. If supplied will create engine and bind
        the session to it.
        @param engine: an existing engine to use instead of dburi.
        @param versioned_objects: versioned classes whose version tables this
        repository manages.
        '''
        self.metadata = our_metadata
        self.session = our_session
        self.dburi = dburi
        self.engine = engine
        self.have_scoped_session = isinstance(self.session, scoped_session)
        if self.engine is None and self.dburi:
            self.engine = create_engine(dburi)
        if self.engine is not None:
            if self.have_scoped_session:
                self.session.configure(bind=self.engine)
            else:
                self.session.bind = self.engine
        self.versioned_objects = list(versioned_objects or [])

    def rebuild_db(self):
        logger.info('Rebuilding DB')
        self.metadata.drop_all(bind=self.engine)
        self.metadata.create_all(bind=self.engine)

    def commit(self, remove=True):
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        finally:
            if remove and self.have_scoped_session:
                self.session.remove()

    def create_versioned_tables(self, **create_table_options):
        '''Create missing version tables (for databases created without them).
        '''
        with self.engine.begin() as connection:
            for cls in versioned_objects(self.versioned_objects):
                cls.create_versioned_table(connection, **create_table_options)

    def drop_versioned_tables(self):
        with self.engine.begin() as connection:
            for cls in versioned_objects(self.versioned_objects):
                cls.drop_versioned_table(connection)
