'''SQLAlchemy row history extension.

For general information see the root rowhistory package docstring.

Implementation Notes
====================

The version table of a class is derived from the class's own table when the
class is mapped (so `metadata.create_all()` creates it along with everything
else) and mapped to a generated class (e.g. PageVersion for Page).

Version rows are written from mapper events with plain SQL on the flush's
connection: nothing can be added to a session while it flushes, and the row
just written is the most faithful source for the copy.

Turning versioning (or optimistic locking) off uses context variables rather
than flags on the class so it only ever affects the current thread or task.

Some useful links:

https://docs.sqlalchemy.org/en/20/orm/examples.html#versioning-with-a-history-table
https://docs.sqlalchemy.org/en/20/orm/events.html#mapper-events
https://alembic.sqlalchemy.org/en/latest/ops.html
'''
from .sqla import SQLAlchemyMixin
from .base import Versioned, Versioner, versioned_objects
from .history import VersionMixin, VersionQuery
from .schema import create_versioned_table, drop_versioned_table
from .tools import Repository
