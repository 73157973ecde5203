'''Generic sqlalchemy code (not specifically related to versioning).
'''
from sqlalchemy import inspect


class SQLAlchemyMixin:
    def __init__(self, **kw):
        for k, v in kw.items():
            setattr(self, k, v)

    def __str__(self):
        # only show what is loaded: repr is used in log messages emitted
        # during a flush where loading attributes is not allowed
        state = inspect(self)
        out = '<%s' % self.__class__.__name__
        for attr in state.mapper.column_attrs:
            out += ' %s=%s' % (attr.key, state.dict.get(attr.key))
        out += '>'
        return out

    def __repr__(self):
        return self.__str__()


def primary_key_column(table):
    '''The single primary key column of table.'''
    pkcols = list(table.primary_key.columns)
    if len(pkcols) != 1:
        msg = 'Do not support versioning objects with multiple primary keys' \
            ' (table %s)' % table.name
        raise ValueError(msg)
    return pkcols[0]


def committed_value(obj, key, default=None):
    '''Value of attribute key as last loaded from / flushed to the database.

    Never loads anything: returns default if the value is not known.
    '''
    hist = inspect(obj).attrs[key].history
    if hist.deleted:
        return hist.deleted[0]
    if hist.unchanged:
        return hist.unchanged[0]
    return default
