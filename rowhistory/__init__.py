'''
About
=====

rowhistory keeps a history of the rows of selected tables. Every time a
'versioned' domain object is saved a copy of its row is written into a
companion history table, so earlier states can be listed, traversed and
restored.

At present the package is provided as an extension to SQLAlchemy.


Copyright and License
=====================

Licensed under the MIT license:

  <http://www.opensource.org/licenses/mit-license.php>


Versioned Domain Objects
========================

For each versioned domain object we end up with 2 domain objects:

  * The 'continuity': the original domain object, which carries a `version`
    counter.
  * The 'version': one row per saved state of that object, stored in
    `<object>_versions` and mapped to a generated `<Object>Version` class.

Unlike a full versioned domain model there is no revision object tying
changes to several objects together: each object is versioned
independently (like a wiki page). Here is a flavour of it::

    class Page(Versioned, Base):
        __tablename__ = 'pages'
        id = mapped_column(Integer, primary_key=True)
        title = mapped_column(String(255))

    page = Page(title='hello world!')
    session.add(page)
    session.commit()
    page.version            # => 1

    page.title = 'hello world'
    session.commit()
    page.version            # => 2
    page.versions.count()   # => 2

    page.revert_to(1)       # using version number
    page.title              # => 'hello world!'

    page.revert_to(page.versions.latest())  # using a version instance
    page.title              # => 'hello world'

    version = page.versions.latest()
    version.previous()      # go back one version
    version.next()          # go forward one version


Configuration
=============

Options go in a `__versioned__` dict on the class, e.g.::

    class Auction(Versioned, Base):
        __versioned__ = {
            'limit': 10,
            'condition': lambda auction: not auction.expired,
            'if_changed': ['price', 'ends_at'],
            }

See `rowhistory.base.VersioningOptions` for the full list.

Code in Action
--------------

See::

    rowhistory/sqlalchemy/demo.py
    rowhistory/sqlalchemy/test_demo.py
'''
__version__ = '0.5'
__description__ = 'Row history (versioning) for SQLAlchemy mapped objects.'
