from setuptools import setup, find_packages

from rowhistory import __version__
from rowhistory import __description__
from rowhistory import __doc__ as __long_description__

setup(
    name = 'rowhistory',
    version = __version__,
    packages = find_packages(),
    install_requires = [
        'SQLAlchemy>=2.0.2',
        'alembic>=1.7',
    ],
    extras_require = {
        'test': ['pytest'],
    },
    python_requires = '>=3.8',

    # metadata for upload to PyPI
    author = "Rufus Pollock (Open Knowledge Foundation)",
    author_email = "info@okfn.org",
    description = __description__,
    long_description = __long_description__,
    license = "MIT",
    keywords = "versioning history sqlalchemy orm optimistic locking",
    zip_safe = False,
    classifiers = [
        'Development Status :: 4 - Beta',
        'Environment :: Console',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Topic :: Database',
        'Topic :: Software Development :: Libraries :: Python Modules'],
)
