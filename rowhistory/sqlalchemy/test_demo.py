import pytest
from sqlalchemy import update
from sqlalchemy.orm.exc import StaleDataError

from rowhistory.sqlalchemy.demo import *


def _new_page(**kwargs):
    page = Page(**kwargs)
    Session.add(page)
    Session.commit()
    return page


def _count(version_class):
    with Session.no_autoflush:
        return Session.query(version_class).count()


class TestVersioning:

    def setup_method(self, name=''):
        Session.remove()
        repo.rebuild_db()

    @classmethod
    def teardown_class(self):
        Session.remove()

    def test_create_saves_first_version(self):
        page = _new_page(title='hello world!', body='first')
        assert page.version == 1
        assert page.versions.count() == 1
        version = page.versions.first()
        assert version.version == 1
        assert version.page_id == page.id
        assert version.title == 'hello world!'
        assert version.body == 'first'

    def test_update_saves_new_version(self):
        page = _new_page(title='hello world!', body='first')
        page.title = 'hello world'
        Session.commit()
        assert page.version == 2
        assert [v.version for v in page.versions] == [1, 2]
        assert page.versions.all()[0].title == 'hello world!'
        assert page.versions.all()[1].title == 'hello world'

    def test_consecutive_versions(self):
        page = _new_page(title='one')
        for title in ['two', 'three', 'four']:
            page.title = title
            Session.commit()
        assert page.version == 4
        assert [v.version for v in page.versions] == [1, 2, 3, 4]

    def test_unchanged_save_does_not_version(self):
        page = _new_page(title='hello', body='body')
        page.title = 'hello'
        Session.commit()
        assert page.version == 1
        assert page.versions.count() == 1

    def test_next_version_uses_stored_versions(self):
        page = _new_page(title='one')
        page.title = 'two'
        Session.commit()
        page.title = 'three'
        Session.commit()
        Session.query(PageVersion).filter_by(page_id=page.id,
                                             version=3).delete()
        Session.commit()
        assert page.next_version() == 3
        page.title = 'four'
        Session.commit()
        assert page.version == 3
        assert [v.version for v in page.versions] == [1, 2, 3]

    def test_next_version_without_stored_versions(self):
        page = _new_page(title='one')
        page.title = 'two'
        Session.commit()
        Session.query(PageVersion).delete()
        Session.commit()
        assert page.next_version() == 3
        page.title = 'three'
        Session.commit()
        assert page.version == 3
        assert [v.version for v in page.versions] == [3]

    def test_next_version_of_new_object(self):
        assert Page(title='new').next_version() == 1

    def test_condition_not_met(self):
        page = _new_page(title='hello')
        page.feeling_good = False
        page.title = 'hello again'
        Session.commit()
        assert page.version == 1
        assert page.versions.count() == 1
        # the change itself is saved
        Session.expire(page)
        assert page.title == 'hello again'

    def test_condition_ignored_on_create(self):
        page = Page(title='hello')
        page.feeling_good = False
        Session.add(page)
        Session.commit()
        assert page.version == 1
        assert page.versions.count() == 1

    def test_should_save_version(self):
        page = _new_page(title='hello')
        assert not page.should_save_version()
        page.body = 'changed'
        assert page.is_altered()
        assert page.should_save_version()
        page.feeling_good = False
        assert not page.should_save_version()

    def test_delete_removes_versions(self):
        page = _new_page(title='hello')
        page.title = 'hello again'
        Session.commit()
        other = _new_page(title='other')
        Session.delete(page)
        Session.commit()
        assert _count(PageVersion) == 1
        assert other.versions.count() == 1


class TestReverting:

    def setup_method(self, name=''):
        Session.remove()
        repo.rebuild_db()
        self.page = _new_page(title='hello world!', body='first',
                              author_name='anna')
        self.page.title = 'hello world'
        self.page.author_name = 'leo'
        Session.commit()

    @classmethod
    def teardown_class(self):
        Session.remove()

    def test_revert_to_number(self):
        page = self.page
        assert page.revert_to(1)
        assert page.title == 'hello world!'
        assert page.author_name == 'anna'
        assert page.version == 1
        assert _count(PageVersion) == 2

    def test_revert_to_version_object(self):
        page = self.page
        # fetch both first: querying would autoflush the reverted page
        first = page.versions.earliest()
        latest = page.versions.latest()
        assert page.revert_to(first)
        assert page.title == 'hello world!'
        assert page.version == 1
        assert page.revert_to(latest)
        assert page.title == 'hello world'
        assert page.version == 2

    def test_revert_to_unknown_number(self):
        page = self.page
        assert not page.revert_to(7)
        assert page.title == 'hello world'
        assert page.version == 2

    def test_revert_to_version_of_other_page(self):
        other = _new_page(title='other')
        assert not self.page.revert_to(other.versions.first())
        assert self.page.title == 'hello world'

    def test_revert_to_unsaved_version(self):
        version = PageVersion(page_id=self.page.id, version=1, title='x')
        assert not self.page.revert_to(version)
        assert self.page.title == 'hello world'

    def test_revert_new_object(self):
        assert not Page(title='new').revert_to(1)

    def test_revert_back_and_forth(self):
        page = self.page
        assert page.revert_to(1)
        assert page.revert_to(2)
        assert page.title == 'hello world'
        assert page.version == 2
        assert _count(PageVersion) == 2

    def test_revert_does_not_save_pending_changes(self):
        page = self.page
        page.body = 'unsaved'
        assert page.revert_to(1)
        assert _count(PageVersion) == 2
        Session.rollback()
        assert page.body == 'first'

    def test_failed_revert_does_not_save_pending_changes(self):
        page = self.page
        page.body = 'unsaved'
        assert not page.revert_to(7)
        assert page.body == 'unsaved'
        assert _count(PageVersion) == 2
        Session.rollback()
        assert page.body == 'first'

    def test_versions_of_detached_object(self):
        from sqlalchemy.exc import InvalidRequestError
        with pytest.raises(InvalidRequestError):
            Page(title='nowhere').versions

    def test_revert_and_save(self):
        page = self.page
        assert page.revert_and_save(1)
        assert _count(PageVersion) == 2
        Session.expire(page)
        assert page.title == 'hello world!'
        assert page.version == 1

    def test_revert_and_save_twice(self):
        page = self.page
        assert page.revert_and_save(1)
        first = (page.title, page.body, page.author_name, page.version)
        assert page.revert_and_save(1)
        second = (page.title, page.body, page.author_name, page.version)
        assert first == second
        assert _count(PageVersion) == 2

    def test_versioning_continues_after_revert_and_save(self):
        page = self.page
        assert page.revert_and_save(1)
        page.body = 'second'
        Session.commit()
        assert page.version == 3
        assert [v.version for v in page.versions] == [1, 2, 3]

    def test_revert_and_save_failure(self):
        # takes the title the page had in version 1
        _new_page(title='hello world!')
        assert not self.page.revert_and_save(1)
        Session.rollback()

    def test_revert_and_save_unknown_version(self):
        assert not self.page.revert_and_save(9)

    def test_clone_round_trip(self):
        page = self.page
        copy = PageVersion()
        page.clone_versioned_model(page, copy)
        assert copy.title == 'hello world'
        assert copy.author_name == 'leo'
        page.title = 'changed'
        page.author_name = 'changed'
        page.clone_versioned_model(copy, page)
        assert page.title == 'hello world'
        assert page.author_name == 'leo'
        assert page.body == 'first'


class TestTraversal:

    @classmethod
    def setup_class(self):
        Session.remove()
        repo.rebuild_db()
        page = _new_page(title='v1')
        for title in ['v2', 'v3']:
            page.title = title
            Session.commit()
        other = _new_page(title='other')
        self.page_id = page.id
        self.other_id = other.id
        Session.remove()

    @classmethod
    def teardown_class(self):
        Session.remove()

    def _page(self):
        return Session.get(Page, self.page_id)

    def test_before_and_after(self):
        versions = self._page().versions.all()
        assert PageVersion.before(Session(), versions[1]) == versions[0]
        assert PageVersion.after(Session(), versions[1]) == versions[2]
        assert PageVersion.before(Session(), versions[0]) is None
        assert PageVersion.after(Session(), versions[2]) is None

    def test_previous_and_next(self):
        latest = self._page().versions.latest()
        assert latest.version == 3
        assert latest.previous().version == 2
        assert latest.previous().previous().version == 1
        assert latest.next() is None
        assert latest.previous().next() == latest

    def test_scoped_earliest_and_latest(self):
        other = Session.get(Page, self.other_id)
        assert other.versions.earliest().version == 1
        assert other.versions.latest().version == 1
        assert other.versions.latest().page_id == self.other_id
        assert self._page().versions.latest().version == 3

    def test_class_earliest_and_latest_span_all_pages(self):
        assert PageVersion.latest(Session()).page_id == self.page_id
        assert PageVersion.latest(Session()).version == 3
        assert PageVersion.earliest(Session()).version == 1

    def test_version_belongs_to_page(self):
        page = self._page()
        assert page.versions.first().page is page
        assert PageVersion.original_class is Page


class TestWithoutVersioning:

    def setup_method(self, name=''):
        Session.remove()
        repo.rebuild_db()

    @classmethod
    def teardown_class(self):
        Session.remove()

    def test_without_versioning(self):
        page = _new_page(title='hello')
        with Page.without_versioning():
            page.title = 'hello again'
            Session.commit()
        assert page.version == 1
        assert page.versions.count() == 1

    def test_without_versioning_restored_after_error(self):
        page = _new_page(title='hello')
        with pytest.raises(RuntimeError):
            with Page.without_versioning():
                raise RuntimeError('boom')
        page.title = 'hello again'
        Session.commit()
        assert page.version == 2
        assert page.versions.count() == 2

    def test_other_classes_still_versioned(self):
        widget = Widget(name='w')
        Session.add(widget)
        with Page.without_versioning():
            Session.commit()
        assert widget.versions.count() == 1

    def test_save_without_versioning(self):
        page = _new_page(title='hello')
        page.title = 'quiet'
        page.save_without_versioning()
        Session.commit()
        assert page.version == 1
        assert page.versions.count() == 1

    def test_save_without_versioning_detached(self):
        from sqlalchemy.exc import InvalidRequestError
        with pytest.raises(InvalidRequestError):
            Page(title='nowhere').save_without_versioning()


class TestLimit:

    def setup_method(self, name=''):
        Session.remove()
        repo.rebuild_db()

    @classmethod
    def teardown_class(self):
        Session.remove()

    def test_keeps_most_recent_versions(self):
        page = LimitedPage(title='one')
        Session.add(page)
        Session.commit()
        assert page.versions.count() == 1
        page.title = 'two'
        Session.commit()
        assert page.versions.count() == 2
        page.title = 'three'
        Session.commit()
        assert page.version == 3
        assert [v.version for v in page.versions] == [2, 3]
        page.title = 'four'
        Session.commit()
        assert [v.title for v in page.versions] == ['three', 'four']

    def test_limit_is_per_object(self):
        first = LimitedPage(title='first')
        second = LimitedPage(title='second')
        Session.add_all([first, second])
        Session.commit()
        for title in ['a', 'b', 'c']:
            first.title = title
            Session.commit()
        assert second.versions.count() == 1
        assert first.versions.count() == 2


class TestAlteredAttributes:

    def setup_method(self, name=''):
        Session.remove()
        repo.rebuild_db()
        self.landmark = Landmark(name='Washington', latitude=38.895,
                                 longitude=-77.036,
                                 doesnt_trigger_version='x')
        Session.add(self.landmark)
        Session.commit()

    @classmethod
    def teardown_class(self):
        Session.remove()

    def test_unwatched_change(self):
        landmark = self.landmark
        landmark.latitude = 40.0
        landmark.doesnt_trigger_version = 'y'
        assert not landmark.is_altered()
        Session.commit()
        assert landmark.version == 1
        assert landmark.versions.count() == 1

    def test_watched_change(self):
        landmark = self.landmark
        landmark.longitude = -70.0
        assert landmark.is_altered()
        Session.commit()
        assert landmark.version == 2
        assert landmark.versions.count() == 2

    def test_any_change_counts_without_tracking(self):
        widget = Widget(name='w', foo='bar')
        Session.add(widget)
        Session.commit()
        widget.foo = 'baz'
        assert widget.is_altered()


class TestNonVersionedColumns:

    @classmethod
    def setup_class(self):
        Session.remove()
        repo.rebuild_db()

    @classmethod
    def teardown_class(self):
        Session.remove()

    def test_versioned_columns(self):
        names = [col.name for col in Widget.versioned_columns()]
        assert names == ['name']
        assert 'foo' not in Widget.versioned_table().c

    def test_version_has_no_foo(self):
        widget = Widget(name='w', foo='bar')
        Session.add(widget)
        Session.commit()
        version = widget.versions.first()
        assert version.name == 'w'
        assert not hasattr(version, 'foo')

    def test_extend(self):
        widget = Widget(name='gadget')
        Session.add(widget)
        Session.commit()
        assert widget.versions.first().describe() == 'widget gadget'


class TestLockingAndInheritance:

    def setup_method(self, name=''):
        Session.remove()
        repo.rebuild_db()

    @classmethod
    def teardown_class(self):
        Session.remove()

    def test_lock_version_is_version(self):
        page = LockedPage(title='hello')
        Session.add(page)
        Session.commit()
        assert page.lock_version == 1
        page.title = 'hello again'
        Session.commit()
        assert page.lock_version == 2
        assert [v.lock_version for v in page.versions] == [1, 2]
        assert page.versions.all()[1].title == 'hello again'

    def test_stale_data(self):
        page = LockedPage(title='hello')
        Session.add(page)
        Session.commit()
        table = LockedPage.__table__
        Session.execute(update(table).values(lock_version=5))
        page.title = 'mine'
        with pytest.raises(StaleDataError):
            Session.flush()
        Session.rollback()

    def test_without_locking(self):
        page = LockedPage(title='hello')
        Session.add(page)
        Session.commit()
        table = LockedPage.__table__
        Session.execute(update(table).values(lock_version=5))
        page.title = 'mine'
        with LockedPage.without_locking():
            Session.commit()
        Session.expire(page)
        assert page.title == 'mine'
        assert page.versions.latest().title == 'mine'

    def test_inheritance_column_is_versioned(self):
        page = SpecialLockedPage(title='special', special_note='note')
        Session.add(page)
        Session.commit()
        version = page.versions.first()
        assert version.versioned_type == 'special'
        assert version.special_note == 'note'
        assert 'type' not in LockedPage.versioned_table().c
        assert isinstance(version, LockedPageVersion)

    def test_revert_copies_inheritance_column(self):
        page = SpecialLockedPage(title='special', special_note='note')
        Session.add(page)
        Session.commit()
        page.title = 'changed'
        page.special_note = 'changed'
        Session.commit()
        assert page.lock_version == 2
        assert page.revert_to(1)
        assert page.title == 'special'
        assert page.special_note == 'note'
        assert page.type == 'special'
        assert page.lock_version == 1

    def test_base_class_skips_subclass_columns(self):
        page = LockedPage(title='plain')
        Session.add(page)
        Session.commit()
        page.title = 'plain again'
        Session.commit()
        assert page.revert_to(1)
        assert page.title == 'plain'
        assert page.type == 'locked'

    def test_revert_and_save_does_not_lock(self):
        page = LockedPage(title='hello')
        Session.add(page)
        Session.commit()
        page.title = 'hello again'
        Session.commit()
        assert page.revert_and_save(1)
        Session.commit()
        Session.expire(page)
        assert page.lock_version == 1
        assert page.title == 'hello'
        assert page.versions.count() == 2

    def test_save_after_revert_and_save_gets_new_version(self):
        page = LockedPage(title='hello')
        Session.add(page)
        Session.commit()
        page.title = 'hello again'
        Session.commit()
        assert page.revert_and_save(1)
        Session.commit()
        page.title = 'third'
        Session.commit()
        assert page.lock_version == 3
        assert [v.lock_version for v in page.versions] == [1, 2, 3]
        assert page.versions.latest().title == 'third'

    def test_separate_lock_column(self):
        doc = Document(title='draft')
        Session.add(doc)
        Session.commit()
        assert doc.version == 1
        assert doc.lock_version == 0
        for title in ['second', 'third']:
            doc.title = title
            Session.commit()
        assert doc.version == 3
        assert doc.lock_version == 2
        assert [v.version for v in doc.versions] == [1, 2, 3]
        assert 'lock_version' not in Document.versioned_table().c

    def test_separate_lock_column_stale_data(self):
        doc = Document(title='draft')
        Session.add(doc)
        Session.commit()
        Session.execute(update(Document.__table__).values(lock_version=5))
        doc.title = 'mine'
        with pytest.raises(StaleDataError):
            Session.flush()
        Session.rollback()
        assert doc.versions.count() == 1
