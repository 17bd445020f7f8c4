"""
Tests for GiftList.core.sync (local persistence, debounced pushes, first link, failures).

A FakeRemoteClient from tests.base stands in for the Google client.

Run:
    python -m unittest tests.test_sync
"""
import time
from typing import List, Tuple

from PySide6 import QtCore
from PySide6.QtTest import QTest

from GiftList.core import database, model
from GiftList.core.demo import DEMO_DOCUMENT_ID, DemoSyncClient
from GiftList.core.readiness import Readiness
from GiftList.core.sync import LinkChoice, SyncAPI, SyncState
from GiftList.settings import lib
from GiftList.status import status
from tests.base import BaseTestCase, FakeRemoteClient, make_person, wait_until

DEBOUNCE_MS = 100


class SyncTestCase(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.client = FakeRemoteClient()
        self.demo = DemoSyncClient(delay_ms=0)
        self.sync = SyncAPI(client=self.client, demo_client=self.demo, debounce_ms=DEBOUNCE_MS)

        self.states: List[str] = []
        self.errors: List[Tuple[str, str]] = []
        self.conflicts: List[list] = []
        self.reauth: List[bool] = []
        self.sync.stateChanged.connect(self.states.append)
        self.sync.errorOccurred.connect(lambda name, msg: self.errors.append((name, msg)))
        self.sync.linkConflict.connect(self.conflicts.append)
        self.sync.reauthenticationRequired.connect(lambda: self.reauth.append(True))

    def tearDown(self) -> None:
        self.sync.unlink()
        super().tearDown()

    def assertStored(self) -> None:
        self.assertEqual(database.database.load_people(), self.sync.people)

    def link_empty_remote(self) -> None:
        self.sync.link()
        self.assertEqual(self.sync.state, SyncState.Idle)
        self.client.pushes.clear()
        self.client.push_times.clear()


class LocalIntentTests(SyncTestCase):

    def test_every_intent_is_stored(self):
        ana = self.sync.add_person('Ana', '15 de Mayo', color=model.PersonColor.Rose, birth_year=1990)
        self.assertStored()

        gift = self.sync.add_gift(ana.id, 'Book', price=25)
        self.assertStored()

        self.sync.toggle_gift_status(ana.id, gift.id)
        self.assertTrue(model.find_person(self.sync.people, ana.id).gifts[0].is_purchased)
        self.assertStored()

        self.sync.update_gift(ana.id, model.Gift(id=gift.id, name='Novel', price=30))
        self.assertStored()

        self.sync.toggle_favorite(ana.id)
        self.assertTrue(model.find_person(self.sync.people, ana.id).is_favorite)
        self.assertStored()

        self.sync.mark_reminder_set(ana.id)
        self.assertTrue(model.find_person(self.sync.people, ana.id).reminder_set)
        self.assertStored()

        self.sync.delete_gift(ana.id, gift.id)
        self.assertEqual(model.find_person(self.sync.people, ana.id).gifts, ())
        self.assertStored()

    def test_delete_person_removes_gifts(self):
        ana = self.sync.add_person('Ana', '15 de Mayo')
        self.sync.add_gift(ana.id, 'Book')
        eva = self.sync.add_person('Eva', '2 de Enero')

        self.sync.delete_person(ana.id)

        self.assertEqual([p.id for p in self.sync.people], [eva.id])
        self.assertEqual(sum(len(p.gifts) for p in database.database.load_people()), 0)

    def test_unknown_ids(self):
        with self.assertRaises(KeyError):
            self.sync.delete_person('missing')
        ana = self.sync.add_person('Ana', '15 de Mayo')
        with self.assertRaises(KeyError):
            self.sync.delete_gift(ana.id, 'missing')

    def test_replace_all_requires_unique_ids(self):
        ana = make_person('Ana')
        with self.assertRaises(ValueError):
            self.sync.replace_all([ana, ana])
        self.sync.replace_all([ana])
        self.assertEqual(self.sync.people, [ana])
        self.assertStored()

    def test_unlinked_changes_are_never_pushed(self):
        self.sync.add_person('Ana', '15 de Mayo')
        self.assertFalse(self.sync.push_pending)
        QTest.qWait(DEBOUNCE_MS * 3)
        self.assertEqual(self.client.calls, [])
        self.assertEqual(self.sync.state, SyncState.Unlinked)

    def test_people_changed_signal(self):
        received: List[list] = []
        self.sync.peopleChanged.connect(received.append)
        self.sync.add_person('Ana', '15 de Mayo')
        self.assertEqual(len(received), 1)
        self.assertEqual(received[0], self.sync.people)


class DebounceTests(SyncTestCase):

    def test_burst_results_in_one_push(self):
        self.link_empty_remote()

        self.sync.add_person('Ana', '15 de Mayo')
        self.sync.add_person('Eva', '2 de Enero')
        self.sync.add_person('Leo', '9 de Junio')
        last_mutation = time.monotonic()
        self.assertTrue(self.sync.push_pending)

        self.assertTrue(wait_until(lambda: len(self.client.pushes) == 1))
        QTest.qWait(DEBOUNCE_MS * 3)

        self.assertEqual(len(self.client.pushes), 1)
        self.assertEqual(self.client.pushes[0], self.sync.people)
        self.assertGreaterEqual(self.client.push_times[0] - last_mutation, (DEBOUNCE_MS - 20) / 1000.0)
        self.assertEqual(self.sync.state, SyncState.Idle)

    def test_each_mutation_restarts_the_quiet_period(self):
        self.link_empty_remote()

        self.sync.add_person('Ana', '15 de Mayo')
        QTest.qWait(DEBOUNCE_MS // 3)
        self.sync.add_person('Eva', '2 de Enero')
        QTest.qWait(DEBOUNCE_MS // 3)
        self.assertEqual(self.client.pushes, [])

        self.assertTrue(wait_until(lambda: len(self.client.pushes) == 1))
        self.assertEqual(len(self.client.pushes[0]), 2)

    def test_push_follows_the_last_of_spaced_mutations(self):
        self.link_empty_remote()
        started = time.monotonic()

        self.sync.add_person('Ana', '15 de Mayo')
        QtCore.QTimer.singleShot(DEBOUNCE_MS // 4, lambda: self.sync.add_person('Eva', '2 de Enero'))
        QtCore.QTimer.singleShot(DEBOUNCE_MS // 2, lambda: self.sync.add_person('Leo', '9 de Junio'))

        self.assertTrue(wait_until(lambda: len(self.client.pushes) == 1))
        QTest.qWait(DEBOUNCE_MS * 2)

        self.assertEqual(len(self.client.pushes), 1)
        self.assertEqual([p.name for p in self.client.pushes[0]], ['Ana', 'Eva', 'Leo'])
        self.assertGreaterEqual(self.client.push_times[0] - started, (DEBOUNCE_MS * 1.5 - 20) / 1000.0)

    def test_push_now_skips_the_quiet_period(self):
        self.link_empty_remote()
        self.sync.add_person('Ana', '15 de Mayo')
        self.sync.push_now()
        self.assertEqual(len(self.client.pushes), 1)
        self.assertFalse(self.sync.push_pending)

    def test_push_during_push_is_dropped_and_rescheduled(self):
        self.link_empty_remote()
        self.sync.add_person('Ana', '15 de Mayo')
        self.client.push_delay_ms = 300

        QtCore.QTimer.singleShot(50, lambda: self.sync.add_person('Eva', '2 de Enero'))
        QtCore.QTimer.singleShot(100, lambda: self.sync.add_person('Leo', '9 de Junio'))
        self.sync.push_now()

        # The first push carries the list as it was when the push started
        self.assertEqual(len(self.client.pushes), 1)
        self.assertEqual([p.name for p in self.client.pushes[0]], ['Ana'])

        self.client.push_delay_ms = 0
        self.assertTrue(wait_until(lambda: len(self.client.pushes) == 2))
        QTest.qWait(DEBOUNCE_MS * 3)
        self.assertEqual(len(self.client.pushes), 2)
        self.assertEqual([p.name for p in self.client.pushes[1]], ['Ana', 'Eva', 'Leo'])
        self.assertEqual(self.sync.state, SyncState.Idle)

    def test_states_during_push(self):
        self.link_empty_remote()
        self.states.clear()
        self.sync.add_person('Ana', '15 de Mayo')
        self.assertTrue(wait_until(lambda: len(self.client.pushes) == 1))
        self.assertEqual(self.states, [SyncState.Syncing.value, SyncState.Idle.value])


class FirstLinkTests(SyncTestCase):

    def test_empty_remote_is_seeded(self):
        ana = self.sync.add_person('Ana', '15 de Mayo')
        self.sync.link()

        self.assertEqual(self.sync.state, SyncState.Idle)
        self.assertEqual(self.client.pushes, [[ana]])
        self.assertEqual(database.database.get_value(database.Key.SpreadsheetId), 'doc-1')
        self.assertEqual(self.states[0], SyncState.Linking.value)
        self.assertEqual(self.conflicts, [])

    def test_empty_local_adopts_remote(self):
        remote = [make_person('Ana', gifts=1)]
        self.client.remote = list(remote)
        self.sync.link()

        self.assertEqual(self.sync.state, SyncState.Idle)
        self.assertEqual(self.sync.people, remote)
        self.assertEqual(self.client.pushes, [])
        self.assertStored()

    def test_equal_lists_need_no_decision(self):
        people = [make_person('Ana'), make_person('Eva')]
        self.sync.replace_all(people)
        self.client.remote = list(reversed(people))
        self.sync.link()

        self.assertEqual(self.conflicts, [])
        self.assertEqual(self.sync.state, SyncState.Idle)

    def _start_conflict(self):
        local = self.sync.add_person('Eva', '2 de Enero')
        remote = [make_person('Ana')]
        self.client.remote = list(remote)
        self.sync.link()

        self.assertEqual(self.conflicts, [remote])
        self.assertTrue(self.sync.link_conflict_pending)
        self.assertEqual(self.sync.state, SyncState.Linking)
        self.assertIsNone(database.database.get_value(database.Key.SpreadsheetId))
        return local, remote

    def test_conflict_adopt_remote(self):
        _, remote = self._start_conflict()
        self.sync.resolve_link_conflict(LinkChoice.AdoptRemote)

        self.assertEqual(self.sync.people, remote)
        self.assertEqual(self.sync.state, SyncState.Idle)
        self.assertFalse(self.sync.link_conflict_pending)
        self.assertEqual(self.client.pushes, [])
        self.assertStored()

    def test_conflict_keep_local(self):
        local, _ = self._start_conflict()
        self.sync.resolve_link_conflict(LinkChoice.KeepLocal)

        self.assertEqual(self.sync.people, [local])
        self.assertEqual(self.client.pushes, [[local]])
        self.assertEqual(self.sync.state, SyncState.Idle)

    def test_conflict_cancelled(self):
        local, _ = self._start_conflict()
        self.sync.cancel_link()

        self.assertEqual(self.sync.state, SyncState.Unlinked)
        self.assertEqual(self.sync.people, [local])
        self.assertEqual(self.client.pushes, [])
        self.assertFalse(self.sync.link_conflict_pending)
        self.assertIsNone(database.database.get_value(database.Key.SpreadsheetId))

    def test_existing_document_id_is_reused(self):
        database.database.set_value(database.Key.SpreadsheetId, 'doc-old')
        self.sync.link()
        self.assertNotIn('find_or_create', self.client.calls)
        self.assertEqual(self.sync.document_id, 'doc-old')

    def test_link_while_linked_is_ignored(self):
        self.link_empty_remote()
        calls = list(self.client.calls)
        self.sync.link()
        self.assertEqual(self.client.calls, calls)


class LinkFailureTests(SyncTestCase):

    def test_popup_cancel_is_silent(self):
        self.client.auth_error = status.PopupCancelledException
        self.sync.link()

        self.assertEqual(self.sync.state, SyncState.Unlinked)
        self.assertEqual(self.errors, [])
        self.assertEqual(self.states, [SyncState.Linking.value, SyncState.Unlinked.value])

    def test_auth_timeout_is_reported(self):
        self.client.auth_error = status.AuthTimeoutException
        self.sync.link()

        self.assertEqual(self.sync.state, SyncState.Unlinked)
        self.assertEqual(len(self.errors), 1)
        self.assertEqual(self.errors[0][0], status.Status.AuthTimeout.value)

    def test_remote_errors_abort_the_link(self):
        self.client.pull_error = status.DocumentAccessDeniedException
        self.sync.add_person('Ana', '15 de Mayo')
        self.sync.link()

        self.assertEqual(self.sync.state, SyncState.Unlinked)
        self.assertEqual(self.errors[0][0], status.Status.DocumentAccessDenied.value)
        self.assertEqual(len(self.sync.people), 1)
        self.assertIsNone(database.database.get_value(database.Key.SpreadsheetId))

    def test_waits_for_client_readiness(self):
        self.client.readiness = Readiness(('identity', 'api'), parent=self.client)

        def _load() -> None:
            self.client.readiness.mark_loaded('identity')
            self.client.readiness.mark_loaded('api')

        QtCore.QTimer.singleShot(100, _load)
        self.sync.link()

        self.assertEqual(self.sync.state, SyncState.Idle)
        self.assertIn('initialize', self.client.calls)

    def test_readiness_timeout(self):
        lib.settings['auth_timeout'] = 1
        self.client.readiness = Readiness(('identity', 'api'), parent=self.client)
        self.sync.link()

        self.assertEqual(self.sync.state, SyncState.Unlinked)
        self.assertEqual(self.errors[0][0], status.Status.ServicesNotReady.value)
        self.assertNotIn('authenticate', self.client.calls)

    def test_cancel_while_signing_in(self):
        self.client.auth_delay_ms = 200
        self.sync.add_person('Ana', '15 de Mayo')
        QtCore.QTimer.singleShot(50, self.sync.cancel_link)
        self.sync.link()

        self.assertEqual(self.sync.state, SyncState.Unlinked)
        self.assertEqual(self.client.calls, ['authenticate'])
        self.assertIsNone(self.sync.document_id)
        self.assertIsNone(database.database.get_value(database.Key.SpreadsheetId))
        self.assertEqual(self.errors, [])

        QTest.qWait(DEBOUNCE_MS * 3)
        self.assertEqual(self.client.pushes, [])

    def test_unlink_while_signing_in(self):
        self.client.auth_delay_ms = 200
        self.client.auth_error = status.AuthTimeoutException
        QtCore.QTimer.singleShot(50, self.sync.unlink)
        self.sync.link()

        self.assertEqual(self.sync.state, SyncState.Unlinked)
        self.assertNotIn('find_or_create', self.client.calls)
        self.assertEqual(self.errors, [])

    def test_link_again_after_cancel(self):
        self.client.auth_delay_ms = 200
        QtCore.QTimer.singleShot(50, self.sync.cancel_link)
        self.sync.link()

        self.client.auth_delay_ms = 0
        self.sync.link()
        self.assertEqual(self.sync.state, SyncState.Idle)
        self.assertEqual(self.sync.document_id, 'doc-1')


class PushFailureTests(SyncTestCase):

    def test_unreachable_remote(self):
        self.link_empty_remote()
        self.client.push_error = status.RemoteUnreachableException
        self.sync.add_person('Ana', '15 de Mayo')

        self.assertTrue(wait_until(lambda: self.sync.state == SyncState.Error))
        self.assertEqual(self.errors[-1][0], status.Status.RemoteUnreachable.value)
        self.assertFalse(self.sync.reauthentication_required)
        self.assertStored()

        # The next change is pushed again and recovers
        self.client.push_error = None
        self.sync.add_person('Eva', '2 de Enero')
        self.assertTrue(wait_until(lambda: self.sync.state == SyncState.Idle))
        self.assertEqual(len(self.client.pushes[-1]), 2)

    def test_session_expired(self):
        self.link_empty_remote()
        self.client.push_error = status.SessionExpiredException
        self.sync.add_person('Ana', '15 de Mayo')
        before = self.sync.people

        self.assertTrue(wait_until(lambda: self.sync.state == SyncState.Error))
        self.assertEqual(self.sync.people, before)
        self.assertStored()
        self.assertTrue(self.sync.reauthentication_required)
        self.assertEqual(self.reauth, [True])
        self.assertEqual(self.errors[-1][0], status.Status.SessionExpired.value)

        self.client.push_error = None
        self.sync.reauthenticate()

        self.assertEqual(self.sync.state, SyncState.Idle)
        self.assertFalse(self.sync.reauthentication_required)
        self.assertEqual(self.client.pushes[-1], self.sync.people)

    def test_cancelled_reauthentication_keeps_error(self):
        self.link_empty_remote()
        self.client.push_error = status.SessionExpiredException
        self.sync.add_person('Ana', '15 de Mayo')
        self.assertTrue(wait_until(lambda: self.sync.state == SyncState.Error))

        self.client.auth_error = status.PopupCancelledException
        self.sync.reauthenticate()
        self.assertEqual(self.sync.state, SyncState.Error)
        self.assertTrue(self.sync.reauthentication_required)

    def test_session_expiry_asks_for_sign_in(self):
        from GiftList.ui.actions import signals

        requested: List[bool] = []

        def _slot() -> None:
            requested.append(True)

        signals.authenticationRequested.connect(_slot)
        try:
            self.link_empty_remote()
            self.client.push_error = status.SessionExpiredException
            self.sync.add_person('Ana', '15 de Mayo')
            self.assertTrue(wait_until(lambda: self.sync.state == SyncState.Error))
        finally:
            signals.authenticationRequested.disconnect(_slot)

        self.assertEqual(requested, [True])

    def test_session_expiry_after_unlink_is_ignored(self):
        self.link_empty_remote()
        self.client.push_error = status.SessionExpiredException
        self.client.push_delay_ms = 200
        self.sync.add_person('Ana', '15 de Mayo')
        # Fires while the push is still waiting on the remote
        QtCore.QTimer.singleShot(DEBOUNCE_MS + 100, self.sync.unlink)
        self.assertTrue(wait_until(lambda: len(self.errors) == 1))

        self.assertEqual(self.sync.state, SyncState.Unlinked)
        self.assertFalse(self.sync.reauthentication_required)
        self.assertEqual(self.reauth, [])


class RestoreAndUnlinkTests(SyncTestCase):

    def test_restore_local_list(self):
        people = [make_person('Ana', gifts=2)]
        database.database.save_people(people)

        sync = SyncAPI(client=FakeRemoteClient(), debounce_ms=DEBOUNCE_MS)
        sync.restore()
        self.assertEqual(sync.people, people)
        self.assertEqual(sync.state, SyncState.Unlinked)

    def test_restore_link_without_pulling(self):
        database.database.set_value(database.Key.SpreadsheetId, 'doc-9')
        client = FakeRemoteClient(remote=[make_person('Remote')])

        sync = SyncAPI(client=client, debounce_ms=DEBOUNCE_MS)
        sync.restore()

        self.assertEqual(sync.state, SyncState.Idle)
        self.assertEqual(sync.document_id, 'doc-9')
        self.assertEqual(sync.people, [])
        self.assertIn('initialize', client.calls)
        self.assertNotIn('pull', client.calls)
        sync.unlink()

    def test_unlink(self):
        self.link_empty_remote()
        self.sync.add_person('Ana', '15 de Mayo')
        self.sync.unlink(sign_out=True)

        self.assertEqual(self.sync.state, SyncState.Unlinked)
        self.assertFalse(self.sync.push_pending)
        self.assertIn('sign_out', self.client.calls)
        self.assertIsNone(database.database.get_value(database.Key.SpreadsheetId))
        self.assertEqual(len(self.sync.people), 1)

        QTest.qWait(DEBOUNCE_MS * 3)
        self.assertEqual(self.client.pushes, [])


class DemoLinkTests(SyncTestCase):

    def test_demo_link(self):
        ana = self.sync.add_person('Ana', '15 de Mayo')
        self.sync.link_demo()

        self.assertEqual(self.sync.state, SyncState.Idle)
        self.assertTrue(self.sync.is_demo)
        self.assertEqual(self.sync.document_id, DEMO_DOCUMENT_ID)
        self.assertEqual(self.demo.push_count, 1)
        self.assertEqual(self.demo.last_pushed, [ana])
        self.assertEqual(self.client.calls, [])
        self.assertIs(database.database.get_value(database.Key.DemoLinked), True)

    def test_demo_pushes_are_debounced(self):
        self.sync.link_demo()
        pushes = self.demo.push_count
        self.sync.add_person('Ana', '15 de Mayo')
        self.sync.add_person('Eva', '2 de Enero')
        self.assertTrue(wait_until(lambda: self.demo.push_count == pushes + 1))
        self.assertEqual(len(self.demo.last_pushed), 2)
        QTest.qWait(DEBOUNCE_MS * 2)
        self.assertEqual(self.demo.push_count, pushes + 1)

    def test_demo_restore_and_unlink(self):
        self.sync.link_demo()

        demo = DemoSyncClient(delay_ms=0)
        sync = SyncAPI(client=FakeRemoteClient(), demo_client=demo, debounce_ms=DEBOUNCE_MS)
        sync.restore()
        self.assertTrue(sync.is_demo)
        self.assertEqual(sync.state, SyncState.Idle)

        sync.unlink()
        self.assertFalse(sync.is_demo)
        self.assertIsNone(database.database.get_value(database.Key.DemoLinked))

    def test_demo_delay(self):
        demo = DemoSyncClient(delay_ms=150)
        started = time.monotonic()
        self.assertEqual(demo.find_or_create_remote_document(), DEMO_DOCUMENT_ID)
        self.assertGreaterEqual(time.monotonic() - started, 0.12)
        self.assertEqual(demo.pull(DEMO_DOCUMENT_ID), [])
