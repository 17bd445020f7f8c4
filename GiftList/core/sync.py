"""Sync manager keeping the local person list and its backup spreadsheet in step.

The local list is authoritative. Every change is written to the local store straight away
and, while a backup is linked, pushed to the spreadsheet after a quiet period so that
bursts of edits result in a single remote write. At most one push is in flight; a push
requested meanwhile is dropped and a new quiet period starts once the running push ends.

The only time remote data flows back is the first link. When both sides hold different,
non-empty lists the user chooses which one to keep (:meth:`SyncAPI.resolve_link_conflict`).

States::

    unlinked -> linking -> linked-idle <-> linked-syncing -> linked-error
"""
import dataclasses
import enum
import logging
from typing import Any, List, Optional

from PySide6 import QtCore

from . import database
from . import model
from .demo import DemoSyncClient, DEMO_DOCUMENT_ID
from ..settings import lib
from ..status import status

DEBOUNCE_MS: int = 1500


class SyncState(enum.StrEnum):
    """Enum for sync state values."""
    Unlinked = 'unlinked'
    Linking = 'linking'
    Idle = 'linked-idle'
    Syncing = 'linked-syncing'
    Error = 'linked-error'


LINKED_STATES = (SyncState.Idle, SyncState.Syncing, SyncState.Error)


class LinkChoice(enum.StrEnum):
    """How to settle a first link when both sides hold different data."""
    AdoptRemote = 'adopt-remote'
    KeepLocal = 'keep-local'


class LinkCancelled(Exception):
    """The link was cancelled while it waited on the remote."""


def _same_people(a: List[model.Person], b: List[model.Person]) -> bool:
    return sorted(a, key=lambda p: p.id) == sorted(b, key=lambda p: p.id)


class SyncAPI(QtCore.QObject):
    """Owns the person list and decides when to write it to the local store and the remote.

    Args:
        client: Remote client. Defaults to a :class:`~GiftList.core.service.RemoteSyncClient`.
        demo_client: Client used by :meth:`link_demo`. Defaults to a :class:`DemoSyncClient`.
        debounce_ms: Quiet period before a push. Defaults to the configured value.

    Signals:
        stateChanged (str): The new :class:`SyncState`.
        peopleChanged (list): The new person list.
        errorOccurred (str, str): Status name and a human readable message.
        linkConflict (list): The remote list, when the first link needs a decision.
        reauthenticationRequired (): The remote session expired.
    """
    stateChanged = QtCore.Signal(str)
    peopleChanged = QtCore.Signal(list)
    errorOccurred = QtCore.Signal(str, str)
    linkConflict = QtCore.Signal(list)
    reauthenticationRequired = QtCore.Signal()

    def __init__(self, client: Any = None, demo_client: Any = None, debounce_ms: Optional[int] = None,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent)

        if client is None:
            from .service import RemoteSyncClient
            client = RemoteSyncClient(parent=self)
        self._remote_client = client
        self._demo_client = demo_client
        self.client = client

        self._people: List[model.Person] = []
        self._state: SyncState = SyncState.Unlinked
        self._document_id: Optional[str] = None

        self._pushing = False
        self._dirty = False
        self.reauthentication_required = False

        self._pending_document_id: Optional[str] = None
        self._pending_remote: Optional[List[model.Person]] = None
        self._pending_demo = False
        self._link_generation = 0

        if debounce_ms is None:
            debounce_ms = lib.settings['debounce_ms']
        self._timer = QtCore.QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.setInterval(DEBOUNCE_MS if debounce_ms is None else debounce_ms)
        self._timer.timeout.connect(self._push)

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def people(self) -> List[model.Person]:
        return list(self._people)

    @property
    def document_id(self) -> Optional[str]:
        return self._document_id

    @property
    def is_linked(self) -> bool:
        return self._state in LINKED_STATES

    @property
    def is_demo(self) -> bool:
        return self.client is self._demo_client and self._demo_client is not None

    @property
    def push_pending(self) -> bool:
        return self._timer.isActive()

    def _set_state(self, state: SyncState) -> None:
        if state == self._state:
            return
        logging.debug(f'Sync state: {self._state} -> {state}')
        self._state = state
        self.stateChanged.emit(state.value)

        from ..ui.actions import signals
        signals.syncStateChanged.emit(state.value)

    def _report(self, ex: status.BaseStatusException) -> None:
        self.errorOccurred.emit(ex.status.value, str(ex))

    def _set_people(self, people: List[model.Person]) -> None:
        """Replace the list, write it to the local store, and schedule a push when linked."""
        self._people = list(people)
        database.database.save_people(self._people)
        self.peopleChanged.emit(list(self._people))

        from ..ui.actions import signals
        signals.peopleChanged.emit(list(self._people))

        if self.is_linked:
            if self._pushing:
                self._dirty = True
            self._timer.start()

    def restore(self) -> None:
        """Load the local list and resume a link made in an earlier session, without pulling."""
        self._people = database.database.load_people()
        self.peopleChanged.emit(list(self._people))

        if database.database.get_value(database.Key.DemoLinked, default=False):
            self._use_demo_client()
            self._document_id = DEMO_DOCUMENT_ID
            self._set_state(SyncState.Idle)
            return

        document_id = database.database.get_value(database.Key.SpreadsheetId)
        if document_id:
            self._document_id = document_id
            self.client.initialize()
            self._set_state(SyncState.Idle)

    def _use_demo_client(self) -> None:
        if self._demo_client is None:
            self._demo_client = DemoSyncClient(parent=self)
        self.client = self._demo_client

    def _wait_until_ready(self, timeout_ms: Optional[int] = None) -> None:
        """Wait in a nested event loop until the client has loaded its dependencies.

        Raises:
            status.ServicesNotReadyException: If the client is not ready in time.
        """
        if self.client.is_ready():
            return
        self.client.initialize()
        if self.client.is_ready():
            return

        if timeout_ms is None:
            timeout_ms = (lib.settings['auth_timeout'] or 60) * 1000

        logging.debug('Waiting for the remote client to become ready...')
        loop = QtCore.QEventLoop()
        timer = QtCore.QTimer()
        timer.setSingleShot(True)
        timer.timeout.connect(loop.quit)
        self.client.readiness.becameReady.connect(loop.quit)
        timer.start(timeout_ms)
        loop.exec()
        timer.stop()
        self.client.readiness.becameReady.disconnect(loop.quit)

        if not self.client.is_ready():
            raise status.ServicesNotReadyException

    def link(self) -> None:
        """Link the backup spreadsheet: sign in, find or create the document, and reconcile."""
        self._link(demo=False)

    def link_demo(self) -> None:
        """Link a simulated backup that never leaves the machine."""
        self._link(demo=True)

    def _link(self, demo: bool) -> None:
        if self._state == SyncState.Linking:
            logging.debug('Already linking, ignoring request.')
            return
        if self.is_linked:
            logging.debug('Already linked, ignoring request.')
            return

        if demo:
            self._use_demo_client()
        self._set_state(SyncState.Linking)

        self._link_generation += 1
        generation = self._link_generation

        try:
            self._wait_until_ready()
            self._ensure_link_current(generation)
            self.client.authenticate()
            self._ensure_link_current(generation)
            document_id = None if demo else database.database.get_value(database.Key.SpreadsheetId)
            if not document_id:
                document_id = self.client.find_or_create_remote_document()
                self._ensure_link_current(generation)
            remote = self.client.pull(document_id)
            self._ensure_link_current(generation)
        except LinkCancelled:
            logging.info('Link cancelled while waiting for the remote.')
            return
        except status.PopupCancelledException:
            if generation == self._link_generation:
                self._abort_link()
            return
        except status.BaseStatusException as ex:
            if generation != self._link_generation:
                logging.debug(f'Ignoring failure of a cancelled link: {ex}')
                return
            self._abort_link()
            self._report(ex)
            return

        if not remote:
            logging.info('Remote is empty, seeding it with the local list.')
            self._complete_link(document_id, demo)
            self._push()
            return

        if not self._people or _same_people(self._people, remote):
            logging.info('Adopting the remote list.')
            self._set_people(remote)
            self._complete_link(document_id, demo)
            return

        logging.info('Local and remote lists differ, asking which one to keep.')
        self._pending_document_id = document_id
        self._pending_remote = list(remote)
        self._pending_demo = demo
        self.linkConflict.emit(list(remote))

    @property
    def link_conflict_pending(self) -> bool:
        return self._pending_remote is not None

    def resolve_link_conflict(self, choice: LinkChoice) -> None:
        """Settle a pending first link.

        Adopting the remote list replaces the local one and pushes nothing. Keeping the local
        list pushes it straight away, overwriting the remote.
        """
        if self._pending_remote is None:
            logging.warning('No link conflict to resolve.')
            return

        choice = LinkChoice(choice)
        remote = self._pending_remote
        document_id = self._pending_document_id
        demo = self._pending_demo
        self._clear_pending_link()

        if choice == LinkChoice.AdoptRemote:
            self._set_people(remote)
            self._complete_link(document_id, demo)
            return

        self._complete_link(document_id, demo)
        self._push()

    def _ensure_link_current(self, generation: int) -> None:
        if generation != self._link_generation:
            raise LinkCancelled

    def cancel_link(self) -> None:
        """Abandon a running or pending first link, leaving both sides untouched.

        A link still waiting on sign-in or the remote stops at its next step.
        """
        if self._state != SyncState.Linking:
            return
        self._link_generation += 1
        self._clear_pending_link()
        self._abort_link()

    def _clear_pending_link(self) -> None:
        self._pending_remote = None
        self._pending_document_id = None
        self._pending_demo = False

    def _abort_link(self) -> None:
        self.client = self._remote_client
        self._set_state(SyncState.Unlinked)

    def _complete_link(self, document_id: str, demo: bool) -> None:
        self._document_id = document_id
        self.reauthentication_required = False
        if demo:
            database.database.set_value(database.Key.DemoLinked, True)
        else:
            database.database.set_value(database.Key.SpreadsheetId, document_id)
        self._set_state(SyncState.Idle)

    def unlink(self, sign_out: bool = False) -> None:
        """Forget the linked backup. The remote spreadsheet is left as it is."""
        self._timer.stop()
        self._link_generation += 1
        self._clear_pending_link()
        self._dirty = False
        self.reauthentication_required = False

        if sign_out:
            self.client.sign_out()

        for key in (database.Key.SpreadsheetId, database.Key.Worksheet, database.Key.DemoLinked):
            database.database.delete_value(key)

        self._document_id = None
        self.client = self._remote_client
        self._set_state(SyncState.Unlinked)

    @QtCore.Slot()
    def push_now(self) -> None:
        """Push without waiting for the quiet period."""
        self._timer.stop()
        self._push()

    @QtCore.Slot()
    def _push(self) -> None:
        if not self.is_linked or not self._document_id:
            return
        if self._pushing:
            logging.debug('Push already in flight, dropping request.')
            self._dirty = True
            return

        self._pushing = True
        self._dirty = False
        self._set_state(SyncState.Syncing)
        snapshot = list(self._people)

        try:
            self._wait_until_ready((lib.settings['remote_timeout'] or 20) * 1000)
            self.client.push(self._document_id, snapshot)
        except status.SessionExpiredException as ex:
            self._push_failed(ex)
            if self.is_linked:
                self.reauthentication_required = True
                self.reauthenticationRequired.emit()

                from ..ui.actions import signals
                signals.authenticationRequested.emit()
        except status.BaseStatusException as ex:
            self._push_failed(ex)
        else:
            if self._state == SyncState.Syncing:
                self.reauthentication_required = False
                self._set_state(SyncState.Idle)
        finally:
            self._pushing = False

        if self._dirty and self.is_linked:
            self._dirty = False
            self._timer.start()

    def _push_failed(self, ex: status.BaseStatusException) -> None:
        if self._state == SyncState.Syncing:
            self._set_state(SyncState.Error)
        self._report(ex)

    def reauthenticate(self) -> None:
        """Sign in again after the session expired and push the local list."""
        if not self.is_linked:
            return
        try:
            self._wait_until_ready()
            self.client.authenticate(force=True)
        except status.PopupCancelledException:
            return
        except status.BaseStatusException as ex:
            self._report(ex)
            return

        self.reauthentication_required = False
        self._timer.stop()
        self._push()

    # Intents

    def replace_all(self, people: List[model.Person]) -> None:
        """
        Raises:
            ValueError: If ids are not unique.
        """
        ids = [p.id for p in people]
        if len(ids) != len(set(ids)):
            raise ValueError('Person ids must be unique.')
        self._set_people(people)

    def add_person(self, name: str, birthday: str, color: model.PersonColor = model.PersonColor.Slate,
                   birth_year: Optional[int] = None) -> model.Person:
        person = model.new_person(name, birthday, color=color, birth_year=birth_year)
        self._set_people(model.add_person(self._people, person))
        return person

    def update_person(self, person: model.Person) -> None:
        self._set_people(model.replace_person(self._people, person))

    def delete_person(self, person_id: str) -> None:
        self._set_people(model.remove_person(self._people, person_id))

    def toggle_favorite(self, person_id: str) -> None:
        person = model.find_person(self._people, person_id)
        self.update_person(dataclasses.replace(person, is_favorite=not person.is_favorite))

    def mark_reminder_set(self, person_id: str, value: bool = True) -> None:
        person = model.find_person(self._people, person_id)
        self.update_person(dataclasses.replace(person, reminder_set=value))

    def add_gift(self, person_id: str, name: str, description: str = '', price: Optional[float] = None,
                 link: Optional[str] = None,
                 priority: model.GiftPriority = model.GiftPriority.Medium) -> model.Gift:
        person = model.find_person(self._people, person_id)
        gift = model.new_gift(name, description=description, price=price, link=link, priority=priority)
        self.update_person(model.add_gift(person, gift))
        return gift

    def update_gift(self, person_id: str, gift: model.Gift) -> None:
        person = model.find_person(self._people, person_id)
        self.update_person(model.replace_gift(person, gift))

    def delete_gift(self, person_id: str, gift_id: str) -> None:
        person = model.find_person(self._people, person_id)
        self.update_person(model.remove_gift(person, gift_id))

    def toggle_gift_status(self, person_id: str, gift_id: str) -> None:
        person = model.find_person(self._people, person_id)
        self.update_person(model.toggle_gift_status(person, gift_id))
