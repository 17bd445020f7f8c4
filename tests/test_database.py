"""
Integration tests for GiftList.core.database
(using unittest, not pytest).

Run:
    python -m unittest tests.test_database
"""
import sqlite3
from unittest.mock import patch

from GiftList.core import database as database_module
from GiftList.core.database import DatabaseAPI, Key, SCHEMA_VERSION, Table
from GiftList.settings import lib
from tests.base import BaseTestCase, make_person


class DatabaseAPITests(BaseTestCase):

    def test_schema_created_on_start(self):
        self.assertTrue(lib.settings.db_path.exists())
        self.assertTrue(database_module.database.available)

        conn = DatabaseAPI.connection()
        try:
            row = conn.execute(f'SELECT schema_version FROM {Table.Meta.value} WHERE meta_id=1').fetchone()
        finally:
            conn.close()
        self.assertEqual(row[0], SCHEMA_VERSION)

    def test_value_round_trip(self):
        db = database_module.database
        self.assertTrue(db.set_value(Key.SpreadsheetId, 'sheet-123'))
        self.assertEqual(db.get_value(Key.SpreadsheetId), 'sheet-123')

        self.assertTrue(db.set_value(Key.DemoLinked, True))
        self.assertIs(db.get_value(Key.DemoLinked), True)

        self.assertTrue(db.delete_value(Key.SpreadsheetId))
        self.assertIsNone(db.get_value(Key.SpreadsheetId))
        self.assertEqual(db.get_value(Key.SpreadsheetId, default='fallback'), 'fallback')

    def test_people_round_trip(self):
        db = database_module.database
        people = [make_person('Ana', gifts=2), make_person('Eva', '2 de Enero')]
        self.assertTrue(db.save_people(people))

        fresh = DatabaseAPI()
        self.assertEqual(fresh.load_people(), people)

    def test_empty_store_loads_empty_list(self):
        self.assertEqual(database_module.database.load_people(), [])

    def test_corrupt_value_is_ignored(self):
        conn = DatabaseAPI.connection()
        try:
            conn.execute(
                f'INSERT OR REPLACE INTO {Table.Values.value} (key, value) VALUES (?, ?)',
                (Key.People.value, '{not json')
            )
            conn.commit()
        finally:
            conn.close()

        with self.assertLogs(level='WARNING'):
            self.assertEqual(database_module.database.load_people(), [])

    def test_non_list_people_value_is_ignored(self):
        database_module.database.set_value(Key.People, {'id': 'p1'})
        self.assertEqual(database_module.database.load_people(), [])

    def test_invalid_entries_are_skipped(self):
        good = make_person('Ana')
        database_module.database.set_value(Key.People, [good.to_dict(), {'name': 'missing id'}])
        self.assertEqual(database_module.database.load_people(), [good])

    def test_outdated_schema_is_recreated(self):
        database_module.database.set_value(Key.SpreadsheetId, 'sheet-123')
        conn = DatabaseAPI.connection()
        try:
            conn.execute(f'UPDATE {Table.Meta.value} SET schema_version=0 WHERE meta_id=1')
            conn.commit()
        finally:
            conn.close()

        fresh = DatabaseAPI()
        self.assertTrue(fresh.available)
        self.assertIsNone(fresh.get_value(Key.SpreadsheetId))

    def test_missing_table_is_recreated(self):
        conn = DatabaseAPI.connection()
        try:
            conn.execute(f'DROP TABLE {Table.Values.value}')
            conn.commit()
        finally:
            conn.close()

        fresh = DatabaseAPI()
        self.assertTrue(fresh.set_value(Key.Worksheet, 'People'))
        self.assertEqual(fresh.get_value(Key.Worksheet), 'People')

    def test_unavailable_store_falls_back_to_defaults(self):
        with patch.object(DatabaseAPI, 'connection', side_effect=sqlite3.OperationalError('disk I/O error')):
            db = DatabaseAPI()
            self.assertFalse(db.available)
            self.assertEqual(db.load_people(), [])
            self.assertFalse(db.save_people([make_person()]))
            self.assertEqual(db.get_value(Key.SpreadsheetId, 'default'), 'default')
            self.assertFalse(db.delete_value(Key.SpreadsheetId))

        # The store recovers once the database can be opened again
        self.assertTrue(db.save_people([make_person()]))
        self.assertTrue(db.available)

    def test_write_failure_returns_false(self):
        db = database_module.database
        with patch.object(DatabaseAPI, 'connection', side_effect=sqlite3.OperationalError('locked')):
            with self.assertLogs(level='WARNING'):
                self.assertFalse(db.set_value(Key.SpreadsheetId, 'x'))
        self.assertTrue(db.available)

    def test_reset_clears_values(self):
        db = database_module.database
        db.save_people([make_person()])
        db.set_value(Key.SpreadsheetId, 'sheet-123')

        db.reset()

        self.assertTrue(db.available)
        self.assertTrue(lib.settings.db_path.exists())
        self.assertEqual(db.load_people(), [])
        self.assertIsNone(db.get_value(Key.SpreadsheetId))

    def test_delete_without_file_is_noop(self):
        DatabaseAPI.delete()
        self.assertFalse(lib.settings.db_path.exists())
        DatabaseAPI.delete()
