"""
Tests for GiftList.core.readiness.

Run:
    python -m unittest tests.test_readiness
"""
from typing import List

from GiftList.core.readiness import Readiness
from tests.base import BaseTestCase


class ReadinessTests(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.readiness = Readiness(('identity', 'api'))
        self.emitted: List[bool] = []
        self.readiness.becameReady.connect(lambda: self.emitted.append(True))

    def test_ready_after_all_loaded(self):
        self.assertFalse(self.readiness.ready())
        self.readiness.mark_loaded('api')
        self.assertFalse(self.readiness.ready())
        self.assertTrue(self.readiness.is_loaded('api'))
        self.assertFalse(self.readiness.is_loaded('identity'))

        self.readiness.mark_loaded('identity')
        self.assertTrue(self.readiness.ready())
        self.assertEqual(self.emitted, [True])

    def test_emits_once(self):
        self.readiness.mark_loaded('identity')
        self.readiness.mark_loaded('api')
        self.readiness.mark_loaded('api')
        self.readiness.mark_loaded('identity')
        self.assertEqual(self.emitted, [True])

    def test_order_does_not_matter(self):
        self.readiness.mark_loaded('api')
        self.readiness.mark_loaded('identity')
        self.assertEqual(self.emitted, [True])

    def test_unknown_dependency(self):
        with self.assertRaises(KeyError):
            self.readiness.mark_loaded('fonts')
        self.assertEqual(self.emitted, [])

    def test_nothing_to_load_is_ready(self):
        self.assertTrue(Readiness(()).ready())
