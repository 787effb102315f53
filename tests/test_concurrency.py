"""Races on shared registry state."""

import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from unittest import mock

from concrete_passport import (
    DuplicateKeyError,
    ForbiddenError,
    LockedError,
    ProvenanceRegistry,
    RegistryConfig,
)


def run_parallel(fn, args, workers=8):
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(fn, *a) for a in args]
    outcomes = []
    for f in futures:
        try:
            outcomes.append(f.result())
        except Exception as e:
            outcomes.append(e)
    return outcomes


class TestIdentityRaces(unittest.TestCase):

    def test_same_key_allocated_once(self):
        r = ProvenanceRegistry()
        outcomes = run_parallel(r.allocate, [("PROD-001",)] * 16)
        ids = [o for o in outcomes if isinstance(o, int)]
        dupes = [o for o in outcomes if isinstance(o, DuplicateKeyError)]
        self.assertEqual(ids, [1])
        self.assertEqual(len(dupes), 15)

    def test_distinct_keys_get_distinct_ids(self):
        r = ProvenanceRegistry()
        outcomes = run_parallel(r.allocate, [(f"PROD-{n:03d}",) for n in range(50)])
        self.assertEqual(sorted(outcomes), list(range(1, 51)))


class TestPassportRaces(unittest.TestCase):

    def setUp(self):
        self.r = ProvenanceRegistry()
        self.p = self.r.create_passport("PROD-001", "MIX-A", "loc-0", "alice")

    def test_concurrent_updates_bump_version_once_each(self):
        run_parallel(self.r.update_data_locator,
                     [(self.p.id, f"loc-{n}", "alice") for n in range(1, 41)])
        self.assertEqual(self.r.get_passport(self.p.id).version, 41)

    def test_update_events_logged_in_version_order(self):
        run_parallel(self.r.update_data_locator,
                     [(self.p.id, f"loc-{n}", "alice") for n in range(1, 41)])
        versions = [e.fields["version"] for e in self.r.events.entries()
                    if e.operation == "data_locator_updated"]
        self.assertEqual(versions, list(range(2, 42)))

    def test_update_racing_finalize(self):
        barrier = threading.Barrier(2)

        def update(n):
            barrier.wait()
            return self.r.update_data_locator(self.p.id, f"loc-{n}", "alice")

        def finalize():
            barrier.wait()
            return self.r.finalize(self.p.id, "M40", "0xcert", "alice")

        with ThreadPoolExecutor(max_workers=2) as pool:
            fu = pool.submit(update, 1)
            ff = pool.submit(finalize)
        final = ff.result()
        self.assertTrue(final.is_finalized)
        try:
            updated = fu.result()
        except LockedError:
            updated = None
        passport = self.r.get_passport(self.p.id)
        # the update either landed before finalization or was rejected
        self.assertEqual(passport.version, 2 if updated else 1)

    def test_derived_hash_set_once(self):
        outcomes = run_parallel(self.r.set_derived_hash,
                                [(self.p.id, "design_intent", f"0x{n}", "alice") for n in range(10)])
        winners = [o for o in outcomes if not isinstance(o, Exception)]
        self.assertEqual(len(winners), 1)

    def test_foreign_callers_never_mutate(self):
        outcomes = run_parallel(self.r.update_data_locator,
                                [(self.p.id, f"loc-{n}", f"mallory-{n}") for n in range(10)])
        self.assertTrue(all(isinstance(o, ForbiddenError) for o in outcomes))
        self.assertEqual(self.r.get_passport(self.p.id).version, 1)


class TestAppendRaces(unittest.TestCase):

    def test_process_events_keep_dense_sequence(self):
        r = ProvenanceRegistry()
        p = r.create_passport("PROD-001", "MIX-A", "loc", "alice")
        run_parallel(r.record_process_event, [(p.id, "sensor", f"op-{n}") for n in range(100)])
        history = r.history(p.id)
        self.assertEqual([e.sequence for e in history], list(range(100)))

    def test_events_chain_under_load(self):
        r = ProvenanceRegistry()
        p = r.create_passport("PROD-001", "MIX-A", "loc", "alice")
        run_parallel(r.add_material_batch,
                     [(p.id, f"B-{n}", "sand", "Quarry", "", None, "supplier") for n in range(50)])
        proof = r.events.proof()
        self.assertEqual(proof["entries"], 51)
        self.assertTrue(proof["chain_valid"])


class TestFrozenMaterialRace(unittest.TestCase):

    def test_finalize_cannot_slip_between_check_and_append(self):
        r = ProvenanceRegistry(RegistryConfig(freeze_materials_on_finalize=True))
        p = r.create_passport("PROD-001", "MIX-A", "loc", "alice")
        original_is_finalized = r.passports.is_finalized
        finalized = threading.Event()
        finalized_during_check = []

        def finalize():
            r.finalize(p.id, "M40", "0xcert", "alice")
            finalized.set()

        def racing_is_finalized(passport_id):
            answer = original_is_finalized(passport_id)
            threading.Thread(target=finalize).start()
            finalized_during_check.append(finalized.wait(0.3))
            return answer

        with mock.patch.object(r.passports, "is_finalized", side_effect=racing_is_finalized):
            batch = r.add_material_batch(p.id, "B-1", "cement", "Acme", "0xc1", None, "supplier")
        self.assertTrue(finalized.wait(5))

        self.assertEqual(finalized_during_check, [False])
        self.assertEqual(batch.sequence, 0)
        self.assertTrue(r.get_passport(p.id).is_finalized)
        with self.assertRaises(LockedError):
            r.add_material_batch(p.id, "B-2", "cement", "Acme", "0xc2", None, "supplier")
        self.assertEqual([e.operation for e in r.events.entries()],
                         ["created", "appended", "finalized"])


if __name__ == "__main__":
    unittest.main()
