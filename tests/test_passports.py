"""
Passport store tests.

Critical invariants tested:
    version == 1 + number of successful locator updates
    derived hash slots are write-once
    a finalized passport is frozen
    is_active and is_finalized only ever move one way
"""

import unittest

from concrete_passport import (
    AlreadyInactiveError,
    AlreadySetError,
    ConsensusNotReachedError,
    DerivedHashSlot,
    DuplicateKeyError,
    ForbiddenError,
    IdentityLedger,
    InactiveError,
    InvalidArgumentError,
    LockedError,
    NotFoundError,
    PassportStore,
)

ALICE = "alice"
BOB = "bob"


class _Never:
    def is_satisfied(self, passport_id):
        return False

    def describe(self):
        return "never"


class PassportTestCase(unittest.TestCase):

    def setUp(self):
        self.store = PassportStore(IdentityLedger())
        self.p = self.store.create("PROD-001", "MIX-A", "locA", ALICE)


class TestCreate(PassportTestCase):

    def test_initial_state(self):
        p = self.p
        self.assertEqual(p.id, 1)
        self.assertEqual(p.version, 1)
        self.assertTrue(p.is_active)
        self.assertFalse(p.is_finalized)
        self.assertEqual(p.owner, ALICE)
        self.assertEqual(p.creator, ALICE)
        self.assertEqual(p.derived_hashes, {})
        self.assertEqual(p.material_cert_hashes, [])
        self.assertIsNone(p.final_grade)
        self.assertIsNone(p.certification_hash)
        self.assertIsNone(p.lab_identity)

    def test_lab_identity_recorded(self):
        p = self.store.create("PROD-002", "MIX-A", "locA", ALICE, lab_identity="lab-1")
        self.assertEqual(p.lab_identity, "lab-1")
        self.assertEqual(self.store.ids_by_lab("lab-1"), [p.id])

    def test_duplicate_key(self):
        with self.assertRaises(DuplicateKeyError):
            self.store.create("PROD-001", "MIX-B", "locX", BOB)

    def test_empty_arguments(self):
        with self.assertRaises(InvalidArgumentError):
            self.store.create("", "MIX", "loc", ALICE)
        with self.assertRaises(InvalidArgumentError):
            self.store.create("PROD-009", "MIX", "", ALICE)
        self.assertEqual(self.store.all_ids(), [1])

    def test_returned_record_is_a_copy(self):
        self.p.data_locator = "tampered"
        self.p.material_cert_hashes.append("x")
        fresh = self.store.get(1)
        self.assertEqual(fresh.data_locator, "locA")
        self.assertEqual(fresh.material_cert_hashes, [])

    def test_get_unknown(self):
        with self.assertRaises(NotFoundError):
            self.store.get(42)

    def test_get_by_key(self):
        self.assertEqual(self.store.get_by_key("PROD-001").id, 1)
        with self.assertRaises(NotFoundError):
            self.store.get_by_key("PROD-404")


class TestDataLocator(PassportTestCase):

    def test_version_counts_updates(self):
        for i in range(4):
            p = self.store.update_data_locator(1, f"loc{i}", ALICE)
        self.assertEqual(p.version, 5)
        self.assertEqual(p.data_locator, "loc3")

    def test_non_owner_forbidden(self):
        with self.assertRaises(ForbiddenError):
            self.store.update_data_locator(1, "locC", BOB)
        self.assertEqual(self.store.get(1).version, 1)

    def test_empty_locator(self):
        with self.assertRaises(InvalidArgumentError):
            self.store.update_data_locator(1, "", ALICE)
        self.assertEqual(self.store.get(1).version, 1)

    def test_unknown_passport(self):
        with self.assertRaises(NotFoundError):
            self.store.update_data_locator(7, "loc", ALICE)

    def test_guard_order_forbidden_before_locked(self):
        self.store.finalize(1, "M40", "0xcert", ALICE)
        with self.assertRaises(ForbiddenError):
            self.store.update_data_locator(1, "loc", BOB)

    def test_inactive_blocks_update(self):
        self.store.deactivate(1, ALICE)
        with self.assertRaises(InactiveError):
            self.store.update_data_locator(1, "locB", ALICE)


class TestDerivedHashes(PassportTestCase):

    def test_write_once(self):
        self.store.set_derived_hash(1, DerivedHashSlot.DESIGN_INTENT, "0xgcode1", ALICE)
        with self.assertRaises(AlreadySetError):
            self.store.set_derived_hash(1, "design_intent", "0xgcode2", ALICE)
        self.assertEqual(self.store.get(1).derived_hashes[DerivedHashSlot.DESIGN_INTENT], "0xgcode1")

    def test_slots_independent(self):
        self.store.set_derived_hash(1, "design_intent", "h1", ALICE)
        p = self.store.set_derived_hash(1, "mix_design", "h2", ALICE)
        self.assertEqual(len(p.derived_hashes), 2)

    def test_unknown_slot(self):
        with self.assertRaises(InvalidArgumentError):
            self.store.set_derived_hash(1, "nonsense", "h", ALICE)

    def test_empty_hash(self):
        with self.assertRaises(InvalidArgumentError):
            self.store.set_derived_hash(1, "mix_design", "", ALICE)
        self.assertEqual(self.store.get(1).derived_hashes, {})


class TestMaterialCertHashes(PassportTestCase):

    def test_append_preserves_order(self):
        for h in ("h1", "h2", "h3"):
            p = self.store.append_material_cert_hash(1, h, ALICE)
        self.assertEqual(p.material_cert_hashes, ["h1", "h2", "h3"])

    def test_non_owner(self):
        with self.assertRaises(ForbiddenError):
            self.store.append_material_cert_hash(1, "h1", BOB)


class TestFinalize(PassportTestCase):

    def test_finalize_sets_grade_and_hash(self):
        p = self.store.finalize(1, "M40", "0xcert", ALICE)
        self.assertTrue(p.is_finalized)
        self.assertEqual(p.final_grade, "M40")
        self.assertEqual(p.certification_hash, "0xcert")
        self.assertIsNotNone(p.finalized_at)
        self.assertEqual(self.store.ids_by_grade("M40"), [1])

    def test_finalize_freezes_content(self):
        self.store.set_derived_hash(1, "design_intent", "h", ALICE)
        self.store.append_material_cert_hash(1, "c1", ALICE)
        self.store.finalize(1, "M40", "0xcert", ALICE)
        before = self.store.get(1)

        with self.assertRaises(LockedError):
            self.store.update_data_locator(1, "locD", ALICE)
        with self.assertRaises(LockedError):
            self.store.set_derived_hash(1, "mix_design", "h2", ALICE)
        with self.assertRaises(LockedError):
            self.store.append_material_cert_hash(1, "c2", ALICE)

        after = self.store.get(1)
        self.assertEqual(before.data_locator, after.data_locator)
        self.assertEqual(before.derived_hashes, after.derived_hashes)
        self.assertEqual(before.material_cert_hashes, after.material_cert_hashes)

    def test_finalize_twice_locked(self):
        self.store.finalize(1, "M40", "0xcert", ALICE)
        with self.assertRaises(LockedError):
            self.store.finalize(1, "M50", "0xother", ALICE)
        self.assertEqual(self.store.get(1).final_grade, "M40")

    def test_finalize_deactivated_fails(self):
        self.store.deactivate(1, ALICE)
        with self.assertRaises(InactiveError):
            self.store.finalize(1, "M40", "0xcert", ALICE)

    def test_empty_grade_or_hash(self):
        with self.assertRaises(InvalidArgumentError):
            self.store.finalize(1, "", "0xcert", ALICE)
        with self.assertRaises(InvalidArgumentError):
            self.store.finalize(1, "M40", "", ALICE)
        p = self.store.get(1)
        self.assertFalse(p.is_finalized)
        self.assertIsNone(p.final_grade)

    def test_attestation_gate(self):
        self.store.attestation = _Never()
        with self.assertRaises(ConsensusNotReachedError):
            self.store.finalize(1, "M40", "0xcert", ALICE)
        p = self.store.get(1)
        self.assertFalse(p.is_finalized)
        self.assertIsNone(p.final_grade)
        self.assertEqual(self.store.ids_by_grade("M40"), [])


class TestDeactivate(PassportTestCase):

    def test_one_way(self):
        p = self.store.deactivate(1, ALICE)
        self.assertFalse(p.is_active)
        with self.assertRaises(AlreadyInactiveError):
            self.store.deactivate(1, ALICE)

    def test_non_owner(self):
        with self.assertRaises(ForbiddenError):
            self.store.deactivate(1, BOB)
        self.assertTrue(self.store.get(1).is_active)

    def test_queries_still_work(self):
        self.store.deactivate(1, ALICE)
        self.assertEqual(self.store.get(1).data_locator, "locA")


class TestTransfer(PassportTestCase):

    def test_owner_index_moves(self):
        self.store.transfer(1, BOB, ALICE)
        self.assertEqual(self.store.ids_by_owner(ALICE), [])
        self.assertEqual(self.store.ids_by_owner(BOB), [1])
        self.assertEqual(self.store.get(1).owner, BOB)
        self.assertEqual(self.store.get(1).creator, ALICE)

    def test_new_owner_controls_mutation(self):
        self.store.transfer(1, BOB, ALICE)
        with self.assertRaises(ForbiddenError):
            self.store.update_data_locator(1, "locB", ALICE)
        self.assertEqual(self.store.update_data_locator(1, "locB", BOB).version, 2)

    def test_only_owner_transfers(self):
        with self.assertRaises(ForbiddenError):
            self.store.transfer(1, BOB, BOB)

    def test_transfer_after_finalize(self):
        self.store.finalize(1, "M40", "0xcert", ALICE)
        self.assertEqual(self.store.transfer(1, BOB, ALICE).owner, BOB)

    def test_empty_new_owner(self):
        with self.assertRaises(InvalidArgumentError):
            self.store.transfer(1, "", ALICE)


if __name__ == "__main__":
    unittest.main()
