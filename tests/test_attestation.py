"""Attestation policies gating finalization."""

import unittest
from datetime import datetime, timedelta, timezone

from concrete_passport import (
    AllOf,
    ConsensusAttestation,
    ConsensusNotReachedError,
    FinalizePolicy,
    LabTestAttestation,
    ProvenanceRegistry,
    RegistryConfig,
    TestStatus,
)
from concrete_passport.attestation import build_attestation

YESTERDAY = datetime.now(timezone.utc) - timedelta(days=1)


class AttestationTestCase(unittest.TestCase):

    policy = FinalizePolicy.NONE

    def setUp(self):
        self.r = ProvenanceRegistry(RegistryConfig(finalize_policy=self.policy))
        self.p = self.r.create_passport("PROD-001", "MIX-A", "locA", "alice")
        for v in ("v1", "v2", "v3"):
            self.r.register_validator(v, f"Org {v}", f"C-{v}")
        for lab in ("lab-a", "lab-b"):
            self.r.authorize_lab(lab, lab.upper())

    def vote(self, *validators, passed=True):
        for v in validators:
            self.r.submit_validation(self.p.id, v, passed, "report")

    def lab_test(self, outcome=None):
        t = self.r.submit_test_result(self.p.id, "Compression", "loc", YESTERDAY, 28, "41 MPa", "lab-a")
        if outcome is not None:
            t = self.r.validate_test_result(t.test_id, outcome, "lab-b")
        return t

    def finalize(self):
        return self.r.finalize(self.p.id, "M40", "0xcert", "alice")


class TestBuildAttestation(AttestationTestCase):

    def test_factory(self):
        v, t = self.r.validations, self.r.lab_tests
        self.assertIsNone(build_attestation("none", v, t))
        self.assertIsInstance(build_attestation("consensus", v, t), ConsensusAttestation)
        self.assertIsInstance(build_attestation("lab_test", v, t), LabTestAttestation)
        self.assertIsInstance(build_attestation("both", v, t), AllOf)
        with self.assertRaises(ValueError):
            build_attestation("quorum", v, t)

    def test_no_policy_finalizes_freely(self):
        self.assertTrue(self.finalize().is_finalized)

    def test_describe(self):
        both = build_attestation("both", self.r.validations, self.r.lab_tests, 2)
        self.assertIn("3 passing validator", both.describe())
        self.assertIn("2 peer-validated", both.describe())


class TestConsensusPolicy(AttestationTestCase):

    policy = FinalizePolicy.CONSENSUS

    def test_blocked_until_consensus(self):
        self.vote("v1", "v2")
        with self.assertRaises(ConsensusNotReachedError):
            self.finalize()
        self.assertFalse(self.r.get_passport(self.p.id).is_finalized)
        self.vote("v3")
        self.assertTrue(self.finalize().is_finalized)


class TestLabTestPolicy(AttestationTestCase):

    policy = FinalizePolicy.LAB_TEST

    def test_pending_not_enough(self):
        self.lab_test()
        with self.assertRaises(ConsensusNotReachedError):
            self.finalize()

    def test_validated_result_satisfies(self):
        self.lab_test(TestStatus.VALIDATED)
        self.assertTrue(self.finalize().is_finalized)

    def test_open_dispute_blocks(self):
        self.lab_test(TestStatus.VALIDATED)
        self.lab_test(TestStatus.DISPUTED)
        with self.assertRaises(ConsensusNotReachedError):
            self.finalize()

    def test_rejected_does_not_count(self):
        self.lab_test(TestStatus.REJECTED)
        with self.assertRaises(ConsensusNotReachedError):
            self.finalize()


class TestBothPolicy(AttestationTestCase):

    policy = FinalizePolicy.BOTH

    def test_needs_both(self):
        self.vote("v1", "v2", "v3")
        with self.assertRaises(ConsensusNotReachedError):
            self.finalize()
        self.lab_test(TestStatus.VALIDATED)
        self.assertTrue(self.finalize().is_finalized)


class TestLabTestAttestationRequired(unittest.TestCase):

    def test_required_must_be_positive(self):
        r = ProvenanceRegistry()
        with self.assertRaises(ValueError):
            LabTestAttestation(r.lab_tests, required=0)

    def test_all_of_needs_members(self):
        with self.assertRaises(ValueError):
            AllOf()


if __name__ == "__main__":
    unittest.main()
