"""
Attestation policies.

An attestation decides whether a passport carries enough third-party trust
to be finalized. Two variants attach to the same passport:

- ConsensusAttestation: N-of-M validator voting through the ValidationLedger
- LabTestAttestation: an authorized lab's result confirmed by a peer lab

A deployment picks one, both (AllOf) or none.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from .lab_tests import LabTestLedger
from .models import TestStatus
from .validation import ValidationLedger


class FinalizePolicy(str, Enum):
    NONE = "none"
    CONSENSUS = "consensus"
    LAB_TEST = "lab_test"
    BOTH = "both"


class Attestation(ABC):

    @abstractmethod
    def is_satisfied(self, passport_id: int) -> bool:
        """Return True when the passport may be finalized."""
        pass

    @abstractmethod
    def describe(self) -> str:
        pass


class ConsensusAttestation(Attestation):

    def __init__(self, ledger: ValidationLedger):
        self.ledger = ledger

    def is_satisfied(self, passport_id: int) -> bool:
        return self.ledger.is_consensus_reached(passport_id)

    def describe(self) -> str:
        return f"{self.ledger.required_validations} passing validator attestations"


class LabTestAttestation(Attestation):
    """Satisfied by ``required`` peer-validated results and no open dispute."""

    def __init__(self, lab_tests: LabTestLedger, required: int = 1):
        if required < 1:
            raise ValueError("required must be at least 1")
        self.lab_tests = lab_tests
        self.required = required

    def is_satisfied(self, passport_id: int) -> bool:
        results = self.lab_tests.tests_for_passport(passport_id)
        if any(r.status == TestStatus.DISPUTED for r in results):
            return False
        validated = sum(1 for r in results if r.status == TestStatus.VALIDATED)
        return validated >= self.required

    def describe(self) -> str:
        return f"{self.required} peer-validated lab test result(s) and no open dispute"


class AllOf(Attestation):

    def __init__(self, *attestations: Attestation):
        if not attestations:
            raise ValueError("AllOf needs at least one attestation")
        self.attestations = attestations

    def is_satisfied(self, passport_id: int) -> bool:
        return all(a.is_satisfied(passport_id) for a in self.attestations)

    def describe(self) -> str:
        return " and ".join(a.describe() for a in self.attestations)


def build_attestation(
    policy: FinalizePolicy,
    ledger: ValidationLedger,
    lab_tests: LabTestLedger,
    lab_tests_required: int = 1,
) -> Optional[Attestation]:
    """Factory mapping a deployment policy to an attestation (None = not required)."""
    policy = FinalizePolicy(policy)
    if policy == FinalizePolicy.CONSENSUS:
        return ConsensusAttestation(ledger)
    if policy == FinalizePolicy.LAB_TEST:
        return LabTestAttestation(lab_tests, lab_tests_required)
    if policy == FinalizePolicy.BOTH:
        return AllOf(ConsensusAttestation(ledger), LabTestAttestation(lab_tests, lab_tests_required))
    return None
