"""Donor and case collaborator interfaces with in-memory implementations"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional
from donation_engine.constants import CaseStatus
from donation_engine.models.case import Case
from donation_engine.models.donor import Donor
from donation_engine.utils.errors import CaseNotEligibleError, DonorNotFoundError
from donation_engine.utils.logging import get_logger

logger = get_logger(__name__)


class DonorDirectory(ABC):
    """Read-only donor profile lookup owned by user management"""

    @abstractmethod
    def get_donor(self, donor_id: str) -> Donor:
        """
        Raises:
            DonorNotFoundError: If no profile exists
        """


class CaseRegistry(ABC):
    """Case lookup and the constrained status transition this engine may write"""

    @abstractmethod
    def get_case(self, case_id: str) -> Optional[Case]:
        ...

    @abstractmethod
    def assign_donor(self, case_id: str, donor_id: str) -> Case:
        """
        Transition an available case to assigned.

        Raises:
            CaseNotEligibleError: If the case is missing or no longer available
        """


class InMemoryDonorDirectory(DonorDirectory):
    """Donor directory backed by a dict"""

    def __init__(self, donors: Optional[Iterable[Donor]] = None):
        self._donors: Dict[str, Donor] = {d.donor_id: d for d in donors or []}

    def add(self, donor: Donor) -> None:
        self._donors[donor.donor_id] = donor

    def get_donor(self, donor_id: str) -> Donor:
        donor = self._donors.get(donor_id)
        if donor is None:
            raise DonorNotFoundError(f"Donor not found: {donor_id}")
        return donor


class InMemoryCaseRegistry(CaseRegistry):
    """Case registry backed by a dict; assignment is compare-and-set"""

    def __init__(self, cases: Optional[Iterable[Case]] = None):
        self._cases: Dict[str, Case] = {c.case_id: c for c in cases or []}
        self._lock = threading.Lock()

    def add(self, case: Case) -> None:
        with self._lock:
            self._cases[case.case_id] = case

    def get_case(self, case_id: str) -> Optional[Case]:
        return self._cases.get(case_id)

    def assign_donor(self, case_id: str, donor_id: str) -> Case:
        with self._lock:
            case = self._cases.get(case_id)
            if case is None:
                raise CaseNotEligibleError(f"Case not found: {case_id}")
            if not case.is_available:
                raise CaseNotEligibleError(
                    f"Case {case_id} is {case.status.value}"
                    + (f" and assigned to {case.assigned_donor_id}" if case.assigned_donor_id else "")
                )

            assigned = case.model_copy(update={
                'status': CaseStatus.ASSIGNED,
                'assigned_donor_id': donor_id
            })
            self._cases[case_id] = assigned

        logger.info("Case assigned", case_id=case_id, donor_id=donor_id)
        return assigned
