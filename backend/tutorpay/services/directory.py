from __future__ import annotations

from typing import Protocol, runtime_checkable

from pydantic import BaseModel


class TutorInfo(BaseModel):
    """Tutor metadata from the Directory Service."""

    id: str
    first_name: str
    last_name: str
    email: str | None = None  # work address, matched against the Xero employee

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class StudentInfo(BaseModel):
    """Student metadata from the Directory Service."""

    id: str
    first_name: str
    last_name: str
    family_id: str | None = None
    hourly_rate: float | None = None  # billed rate; None falls back to the default

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class FamilyInfo(BaseModel):
    """Family (billing contact) metadata from the Directory Service."""

    id: str
    family_name: str
    parent_email: str | None = None


@runtime_checkable
class DirectoryService(Protocol):
    """Interface for the tutor/student/family directory."""

    async def get_tutor(self, tutor_id: str) -> TutorInfo | None:
        """Fetch tutor metadata. Returns None if not found."""
        ...

    async def list_tutors(self) -> list[TutorInfo]:
        """List all tutors."""
        ...

    async def get_student(self, student_id: str) -> StudentInfo | None:
        """Fetch student metadata. Returns None if not found."""
        ...

    async def get_family(self, family_id: str) -> FamilyInfo | None:
        """Fetch family metadata. Returns None if not found."""
        ...


class InMemoryDirectoryService:
    """In-memory stub implementation for development."""

    def __init__(self) -> None:
        self._tutors: dict[str, TutorInfo] = {}
        self._students: dict[str, StudentInfo] = {}
        self._families: dict[str, FamilyInfo] = {}

    def seed_tutor(self, tutor: TutorInfo) -> None:
        self._tutors[tutor.id] = tutor

    def seed_student(self, student: StudentInfo) -> None:
        self._students[student.id] = student

    def seed_family(self, family: FamilyInfo) -> None:
        self._families[family.id] = family

    async def get_tutor(self, tutor_id: str) -> TutorInfo | None:
        return self._tutors.get(tutor_id)

    async def list_tutors(self) -> list[TutorInfo]:
        return list(self._tutors.values())

    async def get_student(self, student_id: str) -> StudentInfo | None:
        return self._students.get(student_id)

    async def get_family(self, family_id: str) -> FamilyInfo | None:
        return self._families.get(family_id)


_directory_service: DirectoryService = InMemoryDirectoryService()


def get_directory_service() -> DirectoryService:
    """FastAPI dependency for the Directory Service."""
    return _directory_service


def set_directory_service(service: DirectoryService) -> None:
    """Override the service (for testing or production wiring)."""
    global _directory_service
    _directory_service = service
