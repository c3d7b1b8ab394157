# apps/core/ports/backend.py
from abc import ABC, abstractmethod
from typing import List, Optional


class IBackendGateway(ABC):
    """Synchroniczny dostęp do tabel hostowanego backendu.

    Zwraca surowe wiersze (dict). Normalizacja do encji domenowych odbywa się
    wyżej, na granicy klienta (apps/board).
    """

    # --- Projekty ---
    @abstractmethod
    def list_projects(self, owner_id: Optional[str] = None) -> List[dict]:
        """Projekty (najnowsze pierwsze) razem ze statusami zadań do podsumowania."""
        pass

    @abstractmethod
    def create_project(self, row: dict) -> dict:
        pass

    @abstractmethod
    def update_project(self, project_id: str, updates: dict) -> dict:
        pass

    @abstractmethod
    def delete_project(self, project_id: str) -> None:
        pass

    # --- Zadania ---
    @abstractmethod
    def list_tasks(self, project_id: str) -> List[dict]:
        """Zadania projektu z przypisaną osobą, tagami i liczbą komentarzy."""
        pass

    @abstractmethod
    def create_task(self, row: dict) -> dict:
        pass

    @abstractmethod
    def update_task(self, task_id: str, updates: dict) -> dict:
        pass

    @abstractmethod
    def delete_task(self, task_id: str) -> None:
        pass

    @abstractmethod
    def add_task_tag(self, task_id: str, tag: str) -> dict:
        pass

    @abstractmethod
    def remove_task_tag(self, task_id: str, tag: str) -> None:
        pass

    # --- Komentarze ---
    @abstractmethod
    def list_comments(self, task_id: str) -> List[dict]:
        pass

    @abstractmethod
    def create_comment(self, task_id: str, content: str, user_id: str) -> dict:
        pass

    # --- Profil ---
    @abstractmethod
    def get_profile(self, user_id: str) -> dict:
        pass

    @abstractmethod
    def update_profile(self, user_id: str, updates: dict) -> dict:
        pass
