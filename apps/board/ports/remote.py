# apps/board/ports/remote.py
from abc import ABC, abstractmethod
from typing import List

from apps.projects.domain.entities import ProjectEntity
from apps.tasks.domain.entities import CommentEntity, TaskEntity


class IRemoteDataClient(ABC):
    """Asynchroniczny klient backendu widziany z tablicy.

    Implementacje zwracają już znormalizowane encje i rzucają wyłącznie
    ``RemoteError`` (apps.core.errors).
    """

    @abstractmethod
    async def list_projects(self, owner_id: str) -> List[ProjectEntity]:
        pass

    @abstractmethod
    async def create_project(self, row: dict) -> ProjectEntity:
        pass

    @abstractmethod
    async def update_project(self, project_id: str, updates: dict) -> ProjectEntity:
        pass

    @abstractmethod
    async def delete_project(self, project_id: str) -> None:
        pass

    @abstractmethod
    async def list_tasks(self, project_id: str) -> List[TaskEntity]:
        pass

    @abstractmethod
    async def create_task(self, row: dict) -> TaskEntity:
        pass

    @abstractmethod
    async def update_task(self, task_id: str, updates: dict) -> TaskEntity:
        pass

    @abstractmethod
    async def delete_task(self, task_id: str) -> None:
        pass

    @abstractmethod
    async def add_task_tag(self, task_id: str, tag: str) -> None:
        pass

    @abstractmethod
    async def remove_task_tag(self, task_id: str, tag: str) -> None:
        pass

    @abstractmethod
    async def list_comments(self, task_id: str) -> List[CommentEntity]:
        pass

    @abstractmethod
    async def create_comment(self, task_id: str, content: str, user_id: str) -> CommentEntity:
        pass

    @abstractmethod
    async def get_profile(self, user_id: str) -> dict:
        pass
