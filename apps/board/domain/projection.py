# apps/board/domain/projection.py
import logging
from dataclasses import fields
from typing import Iterable, Optional

from apps.board.domain.cache import LocalCacheStore
from apps.projects.domain.entities import ProjectEntity, TaskSummary
from apps.tasks.domain.entities import TaskEntity

logger = logging.getLogger(__name__)

PROJECTS_SCOPE = 'projects'

# Pola wyliczane lokalnie - nie nadpisujemy ich danymi z wiersza
_DERIVED_PROJECT_FIELDS = {'id', 'members', 'tasks'}


class BoardProjection:
    """Wspólne operacje na cache projektów i zadań.

    Z tych samych metod korzystają koordynator mutacji i listener realtime,
    więc niezmienniki (zadanie tylko w zakresie swojego projektu, jedno id na
    zakres, liczniki projektu) pilnowane są w jednym miejscu.
    """

    def __init__(self, projects: LocalCacheStore, tasks: LocalCacheStore):
        self.projects = projects
        self.tasks = tasks

    # --- Projekty ---

    def project(self, project_id: str) -> Optional[ProjectEntity]:
        return self.projects.get(PROJECTS_SCOPE, project_id)

    def upsert_project(self, project: ProjectEntity) -> ProjectEntity:
        """Insert albo - gdy id już jest w cache - patch (bez duplikatu)."""
        if not self.projects.contains(PROJECTS_SCOPE, project.id):
            self.projects.insert(PROJECTS_SCOPE, project)
            self.recompute_summary(project.id)
            return self.project(project.id)
        updates = {f.name: getattr(project, f.name) for f in fields(project)
                   if f.name not in _DERIVED_PROJECT_FIELDS}
        return self.projects.patch(PROJECTS_SCOPE, project.id, updates)

    def remove_project(self, project_id: str):
        """Usuwa projekt razem z zakresem jego zadań."""
        removed = self.projects.remove(PROJECTS_SCOPE, project_id)
        dropped = self.tasks.drop(project_id)
        return removed, dropped

    # --- Zadania ---

    def find_task(self, task_id: str) -> Optional[TaskEntity]:
        scope = self.tasks.locate(task_id)
        return self.tasks.get(scope, task_id) if scope is not None else None

    def place_task(self, task: TaskEntity) -> Optional[TaskEntity]:
        """Umieszcza zadanie w zakresie jego projektu.

        Przenosi je, jeśli leżało w innym zakresie. Do niezaładowanego zakresu
        nic nie wstawiamy - zakres zawsze odpowiada pełnemu loadowi.
        """
        previous_scope = self.tasks.locate(task.id)
        if previous_scope is not None and previous_scope != task.project_id:
            self.tasks.remove(previous_scope, task.id)

        if not self.tasks.is_loaded(task.project_id):
            return None
        if self.tasks.contains(task.project_id, task.id):
            updates = {f.name: getattr(task, f.name) for f in fields(task) if f.name != 'id'}
            return self.tasks.patch(task.project_id, task.id, updates)
        self.tasks.insert(task.project_id, task)
        return task

    def drop_task(self, task_id: str) -> Optional[TaskEntity]:
        scope = self.tasks.locate(task_id)
        if scope is None:
            return None
        return self.tasks.remove(scope, task_id)

    # --- Liczniki projektu ---

    def recompute_summary(self, project_id: str) -> bool:
        """Przelicza {total, completed} z zadań, jeśli zakres jest załadowany."""
        if not self.tasks.is_loaded(project_id):
            return False
        summary = TaskSummary.from_statuses(t.status.value for t in self.tasks.items(project_id))
        project = self.project(project_id)
        if project is not None and project.tasks != summary:
            self.projects.patch(PROJECTS_SCOPE, project_id, {'tasks': summary})
        return True

    def shift_summary(self, project_id: str, total: int = 0, completed: int = 0) -> None:
        project = self.project(project_id)
        if project is None:
            return
        self.projects.patch(PROJECTS_SCOPE, project_id, {'tasks': project.tasks.shifted(total, completed)})

    def task_changed(self, before: Optional[TaskEntity], after: Optional[TaskEntity]) -> None:
        """Aktualizuje liczniki po zmianie zadania (przyrostowo).

        Zakres załadowany -> dokładne przeliczenie, w przeciwnym razie
        przesunięcie liczników o różnicę before/after.
        """
        affected = {t.project_id for t in (before, after) if t is not None}
        for project_id in affected:
            if self.recompute_summary(project_id):
                continue
            total = completed = 0
            if before is not None and before.project_id == project_id:
                total -= 1
                completed -= int(before.is_done)
            if after is not None and after.project_id == project_id:
                total += 1
                completed += int(after.is_done)
            if total or completed:
                self.shift_summary(project_id, total, completed)

    def recompute_all(self, project_ids: Iterable[str] = None) -> None:
        for project_id in project_ids if project_ids is not None else self.tasks.loaded_scopes():
            self.recompute_summary(project_id)

    # --- Komentarze ---

    def shift_comment_count(self, task_id: str, delta: int) -> Optional[TaskEntity]:
        task = self.find_task(task_id)
        if task is None:
            return None
        return self.tasks.patch(task.project_id, task_id, {'comment_count': max(0, task.comment_count + delta)})
