"""Job repositories: job definitions and job instances.

``JobDefinitionRepository`` stores the metadata of each (group, name) job;
``JobInstanceRepository`` stores one row per firing and is the only state
the reconciler mutates.
"""

from __future__ import annotations

from typing import Any

from jobspine.core.dialect import Dialect
from jobspine.core.models.jobs import JobDefinition, JobInstance, JobKey
from jobspine.core.protocols import Connection
from jobspine.core.repository import BaseRepository
from jobspine.core.timestamps import Clock, now_ms


class JobDefinitionRepository(BaseRepository):
    """CRUD for the ``job_definitions`` table."""

    TABLE = "job_definitions"

    COLUMNS = (
        "group_name, job_name, measure, source_pattern, target_pattern, "
        "data_start_timestamp, job_start_time, period_time, created_at, updated_at"
    )

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        clock: Clock = now_ms,
    ) -> None:
        super().__init__(conn, dialect)
        self.clock = clock

    def get(self, key: JobKey) -> JobDefinition | None:
        row = self.query_one(
            f"SELECT {self.COLUMNS} FROM {self.TABLE} "
            f"WHERE group_name = {self.ph(1)} AND job_name = {self.ph(1)}",
            (key.group, key.name),
        )
        return JobDefinition(**row) if row else None

    def list_all(self) -> list[JobDefinition]:
        rows = self.query(
            f"SELECT {self.COLUMNS} FROM {self.TABLE} ORDER BY group_name, job_name"
        )
        return [JobDefinition(**row) for row in rows]

    def create(self, definition: JobDefinition) -> JobDefinition:
        """Insert a new definition; ``created_at``/``updated_at`` are stamped now."""
        now = self.clock()
        definition.created_at = now
        definition.updated_at = now
        with self.transaction():
            self.insert(self.TABLE, self._to_row(definition))
        return definition

    def update(self, definition: JobDefinition) -> bool:
        """Update metadata in place. Returns False if the row does not exist."""
        definition.updated_at = self.clock()
        row = self._to_row(definition)
        for column in ("group_name", "job_name", "created_at"):
            row.pop(column)
        sets = ", ".join(f"{column} = {self.ph(1)}" for column in row)
        with self.transaction():
            cursor = self.execute(
                f"UPDATE {self.TABLE} SET {sets} "
                f"WHERE group_name = {self.ph(1)} AND job_name = {self.ph(1)}",
                (*row.values(), definition.group_name, definition.job_name),
            )
        return cursor.rowcount > 0

    def delete(self, key: JobKey) -> bool:
        with self.transaction():
            cursor = self.execute(
                f"DELETE FROM {self.TABLE} "
                f"WHERE group_name = {self.ph(1)} AND job_name = {self.ph(1)}",
                (key.group, key.name),
            )
        return cursor.rowcount > 0

    @staticmethod
    def _to_row(definition: JobDefinition) -> dict[str, Any]:
        return {
            "group_name": definition.group_name,
            "job_name": definition.job_name,
            "measure": definition.measure,
            "source_pattern": definition.source_pattern,
            "target_pattern": definition.target_pattern,
            "data_start_timestamp": definition.data_start_timestamp,
            "job_start_time": definition.job_start_time,
            "period_time": definition.period_time,
            "created_at": definition.created_at,
            "updated_at": definition.updated_at,
        }


class JobInstanceRepository(BaseRepository):
    """Persisted job-instance records (``job_instances``).

    Example:
        >>> repo = JobInstanceRepository(conn)
        >>> repo.create(JobInstance(group_name="BA", job_name="acc", session_id="7"))
        >>> repo.find_by_job("BA", "acc", page=0, size=10)
    """

    TABLE = "job_instances"

    COLUMNS = "id, group_name, job_name, session_id, state, app_id, timestamp"

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        clock: Clock = now_ms,
    ) -> None:
        super().__init__(conn, dialect)
        self.clock = clock

    def create(self, instance: JobInstance) -> JobInstance:
        """Insert an instance; a zero timestamp is stamped with the clock."""
        if not instance.timestamp:
            instance.timestamp = self.clock()
        with self.transaction():
            cursor = self.insert(
                self.TABLE,
                {
                    "group_name": instance.group_name,
                    "job_name": instance.job_name,
                    "session_id": instance.session_id,
                    "state": instance.state,
                    "app_id": instance.app_id,
                    "timestamp": instance.timestamp,
                },
            )
        instance.id = cursor.lastrowid
        return instance

    def get(self, instance_id: int) -> JobInstance | None:
        row = self.query_one(
            f"SELECT {self.COLUMNS} FROM {self.TABLE} WHERE id = {self.ph(1)}",
            (instance_id,),
        )
        return JobInstance(**row) if row else None

    def find_by_job(
        self,
        group: str,
        job_name: str,
        page: int | None = None,
        size: int | None = None,
    ) -> list[JobInstance]:
        """Instances of one job, newest first.

        ``page`` is 0-based; both ``page`` and ``size`` omitted returns all rows.
        """
        sql = (
            f"SELECT {self.COLUMNS} FROM {self.TABLE} "
            f"WHERE group_name = {self.ph(1)} AND job_name = {self.ph(1)} "
            "ORDER BY timestamp DESC, id DESC"
        )
        params: tuple = (group, job_name)
        if size is not None:
            sql += f" LIMIT {self.ph(1)} OFFSET {self.ph(1)}"
            params += (size, (page or 0) * size)
        return [JobInstance(**row) for row in self.query(sql, params)]

    def latest_of_job(self, group: str, job_name: str) -> JobInstance | None:
        found = self.find_by_job(group, job_name, page=0, size=1)
        return found[0] if found else None

    def find_job_keys(self) -> list[JobKey]:
        """Distinct (group, job_name) pairs that have at least one instance."""
        rows = self.query(
            f"SELECT DISTINCT group_name, job_name FROM {self.TABLE} "
            "ORDER BY group_name, job_name"
        )
        return [JobKey(row["group_name"], row["job_name"]) for row in rows]

    def update_state_and_app_id(
        self, instance_id: int, state: str, app_id: str | None
    ) -> bool:
        with self.transaction():
            cursor = self.execute(
                f"UPDATE {self.TABLE} SET state = {self.ph(1)}, app_id = {self.ph(1)} "
                f"WHERE id = {self.ph(1)}",
                (state, app_id, instance_id),
            )
        return cursor.rowcount > 0

    def delete_by_job(self, group: str, job_name: str) -> int:
        with self.transaction():
            cursor = self.execute(
                f"DELETE FROM {self.TABLE} "
                f"WHERE group_name = {self.ph(1)} AND job_name = {self.ph(1)}",
                (group, job_name),
            )
        return cursor.rowcount
