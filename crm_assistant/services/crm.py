"""CRM backend interface and in-memory implementation.

Tool handlers reach business data only through ``CrmBackend``. Every call is
scoped by workspace id, and mutations carry the acting user id.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from cuid2 import cuid_wrapper

from crm_assistant.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class Attribute:
    """Attribute definition of an object type."""

    slug: str
    title: str
    type: str
    is_multiselect: bool = False
    statuses: list[str] = field(default_factory=list)


@dataclass
class CrmObject:
    """Object type (People, Companies, Deals or custom)."""

    id: str
    workspace_id: str
    slug: str
    singular_name: str
    plural_name: str
    icon: str = "box"
    is_system: bool = False
    attributes: list[Attribute] = field(default_factory=list)

    def get_attribute(self, slug: str) -> Attribute | None:
        """Find an attribute by slug."""
        return next((a for a in self.attributes if a.slug == slug), None)


@dataclass
class Record:
    """A business record of some object type."""

    id: str
    object_id: str
    object_slug: str
    values: dict[str, Any]
    created_by: str
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def display_name(self) -> str:
        """Human-readable name derived from the ``name`` attribute."""
        name = self.values.get("name")
        if isinstance(name, dict):
            return name.get("fullName") or " ".join(
                part for part in (name.get("firstName"), name.get("lastName")) if part
            )
        return str(name) if name else "Untitled"


@dataclass
class SearchResult:
    """A search hit."""

    id: str
    type: str
    object_slug: str | None
    display_name: str


@dataclass
class Task:
    """A to-do item, optionally linked to records."""

    id: str
    workspace_id: str
    content: str
    created_by: str
    deadline: str | None = None
    is_completed: bool = False
    record_ids: list[str] = field(default_factory=list)
    assignee_ids: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)


@dataclass
class Note:
    """A rich-text note attached to a record."""

    id: str
    workspace_id: str
    record_id: str
    title: str
    created_by: str
    content: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=_now)


@dataclass
class CrmList:
    """A curated list of records of one object type."""

    id: str
    workspace_id: str
    name: str
    object_slug: str


@dataclass
class ListEntry:
    """Membership of a record in a list."""

    id: str
    list_id: str
    record_id: str
    created_at: datetime = field(default_factory=_now)


class CrmBackend(Protocol):
    """Interface for the record storage engine."""

    async def search(self, workspace_id: str, query: str, limit: int = 20) -> list[SearchResult]:
        """Search records and lists by any text."""
        ...

    async def list_objects(self, workspace_id: str) -> list[CrmObject]:
        """List object types with their attributes."""
        ...

    async def get_object(self, workspace_id: str, slug: str) -> CrmObject | None:
        """Get an object type by slug."""
        ...

    async def list_records(
        self, workspace_id: str, object_id: str, limit: int = 20, offset: int = 0
    ) -> tuple[list[Record], int]:
        """List records of an object type, returning a page and the total count."""
        ...

    async def get_record(self, workspace_id: str, object_id: str, record_id: str) -> Record | None:
        """Get one record."""
        ...

    async def create_record(
        self, workspace_id: str, object_id: str, values: dict[str, Any], user_id: str
    ) -> Record:
        """Create a record."""
        ...

    async def update_record(
        self, workspace_id: str, object_id: str, record_id: str, values: dict[str, Any], user_id: str
    ) -> Record | None:
        """Merge values into a record."""
        ...

    async def delete_record(self, workspace_id: str, object_id: str, record_id: str) -> bool:
        """Delete a record."""
        ...

    async def list_tasks(
        self, workspace_id: str, user_id: str, show_completed: bool = False, limit: int = 20
    ) -> tuple[list[Task], int]:
        """List tasks assigned to or created by the user."""
        ...

    async def create_task(
        self,
        workspace_id: str,
        user_id: str,
        content: str,
        deadline: str | None = None,
        record_ids: list[str] | None = None,
        assignee_ids: list[str] | None = None,
    ) -> Task:
        """Create a task."""
        ...

    async def get_notes_for_record(self, workspace_id: str, record_id: str) -> list[Note]:
        """List notes attached to a record."""
        ...

    async def create_note(
        self, workspace_id: str, user_id: str, record_id: str, title: str, content: dict[str, Any] | None
    ) -> Note:
        """Attach a note to a record."""
        ...

    async def list_lists(self, workspace_id: str) -> list[CrmList]:
        """List the workspace's lists."""
        ...

    async def list_list_entries(
        self, workspace_id: str, list_id: str, limit: int = 20, offset: int = 0
    ) -> tuple[list[ListEntry], int]:
        """List entries of a list."""
        ...


def _standard_objects(workspace_id: str) -> list[CrmObject]:
    """Create the standard object types every workspace starts with."""
    return [
        CrmObject(
            id=cuid(),
            workspace_id=workspace_id,
            slug="people",
            singular_name="Person",
            plural_name="People",
            icon="user",
            is_system=True,
            attributes=[
                Attribute(slug="name", title="Name", type="personal_name"),
                Attribute(slug="email_addresses", title="Email addresses", type="email_address", is_multiselect=True),
                Attribute(slug="phone_numbers", title="Phone numbers", type="phone_number", is_multiselect=True),
                Attribute(slug="company", title="Company", type="record_reference"),
                Attribute(slug="job_title", title="Job title", type="text"),
            ],
        ),
        CrmObject(
            id=cuid(),
            workspace_id=workspace_id,
            slug="companies",
            singular_name="Company",
            plural_name="Companies",
            icon="building",
            is_system=True,
            attributes=[
                Attribute(slug="name", title="Name", type="text"),
                Attribute(slug="domains", title="Domains", type="domain", is_multiselect=True),
                Attribute(slug="description", title="Description", type="text"),
            ],
        ),
        CrmObject(
            id=cuid(),
            workspace_id=workspace_id,
            slug="deals",
            singular_name="Deal",
            plural_name="Deals",
            icon="handshake",
            is_system=True,
            attributes=[
                Attribute(slug="name", title="Name", type="text"),
                Attribute(
                    slug="stage",
                    title="Stage",
                    type="status",
                    statuses=["Lead", "In Progress", "Won", "Lost"],
                ),
                Attribute(slug="value", title="Value", type="currency"),
                Attribute(slug="company", title="Company", type="record_reference"),
            ],
        ),
    ]


def _flatten(value: Any) -> str:
    """Flatten attribute values into searchable text."""
    if isinstance(value, dict):
        return " ".join(_flatten(v) for v in value.values())
    if isinstance(value, list):
        return " ".join(_flatten(v) for v in value)
    return "" if value is None else str(value)


class InMemoryCrmBackend:
    """In-memory CRM backend.

    Each workspace is seeded with the standard objects on first access.
    """

    def __init__(self):
        """Initialize empty storage."""
        self.objects: dict[str, list[CrmObject]] = {}
        self.records: dict[str, Record] = {}
        self.tasks: dict[str, Task] = {}
        self.notes: dict[str, Note] = {}
        self.lists: dict[str, CrmList] = {}
        self.list_entries: dict[str, ListEntry] = {}

    def _workspace_objects(self, workspace_id: str) -> list[CrmObject]:
        if workspace_id not in self.objects:
            self.objects[workspace_id] = _standard_objects(workspace_id)
        return self.objects[workspace_id]

    def _find_object_by_id(self, workspace_id: str, object_id: str) -> CrmObject | None:
        return next((o for o in self._workspace_objects(workspace_id) if o.id == object_id), None)

    def _workspace_record_ids(self, workspace_id: str) -> set[str]:
        object_ids = {o.id for o in self._workspace_objects(workspace_id)}
        return {r.id for r in self.records.values() if r.object_id in object_ids}

    def _validate_values(self, obj: CrmObject, values: dict[str, Any]) -> None:
        unknown = [slug for slug in values if obj.get_attribute(slug) is None]
        if unknown:
            raise ValueError(f"Unknown attribute(s) for {obj.slug}: {', '.join(sorted(unknown))}")

        for slug, value in values.items():
            attribute = obj.get_attribute(slug)
            if attribute and attribute.statuses and value not in attribute.statuses:
                raise ValueError(f'Invalid value "{value}" for {slug}; expected one of {attribute.statuses}')

    async def search(self, workspace_id: str, query: str, limit: int = 20) -> list[SearchResult]:
        """Case-insensitive substring search over record values and list names."""
        needle = query.lower().strip()
        if not needle:
            return []

        results: list[SearchResult] = []
        for obj in self._workspace_objects(workspace_id):
            for record in self.records.values():
                if record.object_id == obj.id and needle in _flatten(record.values).lower():
                    results.append(
                        SearchResult(
                            id=record.id, type="record", object_slug=obj.slug, display_name=record.display_name
                        )
                    )

        for crm_list in self.lists.values():
            if crm_list.workspace_id == workspace_id and needle in crm_list.name.lower():
                results.append(SearchResult(id=crm_list.id, type="list", object_slug=None, display_name=crm_list.name))

        return results[:limit]

    async def list_objects(self, workspace_id: str) -> list[CrmObject]:
        """List object types."""
        return list(self._workspace_objects(workspace_id))

    async def get_object(self, workspace_id: str, slug: str) -> CrmObject | None:
        """Get an object type by slug."""
        return next((o for o in self._workspace_objects(workspace_id) if o.slug == slug), None)

    async def list_records(
        self, workspace_id: str, object_id: str, limit: int = 20, offset: int = 0
    ) -> tuple[list[Record], int]:
        """List records of an object type."""
        if self._find_object_by_id(workspace_id, object_id) is None:
            return [], 0
        records = [r for r in self.records.values() if r.object_id == object_id]
        return records[offset : offset + limit], len(records)

    async def get_record(self, workspace_id: str, object_id: str, record_id: str) -> Record | None:
        """Get one record."""
        if self._find_object_by_id(workspace_id, object_id) is None:
            return None
        record = self.records.get(record_id)
        if record is None or record.object_id != object_id:
            return None
        return record

    async def create_record(
        self, workspace_id: str, object_id: str, values: dict[str, Any], user_id: str
    ) -> Record:
        """Create a record after validating attribute slugs."""
        obj = self._find_object_by_id(workspace_id, object_id)
        if obj is None:
            raise ValueError(f"Object {object_id} not found")

        self._validate_values(obj, values)
        record = Record(id=cuid(), object_id=obj.id, object_slug=obj.slug, values=dict(values), created_by=user_id)
        self.records[record.id] = record
        logger.info(f"Created {obj.slug} record {record.id} in workspace {workspace_id} by {user_id}")
        return record

    async def update_record(
        self, workspace_id: str, object_id: str, record_id: str, values: dict[str, Any], user_id: str
    ) -> Record | None:
        """Merge values into an existing record."""
        record = await self.get_record(workspace_id, object_id, record_id)
        if record is None:
            return None

        obj = self._find_object_by_id(workspace_id, object_id)
        if obj is not None:
            self._validate_values(obj, values)
        record.values.update(values)
        record.updated_at = _now()
        logger.info(f"Updated record {record_id} in workspace {workspace_id} by {user_id}")
        return record

    async def delete_record(self, workspace_id: str, object_id: str, record_id: str) -> bool:
        """Delete a record."""
        record = await self.get_record(workspace_id, object_id, record_id)
        if record is None:
            return False
        del self.records[record_id]
        logger.info(f"Deleted record {record_id} in workspace {workspace_id}")
        return True

    async def list_tasks(
        self, workspace_id: str, user_id: str, show_completed: bool = False, limit: int = 20
    ) -> tuple[list[Task], int]:
        """List the user's tasks."""
        tasks = [
            t
            for t in self.tasks.values()
            if t.workspace_id == workspace_id
            and (user_id in t.assignee_ids or t.created_by == user_id)
            and (show_completed or not t.is_completed)
        ]
        return tasks[:limit], len(tasks)

    async def create_task(
        self,
        workspace_id: str,
        user_id: str,
        content: str,
        deadline: str | None = None,
        record_ids: list[str] | None = None,
        assignee_ids: list[str] | None = None,
    ) -> Task:
        """Create a task linked to records of the same workspace."""
        record_ids = record_ids or []
        missing = set(record_ids) - self._workspace_record_ids(workspace_id)
        if missing:
            raise ValueError(f"Record(s) not found: {', '.join(sorted(missing))}")

        task = Task(
            id=cuid(),
            workspace_id=workspace_id,
            content=content,
            created_by=user_id,
            deadline=deadline,
            record_ids=record_ids,
            assignee_ids=assignee_ids or [user_id],
        )
        self.tasks[task.id] = task
        return task

    async def get_notes_for_record(self, workspace_id: str, record_id: str) -> list[Note]:
        """List notes attached to a record."""
        return [n for n in self.notes.values() if n.workspace_id == workspace_id and n.record_id == record_id]

    async def create_note(
        self, workspace_id: str, user_id: str, record_id: str, title: str, content: dict[str, Any] | None
    ) -> Note:
        """Attach a note to a record of the same workspace."""
        if record_id not in self._workspace_record_ids(workspace_id):
            raise ValueError(f"Record {record_id} not found")

        note = Note(
            id=cuid(), workspace_id=workspace_id, record_id=record_id, title=title, created_by=user_id, content=content
        )
        self.notes[note.id] = note
        return note

    async def list_lists(self, workspace_id: str) -> list[CrmList]:
        """List the workspace's lists."""
        return [lst for lst in self.lists.values() if lst.workspace_id == workspace_id]

    async def list_list_entries(
        self, workspace_id: str, list_id: str, limit: int = 20, offset: int = 0
    ) -> tuple[list[ListEntry], int]:
        """List entries of a list."""
        crm_list = self.lists.get(list_id)
        if crm_list is None or crm_list.workspace_id != workspace_id:
            return [], 0
        entries = [e for e in self.list_entries.values() if e.list_id == list_id]
        return entries[offset : offset + limit], len(entries)

    def add_list(self, workspace_id: str, name: str, object_slug: str) -> CrmList:
        """Create a list (used for seeding)."""
        crm_list = CrmList(id=cuid(), workspace_id=workspace_id, name=name, object_slug=object_slug)
        self.lists[crm_list.id] = crm_list
        return crm_list

    def add_list_entry(self, list_id: str, record_id: str) -> ListEntry:
        """Add a record to a list (used for seeding)."""
        entry = ListEntry(id=cuid(), list_id=list_id, record_id=record_id)
        self.list_entries[entry.id] = entry
        return entry


_crm_backend: CrmBackend | None = None


def get_crm_backend() -> CrmBackend:
    """Get or create the CRM backend instance."""
    global _crm_backend
    if _crm_backend is None:
        _crm_backend = InMemoryCrmBackend()
    return _crm_backend
