"""Transcript reconstruction: system prompt plus persisted history."""

from datetime import UTC, datetime

from crm_assistant.models.llm import UpstreamMessage
from crm_assistant.models.messages import Message
from crm_assistant.services.crm import CrmBackend
from crm_assistant.services.message_store import MessageStore
from crm_assistant.utils.logging import get_logger

logger = get_logger(__name__)


async def build_system_prompt(crm: CrmBackend, workspace_id: str) -> str:
    """Generate the system prompt describing the workspace's data model.

    Args:
        crm: CRM backend to read object types from
        workspace_id: Workspace the conversation belongs to

    Returns:
        System prompt string
    """
    object_lines = []
    for obj in await crm.list_objects(workspace_id):
        attribute_lines = []
        for attribute in obj.attributes:
            line = f'    - "{attribute.slug}" ({attribute.type}{", array" if attribute.is_multiselect else ""})'
            if attribute.statuses:
                line += " - values: " + ", ".join(f'"{s}"' for s in attribute.statuses)
            attribute_lines.append(line)
        object_lines.append("\n".join([f'- {obj.plural_name} (slug: "{obj.slug}")', *attribute_lines]))

    objects_block = "\n".join(object_lines)

    return f"""You are an AI assistant for a CRM. You help users manage their CRM data: searching records, \
creating and updating contacts, companies, deals, tasks, and notes.

Available object types and their attributes:
{objects_block}

Guidelines:
- When the user refers to "people", "contacts", "companies", "deals" etc., map to the correct object slug.
- Use search_records to find records by name, email, domain, etc.
- Use list_records to browse records of a specific type.
- Use get_record to get full details of a specific record.
- When creating or updating records, use the exact attribute slugs listed above.
- For People: "name" is type personal_name (value: {{ fullName, firstName, lastName }}), \
"email_addresses" and "phone_numbers" are arrays.
- For status attributes (like deal stage), use the exact status values listed above.
- When creating tasks, always provide a clear content description.
- When creating notes, you need a record_id. Search for the record first if needed.
- Creating, updating and deleting data requires the user's approval, which the application asks for.
- If a tool call fails or is rejected, explain it to the user and suggest alternatives.

Current date and time: {datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")} UTC"""


def to_upstream(message: Message) -> UpstreamMessage:
    """Project a persisted message onto the upstream wire shape."""
    return UpstreamMessage(
        role=message.role.value,
        content=message.content,
        tool_calls=message.tool_calls or None,
        tool_call_id=message.tool_call_id,
        name=message.tool_name,
    )


class TranscriptBuilder:
    """Rebuilds the upstream transcript for a conversation from storage."""

    def __init__(self, store: MessageStore, crm: CrmBackend):
        """Initialize with the message store and the CRM backend used for the prompt."""
        self.store = store
        self.crm = crm

    async def build(self, conversation_id: str, workspace_id: str) -> list[UpstreamMessage]:
        """Return a fresh system message followed by the history in creation order."""
        system_prompt = await build_system_prompt(self.crm, workspace_id)
        history = await self.store.list_messages(conversation_id)

        logger.debug(f"Built transcript for {conversation_id}: {len(history)} history messages")
        return [UpstreamMessage(role="system", content=system_prompt), *(to_upstream(m) for m in history)]
