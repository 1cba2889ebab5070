"""
Connection Protocol - How nodes are wired together.

A connection is directed for execution (the source's output feeds the
target's inputs) and undirected for grouping nodes into containers.
"""

import uuid
from datetime import datetime

from pydantic import AliasChoices, BaseModel, Field


def new_connection_id() -> str:
    return f"conn_{uuid.uuid4().hex[:12]}"


class Connection(BaseModel):
    """
    A directed link between two nodes.

    Example:
        Connection(from_id="facts", to_id="answer")
    """

    id: str = Field(default_factory=new_connection_id)
    from_id: str = Field(
        description="Source node ID", validation_alias=AliasChoices("from_id", "fromId")
    )
    to_id: str = Field(description="Target node ID", validation_alias=AliasChoices("to_id", "toId"))
    from_port: str = Field(default="output", validation_alias=AliasChoices("from_port", "fromPort"))
    to_port: str = Field(default="input", validation_alias=AliasChoices("to_port", "toPort"))
    created_at: datetime = Field(
        default_factory=datetime.now, validation_alias=AliasChoices("created_at", "createdAt")
    )

    model_config = {"frozen": True, "extra": "ignore", "populate_by_name": True}

    def touches(self, node_id: str) -> bool:
        return self.from_id == node_id or self.to_id == node_id

    @property
    def endpoints(self) -> tuple[str, str]:
        return (self.from_id, self.to_id)
