"""Pydantic models describing table schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class IndexDescriptor(BaseModel):
    """A secondary index as reported by the source database."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(default=..., min_length=1, description="Index name")
    function: Any = Field(
        default=None,
        description="Opaque serialized index function, replayed verbatim on creation",
    )
    multi: bool = Field(default=False, description="True for multi indexes")
    geo: bool = Field(default=False, description="True for geospatial indexes")


class TableDescriptor(BaseModel):
    """Schema of one table: name, primary key and secondary indexes."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(default=..., min_length=1, description="Table name")
    primary_key: str = Field(default="id", min_length=1, description="Primary key field")
    indexes: tuple[IndexDescriptor, ...] = Field(
        default=(), description="Secondary indexes"
    )

    @property
    def index_names(self) -> frozenset[str]:
        """Names of the secondary indexes."""
        return frozenset(index.name for index in self.indexes)

    def has_index(self, name: str) -> bool:
        """True when ``name`` can be used to order the table."""
        return name == self.primary_key or name in self.index_names
