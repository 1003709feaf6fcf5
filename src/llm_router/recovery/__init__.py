"""Recovery of near-valid structured model output."""

from .pipeline import recover
from .schema import ResponseSchema, SchemaCatalog, SchemaMetadata
from .transforms import split_list_text

__all__ = [
    "ResponseSchema",
    "SchemaCatalog",
    "SchemaMetadata",
    "recover",
    "split_list_text",
]
