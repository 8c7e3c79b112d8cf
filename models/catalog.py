"""
Catalog entity schemas.

The four governed tables: parts, vehicle_applications, cross_references,
vehicle_aliases. Write schemas are used by the import executor before rows
reach the repository.
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional
from enum import Enum

from models.base import BaseSchema


class WorkflowStatus(str, Enum):
    """Part workflow status. DELETE on an import row is a tombstone."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    DELETE = "DELETE"


class AliasType(str, Enum):
    """What a vehicle alias resolves to."""
    MAKE = "make"
    MODEL = "model"


class CatalogTable(str, Enum):
    """Governed tables, in forward (insert) dependency order."""
    PARTS = "parts"
    VEHICLE_APPLICATIONS = "vehicle_applications"
    CROSS_REFERENCES = "cross_references"
    VEHICLE_ALIASES = "vehicle_aliases"


# Forward order for inserts; reverse it for deletes
TABLE_INSERT_ORDER = [
    CatalogTable.PARTS,
    CatalogTable.VEHICLE_APPLICATIONS,
    CatalogTable.CROSS_REFERENCES,
    CatalogTable.VEHICLE_ALIASES,
]

TABLE_DELETE_ORDER = [
    CatalogTable.CROSS_REFERENCES,
    CatalogTable.VEHICLE_APPLICATIONS,
    CatalogTable.PARTS,
    CatalogTable.VEHICLE_ALIASES,
]


# ===================
# WRITE SCHEMAS
# ===================

class PartWrite(BaseSchema):
    """Part columns written by the import."""

    acr_sku: str = Field(..., min_length=1, max_length=50)
    part_type: str = Field(..., min_length=1, max_length=100)
    position_type: Optional[str] = Field(None, max_length=50)
    abs_type: Optional[str] = Field(None, max_length=20)
    bolt_pattern: Optional[str] = Field(None, max_length=50)
    drive_type: Optional[str] = Field(None, max_length=50)
    specifications: Optional[str] = None
    workflow_status: WorkflowStatus = WorkflowStatus.ACTIVE

    @field_validator("acr_sku")
    @classmethod
    def sku_uppercase(cls, v: str) -> str:
        """SKU must be uppercase and trimmed."""
        return v.upper().strip()


class VehicleApplicationWrite(BaseSchema):
    """Vehicle application columns written by the import."""

    part_id: str
    make: str = Field(..., min_length=1, max_length=50)
    model: str = Field(..., min_length=1, max_length=100)
    start_year: int = Field(..., ge=1900)
    end_year: int = Field(..., ge=1900)

    @model_validator(mode="after")
    def years_ordered(self) -> "VehicleApplicationWrite":
        if self.end_year < self.start_year:
            raise ValueError("end_year must be >= start_year")
        return self


class CrossReferenceWrite(BaseSchema):
    """Cross reference columns written by the import."""

    acr_part_id: str
    competitor_brand: Optional[str] = Field(None, max_length=50)
    competitor_sku: str = Field(..., min_length=1, max_length=50)


class VehicleAliasWrite(BaseSchema):
    """Vehicle alias columns written by the import."""

    alias: str = Field(..., min_length=1, max_length=50)
    canonical_name: str = Field(..., min_length=1, max_length=100)
    alias_type: AliasType

    @field_validator("alias")
    @classmethod
    def alias_lowercase(cls, v: str) -> str:
        return v.lower().strip()


WRITE_SCHEMAS: dict[CatalogTable, type[BaseModel]] = {
    CatalogTable.PARTS: PartWrite,
    CatalogTable.VEHICLE_APPLICATIONS: VehicleApplicationWrite,
    CatalogTable.CROSS_REFERENCES: CrossReferenceWrite,
    CatalogTable.VEHICLE_ALIASES: VehicleAliasWrite,
}


def to_write_record(table: CatalogTable, record: dict) -> dict:
    """Validate a record through its write schema and return JSON-safe columns."""
    schema = WRITE_SCHEMAS[table]
    return schema.model_validate(record).model_dump(mode="json")
