"""Wire models for the report-generation service and lookup providers"""
from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ReportSpec(BaseModel):
    """One logical report in an order. Fan-out may turn it into several requests."""
    model_config = ConfigDict(frozen=True)

    backend_type: str
    display_name: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class BusinessDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    abn: Optional[str] = Field(default=None, alias="Abn")
    name: Optional[str] = Field(default=None, alias="Name")
    is_company: str = Field(alias="isCompany")
    fname: Optional[str] = None
    lname: Optional[str] = None
    dob: Optional[str] = None
    document_id: Optional[str] = Field(default=None, alias="documentId")
    land_title_selection: Optional[dict[str, Any]] = Field(default=None, alias="landTitleSelection")
    address: Optional[str] = None
    address_details: Optional[dict[str, Any]] = Field(default=None, alias="addressDetails")
    selected_record: Optional[dict[str, Any]] = Field(default=None, alias="selectedRecord")


class ReportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    user_id: Any = Field(alias="userId")
    matter_id: Any = Field(default=None, alias="matterId")
    ispdfcreate: bool = True
    business: Optional[BusinessDetails] = None

    def payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class OrganisationSuggestion(BaseModel):
    name: str
    abn: str
    status: str = "Active"
    score: int = 0


class LandTitleCountsQuery(BaseModel):
    type: Literal["organization", "individual", "address"]
    abn: Optional[str] = None
    company_name: Optional[str] = Field(default=None, alias="companyName")
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    dob: Optional[str] = None
    address: Optional[str] = None
    states: list[str]

    model_config = ConfigDict(populate_by_name=True)

    def payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
