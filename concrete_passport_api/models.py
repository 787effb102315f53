from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class CreatePassportRequest(BaseModel):
    package_key: str
    material_id: str = ""
    data_locator: str
    lab_identity: Optional[str] = None


class DataLocatorRequest(BaseModel):
    data_locator: str


class HashRequest(BaseModel):
    hash: str


class FinalizeRequest(BaseModel):
    final_grade: str
    certification_hash: str


class TransferRequest(BaseModel):
    new_owner: str


class MaterialBatchRequest(BaseModel):
    batch_number: str
    material_type: str
    supplier_name: str = ""
    certificate_hash: str = ""
    expiry_at: Optional[datetime] = None


class ProcessEventRequest(BaseModel):
    event_kind: str
    data_locator: str = ""
    parameters_hash: str = ""


class RegisterValidatorRequest(BaseModel):
    organization_name: str
    certification_number: str = ""


class ValidationRequest(BaseModel):
    passed: bool
    report_locator: str = ""
    signature_b64: str = ""


class AuthorizeLabRequest(BaseModel):
    identity: str
    name: str
    accreditation: str = ""


class LabTestRequest(BaseModel):
    test_kind: str
    data_locator: str
    test_date: datetime
    curing_age: int = Field(ge=0)
    result_summary: str = ""


class ValidateTestRequest(BaseModel):
    outcome: str


class UpdateTestRequest(BaseModel):
    data_locator: str
    result_summary: Optional[str] = None
