"""
Import Process Request Models
Pydantic models for validating JSON request bodies
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Union

ProcessId = Union[int, str]


class StageChangeRequest(BaseModel):
    """Move a process to another Kanban stage"""
    process_id: ProcessId = Field(..., alias="processId")
    new_stage: str = Field(..., alias="newStage", min_length=1)
    force: bool = False
    reason: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        populate_by_name = True


class CreateSimpleRequest(BaseModel):
    """Create a process from an invoice number found on a document"""
    invoice_number: str = Field(..., alias="invoiceNumber", min_length=1)
    file_hash: Optional[str] = Field(None, alias="fileHash")

    class Config:
        populate_by_name = True


class ConnectProcessRequest(BaseModel):
    """Link a saved document to a process"""
    process_id: int = Field(..., alias="processId")
    document_type: str = Field(..., alias="documentType", min_length=1)
    file_hash: str = Field(..., alias="fileHash", min_length=1)
    document_id: Optional[Union[int, str]] = Field(None, alias="documentId")
    metadata: Dict[str, Any] = {}

    class Config:
        populate_by_name = True


class AuditLogRequest(BaseModel):
    """Manual stage audit entry"""
    process_id: ProcessId = Field(..., alias="processId")
    process_number: str = Field(..., alias="processNumber", min_length=1)
    change_type: str = Field("manual_update", alias="changeType")
    previous_stage: Optional[str] = Field(None, alias="previousStage")
    new_stage: Optional[str] = Field(None, alias="newStage")
    reason: Optional[str] = None
    notes: Optional[str] = None
    attached_documents: List[str] = Field(default_factory=list, alias="attachedDocuments")
    forced: bool = False

    class Config:
        populate_by_name = True


class DocumentData(BaseModel):
    """Fields used to match a document to a process"""
    invoice_number: Optional[str] = Field(None, alias="invoiceNumber")
    references: List[str] = []
    company_name: Optional[str] = Field(None, alias="companyName")
    date: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    extracted_text: Optional[str] = Field(None, alias="extractedText")

    class Config:
        populate_by_name = True


class FindProcessRequest(BaseModel):
    document_data: DocumentData = Field(..., alias="documentData")
    search_mode: str = Field("ai", alias="searchMode", pattern="^(strict|fuzzy|ai)$")

    class Config:
        populate_by_name = True


class CompareRequest(BaseModel):
    """Comparison report request"""
    process_id: ProcessId = Field(..., alias="processId")
    comparison_type: str = Field(..., alias="comparisonType", min_length=1)
    export_format: str = Field("json", alias="exportFormat", pattern="^(json|csv)$")
    include_details: bool = Field(True, alias="includeDetails")

    class Config:
        populate_by_name = True
