from typing import List, Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field


class FileDescriptor(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    url: str
    filename: Optional[str] = None
    name: Optional[str] = None
    size: Optional[int] = None
    mimetype: Optional[str] = None
    comments: Optional[str] = None
    uploaded_at: Optional[str] = Field(default=None, alias="uploadedAt")


class OrderCreate(BaseModel):
    """Type-specific requirements are checked by the lifecycle service."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    order_type: Optional[str] = Field(default=None, alias="orderType")
    notes: Optional[str] = None
    files: List[FileDescriptor] = Field(default_factory=list)

    # vector / digitizing
    design_name: Optional[str] = Field(default=None, alias="designName")
    file_format: Optional[str] = Field(default=None, alias="fileFormat")
    other_instructions: Optional[str] = Field(default=None, alias="otherInstructions")
    placement_of_design: Optional[str] = Field(default=None, alias="placementOfDesign")
    custom_measurements: Optional[str] = Field(default=None, alias="customMeasurements")
    length: Optional[float] = None
    width: Optional[float] = None
    unit: Optional[str] = None
    custom_sizes: Optional[Dict[str, Any]] = Field(default=None, alias="customSizes")

    # patches
    patch_design_name: Optional[str] = Field(default=None, alias="patchDesignName")
    patch_style: Optional[str] = Field(default=None, alias="patchStyle")
    patch_amount: Optional[float] = Field(default=None, alias="patchAmount")
    patch_unit: Optional[str] = Field(default=None, alias="patchUnit")
    patch_length: Optional[float] = Field(default=None, alias="patchLength")
    patch_width: Optional[float] = Field(default=None, alias="patchWidth")
    patch_backing_style: Optional[str] = Field(default=None, alias="patchBackingStyle")
    patch_quantity: Optional[int] = Field(default=None, alias="patchQuantity")
    patch_address: Optional[str] = Field(default=None, alias="patchAddress")


class OrderUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    status: Optional[str] = None
    rejected_reason: Optional[str] = Field(default=None, alias="rejectedReason")
    report: Optional[str] = None
    tracking_number: Optional[str] = Field(default=None, alias="trackingNumber")
    notes: Optional[str] = None
    order_type: Optional[str] = Field(default=None, alias="orderType")


class AssignRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    employee_id: Optional[str] = Field(default=None, alias="employeeId")


class BulkAssignRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_ids: List[str] = Field(default_factory=list, alias="orderIds")
    employee_id: Optional[str] = Field(default=None, alias="employeeId")


class CommentsRequest(BaseModel):
    comments: Optional[str] = None


class SampleUpload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    files: Optional[List[FileDescriptor]] = None
    cloudinary_url: Optional[str] = Field(default=None, alias="cloudinaryUrl")
    filename: Optional[str] = None
    comments: Optional[str] = None


class EmployeeSubmit(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    pending_status: Optional[str] = Field(default=None, alias="pendingStatus")
    pending_files: List[FileDescriptor] = Field(default_factory=list, alias="pendingFiles")
    pending_report: Optional[str] = Field(default=None, alias="pendingReport")
    comments: Optional[str] = None


class RejectWorkRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rejection_reason: Optional[str] = Field(default=None, alias="rejectionReason")


def _iso(dt):
    return dt.isoformat() if dt else None


def user_brief(u, *, with_role: bool = False) -> Optional[dict]:
    if u is None:
        return None
    d = {"id": str(u.id), "name": u.name, "email": u.email}
    if with_role:
        d["employeeRole"] = u.employee_role
    return d


def pending_work_to_dict(pw) -> dict:
    if pw is None:
        return {"hasPendingWork": False, "wasRejected": False}
    return {
        "hasPendingWork": pw.has_pending_work,
        "wasRejected": pw.was_rejected,
        "pendingStatus": pw.pending_status,
        "pendingFiles": pw.pending_files or [],
        "pendingReport": pw.pending_report or "",
        "submittedAt": _iso(pw.submitted_at),
        "submittedBy": user_brief(pw.submitted_by) if pw.submitted_by else None,
        "rejectionReason": pw.rejection_reason or "",
    }


def sample_image_to_dict(img) -> dict:
    return {
        "id": str(img.id),
        "url": img.url,
        "filename": img.filename,
        "type": img.type,
        "comments": img.comments or "",
        "uploadedAt": _iso(img.uploaded_at),
    }


def order_to_dict(order, viewer=None, *, for_assignee: bool = False) -> dict:
    """API shape of an order as seen by ``viewer``.

    Pending work is only rendered for admins and the employee who submitted
    it. ``for_assignee`` strips the shipping address and customer identity.
    """
    d = {
        "id": str(order.id),
        "orderNumber": order.order_number,
        "orderType": order.order_type,
        "customerId": str(order.customer_id),
        "customer": user_brief(order.customer),
        "designName": order.design_name,
        "fileFormat": order.file_format,
        "otherInstructions": order.other_instructions,
        "placementOfDesign": order.placement_of_design,
        "customMeasurements": order.custom_measurements,
        "length": order.length,
        "width": order.width,
        "unit": order.unit,
        "customSizes": order.custom_sizes,
        "patchDesignName": order.patch_design_name,
        "patchStyle": order.patch_style,
        "patchAmount": order.patch_amount,
        "patchUnit": order.patch_unit,
        "patchLength": order.patch_length,
        "patchWidth": order.patch_width,
        "patchBackingStyle": order.patch_backing_style,
        "patchQuantity": order.patch_quantity,
        "patchAddress": order.patch_address,
        "trackingNumber": order.tracking_number or "",
        "items": order.items or [],
        "files": order.files or [],
        "status": order.status,
        "customerApprovalStatus": order.customer_approval_status,
        "sampleImages": [sample_image_to_dict(i) for i in order.sample_images],
        "assignedTo": user_brief(order.assigned_to, with_role=True),
        "requiredEmployeeRole": order.required_employee_role,
        "parentOrderId": str(order.parent_order_id) if order.parent_order_id else None,
        "parentOrderNumber": order.parent_order.order_number if order.parent_order else None,
        "isRevision": bool(order.is_revision),
        "revisionNumber": order.revision_number or 0,
        "revisionReason": order.revision_reason or "",
        "totalAmount": order.total_amount or 0,
        "notes": order.notes or "",
        "rejectedReason": order.rejected_reason or "",
        "report": order.report or "",
        "completedCount": order.completed_count or 0,
        "invoiceId": str(order.invoice_id) if order.invoice_id else None,
        "hasInvoice": bool(order.has_invoice),
        "invoiceStatus": order.invoice_status,
        "createdAt": _iso(order.created_at),
        "updatedAt": _iso(order.updated_at),
    }
    if for_assignee:
        d.pop("patchAddress")
        d["customer"] = None
    if viewer is not None:
        pw = order.pending_work
        if viewer.role == "admin" or (pw is not None and pw.submitted_by_id == viewer.id):
            d["employeePendingWork"] = pending_work_to_dict(pw)
    return d
