from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional, Dict, Any


class RegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    username: str
    email: EmailStr
    password: str
    company: str
    country: str
    street: str
    city: str
    state: str
    zip_code: str = Field(alias="zipCode")
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    identifier: str  # username or email
    password: str


class PasswordChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(alias="currentPassword")
    new_password: str = Field(alias="newPassword")


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    country: Optional[str] = None
    invoicing_email: Optional[EmailStr] = Field(default=None, alias="invoicingEmail")
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = Field(default=None, alias="zipCode")


class AdminUserUpdate(ProfileUpdate):
    role: Optional[str] = None
    employee_role: Optional[str] = Field(default=None, alias="employeeRole")
    admin_notes: Optional[str] = Field(default=None, alias="adminNotes")
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    assign_customer_number: bool = Field(default=False, alias="assignCustomerNumber")


class EmployeeCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    email: EmailStr
    employee_role: Optional[str] = Field(default=None, alias="employeeRole")


class EmployeeUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    email: Optional[EmailStr] = None
    employee_role: Optional[str] = Field(default=None, alias="employeeRole")
    is_active: Optional[bool] = Field(default=None, alias="isActive")


class ActivityCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    activity_type: str = Field(alias="activityType")
    order_id: Optional[str] = Field(default=None, alias="orderId")
    session_duration: Optional[float] = Field(default=None, alias="sessionDuration")
    metadata: Optional[Dict[str, Any]] = None


def user_to_dict(u) -> dict:
    return {
        "id": str(u.id),
        "name": u.name,
        "username": u.username,
        "email": u.email,
        "role": u.role,
        "employeeRole": u.employee_role,
        "isActive": bool(u.is_active),
        "customerNumber": u.customer_number,
        "phone": u.phone,
        "company": u.company,
        "invoicingEmail": u.invoicing_email,
        "country": u.country,
        "address": {
            "street": u.street,
            "city": u.city,
            "state": u.state,
            "zipCode": u.zip_code,
        },
        "adminNotes": u.admin_notes or "",
        "createdAt": u.created_at.isoformat() if u.created_at else None,
        "lastLoginAt": u.last_login_at.isoformat() if u.last_login_at else None,
        "lastActiveAt": u.last_active_at.isoformat() if u.last_active_at else None,
    }


def session_user(u) -> dict:
    """Compact shape returned alongside a token."""
    return {
        "id": str(u.id),
        "name": u.name,
        "username": u.username,
        "email": u.email,
        "role": u.role,
        "employeeRole": u.employee_role,
    }
