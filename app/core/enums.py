from enum import Enum


class ExeatStatus(str, Enum):
    CMD_REVIEW = "cmd_review"
    DEPUTY_DEAN_REVIEW = "deputy-dean_review"
    DEAN_REVIEW = "dean_review"
    PARENT_CONSENT = "parent_consent"
    HOSTEL_SIGNOUT = "hostel_signout"
    SECURITY_SIGNOUT = "security_signout"
    SECURITY_SIGNIN = "security_signin"
    HOSTEL_SIGNIN = "hostel_signin"
    COMPLETED = "completed"
    REJECTED = "rejected"
    APPEAL = "appeal"


TERMINAL_STATUSES = frozenset({ExeatStatus.COMPLETED, ExeatStatus.REJECTED})


class ExeatRoleName(str, Enum):
    CMD = "cmd"
    DEPUTY_DEAN = "deputy_dean"
    DEAN = "dean"
    DEAN2 = "dean2"
    HOSTEL_ADMIN = "hostel_admin"
    SECURITY = "security"
    ADMIN = "admin"


class ApprovalStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class ConsentStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    declined = "declined"


class ContactMode(str, Enum):
    WHATSAPP = "whatsapp"
    TEXT = "text"
    PHONE_CALL = "phone_call"
    ANY = "any"


class ConsentMethod(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    TEXT = "text"
    WHATSAPP = "whatsapp"
    PHONE_CALL = "phone_call"
    ANY = "any"


class UserType(str, Enum):
    STUDENT = "student"
    STAFF = "staff"
