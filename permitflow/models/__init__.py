from permitflow.models.application_document import ApplicationDocument
from permitflow.models.approval_entry import ApprovalEntry
from permitflow.models.audit_log import AuditLog
from permitflow.models.download_access_token import DownloadAccessToken
from permitflow.models.otp_challenge import OtpChallenge
from permitflow.models.permit_application import PermitApplication

__all__ = [
    "ApplicationDocument",
    "ApprovalEntry",
    "AuditLog",
    "DownloadAccessToken",
    "OtpChallenge",
    "PermitApplication",
]
