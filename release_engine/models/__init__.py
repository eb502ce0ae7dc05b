from release_engine.models.app import App, AppPlatform  # noqa: F401
from release_engine.models.audit_log import AuditLogEntry  # noqa: F401
from release_engine.models.deployment import Deployment, DeploymentStatus  # noqa: F401
from release_engine.models.package import (  # noqa: F401
    Package,
    PackageTombstone,
    ReleaseMethod,
)
from release_engine.models.status_report import (  # noqa: F401
    DeviceActivePackage,
    ReportStatus,
    StatusReport,
)
