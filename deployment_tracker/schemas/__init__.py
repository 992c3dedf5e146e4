from deployment_tracker.schemas.deployment_record import (
    DeploymentRecord,
    RecordStatus,
    new_deployment_record,
)

__all__ = [
    "DeploymentRecord",
    "RecordStatus",
    "new_deployment_record",
]
