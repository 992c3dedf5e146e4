from enum import Enum

from pydantic import BaseModel


class RecordStatus(str, Enum):
    """Lifecycle status reported for a deployment"""
    DEPLOYED = "deployed"
    DECOMMISSIONED = "decommissioned"


class DeploymentRecord(BaseModel):
    name: str
    digest: str
    version: str
    logical_environment: str
    physical_environment: str
    cluster: str
    status: RecordStatus
    deployment_name: str

    class Config:
        frozen = True
        use_enum_values = True

    def to_json(self) -> str:
        """Wire format for the deployment-record endpoint."""
        return self.model_dump_json()


def new_deployment_record(
    name: str,
    digest: str,
    version: str,
    logical_environment: str,
    physical_environment: str,
    cluster: str,
    status: str,
    deployment_name: str,
) -> DeploymentRecord:
    """Build a record; an unknown status falls back to deployed."""
    valid = {s.value for s in RecordStatus}
    if status not in valid:
        status = RecordStatus.DEPLOYED.value
    return DeploymentRecord(
        name=name,
        digest=digest,
        version=version,
        logical_environment=logical_environment,
        physical_environment=physical_environment,
        cluster=cluster,
        status=status,
        deployment_name=deployment_name,
    )
