"""Shared fixtures: kubernetes pod models and a clean metrics/log state."""
import pytest
from kubernetes.client import (
    V1Container,
    V1ContainerStatus,
    V1ObjectMeta,
    V1OwnerReference,
    V1Pod,
    V1PodSpec,
    V1PodStatus,
)

DIGEST_A = "sha256:" + "a" * 64
DIGEST_B = "sha256:" + "b" * 64


def build_pod(
    name="web-7f9c9b6d8-abcde",
    namespace="prod",
    replica_set="web-7f9c9b6d8",
    phase="Running",
    containers=(("app", "ghcr.io/acme/web:1.2.3"),),
    init_containers=(),
    image_ids=None,
    deletion_timestamp=None,
    owner_kind="ReplicaSet",
):
    """
    Build a V1Pod. image_ids maps container name -> status imageID; by default
    every container gets DIGEST_A.
    """
    owners = None
    if replica_set:
        owners = [
            V1OwnerReference(
                api_version="apps/v1",
                kind=owner_kind,
                name=replica_set,
                uid="uid-" + replica_set,
            )
        ]
    if image_ids is None:
        image_ids = {
            cname: f"docker-pullable://ghcr.io/acme/{cname}@{DIGEST_A}"
            for cname, _ in tuple(containers) + tuple(init_containers)
        }

    return V1Pod(
        metadata=V1ObjectMeta(
            name=name,
            namespace=namespace,
            owner_references=owners,
            deletion_timestamp=deletion_timestamp,
        ),
        spec=V1PodSpec(
            containers=[V1Container(name=cname, image=img) for cname, img in containers],
            init_containers=[V1Container(name=cname, image=img) for cname, img in init_containers] or None,
        ),
        status=V1PodStatus(
            phase=phase,
            container_statuses=[
                V1ContainerStatus(
                    name=cname,
                    image=img,
                    image_id=image_ids.get(cname, ""),
                    ready=True,
                    restart_count=0,
                )
                for cname, img in containers
            ],
            init_container_statuses=[
                V1ContainerStatus(
                    name=cname,
                    image=img,
                    image_id=image_ids.get(cname, ""),
                    ready=True,
                    restart_count=0,
                )
                for cname, img in init_containers
            ] or None,
        ),
    )


@pytest.fixture
def make_pod():
    return build_pod
