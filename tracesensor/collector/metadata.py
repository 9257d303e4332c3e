"""Models for the ECS container metadata endpoint (v3/v4 documents).

Only the fields the sensor reports are modelled; everything else in the
documents is ignored.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ContainerLimits(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    cpu: float | None = Field(default=None, alias="CPU")
    memory: int | None = Field(default=None, alias="Memory")


class ContainerMetadata(BaseModel):
    """Document served at ``$ECS_CONTAINER_METADATA_URI`` and as entries of a task's containers."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    docker_id: str = Field(alias="DockerId")
    name: str = Field(alias="Name")
    docker_name: str | None = Field(default=None, alias="DockerName")
    image: str | None = Field(default=None, alias="Image")
    image_id: str | None = Field(default=None, alias="ImageID")
    labels: dict[str, str] = Field(default_factory=dict, alias="Labels")
    desired_status: str | None = Field(default=None, alias="DesiredStatus")
    known_status: str | None = Field(default=None, alias="KnownStatus")
    limits: ContainerLimits = Field(default_factory=ContainerLimits, alias="Limits")
    created_at: str | None = Field(default=None, alias="CreatedAt")
    started_at: str | None = Field(default=None, alias="StartedAt")
    type: str | None = Field(default=None, alias="Type")


class TaskMetadata(BaseModel):
    """Document served at ``$ECS_CONTAINER_METADATA_URI/task``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    cluster: str = Field(alias="Cluster")
    task_arn: str = Field(alias="TaskARN")
    family: str = Field(alias="Family")
    revision: str = Field(alias="Revision")
    desired_status: str | None = Field(default=None, alias="DesiredStatus")
    known_status: str | None = Field(default=None, alias="KnownStatus")
    availability_zone: str | None = Field(default=None, alias="AvailabilityZone")
    pull_started_at: str | None = Field(default=None, alias="PullStartedAt")
    pull_stopped_at: str | None = Field(default=None, alias="PullStoppedAt")
    limits: ContainerLimits = Field(default_factory=ContainerLimits, alias="Limits")
    containers: list[ContainerMetadata] = Field(default_factory=list, alias="Containers")
