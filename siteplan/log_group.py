"""
CloudWatch log group with retention, reconciled idempotently.

The log group is identified by its name, so creation must converge rather
than fail when the group already exists (retried or concurrent deployments,
or a group Lambda created on first invocation). Likewise deleting a group
that is already gone succeeds. Every other API error propagates unchanged;
nothing here retries.

Update re-asserts the full desired state (create, then set retention) instead
of diffing, since both calls are idempotent. A retention of 0 means "no
policy": any existing retention policy is removed.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import boto3
import pulumi
from botocore.exceptions import ClientError
from pulumi.dynamic import CreateResult, Resource, ResourceProvider, UpdateResult

from siteplan._helpers import log_group_arn

ALREADY_EXISTS = "ResourceAlreadyExistsException"
NOT_FOUND = "ResourceNotFoundException"

# Region → CloudWatch Logs client.
ClientFactory = Callable[[str], Any]


def _logs_client(region: str) -> Any:
    return boto3.client("logs", region_name=region)


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


@dataclass(frozen=True)
class LogGroupState:
    """Desired state of one log group."""

    log_group_name: str
    retention_in_days: int
    region: str

    @classmethod
    def from_props(cls, props: dict[str, Any]) -> "LogGroupState":
        # Engine numbers arrive as floats.
        return cls(
            log_group_name=props["log_group_name"],
            retention_in_days=int(props["retention_in_days"]),
            region=props["region"],
        )

    def outputs(self) -> dict[str, Any]:
        # Stored as the resource state; delete and update read it back.
        return {
            "log_group_arn": log_group_arn(self.region, self.log_group_name),
            "log_group_name": self.log_group_name,
            "retention_in_days": self.retention_in_days,
            "region": self.region,
        }


class LogGroupReconciler:
    """
    Converges a log group to a LogGroupState.

    Args:
        client_factory: Returns a CloudWatch Logs client for a region
            (boto3 by default).
    """

    def __init__(self, client_factory: ClientFactory | None = None):
        self.client_factory = client_factory or _logs_client

    def create(self, state: LogGroupState) -> dict[str, Any]:
        """Create the group if needed and apply its retention; returns outputs."""
        self.create_log_group(state)
        self.set_retention_policy(state)
        return state.outputs()

    def update(self, state: LogGroupState) -> dict[str, Any]:
        return self.create(state)

    def delete(self, name: str, region: str) -> None:
        client = self.client_factory(region)
        try:
            client.delete_log_group(logGroupName=name)
        except ClientError as error:
            if _error_code(error) != NOT_FOUND:
                raise
            pulumi.log.debug(f"Log group {name} already deleted")

    def create_log_group(self, state: LogGroupState) -> None:
        client = self.client_factory(state.region)
        try:
            client.create_log_group(logGroupName=state.log_group_name)
        except ClientError as error:
            if _error_code(error) != ALREADY_EXISTS:
                raise
            pulumi.log.debug(f"Log group {state.log_group_name} already exists")

    def set_retention_policy(self, state: LogGroupState) -> None:
        client = self.client_factory(state.region)
        if state.retention_in_days == 0:
            client.delete_retention_policy(logGroupName=state.log_group_name)
        else:
            client.put_retention_policy(
                logGroupName=state.log_group_name,
                retentionInDays=state.retention_in_days,
            )


class LogGroupProvider(ResourceProvider):
    """Dynamic provider delegating to LogGroupReconciler; the id is the name."""

    def create(self, props: dict[str, Any]) -> CreateResult:
        state = LogGroupState.from_props(props)
        outs = LogGroupReconciler().create(state)
        return CreateResult(id_=state.log_group_name, outs=outs)

    def update(self, _id: str, _olds: dict[str, Any], news: dict[str, Any]) -> UpdateResult:
        outs = LogGroupReconciler().update(LogGroupState.from_props(news))
        return UpdateResult(outs=outs)

    def delete(self, id_: str, props: dict[str, Any]) -> None:
        LogGroupReconciler().delete(id_, props["region"])


class LogGroup(Resource):
    """
    Log group whose retention is owned by this stack.

    Outputs:
        log_group_arn: Locator derived from region and name.
        log_group_name: The log group name.
        retention_in_days: Applied retention, 0 when no policy is set.
        region: Region the group lives in.
    """

    log_group_arn: pulumi.Output[str]
    log_group_name: pulumi.Output[str]
    retention_in_days: pulumi.Output[int]
    region: pulumi.Output[str]

    def __init__(
        self,
        name: str,
        log_group_name: pulumi.Input[str],
        retention_in_days: pulumi.Input[int],
        region: pulumi.Input[str],
        opts: pulumi.ResourceOptions | None = None,
    ):
        super().__init__(
            LogGroupProvider(),
            name,
            {
                "log_group_name": log_group_name,
                "retention_in_days": retention_in_days,
                "region": region,
                "log_group_arn": None,
            },
            opts,
        )
