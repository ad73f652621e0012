"""
Naming governance: every physical resource name is namespaced by app and stage.

``NamingPolicy.decide`` is consulted for each child resource before it is
registered (see ``siteplan.component.Component``). It performs two checks:

1. Ownership: a child's logical name must start with its parent's name,
   unless the child is the owning component itself.
2. Physical name: the resource type must appear in ``NAMING_RULES``. The
   rule says whether the provider auto-names the resource (no override), or
   which input field receives ``prefix_name(app, stage, name)``, optionally
   lowercased and suffixed. Unknown types are rejected so that a new
   resource type cannot ship without its naming being reviewed.

Rules are plain data; adding a resource type is a table entry.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import pulumi

from siteplan._helpers import prefix_name

# Types owned by this project, dynamic providers and random helpers carry no
# physical name of their own.
OWN_TYPE_PREFIX = "siteplan:"
EXEMPT_TYPES: frozenset[str] = frozenset(
    {
        "pulumi-python:dynamic:Resource",
        "random:index/randomId:RandomId",
    }
)


class NamingError(Exception):
    """A resource would be created with an unnamespaced name."""


class NotPrefixedByParentError(NamingError):
    pass


class PhysicalNameNotPrefixedError(NamingError):
    pass


@dataclass(frozen=True)
class NoOverride:
    """The provider generates a unique physical name; nothing to set."""


@dataclass(frozen=True)
class FieldOverride:
    """
    Set ``field`` to the prefixed name.

    ``suffix`` receives the value of the ``suffix_from`` input (possibly still
    pending) and returns the string appended to the name.
    """

    field: str
    lowercase: bool = False
    suffix_from: str | None = None
    suffix: Callable[[Any], str] | None = None


NamingRule = NoOverride | FieldOverride


def _fifo_suffix(fifo: Any) -> str:
    return ".fifo" if fifo else ""


_NAME = FieldOverride("name")
_NAME_LOWER = FieldOverride("name", lowercase=True)

NAMING_RULES: Mapping[str, NamingRule] = {
    "aws:apigatewayv2/api:Api": _NAME,
    "aws:iam/policy:Policy": _NAME,
    "aws:iam/role:Role": _NAME,
    "aws:iam/user:User": _NAME,
    "aws:iam/userPolicy:UserPolicy": _NAME,
    "aws:cloudwatch/eventRule:EventRule": _NAME,
    "aws:lambda/function:Function": _NAME,
    "aws:dynamodb/table:Table": _NAME,
    "aws:sns/topic:Topic": _NAME,
    "cloudflare:index/r2Bucket:R2Bucket": _NAME_LOWER,
    "cloudflare:index/workerScript:WorkerScript": _NAME_LOWER,
    "aws:rds/cluster:Cluster": FieldOverride("cluster_identifier", lowercase=True),
    "aws:rds/clusterInstance:ClusterInstance": FieldOverride(
        "identifier", lowercase=True
    ),
    "aws:sqs/queue:Queue": FieldOverride(
        "name", suffix_from="fifo_queue", suffix=_fifo_suffix
    ),
    **{
        type_: NoOverride()
        for type_ in (
            "pulumi:providers:aws",
            "aws:apigatewayv2/apiMapping:ApiMapping",
            "aws:apigatewayv2/domainName:DomainName",
            "aws:apigatewayv2/integration:Integration",
            "aws:apigatewayv2/route:Route",
            "aws:apigatewayv2/stage:Stage",
            "aws:acm/certificate:Certificate",
            "aws:acm/certificateValidation:CertificateValidation",
            "aws:iam/accessKey:AccessKey",
            "aws:iam/rolePolicyAttachment:RolePolicyAttachment",
            "aws:cloudfront/cachePolicy:CachePolicy",
            "aws:cloudfront/distribution:Distribution",
            "aws:cloudfront/function:Function",
            "aws:cloudfront/originAccessControl:OriginAccessControl",
            "aws:cloudfront/originAccessIdentity:OriginAccessIdentity",
            "aws:cloudwatch/eventTarget:EventTarget",
            "aws:cloudwatch/logGroup:LogGroup",
            "aws:lambda/eventSourceMapping:EventSourceMapping",
            "aws:lambda/functionUrl:FunctionUrl",
            "aws:lambda/invocation:Invocation",
            "aws:lambda/permission:Permission",
            "aws:route53/record:Record",
            "aws:s3/bucketNotification:BucketNotification",
            "aws:s3/bucketObject:BucketObject",
            "aws:s3/bucketObjectv2:BucketObjectv2",
            "aws:s3/bucketPolicy:BucketPolicy",
            "aws:s3/bucketPublicAccessBlock:BucketPublicAccessBlock",
            "aws:s3/bucketV2:BucketV2",
            "aws:s3/bucketWebsiteConfigurationV2:BucketWebsiteConfigurationV2",
            "aws:sns/topicSubscription:TopicSubscription",
            "cloudflare:index/workerDomain:WorkerDomain",
        )
    },
}


@dataclass(frozen=True)
class NamingDecision:
    """
    Approved naming for one resource.

    Attributes:
        name: Logical (component-relative) name, unchanged.
        overrides: Input fields to merge onto the resource's props. Empty
            when the resource is exempt or auto-named. Values may be
            ``pulumi.Output[str]`` when the name depends on a pending input.
    """

    name: str
    overrides: dict[str, Any] = field(default_factory=dict)

    @property
    def physical_name(self) -> "str | pulumi.Output[str] | None":
        return next(iter(self.overrides.values()), None)


def _defer(value: Any, fn: Callable[[Any], str]) -> "str | pulumi.Output[str]":
    # Plain values are resolved now; pending ones once they are known.
    if isinstance(value, pulumi.Output):
        return value.apply(fn)
    return fn(value)


@dataclass(frozen=True)
class NamingPolicy:
    """
    App/stage context used to namespace physical names.

    Attributes:
        app: Application (Pulumi project) name.
        stage: Deployment stage (Pulumi stack) name.
        rules: Resource type → naming rule table.
    """

    app: str
    stage: str
    rules: Mapping[str, NamingRule] = field(default_factory=lambda: NAMING_RULES)

    def decide(
        self,
        resource_type: str,
        proposed_name: str,
        parent_name: str,
        own_type: str,
        props: Mapping[str, Any] | None = None,
    ) -> NamingDecision:
        """
        Approve ``proposed_name`` for a resource of ``resource_type``.

        Args:
            resource_type: Pulumi type token of the resource being created.
            proposed_name: Its logical name.
            parent_name: Logical name of the owning component.
            own_type: Type token of the owning component; the component
                itself is exempt from the ownership check.
            props: Resource inputs, read by rules with a suffix.

        Raises:
            NotPrefixedByParentError: The name does not start with the
                parent's name.
            PhysicalNameNotPrefixedError: The type has no naming rule.
        """
        if resource_type != own_type and not proposed_name.startswith(parent_name):
            raise NotPrefixedByParentError(
                f'In "{parent_name}" component, the name of "{proposed_name}" '
                f"({resource_type}) is not prefixed with parent's name"
            )

        if resource_type.startswith(OWN_TYPE_PREFIX) or resource_type in EXEMPT_TYPES:
            return NamingDecision(proposed_name)

        rule = self.rules.get(resource_type)
        if rule is None:
            raise PhysicalNameNotPrefixedError(
                f'In "{parent_name}" component, the physical name of '
                f'"{proposed_name}" ({resource_type}) is not prefixed'
            )
        if isinstance(rule, NoOverride):
            return NamingDecision(proposed_name)

        physical = prefix_name(self.app, self.stage, proposed_name)
        if rule.lowercase:
            physical = physical.lower()
        if rule.suffix is not None:
            suffix = _defer((props or {}).get(rule.suffix_from), rule.suffix)
            if isinstance(suffix, pulumi.Output):
                physical = pulumi.Output.concat(physical, suffix)
            else:
                physical = f"{physical}{suffix}"
        return NamingDecision(proposed_name, {rule.field: physical})
