"""
Base ComponentResource enforcing the naming policy on every child resource.
"""

import copy
from collections.abc import Callable, Mapping
from typing import Any

import pulumi

from siteplan.naming import NamingPolicy


def _as_dict(props: Any) -> dict[str, Any]:
    # Generated providers pass an input-type object, dynamic resources a dict.
    if props is None:
        return {}
    if isinstance(props, Mapping):
        return dict(props)
    return dict(vars(props))


def _with_overrides(props: Any, overrides: dict[str, Any]) -> Any:
    # Input-type objects keep their type; it drives property name translation.
    if props is None or isinstance(props, Mapping):
        return {**(props or {}), **overrides}
    updated = copy.copy(props)
    vars(updated).update(overrides)
    return updated


def naming_transformation(
    policy: NamingPolicy,
    own_type: str,
    name: str,
) -> Callable[
    [pulumi.ResourceTransformationArgs], pulumi.ResourceTransformationResult | None
]:
    """
    Build a resource transformation applying ``policy`` to children of ``name``.

    NamingError raised by the policy propagates and aborts the deployment
    before the offending resource is registered.
    """

    def apply(
        args: pulumi.ResourceTransformationArgs,
    ) -> pulumi.ResourceTransformationResult | None:
        parent = args.opts.parent if args.opts else None
        parent_name = getattr(parent, "_name", None) or name
        decision = policy.decide(
            args.type_, args.name, parent_name, own_type, _as_dict(args.props)
        )
        if not decision.overrides:
            return None
        return pulumi.ResourceTransformationResult(
            props=_with_overrides(args.props, decision.overrides),
            opts=args.opts,
        )

    return apply


class Component(pulumi.ComponentResource):
    """
    ComponentResource whose descendants are checked by a NamingPolicy.

    Subclasses pass their own type token; children must be created with
    ``parent=self`` and a name starting with the component's name.
    """

    def __init__(
        self,
        t: str,
        name: str,
        policy: NamingPolicy,
        opts: pulumi.ResourceOptions | None = None,
    ):
        transformations = [naming_transformation(policy, t, name)]
        opts = pulumi.ResourceOptions.merge(
            pulumi.ResourceOptions(transformations=transformations), opts
        )
        super().__init__(t, name, None, opts)
        self.policy = policy
