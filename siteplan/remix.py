"""
AWS Remix site: S3 assets + CloudFront + Lambda server, built from a Plan.

The component materializes a compiled ``Plan``. The static origin is an S3
bucket that is never public: Block Public Access is applied (default) and
CloudFront reads it through Origin Access Control. Server functions are
Lambdas, either regional (exposed through a function URL used as a
CloudFront origin) or Lambda@Edge (published in us-east-1 and attached to
the dynamic behavior as an origin-request trigger). CloudFront Functions
carry the plan's viewer-request rewriters.

Behaviors keep the plan's order: the dynamic behavior becomes the
distribution's default behavior, static ones become ordered behaviors.
"""

import json
import mimetypes

import pulumi
import pulumi_aws as aws

from siteplan._helpers import asset_cache_control, cloudfront_function_code, url_host
from siteplan.component import Component
from siteplan.log_group import LogGroup
from siteplan.naming import NamingPolicy
from siteplan.plan import (
    STATIC_ORIGIN,
    Behavior,
    BuildOutput,
    CacheType,
    CompiledFunction,
    OriginKind,
    Plan,
)

ID: str = "siteplan:aws:Remix"

# Applied when enable_public_access_block is True. Used by tests and callers
# to assert on secure defaults.
S3_BLOCK_PUBLIC_ACCESS: dict[str, bool] = {
    "block_public_acls": True,
    "block_public_policy": True,
    "ignore_public_acls": True,
    "restrict_public_buckets": True,
}

# AWS managed policies: CachingDisabled / CachingOptimized and
# AllViewerExceptHostHeader.
CACHE_POLICY_IDS: dict[CacheType, str] = {
    CacheType.SERVER: "4135ea2d-6df8-44a3-9df3-4b5a84be39ad",
    CacheType.STATIC: "658327ea-f89d-4fab-a63d-7e88639e58f6",
}
SERVER_ORIGIN_REQUEST_POLICY_ID = "b689b0a8-53d0-40ab-baf2-68738e2966ac"
LAMBDA_BASIC_EXECUTION = (
    "arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"
)
NODE_RUNTIME = "nodejs20.x"

_ALL_METHODS = ["DELETE", "GET", "HEAD", "OPTIONS", "PATCH", "POST", "PUT"]
_READ_METHODS = ["GET", "HEAD", "OPTIONS"]

_DEFAULT_ARGS = (
    aws.cloudfront.DistributionDefaultCacheBehaviorArgs,
    aws.cloudfront.DistributionDefaultCacheBehaviorFunctionAssociationArgs,
    aws.cloudfront.DistributionDefaultCacheBehaviorLambdaFunctionAssociationArgs,
)
_ORDERED_ARGS = (
    aws.cloudfront.DistributionOrderedCacheBehaviorArgs,
    aws.cloudfront.DistributionOrderedCacheBehaviorFunctionAssociationArgs,
    aws.cloudfront.DistributionOrderedCacheBehaviorLambdaFunctionAssociationArgs,
)


def assume_role_policy(edge: bool) -> str:
    services = ["lambda.amazonaws.com"]
    if edge:
        services.append("edgelambda.amazonaws.com")
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"Service": services},
                    "Action": "sts:AssumeRole",
                }
            ],
        }
    )


class Remix(Component):
    """
    Remix app served by CloudFront from S3 assets and a Lambda server.

    Resources: BucketV2, optional BucketPublicAccessBlock, BucketObjectv2 per
    static file, OriginAccessControl, CloudFront Function per plan
    micro-function, Role + Lambda per server function (plus FunctionUrl and
    LogGroup when regional), Distribution and BucketPolicy.
    """

    def __init__(
        self,
        name: str,
        plan: Plan,
        build_output: BuildOutput,
        policy: NamingPolicy,
        region: str,
        log_retention_days: int = 0,
        enable_public_access_block: bool = True,
        opts: pulumi.ResourceOptions | None = None,
    ):
        """
        Create the bucket, functions and distribution described by ``plan``.

        Args:
            name: Pulumi resource name; every child name starts with it.
            plan: Validated plan from PlanCompiler.compile.
            build_output: Build the plan was compiled from (static files).
            policy: Naming policy applied to every child resource.
            region: Region of regional functions and their log groups.
            log_retention_days: Server log retention; 0 removes any policy.
            enable_public_access_block: If True (default), apply
                S3_BLOCK_PUBLIC_ACCESS so the bucket cannot be made public.

        Outputs (set on self, registered for the component):
            url: HTTPS URL of the distribution.
            bucket_name: Assets bucket name.
            distribution_id: CloudFront distribution id.
        """
        super().__init__(ID, name, policy, opts)

        child_opts = pulumi.ResourceOptions(parent=self)
        self.site_name = name
        self.plan = plan
        self.region = region
        self.log_retention_days = log_retention_days

        self.bucket = aws.s3.BucketV2(
            resource_name=f"{name}-assets",
            force_destroy=True,
            opts=child_opts,
        )
        if enable_public_access_block:
            aws.s3.BucketPublicAccessBlock(
                resource_name=f"{name}-assets-block-public",
                bucket=self.bucket.id,
                opts=child_opts,
                **S3_BLOCK_PUBLIC_ACCESS,
            )
        self._upload_assets(build_output)

        # retain_on_delete avoids 409 OriginAccessControlInUse while the
        # distribution is still being torn down.
        oac = aws.cloudfront.OriginAccessControl(
            resource_name=f"{name}-oac",
            origin_access_control_origin_type="s3",
            signing_behavior="always",
            signing_protocol="sigv4",
            opts=pulumi.ResourceOptions(parent=self, retain_on_delete=True),
        )

        self.cf_functions = {
            fn.name: aws.cloudfront.Function(
                resource_name=f"{name}-{fn.name}",
                runtime="cloudfront-js-2.0",
                code=cloudfront_function_code(fn.injections),
                publish=True,
                opts=child_opts,
            )
            for fn in plan.cloudfront_functions.values()
        }

        # Lambda@Edge functions must live in us-east-1.
        function_opts = child_opts
        if plan.edge:
            us_east_1 = aws.Provider(
                resource_name=f"{name}-us-east-1",
                region="us-east-1",
                opts=child_opts,
            )
            function_opts = pulumi.ResourceOptions(parent=self, provider=us_east_1)
        self.functions = {
            fn.name: self._server_function(fn, function_opts)
            for fn in plan.functions.values()
        }

        origins = []
        for origin in plan.origins.values():
            if origin.kind is OriginKind.S3:
                origins.append(
                    aws.cloudfront.DistributionOriginArgs(
                        domain_name=self.bucket.bucket_regional_domain_name,
                        origin_id=origin.name,
                        origin_access_control_id=oac.id,
                    )
                )
            else:
                origins.append(self._server_origin(origin.name, origin.function))

        server = plan.server_behavior
        geo_restriction = aws.cloudfront.DistributionRestrictionsGeoRestrictionArgs(
            restriction_type="none",
        )
        self.distribution = aws.cloudfront.Distribution(
            resource_name=f"{name}-cdn",
            enabled=True,
            origins=origins,
            default_cache_behavior=self._behavior_args(server, _DEFAULT_ARGS),
            ordered_cache_behaviors=[
                self._behavior_args(behavior, _ORDERED_ARGS)
                for behavior in plan.behaviors
                if behavior is not server
            ],
            restrictions=aws.cloudfront.DistributionRestrictionsArgs(
                geo_restriction=geo_restriction,
            ),
            viewer_certificate=aws.cloudfront.DistributionViewerCertificateArgs(
                cloudfront_default_certificate=True,
            ),
            opts=pulumi.ResourceOptions(parent=self, depends_on=[oac]),
        )

        # Only this distribution may read the bucket.
        aws.s3.BucketPolicy(
            resource_name=f"{name}-assets-policy",
            bucket=self.bucket.id,
            policy=pulumi.Output.all(self.bucket.arn, self.distribution.arn).apply(
                lambda arns: json.dumps(
                    {
                        "Version": "2012-10-17",
                        "Statement": [
                            {
                                "Effect": "Allow",
                                "Principal": {"Service": "cloudfront.amazonaws.com"},
                                "Action": "s3:GetObject",
                                "Resource": f"{arns[0]}/*",
                                "Condition": {
                                    "StringEquals": {"AWS:SourceArn": arns[1]}
                                },
                            }
                        ],
                    }
                )
            ),
            opts=child_opts,
        )

        self.url: pulumi.Output[str] = pulumi.Output.concat(
            "https://", self.distribution.domain_name
        )
        self.bucket_name: pulumi.Output[str] = self.bucket.bucket
        self.distribution_id: pulumi.Output[str] = self.distribution.id
        self.register_outputs(
            {
                "url": self.url,
                "bucket_name": self.bucket_name,
                "distribution_id": self.distribution_id,
            }
        )

    def _upload_assets(self, build_output: BuildOutput) -> None:
        origin = self.plan.origins[STATIC_ORIGIN]
        for copy in origin.copy:
            source = build_output.root / copy.source
            if not source.is_dir():
                continue
            for path in sorted(p for p in source.rglob("*") if p.is_file()):
                key = path.relative_to(source).as_posix()
                if copy.destination:
                    key = f"{copy.destination.strip('/')}/{key}"
                content_type, _ = mimetypes.guess_type(path.name)
                aws.s3.BucketObjectv2(
                    resource_name=f"{self.site_name}-asset-{key}",
                    bucket=self.bucket.id,
                    key=key,
                    source=pulumi.FileAsset(str(path)),
                    content_type=content_type or "application/octet-stream",
                    cache_control=(
                        asset_cache_control(key, copy.versioned_sub_dir)
                        if copy.cached
                        else "no-cache"
                    ),
                    opts=pulumi.ResourceOptions(parent=self),
                )

    def _server_function(
        self,
        fn: CompiledFunction,
        opts: pulumi.ResourceOptions,
    ) -> aws.lambda_.Function:
        prefix = f"{self.site_name}-{fn.name}"
        role = aws.iam.Role(
            resource_name=f"{prefix}-role",
            assume_role_policy=assume_role_policy(self.plan.edge),
            opts=pulumi.ResourceOptions(parent=self),
        )
        aws.iam.RolePolicyAttachment(
            resource_name=f"{prefix}-role-logs",
            role=role.name,
            policy_arn=LAMBDA_BASIC_EXECUTION,
            opts=pulumi.ResourceOptions(parent=self),
        )
        function = aws.lambda_.Function(
            resource_name=prefix,
            runtime=NODE_RUNTIME,
            handler=fn.handler,
            role=role.arn,
            code=pulumi.FileArchive(str(fn.artifact)),
            memory_size=fn.memory_size,
            timeout=fn.timeout,
            publish=self.plan.edge,
            opts=opts,
        )
        # Edge functions log in every region they run; only regional ones
        # get a managed log group.
        if not self.plan.edge:
            LogGroup(
                f"{prefix}-logs",
                log_group_name=function.name.apply(lambda n: f"/aws/lambda/{n}"),
                retention_in_days=self.log_retention_days,
                region=self.region,
                opts=pulumi.ResourceOptions(parent=self),
            )
        return function

    def _server_origin(
        self,
        origin_name: str,
        function_name: str | None,
    ) -> aws.cloudfront.DistributionOriginArgs:
        url = aws.lambda_.FunctionUrl(
            resource_name=f"{self.site_name}-{origin_name}-url",
            function_name=self.functions[function_name].name,
            authorization_type="NONE",
            opts=pulumi.ResourceOptions(parent=self),
        )
        return aws.cloudfront.DistributionOriginArgs(
            domain_name=url.function_url.apply(url_host),
            origin_id=origin_name,
            custom_origin_config=aws.cloudfront.DistributionOriginCustomOriginConfigArgs(
                http_port=80,
                https_port=443,
                origin_protocol_policy="https-only",
                origin_ssl_protocols=["TLSv1.2"],
            ),
        )

    def _behavior_args(self, behavior: Behavior, classes: tuple):
        behavior_cls, function_cls, lambda_cls = classes
        server = behavior.cache_type is CacheType.SERVER
        kwargs = {
            "target_origin_id": behavior.origin,
            "viewer_protocol_policy": "redirect-to-https",
            "allowed_methods": _ALL_METHODS if server else _READ_METHODS,
            "cached_methods": ["GET", "HEAD"],
            "compress": True,
            "cache_policy_id": CACHE_POLICY_IDS[behavior.cache_type],
        }
        if behavior_cls is not _DEFAULT_ARGS[0]:
            kwargs["path_pattern"] = behavior.pattern
        if server:
            kwargs["origin_request_policy_id"] = SERVER_ORIGIN_REQUEST_POLICY_ID
        if behavior.cf_function:
            kwargs["function_associations"] = [
                function_cls(
                    event_type="viewer-request",
                    function_arn=self.cf_functions[behavior.cf_function].arn,
                )
            ]
        if behavior.edge_function:
            function = self.functions[self.plan.edge_functions[behavior.edge_function]]
            kwargs["lambda_function_associations"] = [
                lambda_cls(
                    event_type="origin-request",
                    lambda_arn=function.qualified_arn,
                    include_body=True,
                )
            ]
        return behavior_cls(**kwargs)
