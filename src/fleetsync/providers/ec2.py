"""EC2 provider using aioboto3.

Instances are identified by their ``Name`` tag. Facts come from the
instance's ``PlatformDetails`` and the name of its AMI, optionally
enriched over SSH by a FactGatherer.

AWS errors are mapped onto the fleetsync taxonomy:

- Listing failures (credentials, endpoint, any ClientError) become
  ProviderUnavailable, so a pass fails closed
- Create and mutate failures become ProviderRejected for that resource;
  throttling codes are marked transient so the retry layer can back off
"""

import logging
from typing import Any, Iterable

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from fleetsync.exceptions import ProviderRejected, ProviderUnavailable
from fleetsync.facts import FactGatherer, facts_from_platform
from fleetsync.logging import TRACE
from fleetsync.types import IDENTITY_TAG, Facts, LiveResource, Operation, ResourceSpec, ResourceState

from .base import Provider

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "RequestThrottled",
    "ServiceUnavailable",
    "Unavailable",
    "InternalError",
})

STATE_CALLS = {
    "start": "start_instances",
    "stop": "stop_instances",
    "reboot": "reboot_instances",
    "terminate": "terminate_instances",
}


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def _rejected(exc: Exception, resource: str) -> ProviderRejected:
    if isinstance(exc, ClientError):
        code = _error_code(exc)
        message = exc.response.get("Error", {}).get("Message", str(exc))
        return ProviderRejected(
            f"{code}: {message}", resource=resource, transient=code in TRANSIENT_ERROR_CODES
        )
    return ProviderRejected(str(exc), resource=resource)


def _filters(filters: dict[str, str]) -> list[dict[str, Any]]:
    """Convert ``{"tag:env": "dev"}`` into EC2 Filters.

    ``region`` is not an EC2 filter; it selects the regional client instead.
    """
    return [{"Name": key, "Values": [value]} for key, value in filters.items() if key != "region"]


class EC2Provider(Provider):
    """Provider backed by the EC2 API.

    A pass lists the provider's own region plus every region added through
    ``include_regions``, so instances launched in a spec's region are seen
    again on the next pass. Mutations go to the region the resource was
    listed or created in.

    Attributes:
        region: AWS region (session default when None)
        regions: Additional regions to list
        session: aioboto3 session
        fact_gatherer: Optional SSH fact gatherer for running instances

    Example:
        >>> async with EC2Provider(region="us-east-1", aws_profile="dev") as provider:
        ...     live = await provider.list_resources({"tag:env": "dev"})
    """

    name = "ec2"

    def __init__(
        self,
        region: str | None = None,
        aws_profile: str | None = None,
        fact_gatherer: FactGatherer | None = None,
        session: Any = None,
        regions: Iterable[str] = (),
    ) -> None:
        self.region = region
        self.regions: list[str] = []
        self.session = session or aioboto3.Session(profile_name=aws_profile, region_name=region)
        self.fact_gatherer = fact_gatherer
        self._resource_regions: dict[str, str] = {}
        self.include_regions(regions)

    def include_regions(self, regions: Iterable[str]) -> None:
        for region in regions:
            if region and region != self.region and region not in self.regions:
                self.regions.append(region)

    def _client(self, region: str | None = None):
        return self.session.client("ec2", region_name=region or self.region)

    async def list_resources(self, filters: dict[str, str]) -> list[LiveResource]:
        if filters.get("region"):
            regions: list[str | None] = [filters["region"]]
        else:
            regions = [self.region, *self.regions]

        # The session default region may also be listed explicitly
        resources: dict[str, LiveResource] = {}
        for region in regions:
            for resource in await self._list_region(region, filters):
                resources.setdefault(resource.resource_id, resource)
        for resource in resources.values():
            self._resource_regions[resource.resource_id] = resource.region

        result = list(resources.values())
        logger.debug(
            f"Listed {len(result)} instance(s) in "
            f"{', '.join(r or 'default region' for r in regions)}"
        )

        if self.fact_gatherer:
            result = await self.fact_gatherer.enrich(result)
        return result

    async def _list_region(self, region: str | None, filters: dict[str, str]) -> list[LiveResource]:
        try:
            async with self._client(region) as ec2:
                instances: list[dict[str, Any]] = []
                paginator = ec2.get_paginator("describe_instances")
                async for page in paginator.paginate(Filters=_filters(filters)):
                    for reservation in page.get("Reservations", []):
                        instances.extend(reservation.get("Instances", []))
                image_names = await self._image_names(ec2, instances)
        except ClientError as e:
            raise ProviderUnavailable(f"describe_instances failed: {_error_code(e)}: {e}") from e
        except BotoCoreError as e:
            raise ProviderUnavailable(f"EC2 is unreachable: {e}") from e
        return [self._to_resource(i, image_names, region) for i in instances]

    async def _image_names(self, ec2, instances: list[dict[str, Any]]) -> dict[str, str]:
        image_ids = sorted({i["ImageId"] for i in instances if i.get("ImageId")})
        if not image_ids:
            return {}
        try:
            response = await ec2.describe_images(ImageIds=image_ids)
        except ClientError as e:
            # Deregistered AMIs make the whole call fail; facts fall back to PlatformDetails
            logger.warning(f"describe_images failed, image facts unavailable: {_error_code(e)}")
            return {}
        return {image["ImageId"]: image.get("Name", "") for image in response.get("Images", [])}

    def _to_resource(
        self, instance: dict[str, Any], image_names: dict[str, str], region: str | None
    ) -> LiveResource:
        tags = {t["Key"]: t.get("Value", "") for t in instance.get("Tags", [])}
        facts = facts_from_platform(
            instance.get("PlatformDetails"), image_names.get(instance.get("ImageId", ""))
        )
        if instance.get("Architecture"):
            facts = facts.merge(Facts(architecture=instance["Architecture"]))

        zone = instance.get("Placement", {}).get("AvailabilityZone", "")
        region = region or zone[:-1]

        return LiveResource(
            name=tags.get(IDENTITY_TAG) or instance["InstanceId"],
            resource_id=instance["InstanceId"],
            state=ResourceState.parse(instance.get("State", {}).get("Name", "pending")),
            image=instance.get("ImageId", ""),
            instance_type=instance.get("InstanceType", ""),
            region=region,
            tags=tags,
            facts=facts,
            address=instance.get("PublicIpAddress") or instance.get("PrivateIpAddress"),
        )

    async def create_resource(self, spec: ResourceSpec) -> str:
        tags = [{"Key": k, "Value": v} for k, v in {IDENTITY_TAG: spec.name, **spec.tags}.items()]
        params: dict[str, Any] = {
            "ImageId": spec.image,
            "InstanceType": spec.instance_type,
            "MinCount": 1,
            "MaxCount": 1,
            "TagSpecifications": [{"ResourceType": "instance", "Tags": tags}],
        }
        if spec.key_name:
            params["KeyName"] = spec.key_name
        if spec.security_groups:
            params["SecurityGroups"] = list(spec.security_groups)

        logger.log(TRACE, f"run_instances {params}")
        try:
            async with self._client(spec.region) as ec2:
                response = await ec2.run_instances(**params)
        except (ClientError, BotoCoreError) as e:
            raise _rejected(e, spec.name) from e
        resource_id = response["Instances"][0]["InstanceId"]
        self._resource_regions[resource_id] = spec.region
        return resource_id

    async def mutate_resource(self, resource_id: str, operation: Operation) -> None:
        logger.log(TRACE, f"{operation.name} {resource_id} {operation.params}")
        try:
            async with self._client(self._resource_regions.get(resource_id)) as ec2:
                if operation.name == "update":
                    await self._update(ec2, resource_id, operation.params)
                else:
                    call = getattr(ec2, STATE_CALLS[operation.name])
                    await call(InstanceIds=[resource_id])
        except (ClientError, BotoCoreError) as e:
            raise _rejected(e, resource_id) from e

    async def _update(self, ec2, resource_id: str, params: dict[str, Any]) -> None:
        if params.get("set_tags"):
            await ec2.create_tags(
                Resources=[resource_id],
                Tags=[{"Key": k, "Value": v} for k, v in params["set_tags"].items()],
            )
        if params.get("remove_tags"):
            await ec2.delete_tags(
                Resources=[resource_id],
                Tags=[{"Key": k} for k in params["remove_tags"]],
            )
        if params.get("instance_type"):
            await ec2.modify_instance_attribute(
                InstanceId=resource_id,
                InstanceType={"Value": params["instance_type"]},
            )
