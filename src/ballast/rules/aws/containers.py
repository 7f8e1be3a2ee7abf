"""ECS タスク定義とサービスのルール。"""

from typing import Any

from ballast.models.finding import Finding
from ballast.models.template import Resource, Template
from ballast.rules.base import Rule, get_list, get_mapping, get_string, iter_mappings, property_path
from ballast.rules.registry import register
from ballast.schema.service import SchemaService
from ballast.validators.intrinsics import is_intrinsic, ref_target
from ballast.validators.predicates import to_bool, to_int

_DOCS = "https://docs.aws.amazon.com/AmazonECS/latest/developerguide"

FARGATE_CPU_VALUES = "256, 512, 1024, 2048, 4096, 8192, 16384"


def requires_fargate(task: Resource) -> bool:
    compatibilities = get_list(task.properties, "RequiresCompatibilities")
    return compatibilities is not None and "FARGATE" in compatibilities


def uses_awsvpc(task: Resource) -> bool:
    return get_string(task.properties, "NetworkMode") == "awsvpc" or requires_fargate(task)


def referenced_resource(template: Template, value: Any, resource_type: str) -> Resource | None:
    """Ref または論理IDの文字列が指す、指定タイプのリソース。"""
    name = value if isinstance(value, str) else ref_target(value)
    if name is None:
        return None
    resource = template.resources.get(name)
    if resource is None or resource.type != resource_type:
        return None
    return resource


def _containers(task: Resource) -> list[tuple[int, dict[str, Any]]]:
    return iter_mappings(get_list(task.properties, "ContainerDefinitions"))


@register
class EssentialContainer(Rule):
    id = "E3042"
    short_desc = "Check at least one essential container is specified"
    description = "An ECS task definition needs at least one container whose Essential flag is true or omitted"
    source_url = f"{_DOCS}/task_definition_parameters.html"
    tags = ("cross-resource", "ecs", "taskdefinition")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for task in template.resources_of_type("AWS::ECS::TaskDefinition"):
            containers = get_list(task.properties, "ContainerDefinitions")
            if containers is None:
                continue
            if any(
                "Essential" not in container or to_bool(container["Essential"]) is True
                for _, container in iter_mappings(containers)
            ):
                continue
            findings.append(
                self.finding(
                    template,
                    f"Resource '{task.logical_id}': AWS::ECS::TaskDefinition must contain at least one "
                    "ContainerDefinition with Essential set to true",
                    property_path(task, "ContainerDefinitions"),
                )
            )
        return findings


@register
class SchedulingStrategy(Rule):
    id = "E3044"
    short_desc = "Check Fargate service scheduling strategy"
    description = "ECS services with LaunchType FARGATE or EXTERNAL must use the REPLICA scheduling strategy"
    source_url = f"{_DOCS}/ecs_services.html"
    tags = ("cross-resource", "ecs", "service", "fargate")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for service in template.resources_of_type("AWS::ECS::Service"):
            launch_type = get_string(service.properties, "LaunchType")
            strategy = get_string(service.properties, "SchedulingStrategy")
            if launch_type not in ("FARGATE", "EXTERNAL") or strategy is None or strategy == "REPLICA":
                continue
            findings.append(
                self.finding(
                    template,
                    f"Resource '{service.logical_id}': ECS services with LaunchType '{launch_type}' must use "
                    f"SchedulingStrategy 'REPLICA' (got '{strategy}')",
                    property_path(service, "SchedulingStrategy"),
                )
            )
        return findings


@register
class AwslogsOptions(Rule):
    id = "E3046"
    short_desc = "Validate ECS task logging configuration for awslogs"
    description = "Containers using the awslogs log driver must set the awslogs-group and awslogs-region options"
    source_url = f"{_DOCS}/using_awslogs.html"
    tags = ("catalog", "ecs", "taskdefinition", "logging")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for task in template.resources_of_type("AWS::ECS::TaskDefinition"):
            name = task.logical_id
            for i, container in _containers(task):
                log_config = get_mapping(container, "LogConfiguration")
                if get_string(log_config, "LogDriver") != "awslogs":
                    continue
                path = property_path(task, "ContainerDefinitions", f"[{i}]", "LogConfiguration")
                options = log_config.get("Options") if log_config else None
                if is_intrinsic(options):
                    continue
                if not isinstance(options, dict):
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{name}': Container {i} using awslogs driver must specify Options with "
                            "'awslogs-group' and 'awslogs-region'",
                            path,
                        )
                    )
                    continue
                missing = [key for key in ("awslogs-group", "awslogs-region") if key not in options]
                if missing:
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{name}': Container {i} using awslogs driver is missing required "
                            f"options: {', '.join(missing)}",
                            [*path, "Options"],
                        )
                    )
        return findings


@register
class FargateTaskSize(Rule):
    id = "E3047"
    short_desc = "Validate ECS Fargate tasks have the right combination of CPU and memory"
    description = "Fargate task definitions must use one of the supported CPU and memory combinations"
    source_url = f"{_DOCS}/fargate-tasks-services.html#fargate-tasks-size"
    tags = ("catalog", "ecs", "taskdefinition", "fargate")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        table: dict[str, list[int]] = schema.get_catalog("fargate_cpu_memory")
        findings: list[Finding] = []
        for task in template.resources_of_type("AWS::ECS::TaskDefinition"):
            if not requires_fargate(task):
                continue
            cpu_value = task.properties.get("Cpu")
            memory_value = task.properties.get("Memory")
            if cpu_value is None or memory_value is None or is_intrinsic(cpu_value) or is_intrinsic(memory_value):
                continue
            cpu = to_int(cpu_value)
            if cpu is None or str(cpu) not in table:
                findings.append(
                    self.finding(
                        template,
                        f"Invalid Fargate CPU value '{cpu_value}'. Valid values: {FARGATE_CPU_VALUES}",
                        property_path(task, "Cpu"),
                    )
                )
                continue
            allowed = table[str(cpu)]
            if to_int(memory_value) not in allowed:
                findings.append(
                    self.finding(
                        template,
                        f"Invalid Fargate memory value '{memory_value}' for CPU '{cpu_value}'. "
                        f"Valid values: {', '.join(str(m) for m in allowed)}",
                        property_path(task, "Memory"),
                    )
                )
        return findings


@register
class FargateTaskRequirements(Rule):
    id = "E3048"
    short_desc = "Validate ECS Fargate tasks have required properties and values"
    description = "Fargate task definitions require NetworkMode awsvpc together with task-level Cpu and Memory"
    source_url = f"{_DOCS}/fargate-tasks-services.html"
    tags = ("cross-resource", "ecs", "taskdefinition", "fargate")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for task in template.resources_of_type("AWS::ECS::TaskDefinition"):
            if not requires_fargate(task):
                continue
            name = task.logical_id
            if "NetworkMode" not in task.properties:
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}': Fargate tasks must specify NetworkMode as 'awsvpc'",
                        property_path(task),
                    )
                )
            else:
                mode = get_string(task.properties, "NetworkMode")
                if mode is not None and mode != "awsvpc":
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{name}': Fargate tasks must use NetworkMode 'awsvpc' (got '{mode}')",
                            property_path(task, "NetworkMode"),
                        )
                    )
            for prop in ("Cpu", "Memory"):
                if prop not in task.properties:
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{name}': Fargate tasks must specify {prop}",
                            property_path(task),
                        )
                    )
        return findings


@register
class DynamicPortHealthCheck(Rule):
    id = "E3049"
    short_desc = "Check ECS dynamic host port target group health check"
    description = (
        "Services whose task uses dynamic host ports (HostPort 0) must use a target group whose "
        "HealthCheckPort is traffic-port"
    )
    source_url = f"{_DOCS}/service-load-balancing.html"
    tags = ("cross-resource", "ecs", "service", "elbv2")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for service in template.resources_of_type("AWS::ECS::Service"):
            load_balancers = get_list(service.properties, "LoadBalancers")
            task = referenced_resource(template, service.properties.get("TaskDefinition"), "AWS::ECS::TaskDefinition")
            if load_balancers is None or task is None or not self._has_dynamic_port(task):
                continue
            name = service.logical_id
            for i, load_balancer in iter_mappings(load_balancers):
                group = referenced_resource(
                    template, load_balancer.get("TargetGroupArn"), "AWS::ElasticLoadBalancingV2::TargetGroup"
                )
                if group is None:
                    continue
                path = property_path(service, "LoadBalancers", f"[{i}]")
                if "HealthCheckPort" not in group.properties:
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{name}': When using dynamic host ports (HostPort: 0), LoadBalancer target "
                            f"group '{group.logical_id}' must specify HealthCheckPort as 'traffic-port'",
                            path,
                        )
                    )
                    continue
                port = get_string(group.properties, "HealthCheckPort")
                if port is not None and port != "traffic-port":
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{name}': When using dynamic host ports, HealthCheckPort should be "
                            f"'traffic-port' (got '{port}')",
                            path,
                        )
                    )
        return findings

    def _has_dynamic_port(self, task: Resource) -> bool:
        for _, container in _containers(task):
            for _, mapping in iter_mappings(get_list(container, "PortMappings")):
                if "HostPort" in mapping and to_int(mapping["HostPort"]) == 0:
                    return True
        return False


@register
class AwsvpcNetworkConfiguration(Rule):
    id = "E3052"
    short_desc = "Validate ECS service using awsvpc network mode has a network configuration"
    description = "Services running awsvpc tasks or the FARGATE launch type need NetworkConfiguration.AwsvpcConfiguration.Subnets"
    source_url = f"{_DOCS}/task-networking.html"
    tags = ("cross-resource", "ecs", "service", "network")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for service in template.resources_of_type("AWS::ECS::Service"):
            task = referenced_resource(template, service.properties.get("TaskDefinition"), "AWS::ECS::TaskDefinition")
            awsvpc = task is not None and get_string(task.properties, "NetworkMode") == "awsvpc"
            if not awsvpc and get_string(service.properties, "LaunchType") != "FARGATE":
                continue
            name = service.logical_id
            if "NetworkConfiguration" not in service.properties:
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}': ECS service with awsvpc network mode must specify NetworkConfiguration",
                        property_path(service),
                    )
                )
                continue
            config = get_mapping(service.properties, "NetworkConfiguration")
            if config is None:
                continue
            if "AwsvpcConfiguration" not in config:
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}': NetworkConfiguration must include AwsvpcConfiguration",
                        property_path(service, "NetworkConfiguration"),
                    )
                )
                continue
            awsvpc_config = get_mapping(config, "AwsvpcConfiguration")
            if awsvpc_config is not None and "Subnets" not in awsvpc_config:
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}': AwsvpcConfiguration must specify Subnets",
                        property_path(service, "NetworkConfiguration", "AwsvpcConfiguration"),
                    )
                )
        return findings


@register
class AwsvpcHostPort(Rule):
    id = "E3053"
    short_desc = "Validate ECS awsvpc port mappings"
    description = "In awsvpc network mode a port mapping's HostPort must be omitted or equal to its ContainerPort"
    source_url = f"{_DOCS}/task_definition_parameters.html#container_definition_portmappings"
    tags = ("cross-resource", "ecs", "taskdefinition", "network")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for task in template.resources_of_type("AWS::ECS::TaskDefinition"):
            if not uses_awsvpc(task):
                continue
            for i, container in _containers(task):
                for j, mapping in iter_mappings(get_list(container, "PortMappings")):
                    host_port = to_int(mapping.get("HostPort"))
                    container_port = to_int(mapping.get("ContainerPort"))
                    if host_port is None or container_port is None or host_port in (0, container_port):
                        continue
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{task.logical_id}': Container {i} PortMapping {j} has HostPort {host_port} "
                            f"which must be undefined or equal to ContainerPort {container_port} in awsvpc network mode",
                            property_path(task, "ContainerDefinitions", f"[{i}]", "PortMappings", f"[{j}]", "HostPort"),
                        )
                    )
        return findings


@register
class FargateServiceTaskCompatibility(Rule):
    id = "E3054"
    short_desc = "Validate ECS service using Fargate uses a Fargate compatible task definition"
    description = "A service with LaunchType FARGATE must reference a task definition whose RequiresCompatibilities includes FARGATE"
    source_url = f"{_DOCS}/fargate-tasks-services.html"
    tags = ("cross-resource", "ecs", "service", "fargate")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for service in template.resources_of_type("AWS::ECS::Service"):
            if get_string(service.properties, "LaunchType") != "FARGATE":
                continue
            task = referenced_resource(template, service.properties.get("TaskDefinition"), "AWS::ECS::TaskDefinition")
            if task is None:
                continue
            name = service.logical_id
            compatibilities = task.properties.get("RequiresCompatibilities")
            if compatibilities is None:
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}': ECS service uses Fargate LaunchType but TaskDefinition "
                        f"'{task.logical_id}' does not specify RequiresCompatibilities",
                        property_path(service, "TaskDefinition"),
                    )
                )
            elif isinstance(compatibilities, list) and "FARGATE" not in compatibilities:
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}': ECS service uses Fargate LaunchType but TaskDefinition "
                        f"'{task.logical_id}' RequiresCompatibilities does not include FARGATE",
                        property_path(service, "TaskDefinition"),
                    )
                )
        return findings
