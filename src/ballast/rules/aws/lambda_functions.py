"""Lambda 関数とイベントソースマッピングのルール。"""

from ballast.models.finding import Finding
from ballast.models.template import Template
from ballast.rules.base import Rule, get_mapping, get_string, property_path
from ballast.rules.registry import register
from ballast.schema.service import SchemaService

_DOCS = "https://docs.aws.amazon.com/lambda/latest/dg"

FUNCTION_TYPES = ("AWS::Lambda::Function", "AWS::Serverless::Function")

# StartingPosition を要求するストリーム系のイベントソース
STREAM_SOURCE_MARKERS = (":kinesis:", ":kafka:", ":dynamodb:")


def _uses_zipfile(properties: dict) -> bool:
    code = get_mapping(properties, "Code")
    return code is not None and "ZipFile" in code


@register
class SnapStartRuntime(Rule):
    id = "E2530"
    short_desc = "SnapStart supports the configured runtime"
    description = "SnapStart with ApplyOn PublishedVersions is only available for Java 11 and newer runtimes"
    source_url = f"{_DOCS}/snapstart.html"
    tags = ("catalog", "lambda", "runtime", "snapstart")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        supported = set(schema.get_catalog("lambda_snapstart_runtimes"))
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::Lambda::Function"):
            snap_start = get_mapping(resource.properties, "SnapStart")
            if get_string(snap_start, "ApplyOn") != "PublishedVersions":
                continue
            name = resource.logical_id
            path = property_path(resource, "SnapStart")
            if "Runtime" not in resource.properties:
                findings.append(
                    self.finding(
                        template,
                        f"Lambda function '{name}' has SnapStart enabled but no Runtime specified. "
                        "SnapStart requires Java 11 or newer.",
                        path,
                    )
                )
                continue
            runtime = get_string(resource.properties, "Runtime")
            if runtime is None or runtime.lower() in supported:
                continue
            findings.append(
                self.finding(
                    template,
                    f"Lambda function '{name}' has SnapStart enabled with runtime '{runtime}', but SnapStart "
                    "is only supported for Java 11 and newer runtimes (java11, java17, java21)",
                    path,
                )
            )
        return findings


@register
class DeprecatedRuntime(Rule):
    id = "E2531"
    short_desc = "Validate if lambda runtime is deprecated"
    description = "Lambda functions must not use a runtime that has reached end of support"
    source_url = f"{_DOCS}/lambda-runtimes.html"
    tags = ("catalog", "lambda", "runtime")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        deprecated = schema.get_catalog("lambda_deprecated_runtimes")
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::Lambda::Function"):
            runtime = get_string(resource.properties, "Runtime")
            if runtime is None or runtime.lower() not in deprecated:
                continue
            findings.append(
                self.finding(
                    template,
                    f"Lambda function '{resource.logical_id}' uses deprecated runtime '{runtime}' "
                    f"({deprecated[runtime.lower()]}). Please migrate to a supported runtime.",
                    property_path(resource, "Runtime"),
                )
            )
        return findings


@register
class RuntimeValue(Rule):
    id = "E2533"
    short_desc = "Check if Lambda Function Runtimes are valid"
    description = "Runtime must be a known Lambda runtime and must be omitted for container image functions"
    source_url = f"{_DOCS}/lambda-runtimes.html"
    tags = ("catalog", "lambda", "runtime")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        known = set(schema.get_catalog("lambda_runtimes"))
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::Lambda::Function"):
            runtime = get_string(resource.properties, "Runtime")
            if runtime is None:
                continue
            name = resource.logical_id
            path = property_path(resource, "Runtime")
            if get_string(resource.properties, "PackageType") == "Image" and runtime:
                findings.append(
                    self.finding(
                        template,
                        f"Lambda function '{name}' has PackageType 'Image' but also specifies Runtime '{runtime}'. "
                        "Runtime should not be specified for container image functions.",
                        path,
                    )
                )
            if runtime.lower() not in known:
                findings.append(
                    self.finding(
                        template,
                        f"Lambda function '{name}' specifies unrecognized runtime '{runtime}'. "
                        "This may cause deployment issues.",
                        path,
                    )
                )
        return findings


@register
class StreamStartingPosition(Rule):
    id = "E3633"
    short_desc = "EventSourceMapping StartingPosition for streams"
    description = "Event source mappings for Kinesis, Kafka or DynamoDB streams require StartingPosition"
    source_url = f"{_DOCS}/invocation-eventsourcemapping.html"
    tags = ("cross-property", "lambda", "eventsourcemapping")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::Lambda::EventSourceMapping"):
            arn = get_string(resource.properties, "EventSourceArn")
            if arn is None or not any(marker in arn for marker in STREAM_SOURCE_MARKERS):
                continue
            if "StartingPosition" not in resource.properties:
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{resource.logical_id}': Lambda EventSourceMapping for Kinesis, Kafka, "
                        "or DynamoDB stream requires StartingPosition property",
                        property_path(resource),
                    )
                )
        return findings


@register
class QueueStartingPosition(Rule):
    id = "E3634"
    short_desc = "EventSourceMapping StartingPosition for SQS"
    description = "Event source mappings for SQS queues must not set StartingPosition"
    source_url = f"{_DOCS}/with-sqs.html"
    tags = ("cross-property", "lambda", "eventsourcemapping", "sqs")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::Lambda::EventSourceMapping"):
            arn = get_string(resource.properties, "EventSourceArn")
            if arn is None or ":sqs:" not in arn or "StartingPosition" not in resource.properties:
                continue
            findings.append(
                self.finding(
                    template,
                    f"Resource '{resource.logical_id}': Lambda EventSourceMapping for SQS must not specify "
                    "StartingPosition",
                    property_path(resource, "StartingPosition"),
                )
            )
        return findings


@register
class ReservedEnvironmentVariables(Rule):
    id = "E3663"
    short_desc = "Lambda reserved environment variables"
    description = "Lambda functions must not define environment variables whose names are reserved by the runtime"
    source_url = f"{_DOCS}/configuration-envvars.html"
    tags = ("catalog", "lambda", "environment")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        reserved = set(schema.get_catalog("lambda_reserved_environment_variables"))
        findings: list[Finding] = []
        for resource in template.resources_of_type(*FUNCTION_TYPES):
            variables = get_mapping(get_mapping(resource.properties, "Environment"), "Variables")
            if variables is None:
                continue
            for variable in variables:
                if variable not in reserved:
                    continue
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{resource.logical_id}': Lambda environment variable '{variable}' "
                        "is a reserved name and cannot be used",
                        property_path(resource, "Environment", "Variables", variable),
                    )
                )
        return findings


@register
class ZipFileRuntime(Rule):
    id = "E3677"
    short_desc = "ZipFile runtime compatibility"
    description = "Inline ZipFile code is only supported for nodejs and python runtimes"
    source_url = f"{_DOCS}/configuration-function-zip.html"
    tags = ("catalog", "lambda", "runtime", "zipfile")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        prefixes = tuple(schema.get_catalog("lambda_zipfile_runtime_prefixes"))
        findings: list[Finding] = []
        for resource in template.resources_of_type(*FUNCTION_TYPES):
            if not _uses_zipfile(resource.properties):
                continue
            runtime = get_string(resource.properties, "Runtime")
            if runtime is None or runtime.startswith(prefixes):
                continue
            findings.append(
                self.finding(
                    template,
                    f"Resource '{resource.logical_id}': Lambda ZipFile only supports nodejs* and python* "
                    f"runtimes. Got: {runtime}",
                    property_path(resource, "Runtime"),
                )
            )
        return findings


@register
class ZipFileRequiresRuntime(Rule):
    id = "E3678"
    short_desc = "ZipFile requires runtime"
    description = "Lambda functions with inline ZipFile code must specify Runtime"
    source_url = f"{_DOCS}/configuration-function-zip.html"
    tags = ("catalog", "lambda", "runtime", "zipfile")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        return [
            self.finding(
                template,
                f"Resource '{resource.logical_id}': Lambda Function using ZipFile must specify Runtime",
                property_path(resource, "Code", "ZipFile"),
            )
            for resource in template.resources_of_type("AWS::Lambda::Function")
            if _uses_zipfile(resource.properties) and "Runtime" not in resource.properties
        ]
