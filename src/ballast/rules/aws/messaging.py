"""SQS / EventBridge / S3 / CloudWatch のルール。"""

from typing import Any

from ballast.models.finding import Finding
from ballast.models.template import Resource, Template
from ballast.rules.base import Rule, get_list, get_mapping, get_string, iter_mappings, property_path
from ballast.rules.registry import register
from ballast.schema.service import SchemaService
from ballast.validators.intrinsics import getatt_target, is_intrinsic, ref_target
from ballast.validators.predicates import is_schedule_expression, to_bool, to_int

_SQS_DOCS = "https://docs.aws.amazon.com/AWSSimpleQueueService/latest/SQSDeveloperGuide"

FIFO_ONLY_PROPERTIES = ("ContentBasedDeduplication", "DeduplicationScope", "FifoThroughputLimit")

# (プロパティ, 最小値, 最大値) 単位は秒
QUEUE_RANGES = (
    ("MessageRetentionPeriod", 60, 1209600),
    ("VisibilityTimeout", 0, 43200),
)

DEFAULT_VISIBILITY_TIMEOUT = 30
DEFAULT_FUNCTION_TIMEOUT = 3

# Intelligent-Tiering のアクセス階層ごとの最小日数
TIERING_MINIMUM_DAYS = {"ARCHIVE_ACCESS": 90, "DEEP_ARCHIVE_ACCESS": 180}

ALARM_SHORT_PERIODS = (10, 30)


def is_fifo_queue(queue: Resource) -> bool:
    name = get_string(queue.properties, "QueueName")
    if name is not None and name.endswith(".fifo"):
        return True
    return to_bool(queue.properties.get("FifoQueue")) is True


def _resource_name(value: Any) -> str | None:
    """Ref / GetAtt / 文字列のいずれかで指定されたリソース名。"""
    if isinstance(value, str):
        return value
    return ref_target(value) or getatt_target(value)


@register
class ScheduleExpression(Rule):
    id = "E3027"
    short_desc = "Validate AWS Event ScheduleExpression format"
    description = "Events rule ScheduleExpression must be a rate(...) or cron(...) expression"
    source_url = "https://docs.aws.amazon.com/eventbridge/latest/userguide/eb-scheduled-rule-pattern.html"
    tags = ("catalog", "events", "schedule")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::Events::Rule"):
            expression = get_string(resource.properties, "ScheduleExpression")
            if expression is None or is_schedule_expression(expression):
                continue
            findings.append(
                self.finding(
                    template,
                    f"Events Rule '{resource.logical_id}' has invalid ScheduleExpression '{expression}' "
                    "(must be rate(...) or cron(...))",
                    property_path(resource, "ScheduleExpression"),
                )
            )
        return findings


@register
class BucketOwnershipControls(Rule):
    id = "E3045"
    short_desc = "Validate AccessControl are set with OwnershipControls"
    description = "S3 buckets that set AccessControl should configure OwnershipControls explicitly"
    source_url = "https://docs.aws.amazon.com/AmazonS3/latest/userguide/about-object-ownership.html"
    tags = ("catalog", "s3", "acl")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        return [
            self.finding(
                template,
                f"Resource '{resource.logical_id}': S3 buckets using AccessControl should explicitly configure "
                "OwnershipControls to avoid ACL-related issues",
                property_path(resource, "AccessControl"),
            )
            for resource in template.resources_of_type("AWS::S3::Bucket")
            if "AccessControl" in resource.properties and "OwnershipControls" not in resource.properties
        ]


@register
class IntelligentTieringDays(Rule):
    id = "E3061"
    short_desc = "Validate S3 Intelligent-Tiering days"
    description = "Intelligent-Tiering Days must be at least 1, 90 for ARCHIVE_ACCESS and 180 for DEEP_ARCHIVE_ACCESS"
    source_url = "https://docs.aws.amazon.com/AmazonS3/latest/userguide/intelligent-tiering-overview.html"
    tags = ("catalog", "s3", "lifecycle")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::S3::Bucket"):
            name = resource.logical_id
            configurations = get_list(resource.properties, "IntelligentTieringConfigurations")
            for i, configuration in iter_mappings(configurations):
                for j, tiering in iter_mappings(get_list(configuration, "Tierings")):
                    days = to_int(tiering.get("Days"))
                    if days is None:
                        continue
                    path = property_path(
                        resource, "IntelligentTieringConfigurations", f"[{i}]", "Tierings", f"[{j}]", "Days"
                    )
                    if days < 1:
                        findings.append(
                            self.finding(
                                template,
                                f"Resource '{name}': IntelligentTieringConfiguration {i} Tiering {j} Days must be "
                                f"at least 1 (got {days})",
                                path,
                            )
                        )
                        continue
                    tier = get_string(tiering, "AccessTier")
                    minimum = TIERING_MINIMUM_DAYS.get(tier or "")
                    if minimum is not None and days < minimum:
                        findings.append(
                            self.finding(
                                template,
                                f"Resource '{name}': IntelligentTieringConfiguration {i} Tiering {j} with AccessTier "
                                f"{tier} must have Days >= {minimum} (got {days})",
                                path,
                            )
                        )
        return findings


@register
class StandardQueueProperties(Rule):
    id = "E3501"
    short_desc = "SQS queue properties are valid"
    description = "Standard queues must not set FIFO-only properties, and retention and visibility values must be in range"
    source_url = f"{_SQS_DOCS}/sqs-queue-types.html"
    tags = ("cross-property", "sqs", "fifo")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for queue in template.resources_of_type("AWS::SQS::Queue"):
            name = queue.logical_id
            if not is_fifo_queue(queue):
                for prop in FIFO_ONLY_PROPERTIES:
                    if prop in queue.properties:
                        findings.append(
                            self.finding(
                                template,
                                f"Resource '{name}': {prop} is only valid for FIFO queues",
                                property_path(queue, prop),
                            )
                        )
            for prop, low, high in QUEUE_RANGES:
                value = to_int(queue.properties.get(prop))
                if value is None or low <= value <= high:
                    continue
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}': {prop} must be between {low} and {high} seconds (got {value})",
                        property_path(queue, prop),
                    )
                )
        return findings


@register
class DeadLetterQueueType(Rule):
    id = "E3502"
    short_desc = "SQS dead-letter queue type matches the source queue"
    description = "A FIFO queue needs a FIFO dead-letter queue and a standard queue needs a standard one"
    source_url = f"{_SQS_DOCS}/sqs-dead-letter-queues.html"
    tags = ("cross-resource", "sqs", "fifo", "dlq")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        queues = {queue.logical_id: queue for queue in template.resources_of_type("AWS::SQS::Queue")}
        findings: list[Finding] = []
        for queue in queues.values():
            redrive = get_mapping(queue.properties, "RedrivePolicy")
            target = getatt_target(redrive.get("deadLetterTargetArn")) if redrive else None
            if target is None or target not in queues:
                continue
            source_fifo = is_fifo_queue(queue)
            target_fifo = is_fifo_queue(queues[target])
            if source_fifo == target_fifo:
                continue
            findings.append(
                self.finding(
                    template,
                    f"Resource '{queue.logical_id}': Dead-letter queue '{target}' type must match source queue type "
                    f"({_queue_kind(source_fifo)} queue cannot use {_queue_kind(target_fifo)} DLQ)",
                    property_path(queue, "RedrivePolicy", "deadLetterTargetArn"),
                )
            )
        return findings


def _queue_kind(fifo: bool) -> str:
    return "FIFO" if fifo else "standard"


@register
class QueueVisibilityTimeout(Rule):
    id = "E3505"
    short_desc = "Validate SQS VisibilityTimeout is greater than a function's Timeout"
    description = (
        "A queue mapped to a Lambda function must have a VisibilityTimeout at least as long as the function "
        "Timeout (defaults 30 and 3 seconds)"
    )
    source_url = "https://docs.aws.amazon.com/lambda/latest/dg/with-sqs.html#events-sqs-queueconfig"
    tags = ("cross-resource", "sqs", "lambda", "timeout")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        visibility = {
            queue.logical_id: self._seconds(queue.properties.get("VisibilityTimeout"), DEFAULT_VISIBILITY_TIMEOUT)
            for queue in template.resources_of_type("AWS::SQS::Queue")
        }
        timeouts = {
            function.logical_id: self._seconds(function.properties.get("Timeout"), DEFAULT_FUNCTION_TIMEOUT)
            for function in template.resources_of_type("AWS::Lambda::Function")
        }
        findings: list[Finding] = []
        for mapping in template.resources_of_type("AWS::Lambda::EventSourceMapping"):
            queue = getatt_target(mapping.properties.get("EventSourceArn"))
            function = _resource_name(mapping.properties.get("FunctionName"))
            if queue not in visibility or function not in timeouts:
                continue
            if visibility[queue] >= timeouts[function]:
                continue
            findings.append(
                self.finding(
                    template,
                    f"Resource '{mapping.logical_id}': SQS queue '{queue}' VisibilityTimeout ({visibility[queue]} "
                    f"seconds) should be >= Lambda function '{function}' Timeout ({timeouts[function]} seconds)",
                    ["Resources", mapping.logical_id],
                )
            )
        return findings

    def _seconds(self, value: Any, default: int) -> int:
        if value is None or is_intrinsic(value):
            return default
        seconds = to_int(value)
        return default if seconds is None else seconds


@register
class AlarmPeriod(Rule):
    id = "E3615"
    short_desc = "Validate CloudWatch Alarm using correct period"
    description = "CloudWatch alarm Period must be 10, 30 or a positive multiple of 60 seconds"
    source_url = "https://docs.aws.amazon.com/AmazonCloudWatch/latest/monitoring/AlarmThatSendsEmail.html"
    tags = ("catalog", "cloudwatch", "alarm")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for alarm in template.resources_of_type("AWS::CloudWatch::Alarm"):
            period = to_int(alarm.properties.get("Period"))
            if period is None or is_valid_alarm_period(period):
                continue
            findings.append(
                self.finding(
                    template,
                    f"Resource '{alarm.logical_id}': CloudWatch Alarm Period must be 10, 30, 60, or a multiple "
                    f"of 60. Got: {period}",
                    property_path(alarm, "Period"),
                )
            )
        return findings


def is_valid_alarm_period(period: int) -> bool:
    return period in ALARM_SHORT_PERIODS or (period >= 60 and period % 60 == 0)
