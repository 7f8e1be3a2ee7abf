"""RDS / DynamoDB / ElastiCache のプロパティ整合性ルール。"""

from ballast.models.finding import Finding
from ballast.models.template import Template
from ballast.rules.base import Rule, get_string, property_path
from ballast.rules.registry import register
from ballast.schema.service import SchemaService
from ballast.validators.predicates import to_bool, to_int

_RDS_DOCS = "https://docs.aws.amazon.com/AWSCloudFormation/latest/UserGuide/aws-resource-rds"

AURORA_INSTANCE_EXCLUDED = ("BackupRetentionPeriod", "MasterUsername", "MasterUserPassword")
SERVERLESS_CLUSTER_EXCLUDED = ("MasterUsername", "MasterUserPassword")


def _engine(properties: dict) -> str:
    engine = get_string(properties, "Engine")
    return engine.lower() if engine else ""


@register
class ClusterModeFailover(Rule):
    id = "E3026"
    short_desc = "Check Elastic Cache Redis Cluster settings"
    description = "Replication groups with cluster mode enabled must set AutomaticFailoverEnabled to true"
    source_url = "https://docs.aws.amazon.com/AmazonElastiCache/latest/red-ug/AutoFailover.html"
    tags = ("cross-property", "elasticache", "redis")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::ElastiCache::ReplicationGroup"):
            props = resource.properties
            node_groups = to_int(props.get("NumNodeGroups"))
            cluster_mode = get_string(props, "ClusterMode") == "enabled" or (node_groups is not None and node_groups > 1)
            if not cluster_mode or to_bool(props.get("AutomaticFailoverEnabled")) is True:
                continue
            findings.append(
                self.finding(
                    template,
                    f"ElastiCache ReplicationGroup '{resource.logical_id}' with cluster mode enabled must have "
                    "AutomaticFailoverEnabled set to true",
                    property_path(resource),
                )
            )
        return findings


@register
class OnDemandThroughput(Rule):
    id = "E3638"
    short_desc = "DynamoDB PAY_PER_REQUEST billing mode"
    description = "Tables billed PAY_PER_REQUEST must not specify ProvisionedThroughput"
    source_url = "https://docs.aws.amazon.com/AWSCloudFormation/latest/UserGuide/aws-resource-dynamodb-table.html"
    tags = ("cross-property", "dynamodb", "billing")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        return [
            self.finding(
                template,
                f"Resource '{resource.logical_id}': DynamoDB Table with BillingMode 'PAY_PER_REQUEST' must not "
                "specify ProvisionedThroughput",
                property_path(resource, "ProvisionedThroughput"),
            )
            for resource in template.resources_of_type("AWS::DynamoDB::Table")
            if get_string(resource.properties, "BillingMode") == "PAY_PER_REQUEST"
            and "ProvisionedThroughput" in resource.properties
        ]


@register
class ProvisionedThroughputRequired(Rule):
    id = "E3639"
    short_desc = "DynamoDB PROVISIONED billing mode"
    description = "Tables billed PROVISIONED, explicitly or by default, must specify ProvisionedThroughput"
    source_url = "https://docs.aws.amazon.com/AWSCloudFormation/latest/UserGuide/aws-resource-dynamodb-table.html"
    tags = ("cross-property", "dynamodb", "billing")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::DynamoDB::Table"):
            props = resource.properties
            if "BillingMode" in props and get_string(props, "BillingMode") != "PROVISIONED":
                continue
            if "ProvisionedThroughput" in props:
                continue
            findings.append(
                self.finding(
                    template,
                    f"Resource '{resource.logical_id}': DynamoDB Table with BillingMode 'PROVISIONED' must specify "
                    "ProvisionedThroughput",
                    property_path(resource),
                )
            )
        return findings


@register
class AuroraInstanceProperties(Rule):
    id = "E3682"
    short_desc = "Aurora DB instance cluster-level properties"
    description = "Aurora DB instances must not set properties that are managed by the DB cluster"
    source_url = f"{_RDS_DOCS}-dbinstance.html"
    tags = ("cross-property", "rds", "aurora")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::RDS::DBInstance"):
            if not _engine(resource.properties).startswith("aurora"):
                continue
            for prop in AURORA_INSTANCE_EXCLUDED:
                if prop in resource.properties:
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{resource.logical_id}': Aurora DB Instance must not specify {prop} "
                            "(define at cluster level)",
                            property_path(resource, prop),
                        )
                    )
        return findings


@register
class ServerlessClusterCredentials(Rule):
    id = "E3686"
    short_desc = "Aurora Serverless cluster credentials"
    description = "DB clusters in serverless engine mode should not set master credentials"
    source_url = f"{_RDS_DOCS}-dbcluster.html"
    tags = ("cross-property", "rds", "aurora", "serverless")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::RDS::DBCluster"):
            if get_string(resource.properties, "EngineMode") != "serverless":
                continue
            for prop in SERVERLESS_CLUSTER_EXCLUDED:
                if prop in resource.properties:
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{resource.logical_id}': Aurora Serverless DB Cluster should not specify "
                            f"{prop} in serverless mode",
                            property_path(resource, prop),
                        )
                    )
        return findings


@register
class EnhancedMonitoringRole(Rule):
    id = "E3689"
    short_desc = "RDS enhanced monitoring role"
    description = "DB instances with MonitoringInterval greater than zero must specify MonitoringRoleArn"
    source_url = f"{_RDS_DOCS}-dbinstance.html"
    tags = ("cross-property", "rds", "monitoring")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::RDS::DBInstance"):
            interval = to_int(resource.properties.get("MonitoringInterval"))
            if interval is None or interval <= 0 or "MonitoringRoleArn" in resource.properties:
                continue
            findings.append(
                self.finding(
                    template,
                    f"Resource '{resource.logical_id}': RDS DB Instance with MonitoringInterval > 0 must specify "
                    "MonitoringRoleArn",
                    property_path(resource),
                )
            )
        return findings


@register
class MultiAZClusterStorage(Rule):
    id = "E3692"
    short_desc = "Multi-AZ DB cluster storage"
    description = "Multi-AZ DB clusters need AllocatedStorage, and Iops when StorageType is io1"
    source_url = f"{_RDS_DOCS}-dbcluster.html"
    tags = ("cross-property", "rds", "storage")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::RDS::DBCluster"):
            props = resource.properties
            if "DBClusterInstanceClass" not in props:
                continue
            name = resource.logical_id
            if "AllocatedStorage" not in props:
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}': Multi-AZ DB Cluster (with DBClusterInstanceClass) must specify "
                        "AllocatedStorage",
                        property_path(resource),
                    )
                )
            if get_string(props, "StorageType") == "io1" and "Iops" not in props:
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}': Multi-AZ DB Cluster with StorageType 'io1' must specify Iops",
                        property_path(resource, "StorageType"),
                    )
                )
        return findings


@register
class AuroraClusterStorage(Rule):
    id = "E3693"
    short_desc = "Aurora DB cluster storage"
    description = "Aurora DB clusters should only set AllocatedStorage when they are Multi-AZ DB clusters"
    source_url = f"{_RDS_DOCS}-dbcluster.html"
    tags = ("cross-property", "rds", "aurora", "storage")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        return [
            self.finding(
                template,
                f"Resource '{resource.logical_id}': Aurora DB Cluster should not specify AllocatedStorage unless "
                "using Multi-AZ (DBClusterInstanceClass)",
                property_path(resource, "AllocatedStorage"),
            )
            for resource in template.resources_of_type("AWS::RDS::DBCluster")
            if _engine(resource.properties).startswith("aurora")
            and "DBClusterInstanceClass" not in resource.properties
            and "AllocatedStorage" in resource.properties
        ]
