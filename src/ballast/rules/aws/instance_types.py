"""インスタンスタイプ・インスタンスクラスとエンジン名のカタログ照合ルール。

各ルールは照合先のリソースタイプ、プロパティのパス、カタログ名を宣言するだけで、
照合処理は _CatalogRule にまとめている。
"""

from typing import ClassVar

from ballast.models.finding import Finding
from ballast.models.template import Template
from ballast.rules.base import Rule, get_string, property_path
from ballast.rules.registry import register
from ballast.schema.service import SchemaService
from ballast.validators.predicates import get_path

_EC2_DOCS = "https://docs.aws.amazon.com/ec2/latest/instancetypes/instance-types.html"


class _CatalogRule(Rule):
    """文字列プロパティをカタログの値または接頭辞と照合するルールの基底クラス。

    targets はリソースタイプからドット区切りのプロパティパスへの対応。
    exact が True ならカタログは値の集合、False なら接頭辞の集合として扱う。
    """

    targets: ClassVar[dict[str, tuple[str, ...]]] = {}
    catalog: ClassVar[str] = ""
    label: ClassVar[str] = ""
    exact: ClassVar[bool] = False
    lowercase: ClassVar[bool] = False

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        allowed = tuple(schema.get_catalog(self.catalog))
        findings: list[Finding] = []
        for resource in template.resources_of_type(*self.targets):
            for dotted in self.targets[resource.type]:
                value = get_path(resource.properties, dotted)
                if not isinstance(value, str) or self.accepts(value, allowed):
                    continue
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{resource.logical_id}': Invalid {self.label} '{value}'. {self.hint(allowed)}",
                        property_path(resource, *dotted.split(".")),
                    )
                )
        return findings

    def accepts(self, value: str, allowed: tuple[str, ...]) -> bool:
        if self.lowercase:
            value = value.lower()
        if self.exact:
            return value in allowed
        return value.startswith(allowed)

    def hint(self, allowed: tuple[str, ...]) -> str:
        if self.exact:
            return f"Must be one of: {', '.join(allowed)}"
        return f"Must start with one of: {', '.join(allowed)}"


@register
class ManagedBlockchainInstanceType(_CatalogRule):
    id = "E3617"
    short_desc = "Validate ManagedBlockchain instance type"
    description = "Managed Blockchain nodes must use a supported bc.* instance type"
    source_url = "https://docs.aws.amazon.com/managed-blockchain/latest/ethereum-dev/ethereum-nodes.html"
    tags = ("catalog", "managedblockchain", "instancetype")
    targets = {"AWS::ManagedBlockchain::Node": ("NodeConfiguration.InstanceType",)}
    catalog = "managedblockchain_instance_types"
    label = "ManagedBlockchain instance type"
    exact = True


@register
class DocumentDBInstanceClass(_CatalogRule):
    id = "E3620"
    short_desc = "Validate DocumentDB instance class"
    description = "DocumentDB instances must use a supported instance class family"
    source_url = "https://docs.aws.amazon.com/documentdb/latest/developerguide/db-instance-classes.html"
    tags = ("catalog", "docdb", "instancetype")
    targets = {"AWS::DocDB::DBInstance": ("DBInstanceClass",)}
    catalog = "docdb_instance_class_prefixes"
    label = "DocumentDB instance class"


@register
class AppStreamInstanceType(_CatalogRule):
    id = "E3621"
    short_desc = "Validate AppStream fleet instance type"
    description = "AppStream fleets must use a stream.* instance type"
    source_url = "https://docs.aws.amazon.com/appstream2/latest/developerguide/instance-types.html"
    tags = ("catalog", "appstream", "instancetype")
    targets = {"AWS::AppStream::Fleet": ("InstanceType",)}
    catalog = "appstream_instance_type_prefixes"
    label = "AppStream instance type"


@register
class EC2InstanceType(_CatalogRule):
    id = "E3628"
    short_desc = "Validate EC2 instance type"
    description = "EC2 instances must use a known instance type family"
    source_url = _EC2_DOCS
    tags = ("catalog", "ec2", "instancetype")
    targets = {"AWS::EC2::Instance": ("InstanceType",)}
    catalog = "ec2_instance_type_prefixes"
    label = "EC2 instance type"


@register
class NeptuneInstanceClass(_CatalogRule):
    id = "E3635"
    short_desc = "Validate Neptune instance class"
    description = "Neptune DB instances must use a supported instance class family"
    source_url = "https://docs.aws.amazon.com/neptune/latest/userguide/instance-types.html"
    tags = ("catalog", "neptune", "instancetype")
    targets = {"AWS::Neptune::DBInstance": ("DBInstanceClass",)}
    catalog = "neptune_instance_class_prefixes"
    label = "Neptune instance class"


@register
class GameLiftInstanceType(_CatalogRule):
    id = "E3641"
    short_desc = "Validate GameLift fleet instance type"
    description = "GameLift fleets must use a supported EC2 instance type family"
    source_url = "https://docs.aws.amazon.com/gamelift/latest/developerguide/gamelift-compute.html"
    tags = ("catalog", "gamelift", "instancetype")
    targets = {"AWS::GameLift::Fleet": ("EC2InstanceType",)}
    catalog = "gamelift_instance_type_prefixes"
    label = "GameLift instance type"


@register
class ElastiCacheNodeType(_CatalogRule):
    id = "E3647"
    short_desc = "Validate ElastiCache node type"
    description = "ElastiCache clusters and replication groups must use a cache.* node type"
    source_url = "https://docs.aws.amazon.com/AmazonElastiCache/latest/dg/CacheNodes.SupportedTypes.html"
    tags = ("catalog", "elasticache", "instancetype")
    targets = {
        "AWS::ElastiCache::CacheCluster": ("CacheNodeType",),
        "AWS::ElastiCache::ReplicationGroup": ("CacheNodeType",),
    }
    catalog = "elasticache_node_type_prefixes"
    label = "ElastiCache node type"


@register
class ElasticsearchInstanceType(Rule):
    id = "E3652"
    short_desc = "Validate Elasticsearch domain instance type"
    description = "Elasticsearch domain instance types must end with the .elasticsearch suffix"
    source_url = "https://docs.aws.amazon.com/opensearch-service/latest/developerguide/supported-instance-types.html"
    tags = ("catalog", "elasticsearch", "instancetype")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        suffix = schema.get_catalog("elasticsearch_instance_type_suffix")
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::Elasticsearch::Domain", "AWS::OpenSearchService::Domain"):
            instance_type = get_path(resource.properties, "ElasticsearchClusterConfig.InstanceType")
            if not isinstance(instance_type, str) or instance_type.endswith(suffix):
                continue
            findings.append(
                self.finding(
                    template,
                    f"Resource '{resource.logical_id}': Invalid Elasticsearch instance type '{instance_type}'. "
                    f"Must end with '{suffix}'",
                    property_path(resource, "ElasticsearchClusterConfig", "InstanceType"),
                )
            )
        return findings


@register
class RedshiftNodeType(_CatalogRule):
    id = "E3667"
    short_desc = "Validate Redshift cluster node type"
    description = "Redshift clusters must use a supported node type family"
    source_url = "https://docs.aws.amazon.com/redshift/latest/mgmt/working-with-clusters.html"
    tags = ("catalog", "redshift", "instancetype")
    targets = {"AWS::Redshift::Cluster": ("NodeType",)}
    catalog = "redshift_node_type_prefixes"
    label = "Redshift node type"


@register
class AmazonMQInstanceType(_CatalogRule):
    id = "E3670"
    short_desc = "Validate AmazonMQ broker instance type"
    description = "Amazon MQ brokers must use a supported mq.* host instance type"
    source_url = "https://docs.aws.amazon.com/amazon-mq/latest/developer-guide/broker-instance-types.html"
    tags = ("catalog", "amazonmq", "instancetype")
    targets = {"AWS::AmazonMQ::Broker": ("HostInstanceType",)}
    catalog = "amazonmq_instance_type_prefixes"
    label = "AmazonMQ instance type"


@register
class EMRInstanceType(_CatalogRule):
    id = "E3675"
    short_desc = "Validate EMR instance types"
    description = "EMR clusters and instance groups must use a supported EC2 instance type family"
    source_url = "https://docs.aws.amazon.com/emr/latest/ManagementGuide/emr-supported-instance-types.html"
    tags = ("catalog", "emr", "instancetype")
    targets = {
        "AWS::EMR::Cluster": ("Instances.MasterInstanceType", "Instances.CoreInstanceType"),
        "AWS::EMR::InstanceGroupConfig": ("InstanceType",),
    }
    catalog = "emr_instance_type_prefixes"
    label = "EMR instance type"


@register
class RDSInstanceClass(_CatalogRule):
    id = "E3694"
    short_desc = "Validate RDS DB instance class"
    description = "RDS DB instances must use a known db.* instance class family"
    source_url = "https://docs.aws.amazon.com/AmazonRDS/latest/UserGuide/Concepts.DBInstanceClass.html"
    tags = ("catalog", "rds", "instancetype")
    targets = {"AWS::RDS::DBInstance": ("DBInstanceClass",)}
    catalog = "rds_instance_class_prefixes"
    label = "RDS instance class"


@register
class DAXNodeType(_CatalogRule):
    id = "E3696"
    short_desc = "Validate DAX cluster node type"
    description = "DAX clusters must use a supported dax.* node type family"
    source_url = "https://docs.aws.amazon.com/amazondynamodb/latest/developerguide/DAX.concepts.cluster.html"
    tags = ("catalog", "dax", "instancetype")
    targets = {"AWS::DAX::Cluster": ("NodeType",)}
    catalog = "dax_node_type_prefixes"
    label = "DAX node type"


@register
class RDSEngineInstanceFamily(Rule):
    id = "E3062"
    short_desc = "Validate RDS DB instance class against the engine"
    description = "The DB instance class family must be available for the configured RDS engine"
    source_url = "https://docs.aws.amazon.com/AmazonRDS/latest/UserGuide/Concepts.DBInstanceClass.Support.html"
    tags = ("catalog", "rds", "engine")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        families_by_engine: dict[str, list[str]] = schema.get_catalog("rds_engine_instance_families")
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::RDS::DBInstance"):
            engine = get_string(resource.properties, "Engine")
            instance_class = get_string(resource.properties, "DBInstanceClass")
            if engine is None or instance_class is None:
                continue
            families = families_by_engine.get(engine.lower())
            if families is None or self._family(instance_class) in families:
                continue
            findings.append(
                self.finding(
                    template,
                    f"Resource '{resource.logical_id}': DB instance class '{instance_class}' may not be compatible "
                    f"with engine '{engine}'. Compatible instance families: {', '.join(families)}",
                    property_path(resource, "DBInstanceClass"),
                )
            )
        return findings

    def _family(self, instance_class: str) -> str:
        return ".".join(instance_class.split(".")[:2])


class _EngineRule(_CatalogRule):
    exact = True
    lowercase = True


@register
class DBClusterEngine(_EngineRule):
    id = "E3690"
    short_desc = "Validate DB cluster engine"
    description = "DB clusters must use an engine that supports clusters"
    source_url = "https://docs.aws.amazon.com/AWSCloudFormation/latest/UserGuide/aws-resource-rds-dbcluster.html"
    tags = ("catalog", "rds", "engine")
    targets = {"AWS::RDS::DBCluster": ("Engine",)}
    catalog = "rds_cluster_engines"
    label = "DB Cluster engine"


@register
class DBInstanceEngine(_EngineRule):
    id = "E3691"
    short_desc = "Validate DB instance engine"
    description = "DB instances must use a known RDS engine name"
    source_url = "https://docs.aws.amazon.com/AWSCloudFormation/latest/UserGuide/aws-resource-rds-dbinstance.html"
    tags = ("catalog", "rds", "engine")
    targets = {"AWS::RDS::DBInstance": ("Engine",)}
    catalog = "rds_instance_engines"
    label = "DB Instance engine"


@register
class ElastiCacheEngine(_EngineRule):
    id = "E3695"
    short_desc = "Validate ElastiCache engine"
    description = "ElastiCache clusters and replication groups must use the redis or memcached engine"
    source_url = "https://docs.aws.amazon.com/AmazonElastiCache/latest/dg/SelectEngine.html"
    tags = ("catalog", "elasticache", "engine")
    targets = {
        "AWS::ElastiCache::CacheCluster": ("Engine",),
        "AWS::ElastiCache::ReplicationGroup": ("Engine",),
    }
    catalog = "elasticache_engines"
    label = "ElastiCache engine"

