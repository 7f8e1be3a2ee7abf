"""データベース系ルールのユニットテスト。"""

from collections.abc import Callable

import pytest

from ballast.models.finding import Finding

RunRule = Callable[[str, str], list[Finding]]


def _table(properties: str) -> str:
    body = "Resources:\n  Table:\n    Type: AWS::DynamoDB::Table\n    Properties:\n      KeySchema: []\n"
    return body + "".join(f"      {line}\n" for line in properties.splitlines())


class TestBillingMode:
    @pytest.mark.parametrize(
        ("properties", "e3638", "e3639"),
        [
            ("BillingMode: PAY_PER_REQUEST", 0, 0),
            ("BillingMode: PAY_PER_REQUEST\nProvisionedThroughput: {ReadCapacityUnits: 1, WriteCapacityUnits: 1}", 1, 0),
            ("BillingMode: PROVISIONED", 0, 1),
            ("BillingMode: PROVISIONED\nProvisionedThroughput: {ReadCapacityUnits: 1, WriteCapacityUnits: 1}", 0, 0),
            ("", 0, 1),
            ("ProvisionedThroughput: {ReadCapacityUnits: 5, WriteCapacityUnits: 5}", 0, 0),
        ],
    )
    def test_billing_mode_combinations(self, run_rule: RunRule, properties: str, e3638: int, e3639: int) -> None:
        body = _table(properties)
        assert len(run_rule("E3638", body)) == e3638
        assert len(run_rule("E3639", body)) == e3639

    def test_messages(self, run_rule: RunRule) -> None:
        on_demand = run_rule(
            "E3638",
            _table("BillingMode: PAY_PER_REQUEST\nProvisionedThroughput: {ReadCapacityUnits: 1, WriteCapacityUnits: 1}"),
        )
        assert on_demand[0].message == (
            "Resource 'Table': DynamoDB Table with BillingMode 'PAY_PER_REQUEST' must not specify ProvisionedThroughput"
        )
        provisioned = run_rule("E3639", _table(""))
        assert provisioned[0].message == (
            "Resource 'Table': DynamoDB Table with BillingMode 'PROVISIONED' must specify ProvisionedThroughput"
        )


class TestClusterModeFailover:
    def test_cluster_mode_requires_failover(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3026",
            """\
            Resources:
              Sharded:
                Type: AWS::ElastiCache::ReplicationGroup
                Properties:
                  ReplicationGroupDescription: sharded
                  NumNodeGroups: 3
              Enabled:
                Type: AWS::ElastiCache::ReplicationGroup
                Properties:
                  ReplicationGroupDescription: enabled
                  ClusterMode: enabled
                  AutomaticFailoverEnabled: true
              Single:
                Type: AWS::ElastiCache::ReplicationGroup
                Properties:
                  ReplicationGroupDescription: single
                  NumNodeGroups: 1
            """,
        )
        assert [f.message for f in findings] == [
            "ElastiCache ReplicationGroup 'Sharded' with cluster mode enabled must have AutomaticFailoverEnabled "
            "set to true"
        ]


class TestAurora:
    def test_instance_cluster_level_properties(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3682",
            """\
            Resources:
              Instance:
                Type: AWS::RDS::DBInstance
                Properties:
                  Engine: aurora-postgresql
                  DBInstanceClass: db.r6g.large
                  MasterUsername: admin
                  BackupRetentionPeriod: 7
              Plain:
                Type: AWS::RDS::DBInstance
                Properties:
                  Engine: postgres
                  MasterUsername: admin
            """,
        )
        assert [f.path[-1] for f in findings] == ["BackupRetentionPeriod", "MasterUsername"]

    def test_serverless_cluster_credentials(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3686",
            """\
            Resources:
              Cluster:
                Type: AWS::RDS::DBCluster
                Properties:
                  Engine: aurora-mysql
                  EngineMode: serverless
                  MasterUsername: admin
            """,
        )
        assert [f.message for f in findings] == [
            "Resource 'Cluster': Aurora Serverless DB Cluster should not specify MasterUsername in serverless mode"
        ]

    def test_aurora_cluster_allocated_storage(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3693",
            """\
            Resources:
              Aurora:
                Type: AWS::RDS::DBCluster
                Properties:
                  Engine: aurora-mysql
                  AllocatedStorage: 100
              MultiAz:
                Type: AWS::RDS::DBCluster
                Properties:
                  Engine: aurora-mysql
                  DBClusterInstanceClass: db.r6gd.large
                  AllocatedStorage: 100
            """,
        )
        assert [f.path for f in findings] == [["Resources", "Aurora", "Properties", "AllocatedStorage"]]


class TestRDSProperties:
    def test_monitoring_role(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3689",
            """\
            Resources:
              Db:
                Type: AWS::RDS::DBInstance
                Properties:
                  MonitoringInterval: 60
              Disabled:
                Type: AWS::RDS::DBInstance
                Properties:
                  MonitoringInterval: 0
            """,
        )
        assert [f.message for f in findings] == [
            "Resource 'Db': RDS DB Instance with MonitoringInterval > 0 must specify MonitoringRoleArn"
        ]

    def test_multi_az_cluster_storage(self, run_rule: RunRule) -> None:
        findings = run_rule(
            "E3692",
            """\
            Resources:
              Cluster:
                Type: AWS::RDS::DBCluster
                Properties:
                  Engine: mysql
                  DBClusterInstanceClass: db.m6gd.large
                  StorageType: io1
            """,
        )
        assert [f.message for f in findings] == [
            "Resource 'Cluster': Multi-AZ DB Cluster (with DBClusterInstanceClass) must specify AllocatedStorage",
            "Resource 'Cluster': Multi-AZ DB Cluster with StorageType 'io1' must specify Iops",
        ]
