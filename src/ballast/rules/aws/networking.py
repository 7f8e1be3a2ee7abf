"""Route53 / CloudFront / ACM / EC2 / ELB のルール。"""

from collections.abc import Iterator
from typing import Any

from ballast.models.finding import Finding
from ballast.models.template import Resource, Template
from ballast.rules.base import Rule, get_list, get_mapping, get_string, iter_mappings, property_path
from ballast.rules.registry import register
from ballast.schema.service import SchemaService
from ballast.validators.intrinsics import is_intrinsic
from ballast.validators.predicates import is_domain_name, is_subdomain_or_equal, to_int

_ROUTE53_DOCS = "https://docs.aws.amazon.com/Route53/latest/DeveloperGuide"
_ELB_DOCS = "https://docs.aws.amazon.com/elasticloadbalancing/latest"

PROVISIONED_IOPS_VOLUME_TYPES = ("io1", "io2")
LAMBDA_TARGET_GROUP_EXCLUDED = ("Port", "Protocol", "VpcId")

# FromPort / ToPort を必須とするプロトコル（名前と番号）
PORTED_PROTOCOLS = ("tcp", "6", "udp", "17")
ICMP_PROTOCOLS = ("icmp", "1", "icmpv6", "58")


def record_sets(resource: Resource) -> Iterator[tuple[list[str], dict[str, Any]]]:
    """RecordSet 自身、または RecordSetGroup の各 RecordSets 要素を (パス, プロパティ) で列挙する。"""
    if resource.type == "AWS::Route53::RecordSet":
        yield property_path(resource), resource.properties
    elif resource.type == "AWS::Route53::RecordSetGroup":
        for i, record in iter_mappings(get_list(resource.properties, "RecordSets")):
            yield property_path(resource, "RecordSets", f"[{i}]"), record


def _record_set_resources(template: Template) -> list[Resource]:
    return template.resources_of_type("AWS::Route53::RecordSet", "AWS::Route53::RecordSetGroup")


@register
class CloudFrontAliases(Rule):
    id = "E3013"
    short_desc = "CloudFront Aliases"
    description = "CloudFront distribution aliases must be valid domain names"
    source_url = "https://docs.aws.amazon.com/AmazonCloudFront/latest/DeveloperGuide/CNAMEs.html"
    tags = ("catalog", "cloudfront", "dns")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::CloudFront::Distribution"):
            config = get_mapping(resource.properties, "DistributionConfig")
            for i, alias in enumerate(get_list(config, "Aliases") or []):
                if not isinstance(alias, str) or is_domain_name(alias):
                    continue
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{resource.logical_id}' has invalid CloudFront alias '{alias}' "
                        "(must be a valid domain name)",
                        property_path(resource, "DistributionConfig", "Aliases", f"[{i}]"),
                    )
                )
        return findings


@register
class RecordSetTargets(Rule):
    id = "E3023"
    short_desc = "Validate that ResourceRecords or AliasTarget is set on a RecordSet"
    description = "A record set needs exactly one of ResourceRecords and AliasTarget, and alias records cannot set TTL"
    source_url = f"{_ROUTE53_DOCS}/resource-record-sets-choosing-alias-non-alias.html"
    tags = ("cross-property", "route53", "recordset")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in _record_set_resources(template):
            name = resource.logical_id
            for path, record in record_sets(resource):
                has_records = "ResourceRecords" in record
                has_alias = "AliasTarget" in record
                if has_records and has_alias:
                    findings.append(
                        self.finding(template, f"RecordSet '{name}' cannot have both ResourceRecords and AliasTarget", path)
                    )
                elif not has_records and not has_alias:
                    findings.append(
                        self.finding(template, f"RecordSet '{name}' must have either ResourceRecords or AliasTarget", path)
                    )
                if has_alias and "TTL" in record:
                    findings.append(
                        self.finding(template, f"RecordSet '{name}' with AliasTarget cannot have TTL", [*path, "TTL"])
                    )
        return findings


@register
class AliasTargetShape(Rule):
    id = "E3029"
    short_desc = "Validate Route53 RecordSets AliasTarget"
    description = "An AliasTarget must specify DNSName and HostedZoneId"
    source_url = f"{_ROUTE53_DOCS}/resource-record-sets-values-alias.html"
    tags = ("cross-property", "route53", "recordset", "alias")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in _record_set_resources(template):
            for path, record in record_sets(resource):
                alias = get_mapping(record, "AliasTarget")
                if alias is None:
                    continue
                for key in ("DNSName", "HostedZoneId"):
                    if key not in alias:
                        findings.append(
                            self.finding(
                                template,
                                f"Route53 RecordSet '{resource.logical_id}' AliasTarget must have {key}",
                                [*path, "AliasTarget"],
                            )
                        )
        return findings


@register
class RecordSetWithinHostedZone(Rule):
    id = "E3041"
    short_desc = "RecordSet HostedZoneName is a superdomain of or equal to Name"
    description = "A record set Name must be equal to or below the HostedZoneName it is created in"
    source_url = f"{_ROUTE53_DOCS}/DomainNameFormat.html"
    tags = ("catalog", "route53", "recordset", "dns")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in _record_set_resources(template):
            group_zone = get_string(resource.properties, "HostedZoneName")
            for path, record in record_sets(resource):
                zone = get_string(record, "HostedZoneName") or group_zone
                name = get_string(record, "Name")
                if zone is None or name is None or is_subdomain_or_equal(name, zone):
                    continue
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{resource.logical_id}': RecordSet Name '{name}' must be a subdomain of or equal "
                        f"to HostedZoneName '{zone}'",
                        [*path, "Name"],
                    )
                )
        return findings


@register
class CloudFrontTargetOrigin(Rule):
    id = "E3057"
    short_desc = "Validate that CloudFront TargetOriginId is a specified Origin"
    description = "Cache behaviors must target the Id of an origin declared in the same distribution"
    source_url = "https://docs.aws.amazon.com/AmazonCloudFront/latest/DeveloperGuide/distribution-web-values-specify.html"
    tags = ("catalog", "cloudfront", "origin")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::CloudFront::Distribution"):
            config = get_mapping(resource.properties, "DistributionConfig")
            origins = get_list(config, "Origins")
            if config is None or origins is None:
                continue
            declared = {origin_id for _, origin in iter_mappings(origins) if (origin_id := get_string(origin, "Id"))}
            name = resource.logical_id
            default_target = get_string(get_mapping(config, "DefaultCacheBehavior"), "TargetOriginId")
            if default_target is not None and default_target not in declared:
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}': DefaultCacheBehavior TargetOriginId '{default_target}' does not "
                        "reference a defined Origin",
                        property_path(resource, "DistributionConfig", "DefaultCacheBehavior", "TargetOriginId"),
                    )
                )
            for i, behavior in iter_mappings(get_list(config, "CacheBehaviors")):
                target = get_string(behavior, "TargetOriginId")
                if target is None or target in declared:
                    continue
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}': CacheBehavior {i} TargetOriginId '{target}' does not reference a "
                        "defined Origin",
                        property_path(resource, "DistributionConfig", "CacheBehaviors", f"[{i}]", "TargetOriginId"),
                    )
                )
        return findings


@register
class CertificateValidationDomain(Rule):
    id = "E3503"
    short_desc = "ValidationDomain is superdomain of DomainName"
    description = "An ACM DomainValidationOptions ValidationDomain must be equal to or a superdomain of its DomainName"
    source_url = "https://docs.aws.amazon.com/acm/latest/userguide/domain-ownership-validation.html"
    tags = ("catalog", "acm", "certificate", "dns")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::CertificateManager::Certificate"):
            options = get_list(resource.properties, "DomainValidationOptions")
            for i, option in iter_mappings(options):
                domain = get_string(option, "DomainName")
                validation = get_string(option, "ValidationDomain")
                if domain is None or validation is None or is_subdomain_or_equal(domain, validation):
                    continue
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{resource.logical_id}': DomainValidationOption {i} ValidationDomain "
                        f"'{validation}' must be a superdomain of or equal to DomainName '{domain}'",
                        property_path(resource, "DomainValidationOptions", f"[{i}]", "ValidationDomain"),
                    )
                )
        return findings


@register
class HealthCheckAlarmIdentifier(Rule):
    id = "E3661"
    short_desc = "Route53 CLOUDWATCH_METRIC health check alarm"
    description = "Route53 health checks of type CLOUDWATCH_METRIC must specify AlarmIdentifier"
    source_url = f"{_ROUTE53_DOCS}/health-checks-types.html"
    tags = ("cross-property", "route53", "healthcheck")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::Route53::HealthCheck"):
            config = get_mapping(resource.properties, "HealthCheckConfig")
            if get_string(config, "Type") != "CLOUDWATCH_METRIC" or "AlarmIdentifier" in config:
                continue
            findings.append(
                self.finding(
                    template,
                    f"Resource '{resource.logical_id}': Route53 HealthCheck with Type 'CLOUDWATCH_METRIC' must "
                    "specify AlarmIdentifier",
                    property_path(resource, "HealthCheckConfig"),
                )
            )
        return findings


@register
class ProvisionedIopsVolume(Rule):
    id = "E3671"
    short_desc = "EBS provisioned IOPS volumes"
    description = "Block device mappings with io1 or io2 EBS volumes must specify Iops"
    source_url = "https://docs.aws.amazon.com/ebs/latest/userguide/provisioned-iops.html"
    tags = ("cross-property", "ec2", "ebs")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::EC2::Instance", "AWS::EC2::LaunchTemplate"):
            base: tuple[str, ...] = ()
            properties = resource.properties
            if resource.type == "AWS::EC2::LaunchTemplate":
                base = ("LaunchTemplateData",)
                properties = get_mapping(properties, "LaunchTemplateData") or {}
            for i, mapping in iter_mappings(get_list(properties, "BlockDeviceMappings")):
                ebs = get_mapping(mapping, "Ebs")
                volume_type = get_string(ebs, "VolumeType")
                if volume_type not in PROVISIONED_IOPS_VOLUME_TYPES or "Iops" in ebs:
                    continue
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{resource.logical_id}': EBS volume with VolumeType '{volume_type}' must specify Iops",
                        property_path(resource, *base, "BlockDeviceMappings", f"[{i}]", "Ebs"),
                    )
                )
        return findings


@register
class PrimaryPrivateIpAddress(Rule):
    id = "E3674"
    short_desc = "Primary and PrivateIpAddress exclusivity"
    description = "A network interface PrivateIpAddresses entry cannot specify both Primary and PrivateIpAddress"
    source_url = "https://docs.aws.amazon.com/AWSCloudFormation/latest/UserGuide/aws-resource-ec2-networkinterface.html"
    tags = ("cross-property", "ec2", "network")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::EC2::NetworkInterface"):
            for i, entry in iter_mappings(get_list(resource.properties, "PrivateIpAddresses")):
                if "Primary" in entry and "PrivateIpAddress" in entry:
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{resource.logical_id}': NetworkInterface PrivateIpAddresses entry cannot "
                            "specify both Primary and PrivateIpAddress",
                            property_path(resource, "PrivateIpAddresses", f"[{i}]"),
                        )
                    )
        return findings


@register
class ListenerCertificates(Rule):
    id = "E3676"
    short_desc = "ELBv2 secure listener certificates"
    description = "ELBv2 listeners using HTTPS or TLS must specify Certificates"
    source_url = f"{_ELB_DOCS}/application/create-https-listener.html"
    tags = ("cross-property", "elbv2", "listener", "tls")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::ElasticLoadBalancingV2::Listener"):
            protocol = get_string(resource.properties, "Protocol")
            if protocol not in ("HTTPS", "TLS") or "Certificates" in resource.properties:
                continue
            findings.append(
                self.finding(
                    template,
                    f"Resource '{resource.logical_id}': Listener with Protocol '{protocol}' must specify Certificates",
                    property_path(resource, "Protocol"),
                )
            )
        return findings


@register
class ClassicListenerCertificate(Rule):
    id = "E3679"
    short_desc = "Classic ELB secure listener certificate"
    description = "Classic load balancer listeners using HTTPS or SSL must specify SSLCertificateId"
    source_url = f"{_ELB_DOCS}/classic/elb-create-https-ssl-load-balancer.html"
    tags = ("cross-property", "elb", "listener", "tls")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::ElasticLoadBalancing::LoadBalancer"):
            for i, listener in iter_mappings(get_list(resource.properties, "Listeners")):
                protocol = get_string(listener, "Protocol")
                if protocol is None or protocol.upper() not in ("HTTPS", "SSL") or "SSLCertificateId" in listener:
                    continue
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{resource.logical_id}': Listener with Protocol '{protocol}' must specify "
                        "SSLCertificateId",
                        property_path(resource, "Listeners", f"[{i}]"),
                    )
                )
        return findings


@register
class ApplicationLoadBalancerSubnets(Rule):
    id = "E3680"
    short_desc = "Application Load Balancer subnets"
    description = "Application load balancers must be placed in at least two subnets"
    source_url = f"{_ELB_DOCS}/application/application-load-balancers.html#availability-zones"
    tags = ("cross-property", "elbv2", "network")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::ElasticLoadBalancingV2::LoadBalancer"):
            lb_type = resource.properties.get("Type", "application")
            subnets = get_list(resource.properties, "Subnets")
            if lb_type != "application" or subnets is None or len(subnets) >= 2:
                continue
            findings.append(
                self.finding(
                    template,
                    f"Resource '{resource.logical_id}': Application Load Balancer must specify at least 2 subnets. "
                    f"Found: {len(subnets)}",
                    property_path(resource, "Subnets"),
                )
            )
        return findings


@register
class LambdaTargetGroupProperties(Rule):
    id = "E3681"
    short_desc = "Lambda target group exclusions"
    description = "Target groups with TargetType lambda must not specify Port, Protocol or VpcId"
    source_url = f"{_ELB_DOCS}/application/lambda-functions.html"
    tags = ("cross-property", "elbv2", "targetgroup", "lambda")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::ElasticLoadBalancingV2::TargetGroup"):
            if get_string(resource.properties, "TargetType") != "lambda":
                continue
            for prop in LAMBDA_TARGET_GROUP_EXCLUDED:
                if prop in resource.properties:
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{resource.logical_id}': TargetGroup with TargetType 'lambda' must not "
                            f"specify {prop}",
                            property_path(resource, prop),
                        )
                    )
        return findings


@register
class TargetGroupHealthCheckProtocol(Rule):
    id = "E3684"
    short_desc = "Target group health check protocol"
    description = "HealthCheckProtocol must be a supported protocol and must be omitted for lambda target groups"
    source_url = f"{_ELB_DOCS}/application/target-group-health-checks.html"
    tags = ("catalog", "elbv2", "targetgroup", "healthcheck")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        protocols = set(schema.get_catalog("target_group_health_check_protocols"))
        findings: list[Finding] = []
        for resource in template.resources_of_type("AWS::ElasticLoadBalancingV2::TargetGroup"):
            if "HealthCheckProtocol" not in resource.properties:
                continue
            name = resource.logical_id
            path = property_path(resource, "HealthCheckProtocol")
            if get_string(resource.properties, "TargetType") == "lambda":
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{name}': TargetGroup with TargetType 'lambda' must not specify HealthCheckProtocol",
                        path,
                    )
                )
                continue
            protocol = get_string(resource.properties, "HealthCheckProtocol")
            if protocol is not None and protocol not in protocols:
                findings.append(self.finding(template, f"Resource '{name}': Invalid HealthCheckProtocol '{protocol}'", path))
        return findings


def security_group_rules(resource: Resource) -> Iterator[tuple[list[str], dict[str, Any]]]:
    """セキュリティグループのインライン規則、または単独の規則リソースを列挙する。"""
    if resource.type == "AWS::EC2::SecurityGroup":
        for key in ("SecurityGroupIngress", "SecurityGroupEgress"):
            for i, rule in iter_mappings(get_list(resource.properties, key)):
                yield property_path(resource, key, f"[{i}]"), rule
    else:
        yield property_path(resource), resource.properties


_SECURITY_GROUP_TYPES = ("AWS::EC2::SecurityGroup", "AWS::EC2::SecurityGroupIngress", "AWS::EC2::SecurityGroupEgress")


def _protocol(rule: dict[str, Any]) -> str | None:
    value = rule.get("IpProtocol")
    if value is None or is_intrinsic(value) or isinstance(value, (dict, list)):
        return None
    return str(value).lower()


@register
class SecurityGroupPorts(Rule):
    id = "E3687"
    short_desc = "Security group rule ports"
    description = "TCP and UDP security group rules need FromPort and ToPort, and ports must be -1 or within 0-65535"
    source_url = "https://docs.aws.amazon.com/vpc/latest/userguide/security-group-rules.html"
    tags = ("cross-property", "ec2", "securitygroup")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type(*_SECURITY_GROUP_TYPES):
            name = resource.logical_id
            for path, rule in security_group_rules(resource):
                protocol = _protocol(rule)
                if protocol in ICMP_PROTOCOLS:
                    continue
                if protocol in PORTED_PROTOCOLS and ("FromPort" not in rule or "ToPort" not in rule):
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{name}': Security group rule with protocol '{protocol}' must specify "
                            "FromPort and ToPort",
                            path,
                        )
                    )
                for key in ("FromPort", "ToPort"):
                    port = to_int(rule.get(key))
                    if port is None or port == -1 or 0 <= port <= 65535:
                        continue
                    findings.append(
                        self.finding(
                            template,
                            f"Resource '{name}': {key} must be between 0 and 65535, or -1. Got: {port}",
                            [*path, key],
                        )
                    )
        return findings


@register
class SecurityGroupAllPorts(Rule):
    id = "E3688"
    short_desc = "Security group rule -1 ports"
    description = "Security group rules that use -1 for FromPort or ToPort must use IpProtocol -1"
    source_url = "https://docs.aws.amazon.com/vpc/latest/userguide/security-group-rules.html"
    tags = ("cross-property", "ec2", "securitygroup")

    def match(self, template: Template, schema: SchemaService) -> list[Finding]:
        findings: list[Finding] = []
        for resource in template.resources_of_type(*_SECURITY_GROUP_TYPES):
            for path, rule in security_group_rules(resource):
                protocol = _protocol(rule)
                if protocol is None or protocol == "-1" or protocol in ICMP_PROTOCOLS:
                    continue
                if -1 not in (to_int(rule.get("FromPort")), to_int(rule.get("ToPort"))):
                    continue
                findings.append(
                    self.finding(
                        template,
                        f"Resource '{resource.logical_id}': Security group rule with FromPort or ToPort set to -1 "
                        "must use IpProtocol -1",
                        path,
                    )
                )
        return findings
