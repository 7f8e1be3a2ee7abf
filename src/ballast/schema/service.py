"""組み込みCloudFormationスキーマの照会サービス。"""

import threading
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import ValidationError

from ballast.models.errors import SchemaDataError
from ballast.models.schema import Constraints, Property, ResourceConstraints, ResourceType

DEFAULT_SCHEMA_DIR = Path(__file__).parent / "data"


class SchemaService:
    """リソースタイプ定義・制約・列挙値・既知値カタログへの読み取り専用クエリ。

    各テーブルは初回参照時にYAMLから読み込み、以降は不変として共有する。
    未知のタイプやプロパティは例外ではなく None / False で表す。
    """

    def __init__(self, data_dir: Path = DEFAULT_SCHEMA_DIR) -> None:
        self._data_dir = data_dir
        self._lock = threading.Lock()
        self._resource_types: dict[str, ResourceType] | None = None
        self._property_constraints: dict[str, dict[str, Constraints]] | None = None
        self._resource_constraints: dict[str, ResourceConstraints] | None = None
        self._enum_properties: dict[str, dict[str, str]] | None = None
        self._enum_values: dict[str, dict[str, list[str]]] | None = None
        self._catalogs: dict[str, Any] | None = None

    # --- テーブル読み込み ---

    def _read_yaml(self, name: str) -> dict[str, Any]:
        path = self._data_dir / name
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise SchemaDataError(path, str(e)) from e
        except yaml.YAMLError as e:
            raise SchemaDataError(path, f"invalid YAML: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise SchemaDataError(path, "top level must be a mapping")
        return data

    def _load_resource_types(self) -> dict[str, ResourceType]:
        if self._resource_types is not None:
            return self._resource_types
        with self._lock:
            if self._resource_types is None:
                data = self._read_yaml("resource_types.yaml")
                types: dict[str, ResourceType] = {}
                try:
                    for type_name, props in data.items():
                        properties = {
                            name: _parse_property(spec) for name, spec in (props or {}).items()
                        }
                        types[type_name] = ResourceType(name=type_name, properties=properties)
                except (ValidationError, AttributeError) as e:
                    raise SchemaDataError(self._data_dir / "resource_types.yaml", str(e)) from e
                logger.info("Loaded {} resource types from {}", len(types), self._data_dir)
                self._resource_types = types
        return self._resource_types

    def _load_constraints(self) -> tuple[dict[str, dict[str, Constraints]], dict[str, ResourceConstraints]]:
        with self._lock:
            if self._property_constraints is not None and self._resource_constraints is not None:
                return self._property_constraints, self._resource_constraints
            data = self._read_yaml("constraints.yaml")
            try:
                property_constraints = {
                    type_name: {
                        prop: Constraints.model_validate(spec) for prop, spec in (props or {}).items()
                    }
                    for type_name, props in (data.get("properties") or {}).items()
                }
                resource_constraints = {
                    type_name: ResourceConstraints.model_validate(spec or {})
                    for type_name, spec in (data.get("resources") or {}).items()
                }
            except (ValidationError, AttributeError) as e:
                raise SchemaDataError(self._data_dir / "constraints.yaml", str(e)) from e
            logger.info(
                "Loaded constraints for {} resource types",
                len(set(property_constraints) | set(resource_constraints)),
            )
            self._property_constraints = property_constraints
            self._resource_constraints = resource_constraints
            return property_constraints, resource_constraints

    def _load_enums(self) -> tuple[dict[str, dict[str, str]], dict[str, dict[str, list[str]]]]:
        with self._lock:
            if self._enum_properties is not None and self._enum_values is not None:
                return self._enum_properties, self._enum_values
            data = self._read_yaml("enums.yaml")
            enum_properties = {
                service: dict(props or {}) for service, props in (data.get("properties") or {}).items()
            }
            enum_values = {
                service: {name: [str(v) for v in values] for name, values in (enums or {}).items()}
                for service, enums in (data.get("enums") or {}).items()
            }
            logger.info("Loaded enum tables for {} services", len(enum_values))
            self._enum_properties = enum_properties
            self._enum_values = enum_values
            return enum_properties, enum_values

    def _load_catalogs(self) -> dict[str, Any]:
        if self._catalogs is not None:
            return self._catalogs
        with self._lock:
            if self._catalogs is None:
                self._catalogs = self._read_yaml("catalogs.yaml")
                logger.info("Loaded {} value catalogs", len(self._catalogs))
        return self._catalogs

    # --- リソースタイプ ---

    def has_resource_type(self, type_name: str) -> bool:
        return type_name in self._load_resource_types()

    def get_resource_type(self, type_name: str) -> ResourceType | None:
        return self._load_resource_types().get(type_name)

    def has_property(self, type_name: str, name: str) -> bool:
        return self.get_property(type_name, name) is not None

    def get_property(self, type_name: str, name: str) -> Property | None:
        resource_type = self.get_resource_type(type_name)
        if resource_type is None:
            return None
        return resource_type.properties.get(name)

    def get_required_properties(self, type_name: str) -> list[str]:
        resource_type = self.get_resource_type(type_name)
        return resource_type.required_properties() if resource_type else []

    # --- 制約 ---

    def get_property_constraints(self, type_name: str, name: str) -> Constraints | None:
        property_constraints, _ = self._load_constraints()
        return property_constraints.get(type_name, {}).get(name)

    def iter_property_constraints(self, type_name: str) -> list[tuple[str, Constraints]]:
        """リソースタイプに定義された (プロパティパス, 制約) をパス順に返す。"""
        property_constraints, _ = self._load_constraints()
        return sorted(property_constraints.get(type_name, {}).items(), key=lambda item: item[0])

    def get_resource_constraints(self, type_name: str) -> ResourceConstraints | None:
        _, resource_constraints = self._load_constraints()
        return resource_constraints.get(type_name)

    # --- 列挙値 ---

    def get_enum_for_property(self, service: str, name: str) -> str:
        """プロパティに対応する列挙名を返す。対応がなければ空文字列。"""
        enum_properties, _ = self._load_enums()
        return enum_properties.get(service, {}).get(name, "")

    def is_valid_value(self, service: str, enum_name: str, value: str) -> bool:
        allowed = self.get_allowed_values(service, enum_name)
        return not allowed or value in allowed

    def get_allowed_values(self, service: str, enum_name: str) -> list[str]:
        _, enum_values = self._load_enums()
        return list(enum_values.get(service, {}).get(enum_name, []))

    # --- 既知値カタログ ---

    def get_catalog(self, name: str) -> Any:
        """名前付きカタログを返す。

        Raises:
            SchemaDataError: カタログが定義されていない場合。
        """
        catalogs = self._load_catalogs()
        if name not in catalogs:
            raise SchemaDataError(self._data_dir / "catalogs.yaml", f"catalog '{name}' is not defined")
        return catalogs[name]


def _parse_property(spec: Any) -> Property:
    if isinstance(spec, str):
        return Property(primitive_type=spec)
    return Property.model_validate(spec or {})
