"""YAML feature manifest: declared features and explicit feature-to-test mappings.

Example::

    schema_version: 1
    features:
      - name: Goal Creation
        area: goal
        implemented: true
        notes:
          - "Manual test: create a goal from the dashboard"
        tests: [goal-create-form, goal-create-api]
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Final

import yaml

from featurecheck.domain.models import FeatureArea, as_feature_area
from featurecheck.errors import FeatureCheckError

MANIFEST_SCHEMA_VERSION: Final[int] = 1

_FEATURE_KEYS: Final[frozenset[str]] = frozenset({"name", "area", "implemented", "notes", "tests"})


class ManifestError(FeatureCheckError, ValueError):
    """Raised when a feature manifest cannot be read or is malformed."""


@dataclass(frozen=True, slots=True)
class ManifestFeature:
    name: str
    area: FeatureArea | None = None
    implemented: bool = False
    notes: tuple[str, ...] = ()
    tests: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class FeatureManifest:
    features: tuple[ManifestFeature, ...] = ()
    source: Path | None = None

    @property
    def mappings(self) -> Mapping[str, tuple[str, ...]]:
        return {feature.name: feature.tests for feature in self.features if feature.tests}


def load_manifest(path: str | Path) -> FeatureManifest:
    manifest_path = Path(path)
    try:
        raw_text = manifest_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ManifestError(f"failed to read feature manifest {manifest_path}: {exc}") from exc
    return parse_manifest(raw_text, source=manifest_path)


def parse_manifest(text: str, *, source: Path | None = None) -> FeatureManifest:
    label = str(source) if source is not None else "<manifest>"
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ManifestError(f"{label}: invalid YAML: {exc}") from exc

    if document is None:
        return FeatureManifest(source=source)
    if not isinstance(document, dict):
        raise ManifestError(f"{label}: top-level document must be a mapping")

    version = document.get("schema_version", MANIFEST_SCHEMA_VERSION)
    if version != MANIFEST_SCHEMA_VERSION:
        raise ManifestError(
            f"{label}: unsupported schema_version {version!r}; expected {MANIFEST_SCHEMA_VERSION}"
        )

    raw_features = document.get("features", [])
    if not isinstance(raw_features, list):
        raise ManifestError(f"{label}: 'features' must be a list")

    features: list[ManifestFeature] = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_features):
        path = f"{label}: features[{index}]"
        feature = _parse_feature(raw, path)
        if feature.name in seen:
            raise ManifestError(f"{path}: duplicate feature {feature.name!r}")
        seen.add(feature.name)
        features.append(feature)
    return FeatureManifest(features=tuple(features), source=source)


def _parse_feature(raw: object, path: str) -> ManifestFeature:
    if not isinstance(raw, dict):
        raise ManifestError(f"{path}: expected a mapping")
    unknown = sorted(str(key) for key in raw if key not in _FEATURE_KEYS)
    if unknown:
        raise ManifestError(f"{path}: unknown key(s): {', '.join(unknown)}")

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ManifestError(f"{path}.name: must be a non-empty string")

    area: FeatureArea | None = None
    raw_area = raw.get("area")
    if raw_area is not None:
        try:
            area = as_feature_area(str(raw_area))
        except ValueError as exc:
            raise ManifestError(f"{path}.{exc}") from exc

    implemented = raw.get("implemented", False)
    if not isinstance(implemented, bool):
        raise ManifestError(f"{path}.implemented: must be a boolean")

    return ManifestFeature(
        name=name.strip(),
        area=area,
        implemented=implemented,
        notes=_string_list(raw.get("notes"), f"{path}.notes"),
        tests=_string_list(raw.get("tests"), f"{path}.tests"),
    )


def _string_list(raw: object, path: str) -> tuple[str, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list) or not all(isinstance(item, str) and item.strip() for item in raw):
        raise ManifestError(f"{path}: must be a list of non-empty strings")
    return tuple(item.strip() for item in raw)


__all__ = [
    "MANIFEST_SCHEMA_VERSION",
    "FeatureManifest",
    "ManifestError",
    "ManifestFeature",
    "load_manifest",
    "parse_manifest",
]
