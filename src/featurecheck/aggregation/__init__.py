"""Feature catalog, manifest loading, and status aggregation."""

from featurecheck.aggregation.feature_status import (
    FeatureStatusAggregator,
    categorize_notes,
    dedupe_notes,
    determine_feature_area,
    determine_test_status,
    summarize_results,
)
from featurecheck.aggregation.features import FeatureCatalog
from featurecheck.aggregation.manifest import (
    FeatureManifest,
    ManifestError,
    ManifestFeature,
    load_manifest,
    parse_manifest,
)

__all__ = [
    "FeatureCatalog",
    "FeatureManifest",
    "FeatureStatusAggregator",
    "ManifestError",
    "ManifestFeature",
    "categorize_notes",
    "dedupe_notes",
    "determine_feature_area",
    "determine_test_status",
    "load_manifest",
    "parse_manifest",
    "summarize_results",
]
