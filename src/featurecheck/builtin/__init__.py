"""Built-in verification suites shipped with featurecheck."""

from featurecheck.builtin.self_checks import SELF_CHECK_IDS, build_self_checks, register_self_checks

__all__ = ["SELF_CHECK_IDS", "build_self_checks", "register_self_checks"]
