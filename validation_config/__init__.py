"""
validation_config -- single public entrypoint for validation configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a ``CompiledValidationConfig`` -- the
    sole runtime artifact.  YAML loading is internal build/test tooling and
    never exposed to callers.

Architecture position:
    Configuration -- YAML-driven pipeline, load-time validation.
    This package sits above ``validation_kernel.domain`` and
    ``validation_engines``.  The kernel MUST NEVER import from
    ``validation_config``; compiled artifacts are kernel domain objects
    and are handed to the services by the caller.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Deterministic compilation: the same YAML fragments always produce the
      same checksum.

Failure modes:
    - ``FileNotFoundError`` -- configuration directory or fragment missing.
    - ``KeyError`` / ``ValueError`` -- malformed fragments.
    - ``CompilationFailedError`` -- semantic validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``VALIDATION_CONFIG_TRACE`` log entry containing the config_id,
    version, checksum and policy/template counts.
"""

from __future__ import annotations

import logging
from pathlib import Path

from validation_config.compiler import (
    CompilationError,
    CompilationFailedError,
    CompiledValidationConfig,
    compile_validation_config,
)
from validation_config.loader import load_configuration_set

_logger = logging.getLogger("validation_kernel.config")

# Default configuration directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "defaults"


def get_active_config(config_dir: Path | None = None) -> CompiledValidationConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_dir: Override path to a configuration directory.
            Defaults to validation_config/defaults/.

    Returns:
        CompiledValidationConfig -- the sole runtime artifact.

    Raises:
        FileNotFoundError: If the directory or a fragment is missing.
        CompilationFailedError: If compilation produces errors.
    """
    source_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR

    config_set = load_configuration_set(source_dir)
    compiled = compile_validation_config(config_set)

    # INVARIANT: compiled checksum must match loaded source checksum.
    assert compiled.checksum == config_set.checksum, (
        f"Checksum drift: compiled={compiled.checksum!r} != source={config_set.checksum!r}"
    )

    _logger.info(
        "VALIDATION_CONFIG_TRACE",
        extra={
            "trace_type": "VALIDATION_CONFIG_TRACE",
            "config_id": compiled.config_id,
            "config_version": compiled.version,
            "checksum": compiled.checksum,
            "threshold_policy_count": len(compiled.thresholds.policies),
            "template_count": len(compiled.templates),
            "staleness_window_hours": compiled.settings.staleness_window_hours,
        },
    )
    return compiled


__all__ = [
    "get_active_config",
    "CompiledValidationConfig",
    "CompilationError",
    "CompilationFailedError",
]
