"""Validation of reconstructed output and of on-disk descriptors."""

from .validator import (
    INTEGRITY_STRICT,
    INTEGRITY_WARN,
    check_integrity,
    validate_blendshape_frame,
    validate_mesh,
    validate_mesh_delta,
    validate_output_file,
)

__all__ = [
    "INTEGRITY_STRICT",
    "INTEGRITY_WARN",
    "check_integrity",
    "validate_blendshape_frame",
    "validate_mesh",
    "validate_mesh_delta",
    "validate_output_file",
]
