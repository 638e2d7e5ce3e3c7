"""Build orchestration: compiler service and builder."""

from hotswap.build.builder import Builder, BuildFailure
from hotswap.build.compiler import (
    CompiledUnit,
    CompilerOutput,
    CompilerService,
    Diagnostic,
    DiagnosticSeverity,
    PythonCompiler,
)
from hotswap.build.config import BuildConfig

__all__ = [
    "BuildConfig",
    "BuildFailure",
    "Builder",
    "CompiledUnit",
    "CompilerOutput",
    "CompilerService",
    "Diagnostic",
    "DiagnosticSeverity",
    "PythonCompiler",
]
