# siliboot — build de la ISO de Silicium y tests del kernel en QEMU

__version__ = "0.1.0"

from .errors import (AssemblyFailure, CommandFailed, EnvironmentFailure,
                     MissingArtifact, PipelineError, SessionTimeout)
from .orchestrator import TestRunResult, Verdict, run_emulated, run_native

__all__ = [
    "AssemblyFailure", "CommandFailed", "EnvironmentFailure", "MissingArtifact",
    "PipelineError", "SessionTimeout", "TestRunResult", "Verdict",
    "run_emulated", "run_native",
]
